"""Tests for star balances and the idempotent ledger."""

import asyncio
import pathlib
import sys

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlmodel import SQLModel, select

# Allow importing the family_rewards package
sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from family_rewards import ledger
from family_rewards.crud import create_child, create_family, create_task
from family_rewards.errors import InsufficientStars
from family_rewards.models import (
    Child,
    CustomRewardRequest,
    Family,
    LedgerEntry,
    RewardRequest,
    Task,
    TaskCompletion,
)


async def _setup_test_db():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    TestSession = async_sessionmaker(engine, expire_on_commit=False)
    async with TestSession() as session:
        family = await create_family(session, Family(name="Rivera"))
        child = await create_child(
            session, Child(family_id=family.id, first_name="Mia", access_code="MIA1")
        )
    return TestSession, family, child


def test_apply_delta_is_idempotent_per_entry_id():
    async def run():
        TestSession, _, child = await _setup_test_db()
        async with TestSession() as session:
            first = await ledger.apply_delta(session, child.id, "growth", 10, "completion:1:approve")
            await session.commit()
            second = await ledger.apply_delta(session, child.id, "growth", 10, "completion:1:approve")
            await session.commit()
            assert first == second == 10
            assert await ledger.get_balance(session, child.id, "growth") == 10
            history = await ledger.get_history(session, child.id)
            assert [e.id for e in history] == ["completion:1:approve"]

    asyncio.run(run())


def test_guarded_debit_leaves_balance_unchanged():
    async def run():
        TestSession, _, child = await _setup_test_db()
        async with TestSession() as session:
            await ledger.apply_delta(session, child.id, "growth", 15, "completion:1:approve")
            await session.commit()
            with pytest.raises(InsufficientStars) as excinfo:
                await ledger.apply_delta(session, child.id, "growth", -20, "redemption:1:debit")
            await session.commit()
            assert excinfo.value.current_balance == 15
            assert excinfo.value.requested_amount == 20
            assert excinfo.value.shortfall == 5
            assert await ledger.get_balance(session, child.id, "growth") == 15
            assert await ledger.get_entry(session, "redemption:1:debit") is None

    asyncio.run(run())


def test_debit_without_any_balance_is_refused():
    async def run():
        TestSession, _, child = await _setup_test_db()
        async with TestSession() as session:
            with pytest.raises(InsufficientStars):
                await ledger.apply_delta(session, child.id, "fun", -1, "redemption:9:debit")
            assert await ledger.get_balances(session, child.id) == {}

    asyncio.run(run())


def test_balances_are_partitioned_by_star_type():
    async def run():
        TestSession, _, child = await _setup_test_db()
        async with TestSession() as session:
            await ledger.apply_delta(session, child.id, "growth", 4, "completion:1:approve")
            await ledger.apply_delta(session, child.id, "fun", 7, "completion:2:approve")
            await ledger.apply_delta(session, child.id, "fun", -7, "redemption:1:debit")
            await session.commit()
            assert await ledger.get_balances(session, child.id) == {"growth": 4, "fun": 0}

    asyncio.run(run())


def test_reconcile_repairs_status_left_pending():
    async def run():
        TestSession, family, child = await _setup_test_db()
        async with TestSession() as session:
            task = await create_task(
                session,
                Task(family_id=family.id, title="Dishes", star_value=6, assigned_child_ids=[child.id]),
            )
            completion = TaskCompletion(
                task_id=task.id,
                child_id=child.id,
                family_id=family.id,
                occurrence_date=task.created_at.date(),
                claim_key=f"{task.id}:{child.id}:once",
            )
            request = RewardRequest(
                reward_id=1,
                reward_name="Movie night",
                child_id=child.id,
                family_id=family.id,
                cost=2,
                is_auto_approved=True,
            )
            session.add(completion)
            session.add(request)
            await session.flush()
            # Ledger writes that landed without their status change
            await ledger.apply_delta(
                session, child.id, "growth", 6, ledger.completion_entry_id(completion.id)
            )
            await ledger.apply_delta(
                session,
                child.id,
                "growth",
                -2,
                ledger.redemption_entry_id(request.id, ledger.ENTRY_DEBIT),
            )
            await session.commit()

            assert await ledger.reconcile(session) == 2
            await session.refresh(completion)
            await session.refresh(request)
            assert completion.status == "approved"
            assert completion.stars_awarded == 6
            assert request.status == "auto_approved"
            assert await ledger.reconcile(session) == 0

            result = await session.execute(select(LedgerEntry))
            assert len(result.scalars().all()) == 2

    asyncio.run(run())


def test_reconcile_approves_priced_custom_reward_and_skips_seed_entries():
    async def run():
        TestSession, family, child = await _setup_test_db()
        async with TestSession() as session:
            await ledger.apply_delta(session, child.id, "growth", 9, f"seed:{child.id}:initial")
            custom = CustomRewardRequest(
                child_id=child.id,
                family_id=family.id,
                reward_name="Lego set",
                stars_required=5,
                status="stars_set",
            )
            session.add(custom)
            await session.flush()
            await ledger.apply_delta(
                session, child.id, "growth", -5, ledger.custom_reward_entry_id(custom.id)
            )
            await session.commit()

            assert await ledger.reconcile(session) == 1
            await session.refresh(custom)
            assert custom.status == "approved"
            assert await ledger.get_balance(session, child.id, "growth") == 4

    asyncio.run(run())


def test_parse_entry_id():
    assert ledger.parse_entry_id("redemption:12:refund") == ("redemption", 12, "refund")
    assert ledger.completion_entry_id(3) == "completion:3:approve"
    assert ledger.custom_reward_entry_id(7) == "custom:7:debit"
