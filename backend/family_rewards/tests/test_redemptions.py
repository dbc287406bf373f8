"""Tests for reward redemption requests."""

import asyncio
import pathlib
import sys

import pytest
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlmodel import SQLModel, select

# Allow importing the family_rewards package
sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from family_rewards import ledger
from family_rewards.crud import (
    create_child,
    create_family,
    create_reward,
    create_user,
    save_family,
)
from family_rewards.directory import DirectoryCache
from family_rewards.errors import (
    InsufficientStars,
    InvalidStarAmount,
    NotPending,
    RewardNotFound,
    StarsNotSet,
)
from family_rewards.events import EventType
from family_rewards.models import (
    Child,
    CustomRewardRequest,
    Family,
    LedgerEntry,
    Notification,
    Reward,
    RewardRequest,
    User,
)
from family_rewards.notifications import NotificationDispatcher
from family_rewards.redemptions import RedemptionLifecycle, default_policy


class RecordingDispatcher(NotificationDispatcher):
    def __init__(self):
        super().__init__()
        self.events = []

    async def dispatch(self, db, event):
        self.events.append(event)
        return []


async def _setup_test_db(balance=0, url="sqlite+aiosqlite:///:memory:"):
    engine = create_async_engine(url)
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    TestSession = async_sessionmaker(engine, expire_on_commit=False)
    async with TestSession() as session:
        family = await create_family(session, Family(name="Nakamura"))
        await create_user(
            session,
            User(name="Yui", email="yui@example.com", password_hash="pass", family_id=family.id),
        )
        child = await create_child(
            session, Child(family_id=family.id, first_name="Ren", access_code="REN1")
        )
        if balance:
            await ledger.apply_delta(
                session, child.id, "growth", balance, f"seed:{child.id}:initial"
            )
            await session.commit()
    return TestSession, family, child


def test_default_policy_reads_family_settings():
    family = Family(name="x")
    assert not default_policy(5, family)
    family.auto_approve_rewards = True
    assert default_policy(500, family)
    family.auto_approve_threshold = 10
    assert default_policy(10, family)
    assert not default_policy(11, family)


def test_manual_approval_with_short_balance_is_rejected():
    async def run():
        TestSession, family, child = await _setup_test_db(balance=15)
        dispatcher = RecordingDispatcher()
        lifecycle = RedemptionLifecycle(dispatcher=dispatcher)
        async with TestSession() as session:
            family.auto_approve_rewards = True
            family.auto_approve_threshold = 10
            await save_family(session, family)
            reward = await create_reward(
                session, Reward(family_id=family.id, name="New game", star_cost=20)
            )

            requested = await lifecycle.request(session, reward.id, child.id)
            assert requested.record.status == "pending"
            assert not requested.record.is_auto_approved

            with pytest.raises(InsufficientStars) as excinfo:
                await lifecycle.approve(session, requested.record.id, reviewer_id=1)
            assert excinfo.value.request_id == requested.record.id
            assert excinfo.value.current_balance == 15

            req = await session.get(RewardRequest, requested.record.id)
            await session.refresh(req)
            assert req.status == "rejected"
            assert req.rejection_reason == "insufficient_funds"
            assert await ledger.get_balance(session, child.id, "growth") == 15

            with pytest.raises(NotPending):
                await lifecycle.approve(session, req.id)

        assert [e.type for e in dispatcher.events] == [
            EventType.REWARD_REQUESTED,
            EventType.REWARD_REJECTED,
        ]

    asyncio.run(run())


def test_manual_approval_debits_once():
    async def run():
        TestSession, family, child = await _setup_test_db(balance=30)
        lifecycle = RedemptionLifecycle(dispatcher=RecordingDispatcher())
        async with TestSession() as session:
            reward = await create_reward(
                session, Reward(family_id=family.id, name="Ice cream", star_cost=12)
            )
            requested = await lifecycle.request(session, reward.id, child.id)
            approved = await lifecycle.approve(session, requested.record.id)
            assert approved.changed
            assert approved.balance == 18
            assert approved.record.status == "approved"

            again = await lifecycle.approve(session, requested.record.id)
            assert not again.changed
            assert again.balance == 18
            assert await ledger.get_balance(session, child.id, "growth") == 18

    asyncio.run(run())


def test_auto_approved_request_debits_immediately():
    async def run():
        TestSession, family, child = await _setup_test_db(balance=10)
        dispatcher = RecordingDispatcher()
        lifecycle = RedemptionLifecycle(policy=lambda cost, fam: True, dispatcher=dispatcher)
        async with TestSession() as session:
            reward = await create_reward(
                session, Reward(family_id=family.id, name="Sticker", star_cost=4)
            )
            requested = await lifecycle.request(session, reward.id, child.id)
            assert requested.record.status == "auto_approved"
            assert requested.record.is_auto_approved
            assert requested.balance == 6

            # Auto-approved requests are terminal
            assert not (await lifecycle.approve(session, requested.record.id)).changed
            with pytest.raises(NotPending):
                await lifecycle.reject(session, requested.record.id)

        assert [e.type for e in dispatcher.events] == [
            EventType.REWARD_REQUESTED,
            EventType.REWARD_APPROVED,
        ]

    asyncio.run(run())


def test_auto_approved_request_with_short_balance_is_recorded():
    async def run():
        TestSession, family, child = await _setup_test_db(balance=3)
        lifecycle = RedemptionLifecycle(
            policy=lambda cost, fam: True, dispatcher=RecordingDispatcher()
        )
        async with TestSession() as session:
            reward = await create_reward(
                session, Reward(family_id=family.id, name="Sticker", star_cost=4)
            )
            with pytest.raises(InsufficientStars) as excinfo:
                await lifecycle.request(session, reward.id, child.id)
            req = await session.get(RewardRequest, excinfo.value.request_id)
            assert req.status == "rejected"
            assert req.rejection_reason == "insufficient_funds"
            assert await ledger.get_balance(session, child.id, "growth") == 3

    asyncio.run(run())


def test_concurrent_auto_approved_requests_cannot_overspend(tmp_path):
    async def run():
        # Separate connections, as concurrent requests would have
        url = f"sqlite+aiosqlite:///{tmp_path / 'stars.db'}"
        TestSession, family, child = await _setup_test_db(balance=10, url=url)
        lifecycle = RedemptionLifecycle(
            policy=lambda cost, fam: True, dispatcher=RecordingDispatcher()
        )
        async with TestSession() as session:
            reward = await create_reward(
                session, Reward(family_id=family.id, name="Toy", star_cost=7)
            )

        async def request():
            async with TestSession() as session:
                try:
                    return await lifecycle.request(session, reward.id, child.id)
                except InsufficientStars as exc:
                    return exc

        outcomes = await asyncio.gather(request(), request())
        assert sum(isinstance(o, InsufficientStars) for o in outcomes) == 1
        async with TestSession() as session:
            assert await ledger.get_balance(session, child.id, "growth") == 3

    asyncio.run(run())


def test_reject_refunds_held_stars():
    async def run():
        TestSession, family, child = await _setup_test_db(balance=10)
        lifecycle = RedemptionLifecycle(dispatcher=RecordingDispatcher())
        async with TestSession() as session:
            reward = await create_reward(
                session, Reward(family_id=family.id, name="Park trip", star_cost=8)
            )
            plain = await lifecycle.request(session, reward.id, child.id)
            rejected = await lifecycle.reject(session, plain.record.id, reason="Not today")
            assert rejected.record.status == "rejected"
            assert rejected.balance is None
            assert await ledger.get_balance(session, child.id, "growth") == 10

            held = await lifecycle.request(session, reward.id, child.id)
            # Stars held for a request that is still pending
            await ledger.apply_delta(
                session,
                child.id,
                "growth",
                -8,
                ledger.redemption_entry_id(held.record.id, ledger.ENTRY_DEBIT),
            )
            await session.commit()
            refunded = await lifecycle.reject(session, held.record.id)
            assert refunded.balance == 10
            refund = await ledger.get_entry(
                session, ledger.redemption_entry_id(held.record.id, ledger.ENTRY_REFUND)
            )
            assert refund.delta == 8

    asyncio.run(run())


def test_inactive_reward_cannot_be_requested():
    async def run():
        TestSession, family, child = await _setup_test_db()
        lifecycle = RedemptionLifecycle(dispatcher=RecordingDispatcher())
        async with TestSession() as session:
            reward = await create_reward(
                session,
                Reward(family_id=family.id, name="Old", star_cost=1, is_active=False),
            )
            with pytest.raises(RewardNotFound):
                await lifecycle.request(session, reward.id, child.id)

    asyncio.run(run())


def test_non_positive_cost_is_refused():
    async def run():
        TestSession, family, child = await _setup_test_db(balance=5)
        lifecycle = RedemptionLifecycle(
            policy=lambda cost, fam: True, dispatcher=RecordingDispatcher()
        )
        async with TestSession() as session:
            reward = await create_reward(
                session, Reward(family_id=family.id, name="Hug", star_cost=1)
            )
            for cost in (0, -20):
                with pytest.raises(InvalidStarAmount):
                    await lifecycle.request(session, reward.id, child.id, cost=cost)
            result = await session.execute(select(RewardRequest))
            assert result.scalars().all() == []
            assert await ledger.get_balance(session, child.id, "growth") == 5

    asyncio.run(run())


def test_fulfill_follows_approval():
    async def run():
        TestSession, family, child = await _setup_test_db(balance=20)
        lifecycle = RedemptionLifecycle(dispatcher=RecordingDispatcher())
        async with TestSession() as session:
            reward = await create_reward(
                session, Reward(family_id=family.id, name="Zoo trip", star_cost=15)
            )
            requested = await lifecycle.request(session, reward.id, child.id)
            with pytest.raises(NotPending):
                await lifecycle.fulfill(session, requested.record.id)

            await lifecycle.approve(session, requested.record.id)
            fulfilled = await lifecycle.fulfill(session, requested.record.id, reviewer_id=1)
            assert fulfilled.changed
            assert fulfilled.record.status == "fulfilled"
            assert fulfilled.record.fulfilled_at is not None

            assert not (await lifecycle.fulfill(session, requested.record.id)).changed
            again = await lifecycle.approve(session, requested.record.id)
            assert not again.changed
            assert again.balance == 5
            with pytest.raises(NotPending):
                await lifecycle.reject(session, requested.record.id)

    asyncio.run(run())


def test_custom_reward_is_priced_then_approved():
    async def run():
        TestSession, family, child = await _setup_test_db(balance=10)
        dispatcher = RecordingDispatcher()
        lifecycle = RedemptionLifecycle(dispatcher=dispatcher)
        async with TestSession() as session:
            proposed = await lifecycle.propose(
                session, child.id, "Kite", reward_link="https://example.com/kite"
            )
            request_id = proposed.record.id
            assert proposed.record.status == "pending"
            assert proposed.record.stars_required is None

            with pytest.raises(StarsNotSet):
                await lifecycle.approve_custom(session, request_id)
            with pytest.raises(InvalidStarAmount):
                await lifecycle.set_custom_stars(session, request_id, 0)

            priced = await lifecycle.set_custom_stars(session, request_id, 12, reviewer_id=1)
            assert priced.record.status == "stars_set"
            with pytest.raises(InsufficientStars):
                await lifecycle.approve_custom(session, request_id)
            req = await session.get(CustomRewardRequest, request_id)
            assert req.status == "stars_set"
            assert await ledger.get_balance(session, child.id, "growth") == 10

            await lifecycle.set_custom_stars(session, request_id, 8)
            approved = await lifecycle.approve_custom(session, request_id, reviewer_id=1)
            assert approved.changed
            assert approved.balance == 2
            assert approved.record.status == "approved"
            entry = await ledger.get_entry(session, ledger.custom_reward_entry_id(request_id))
            assert entry.delta == -8

            assert not (await lifecycle.approve_custom(session, request_id)).changed
            with pytest.raises(NotPending):
                await lifecycle.set_custom_stars(session, request_id, 3)
            with pytest.raises(NotPending):
                await lifecycle.reject_custom(session, request_id)
            assert await ledger.get_balance(session, child.id, "growth") == 2

        assert [e.type for e in dispatcher.events] == [
            EventType.CUSTOM_REWARD_REQUESTED,
            EventType.CUSTOM_REWARD_APPROVED,
        ]
        assert dispatcher.events[1].detail["stars"] == 8

    asyncio.run(run())


def test_custom_reward_rejection_notifies_and_is_final():
    async def run():
        TestSession, family, child = await _setup_test_db()
        lifecycle = RedemptionLifecycle(
            dispatcher=NotificationDispatcher(names=DirectoryCache())
        )
        async with TestSession() as session:
            proposed = await lifecycle.propose(session, child.id, "Pony")
            result = await session.execute(
                select(Notification).where(Notification.type == "custom_reward_request")
            )
            to_parents = result.scalars().all()
            assert len(to_parents) == 1
            assert to_parents[0].message == 'Ren wants "Pony" as a special reward.'

            rejected = await lifecycle.reject_custom(
                session, proposed.record.id, reason="Too big"
            )
            assert rejected.record.status == "rejected"
            assert not (await lifecycle.reject_custom(session, proposed.record.id)).changed
            with pytest.raises(NotPending):
                await lifecycle.set_custom_stars(session, proposed.record.id, 5)

            result = await session.execute(
                select(Notification).where(Notification.recipient_child_id == child.id)
            )
            to_child = result.scalars().all()
            assert [n.type for n in to_child] == ["custom_reward_rejection"]

    asyncio.run(run())


def test_approvals_from_separate_workers_debit_once(tmp_path):
    async def run():
        url = f"sqlite+aiosqlite:///{tmp_path / 'stars.db'}"
        TestSession, family, child = await _setup_test_db(balance=10, url=url)
        first_worker = RedemptionLifecycle(dispatcher=RecordingDispatcher())
        second_worker = RedemptionLifecycle(dispatcher=RecordingDispatcher())
        async with TestSession() as session:
            reward = await create_reward(
                session, Reward(family_id=family.id, name="Bike ride", star_cost=7)
            )
            requested = await first_worker.request(session, reward.id, child.id)

        async def approve(lifecycle):
            async with TestSession() as session:
                return await lifecycle.approve(session, requested.record.id)

        outcomes = await asyncio.gather(approve(first_worker), approve(second_worker))
        assert [o.record.status for o in outcomes] == ["approved", "approved"]
        assert [o.balance for o in outcomes] == [3, 3]

        async with TestSession() as session:
            result = await session.execute(select(LedgerEntry))
            assert len(result.scalars().all()) == 2  # seed and one debit
            assert await ledger.get_balance(session, child.id, "growth") == 3

    asyncio.run(run())
