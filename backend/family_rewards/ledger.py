"""Star balances and the ledger of applied mutations.

Balances only change through ``apply_delta``.  Each call names the
transition that caused it with a ledger-entry id; an id that was already
applied returns the balance it produced instead of applying again.  The
non-negative guard is part of the UPDATE statement itself, so a check and
the mutation can never be separated by a concurrent writer.

``apply_delta`` flushes but never commits: the caller commits the ledger
write together with the status change of the completion or request.
"""

import logging

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from family_rewards.errors import InsufficientStars
from family_rewards.models import (
    CustomRewardRequest,
    LedgerEntry,
    StarBalance,
    TaskCompletion,
    RewardRequest,
)
from family_rewards.states import CompletionStatus, CustomRewardStatus, RedemptionStatus

logger = logging.getLogger(__name__)

ENTRY_APPROVE = "approve"
ENTRY_DEBIT = "debit"
ENTRY_REFUND = "refund"


def completion_entry_id(completion_id: int) -> str:
    return f"completion:{completion_id}:{ENTRY_APPROVE}"


def redemption_entry_id(request_id: int, kind: str) -> str:
    return f"redemption:{request_id}:{kind}"


def custom_reward_entry_id(request_id: int) -> str:
    return f"custom:{request_id}:{ENTRY_DEBIT}"


def parse_entry_id(entry_id: str) -> tuple[str, int, str]:
    """Split an entry id into ``(source, record_id, kind)``."""
    source, record_id, kind = entry_id.split(":")
    return source, int(record_id), kind


async def get_balance(db: AsyncSession, child_id: int, star_type: str) -> int:
    """Return the child's balance for ``star_type`` (0 if never credited)."""
    result = await db.execute(
        select(StarBalance.amount).where(
            StarBalance.child_id == child_id,
            StarBalance.star_type == star_type,
        )
    )
    amount = result.scalar_one_or_none()
    return amount or 0


async def get_balances(db: AsyncSession, child_id: int) -> dict[str, int]:
    """Return all of a child's balances keyed by star type."""
    result = await db.execute(
        select(StarBalance).where(StarBalance.child_id == child_id)
    )
    return {b.star_type: b.amount for b in result.scalars().all()}


async def get_entry(db: AsyncSession, entry_id: str) -> LedgerEntry | None:
    result = await db.execute(select(LedgerEntry).where(LedgerEntry.id == entry_id))
    return result.scalar_one_or_none()


async def get_history(
    db: AsyncSession, child_id: int, limit: int = 100
) -> list[LedgerEntry]:
    """Return the child's ledger entries, newest first."""
    result = await db.execute(
        select(LedgerEntry)
        .where(LedgerEntry.child_id == child_id)
        .order_by(LedgerEntry.created_at.desc())
        .limit(limit)
    )
    return result.scalars().all()


async def apply_delta(
    db: AsyncSession,
    child_id: int,
    star_type: str,
    delta: int,
    entry_id: str,
) -> int:
    """Apply ``delta`` to a balance exactly once and return the new balance.

    Raises:
        InsufficientStars: if the delta would make the balance negative.
            Nothing is written in that case.
    """
    existing = await get_entry(db, entry_id)
    if existing is not None:
        logger.info("Ledger entry %s already applied", entry_id)
        return existing.resulting_balance

    if delta >= 0:
        row = await db.get(StarBalance, (child_id, star_type))
        if row is None:
            db.add(StarBalance(child_id=child_id, star_type=star_type, amount=0))
            await db.flush()

    result = await db.execute(
        update(StarBalance)
        .where(
            StarBalance.child_id == child_id,
            StarBalance.star_type == star_type,
            StarBalance.amount + delta >= 0,
        )
        .values(amount=StarBalance.amount + delta)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount == 0:
        current = await get_balance(db, child_id, star_type)
        logger.warning(
            "Guarded debit refused for child %s: %s %s stars, delta %s",
            child_id,
            current,
            star_type,
            delta,
        )
        raise InsufficientStars(child_id, star_type, current, -delta)

    new_balance = await get_balance(db, child_id, star_type)
    db.add(
        LedgerEntry(
            id=entry_id,
            child_id=child_id,
            star_type=star_type,
            delta=delta,
            resulting_balance=new_balance,
        )
    )
    await db.flush()
    logger.info(
        "Ledger entry %s: child %s %s %+d -> %s",
        entry_id,
        child_id,
        star_type,
        delta,
        new_balance,
    )
    return new_balance


async def reconcile(db: AsyncSession) -> int:
    """Repair status records whose ledger write landed without them.

    A completion still pending with an ``approve`` entry becomes approved,
    a request still pending with a ``debit`` entry becomes approved (or
    auto-approved), and a priced custom reward with a ``debit`` entry
    becomes approved.  Returns the number of records repaired.
    """
    result = await db.execute(select(LedgerEntry))
    repaired = 0
    for entry in result.scalars().all():
        source, record_id, kind = parse_entry_id(entry.id)
        if source == "completion" and kind == ENTRY_APPROVE:
            completion = await db.get(TaskCompletion, record_id)
            if (
                completion is not None
                and completion.status == CompletionStatus.PENDING_APPROVAL.value
            ):
                completion.status = CompletionStatus.APPROVED.value
                completion.stars_awarded = entry.delta
                completion.approved_at = entry.created_at
                db.add(completion)
                repaired += 1
        elif source == "redemption" and kind == ENTRY_DEBIT:
            req = await db.get(RewardRequest, record_id)
            if req is not None and req.status == RedemptionStatus.PENDING.value:
                req.status = (
                    RedemptionStatus.AUTO_APPROVED.value
                    if req.is_auto_approved
                    else RedemptionStatus.APPROVED.value
                )
                req.responded_at = entry.created_at
                db.add(req)
                repaired += 1
        elif source == "custom" and kind == ENTRY_DEBIT:
            custom = await db.get(CustomRewardRequest, record_id)
            if custom is not None and custom.status == CustomRewardStatus.STARS_SET.value:
                custom.status = CustomRewardStatus.APPROVED.value
                custom.responded_at = entry.created_at
                db.add(custom)
                repaired += 1
    await db.commit()
    if repaired:
        logger.warning("Reconciliation repaired %s status records", repaired)
    return repaired
