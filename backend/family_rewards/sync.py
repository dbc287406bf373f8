"""Snapshots for offline clients and replay of their queued actions.

A client caches a snapshot of its family and compares ``version`` on the
next sync to know whether anything changed.  Actions queued while offline
are replayed through the normal task lifecycle, so a completion sent twice
is reported as a duplicate instead of being credited twice.
"""

import hashlib
import json
import logging
from datetime import date, datetime
from typing import Any, Iterable, Mapping

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from family_rewards import ledger
from family_rewards.crud import get_children_by_family, get_family
from family_rewards.errors import AlreadyCompleted, StarEngineError
from family_rewards.models import CustomRewardRequest, RewardRequest, TaskCompletion
from family_rewards.states import CompletionStatus, CustomRewardStatus, RedemptionStatus
from family_rewards.task_lifecycle import TaskLifecycle, task_lifecycle as default_lifecycle

logger = logging.getLogger(__name__)

ACTION_COMPLETE = "complete"

STATUS_APPLIED = "applied"
STATUS_DUPLICATE = "duplicate"
STATUS_REJECTED = "rejected"


async def _count(db: AsyncSession, model, *conditions) -> int:
    result = await db.execute(select(func.count()).select_from(model).where(*conditions))
    return result.scalar_one()


def snapshot_version(content: Mapping[str, Any]) -> str:
    encoded = json.dumps(content, sort_keys=True, default=str).encode()
    return hashlib.sha256(encoded).hexdigest()[:16]


async def build_snapshot(db: AsyncSession, family_id: int) -> dict[str, Any]:
    """Return the family state an offline client caches."""
    family = await get_family(db, family_id)
    children = []
    for child in await get_children_by_family(db, family_id):
        children.append(
            {
                "id": child.id,
                "first_name": child.first_name,
                "balances": await ledger.get_balances(db, child.id),
            }
        )
    content = {
        "family": {
            "id": family.id,
            "name": family.name,
            "default_star_type": family.default_star_type,
        },
        "children": children,
        "pending_completions": await _count(
            db,
            TaskCompletion,
            TaskCompletion.family_id == family_id,
            TaskCompletion.status == CompletionStatus.PENDING_APPROVAL.value,
        ),
        "pending_reward_requests": await _count(
            db,
            RewardRequest,
            RewardRequest.family_id == family_id,
            RewardRequest.status == RedemptionStatus.PENDING.value,
        ),
        "open_custom_rewards": await _count(
            db,
            CustomRewardRequest,
            CustomRewardRequest.family_id == family_id,
            CustomRewardRequest.status.in_(
                [CustomRewardStatus.PENDING.value, CustomRewardStatus.STARS_SET.value]
            ),
        ),
    }
    return {
        **content,
        "version": snapshot_version(content),
        "synced_at": datetime.utcnow(),
    }


def _occurrence(value: Any) -> date | None:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(value)


async def replay(
    db: AsyncSession,
    child_id: int,
    actions: Iterable[Mapping[str, Any]],
    lifecycle: TaskLifecycle | None = None,
) -> list[dict[str, Any]]:
    """Apply queued offline actions in order and report one result per action."""
    lifecycle = lifecycle or default_lifecycle
    results = []
    for action in actions:
        client_ref = action.get("client_ref")
        kind = action.get("kind", ACTION_COMPLETE)
        if kind != ACTION_COMPLETE:
            results.append(
                {"client_ref": client_ref, "status": STATUS_REJECTED, "code": "unknown_action"}
            )
            continue
        try:
            outcome = await lifecycle.complete(
                db,
                action["task_id"],
                child_id,
                _occurrence(action.get("occurrence_date")),
            )
        except AlreadyCompleted:
            await db.rollback()
            results.append({"client_ref": client_ref, "status": STATUS_DUPLICATE})
            continue
        except StarEngineError as exc:
            await db.rollback()
            results.append(
                {"client_ref": client_ref, "status": STATUS_REJECTED, "code": exc.code}
            )
            continue
        results.append(
            {
                "client_ref": client_ref,
                "status": STATUS_APPLIED,
                "completion_id": outcome.record.id,
            }
        )
    logger.info(
        "Replayed %s offline actions for child %s", len(results), child_id
    )
    return results
