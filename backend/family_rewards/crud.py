"""Asynchronous CRUD helpers for the application's data models.

Each function in this module encapsulates a specific database operation
using SQLModel and SQLAlchemy.  State transitions and balance changes are
not here: they live in the lifecycle modules and the ledger.
"""

from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from family_rewards.auth import get_password_hash
from family_rewards.models import (
    Family,
    User,
    Child,
    Task,
    TaskCompletion,
    Reward,
    RewardRequest,
    CustomRewardRequest,
)
from family_rewards.states import CompletionStatus, CustomRewardStatus, RedemptionStatus


# --- Family and user helpers ----------------------------------------------


async def create_family(db: AsyncSession, family: Family) -> Family:
    db.add(family)
    await db.commit()
    await db.refresh(family)
    return family


async def get_family(db: AsyncSession, family_id: int) -> Family | None:
    result = await db.execute(select(Family).where(Family.id == family_id))
    return result.scalar_one_or_none()


async def save_family(db: AsyncSession, family: Family) -> Family:
    """Persist family settings changes and return the refreshed object."""

    db.add(family)
    await db.commit()
    await db.refresh(family)
    return family


async def create_user(db: AsyncSession, user: User) -> User:
    """Create a new parent, hashing the plain password it was given."""
    user.password_hash = get_password_hash(user.password_hash)
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def get_parents_for_family(db: AsyncSession, family_id: int) -> list[User]:
    result = await db.execute(select(User).where(User.family_id == family_id))
    return result.scalars().all()


# --- Child helpers ----------------------------------------------------------


async def create_child(db: AsyncSession, child: Child) -> Child:
    db.add(child)
    await db.commit()
    await db.refresh(child)
    return child


async def get_child(db: AsyncSession, child_id: int) -> Child | None:
    result = await db.execute(select(Child).where(Child.id == child_id))
    return result.scalar_one_or_none()


async def get_child_by_access_code(db: AsyncSession, access_code: str) -> Child | None:
    result = await db.execute(select(Child).where(Child.access_code == access_code))
    return result.scalar_one_or_none()


async def get_children_by_family(db: AsyncSession, family_id: int) -> list[Child]:
    result = await db.execute(
        select(Child).where(Child.family_id == family_id).order_by(Child.id)
    )
    return result.scalars().all()


async def save_child(db: AsyncSession, child: Child) -> Child:
    db.add(child)
    await db.commit()
    await db.refresh(child)
    return child


# --- Task helpers -----------------------------------------------------------


async def create_task(db: AsyncSession, task: Task) -> Task:
    """Persist a new task."""

    db.add(task)
    await db.commit()
    await db.refresh(task)
    return task


async def get_task(db: AsyncSession, task_id: int) -> Task | None:
    result = await db.execute(select(Task).where(Task.id == task_id))
    return result.scalar_one_or_none()


async def get_tasks_by_family(
    db: AsyncSession, family_id: int, include_archived: bool = False
) -> list[Task]:
    stmt = select(Task).where(Task.family_id == family_id)
    if not include_archived:
        stmt = stmt.where(Task.archived_at == None)  # noqa: E711
    result = await db.execute(stmt.order_by(Task.id))
    return result.scalars().all()


async def save_task(db: AsyncSession, task: Task) -> Task:
    task.updated_at = datetime.utcnow()
    db.add(task)
    await db.commit()
    await db.refresh(task)
    return task


async def archive_task(db: AsyncSession, task: Task) -> Task:
    """Soft-delete a task; its completions keep pointing at it."""

    task.archived_at = datetime.utcnow()
    task.is_active = False
    return await save_task(db, task)


# --- Completion helpers -----------------------------------------------------


async def get_completion(db: AsyncSession, completion_id: int) -> TaskCompletion | None:
    result = await db.execute(
        select(TaskCompletion).where(TaskCompletion.id == completion_id)
    )
    return result.scalar_one_or_none()


async def get_completion_by_claim(db: AsyncSession, claim_key: str) -> TaskCompletion | None:
    result = await db.execute(
        select(TaskCompletion).where(TaskCompletion.claim_key == claim_key)
    )
    return result.scalar_one_or_none()


async def get_pending_completions_for_family(
    db: AsyncSession, family_id: int
) -> list[TaskCompletion]:
    result = await db.execute(
        select(TaskCompletion)
        .where(
            TaskCompletion.family_id == family_id,
            TaskCompletion.status == CompletionStatus.PENDING_APPROVAL.value,
        )
        .order_by(TaskCompletion.completed_at)
    )
    return result.scalars().all()


async def get_completions_by_child(
    db: AsyncSession, child_id: int
) -> list[TaskCompletion]:
    result = await db.execute(
        select(TaskCompletion)
        .where(TaskCompletion.child_id == child_id)
        .order_by(TaskCompletion.completed_at.desc())
    )
    return result.scalars().all()


# --- Reward helpers ---------------------------------------------------------


async def create_reward(db: AsyncSession, reward: Reward) -> Reward:
    db.add(reward)
    await db.commit()
    await db.refresh(reward)
    return reward


async def get_reward(db: AsyncSession, reward_id: int) -> Reward | None:
    result = await db.execute(select(Reward).where(Reward.id == reward_id))
    return result.scalar_one_or_none()


async def get_rewards_by_family(db: AsyncSession, family_id: int) -> list[Reward]:
    result = await db.execute(
        select(Reward)
        .where(Reward.family_id == family_id, Reward.is_active == True)  # noqa: E712
        .order_by(Reward.star_cost)
    )
    return result.scalars().all()


async def save_reward(db: AsyncSession, reward: Reward) -> Reward:
    db.add(reward)
    await db.commit()
    await db.refresh(reward)
    return reward


async def get_reward_request(db: AsyncSession, request_id: int) -> RewardRequest | None:
    result = await db.execute(
        select(RewardRequest).where(RewardRequest.id == request_id)
    )
    return result.scalar_one_or_none()


async def get_pending_requests_for_family(
    db: AsyncSession, family_id: int
) -> list[RewardRequest]:
    """Return pending reward requests for a family, oldest first."""
    result = await db.execute(
        select(RewardRequest)
        .where(
            RewardRequest.family_id == family_id,
            RewardRequest.status == RedemptionStatus.PENDING.value,
        )
        .order_by(RewardRequest.requested_at)
    )
    return result.scalars().all()


async def get_requests_by_child(db: AsyncSession, child_id: int) -> list[RewardRequest]:
    result = await db.execute(
        select(RewardRequest)
        .where(RewardRequest.child_id == child_id)
        .order_by(RewardRequest.requested_at.desc())
    )
    return result.scalars().all()


# --- Custom reward helpers --------------------------------------------------


async def get_custom_request(
    db: AsyncSession, request_id: int
) -> CustomRewardRequest | None:
    result = await db.execute(
        select(CustomRewardRequest).where(CustomRewardRequest.id == request_id)
    )
    return result.scalar_one_or_none()


async def get_open_custom_requests_for_family(
    db: AsyncSession, family_id: int
) -> list[CustomRewardRequest]:
    """Return custom requests still waiting on a parent (unpriced or priced)."""
    result = await db.execute(
        select(CustomRewardRequest)
        .where(
            CustomRewardRequest.family_id == family_id,
            CustomRewardRequest.status.in_(
                [CustomRewardStatus.PENDING.value, CustomRewardStatus.STARS_SET.value]
            ),
        )
        .order_by(CustomRewardRequest.requested_at)
    )
    return result.scalars().all()


async def get_custom_requests_by_child(
    db: AsyncSession, child_id: int
) -> list[CustomRewardRequest]:
    result = await db.execute(
        select(CustomRewardRequest)
        .where(CustomRewardRequest.child_id == child_id)
        .order_by(CustomRewardRequest.requested_at.desc())
    )
    return result.scalars().all()
