"""Routes for managing children, their balances and their history."""

import logging
from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from family_rewards import ledger
from family_rewards.acl import (
    IDENTITY_CHILD,
    PARENT_ROLES,
    acting_child,
    family_child,
)
from family_rewards.auth import get_current_identity, require_role
from family_rewards.crud import (
    create_child,
    get_children_by_family,
    get_completions_by_child,
    get_custom_requests_by_child,
    get_requests_by_child,
    save_child,
)
from family_rewards.database import get_session
from family_rewards.directory import directory
from family_rewards.models import Child, User
from family_rewards.recurrence import TASK_TYPE_RECURRING, next_due_date
from family_rewards.schemas import (
    BalanceRead,
    ChildCreate,
    ChildRead,
    ChildUpdate,
    CompletionRead,
    CustomRewardRead,
    DueTaskRead,
    LedgerEntryRead,
    RewardRequestRead,
)
from family_rewards.task_lifecycle import task_lifecycle

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/children", tags=["children"])


def _duplicate_access_code() -> HTTPException:
    return HTTPException(
        status_code=400,
        detail={
            "code": "child_access_code_taken",
            "message": "Access code is already in use",
        },
    )


@router.post("/", response_model=ChildRead)
async def add_child(
    child_in: ChildCreate,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role(*PARENT_ROLES)),
):
    child = Child(
        family_id=current_user.family_id,
        first_name=child_in.first_name,
        access_code=child_in.access_code,
    )
    try:
        child = await create_child(db, child)
    except IntegrityError:
        await db.rollback()
        raise _duplicate_access_code()
    logger.info("User %s added child %s", current_user.id, child.id)
    return child


@router.get("/", response_model=list[ChildRead])
async def list_children(
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role(*PARENT_ROLES)),
):
    return await get_children_by_family(db, current_user.family_id)


@router.get("/me", response_model=ChildRead)
async def read_current_child(
    identity: tuple[str, Child | User] = Depends(get_current_identity),
):
    kind, obj = identity
    if kind != IDENTITY_CHILD:
        raise HTTPException(status_code=403, detail="Not a child account")
    return obj


@router.get("/{child_id}", response_model=ChildRead)
async def read_child(
    child_id: int,
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Child | User] = Depends(get_current_identity),
):
    return await acting_child(db, identity, child_id)


@router.patch("/{child_id}", response_model=ChildRead)
async def update_child(
    child_id: int,
    child_in: ChildUpdate,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role(*PARENT_ROLES)),
):
    child = await family_child(db, current_user, child_id)
    if child_in.first_name is not None:
        child.first_name = child_in.first_name
    if child_in.access_code is not None:
        child.access_code = child_in.access_code
    try:
        child = await save_child(db, child)
    except IntegrityError:
        await db.rollback()
        raise _duplicate_access_code()
    directory.invalidate("child", child.id)
    return child


@router.get("/{child_id}/balances", response_model=BalanceRead)
async def read_balances(
    child_id: int,
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Child | User] = Depends(get_current_identity),
):
    child = await acting_child(db, identity, child_id)
    return BalanceRead(child_id=child.id, balances=await ledger.get_balances(db, child.id))


@router.get("/{child_id}/ledger", response_model=list[LedgerEntryRead])
async def read_ledger(
    child_id: int,
    limit: int = 100,
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Child | User] = Depends(get_current_identity),
):
    child = await acting_child(db, identity, child_id)
    return await ledger.get_history(db, child.id, limit=limit)


@router.get("/{child_id}/due-tasks", response_model=list[DueTaskRead])
async def read_due_tasks(
    child_id: int,
    on: date | None = None,
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Child | User] = Depends(get_current_identity),
):
    """Tasks the child can complete on ``on`` (default today)."""

    child = await acting_child(db, identity, child_id)
    on_date = on or date.today()
    tasks = await task_lifecycle.due_tasks_for_child(db, child.id, on_date)
    result = []
    for task in tasks:
        item = DueTaskRead.model_validate(task)
        if task.task_type == TASK_TYPE_RECURRING:
            item.next_due_date = next_due_date(task.recurrence, on_date)
        result.append(item)
    return result


@router.get("/{child_id}/completions", response_model=list[CompletionRead])
async def read_completions(
    child_id: int,
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Child | User] = Depends(get_current_identity),
):
    child = await acting_child(db, identity, child_id)
    return await get_completions_by_child(db, child.id)


@router.get("/{child_id}/reward-requests", response_model=list[RewardRequestRead])
async def read_reward_requests(
    child_id: int,
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Child | User] = Depends(get_current_identity),
):
    child = await acting_child(db, identity, child_id)
    return await get_requests_by_child(db, child.id)


@router.get("/{child_id}/custom-rewards", response_model=list[CustomRewardRead])
async def read_custom_rewards(
    child_id: int,
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Child | User] = Depends(get_current_identity),
):
    child = await acting_child(db, identity, child_id)
    return await get_custom_requests_by_child(db, child.id)
