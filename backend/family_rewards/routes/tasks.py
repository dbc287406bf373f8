"""Task management and the completion approval workflow."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from family_rewards.acl import (
    IDENTITY_CHILD,
    PARENT_ROLES,
    acting_child,
    ensure_family,
    family_child,
)
from family_rewards.auth import get_current_identity, require_role
from family_rewards.crud import (
    archive_task,
    create_task,
    get_completion,
    get_family,
    get_pending_completions_for_family,
    get_task,
    get_tasks_by_family,
    save_task,
)
from family_rewards.database import get_session
from family_rewards.models import Child, Task, User
from family_rewards.recurrence import TASK_TYPE_RECURRING, task_rule
from family_rewards.schemas import (
    CompletionCreate,
    CompletionRead,
    CompletionResult,
    RejectRequest,
    TaskCreate,
    TaskRead,
    TaskUpdate,
)
from family_rewards.task_lifecycle import TransitionResult, task_lifecycle

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/tasks", tags=["tasks"])


def _completion_result(result: TransitionResult) -> CompletionResult:
    return CompletionResult(
        completion=CompletionRead.model_validate(result.record),
        balance=result.balance,
        changed=result.changed,
    )


async def _check_assignees(db: AsyncSession, user: User, child_ids: list[int]) -> list[int]:
    for child_id in child_ids:
        await family_child(db, user, child_id)
    return sorted(set(child_ids))


@router.post("/", response_model=TaskRead)
async def add_task(
    task_in: TaskCreate,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role(*PARENT_ROLES)),
):
    rule = task_rule(task_in.task_type, task_in.recurrence)
    star_type = task_in.star_type
    if star_type is None:
        family = await get_family(db, current_user.family_id)
        star_type = family.default_star_type
    task = Task(
        family_id=current_user.family_id,
        title=task_in.title,
        category=task_in.category,
        task_type=task_in.task_type,
        recurrence=rule,
        star_value=task_in.star_value,
        star_type=star_type,
        assigned_child_ids=await _check_assignees(
            db, current_user, task_in.assigned_child_ids
        ),
        auto_approve=task_in.auto_approve,
        deadline=task_in.deadline,
        created_by=current_user.id,
    )
    task = await create_task(db, task)
    logger.info("User %s created %s task %s", current_user.id, task.task_type, task.id)
    return task


@router.get("/", response_model=list[TaskRead])
async def list_tasks(
    include_archived: bool = False,
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Child | User] = Depends(get_current_identity),
):
    kind, obj = identity
    tasks = await get_tasks_by_family(db, obj.family_id, include_archived)
    if kind == IDENTITY_CHILD:
        tasks = [t for t in tasks if obj.id in (t.assigned_child_ids or [])]
    return tasks


@router.get("/completions/pending", response_model=list[CompletionRead])
async def list_pending_completions(
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role(*PARENT_ROLES)),
):
    return await get_pending_completions_for_family(db, current_user.family_id)


@router.post("/completions/{completion_id}/approve", response_model=CompletionResult)
async def approve_completion(
    completion_id: int,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role(*PARENT_ROLES)),
):
    ensure_family(await get_completion(db, completion_id), current_user.family_id, "Completion")
    result = await task_lifecycle.approve(db, completion_id, reviewer_id=current_user.id)
    return _completion_result(result)


@router.post("/completions/{completion_id}/reject", response_model=CompletionResult)
async def reject_completion(
    completion_id: int,
    body: RejectRequest | None = None,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role(*PARENT_ROLES)),
):
    ensure_family(await get_completion(db, completion_id), current_user.family_id, "Completion")
    result = await task_lifecycle.reject(
        db,
        completion_id,
        reason=body.reason if body else None,
        reviewer_id=current_user.id,
    )
    return _completion_result(result)


@router.get("/{task_id}", response_model=TaskRead)
async def read_task(
    task_id: int,
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Child | User] = Depends(get_current_identity),
):
    return ensure_family(await get_task(db, task_id), identity[1].family_id, "Task")


@router.patch("/{task_id}", response_model=TaskRead)
async def update_task(
    task_id: int,
    task_in: TaskUpdate,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role(*PARENT_ROLES)),
):
    task = ensure_family(await get_task(db, task_id), current_user.family_id, "Task")
    changes = task_in.model_dump(exclude_unset=True)
    if "assigned_child_ids" in changes:
        changes["assigned_child_ids"] = await _check_assignees(
            db, current_user, changes["assigned_child_ids"] or []
        )
    if "task_type" in changes or "recurrence" in changes:
        task_type = changes.get("task_type", task.task_type)
        kept = task.recurrence if task_type == TASK_TYPE_RECURRING else None
        recurrence = changes.get("recurrence", kept)
        changes["recurrence"] = task_rule(task_type, recurrence)
    for field, value in changes.items():
        if value is None and field not in ("recurrence", "deadline"):
            continue
        setattr(task, field, value)
    task = await save_task(db, task)
    logger.info("User %s updated task %s", current_user.id, task.id)
    return task


@router.delete("/{task_id}", response_model=TaskRead)
async def delete_task(
    task_id: int,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role(*PARENT_ROLES)),
):
    """Archive the task; completions that point at it are kept."""

    task = ensure_family(await get_task(db, task_id), current_user.family_id, "Task")
    task = await archive_task(db, task)
    logger.info("User %s archived task %s", current_user.id, task.id)
    return task


@router.post("/{task_id}/complete", response_model=CompletionResult)
async def complete_task(
    task_id: int,
    body: CompletionCreate | None = None,
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Child | User] = Depends(get_current_identity),
):
    """Claim one occurrence of a task for a child.

    Children complete for themselves; a parent may complete on behalf of a
    child by naming ``child_id``.
    """

    body = body or CompletionCreate()
    child = await acting_child(db, identity, body.child_id)
    result = await task_lifecycle.complete(db, task_id, child.id, body.occurrence_date)
    return _completion_result(result)
