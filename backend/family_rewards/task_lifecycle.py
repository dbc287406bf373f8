"""Task completion workflow.

A child completes one occurrence of a task, a parent approves or rejects
the completion, and approval credits the task's stars.  The status change
and the ledger credit are committed in one transaction; notifications are
dispatched only after that commit.

Retried calls are safe: approving an approved completion returns the
current balance without crediting again, and two requests racing to claim
the same occurrence end with one completion and one ``AlreadyCompleted``.
"""

import logging
import os
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from family_rewards import ledger
from family_rewards.crud import (
    get_child,
    get_completion,
    get_completion_by_claim,
    get_task,
)
from family_rewards.errors import (
    AlreadyCompleted,
    ChildNotFound,
    CompletionNotFound,
    TaskNotAssigned,
    TaskNotDue,
    TaskNotFound,
)
from family_rewards.events import EventType, LifecycleEvent
from family_rewards.locks import KeyedLocks
from family_rewards.models import Task, TaskCompletion
from family_rewards.notifications import NotificationDispatcher, dispatcher as default_dispatcher
from family_rewards.recurrence import TASK_TYPE_RECURRING, is_due_on, task_is_due
from family_rewards.states import Action, CompletionStatus, completion_transition

logger = logging.getLogger(__name__)

ONCE = "once"

# How far back a completion may be dated, for actions queued while offline
COMPLETION_BACKDATE_DAYS = int(os.getenv("COMPLETION_BACKDATE_DAYS", "7"))


@dataclass
class TransitionResult:
    """Outcome of a lifecycle call.

    ``changed`` is ``False`` when the call repeated a transition that had
    already happened; ``balance`` is the child's balance for the affected
    star type when the ledger was involved.
    """

    record: object
    balance: int | None = None
    changed: bool = True


def occurrence_key(task: Task, on_date: date) -> str:
    if task.task_type == TASK_TYPE_RECURRING:
        return on_date.isoformat()
    return ONCE


def claim_key(task_id: int, child_id: int, occurrence: str) -> str:
    return f"{task_id}:{child_id}:{occurrence}"


def _not_due_reason(task: Task, on_date: date) -> str:
    if not task.is_active:
        return "task is not active"
    if task.task_type == TASK_TYPE_RECURRING and not is_due_on(task.recurrence, on_date):
        return f"not scheduled on {on_date.isoformat()}"
    return "deadline has passed"


def _outside_window(task: Task, on_date: date, today: date, backdate_days: int) -> str | None:
    """Reason ``on_date`` cannot be claimed today, or ``None`` if it can.

    Occurrences in the future are never claimable.  Past ones are accepted
    back to the task's creation day, and no further back than
    ``backdate_days``.  Today is always accepted even when the task's UTC
    creation time falls on the next calendar day.
    """
    if on_date > today:
        return f"{on_date.isoformat()} is in the future"
    if on_date < today - timedelta(days=backdate_days):
        return f"{on_date.isoformat()} is more than {backdate_days} days ago"
    if on_date < min(task.created_at.date(), today):
        return f"{on_date.isoformat()} is before the task was created"
    return None


class TaskLifecycle:
    def __init__(
        self,
        dispatcher: NotificationDispatcher | None = None,
        clock: Callable[[], date] = date.today,
        backdate_days: int = COMPLETION_BACKDATE_DAYS,
    ):
        self.dispatcher = dispatcher or default_dispatcher
        self.locks = KeyedLocks()
        self._clock = clock
        self.backdate_days = backdate_days

    async def complete(
        self,
        db: AsyncSession,
        task_id: int,
        child_id: int,
        occurrence_date: date | None = None,
    ) -> TransitionResult:
        """Record that ``child_id`` completed the task on ``occurrence_date``.

        ``occurrence_date`` defaults to today and must fall inside the
        claim window: not in the future, not before the task existed, and
        at most ``backdate_days`` in the past.
        """
        today = self._clock()
        on_date = occurrence_date or today
        async with self.locks.hold(f"claim:{task_id}:{child_id}"):
            task = await get_task(db, task_id)
            if task is None or task.archived_at is not None:
                raise TaskNotFound(task_id)
            child = await get_child(db, child_id)
            if child is None or child.family_id != task.family_id:
                raise ChildNotFound(child_id)
            if child_id not in (task.assigned_child_ids or []):
                raise TaskNotAssigned(task_id, child_id)
            reason = _outside_window(task, on_date, today, self.backdate_days)
            if reason is not None:
                raise TaskNotDue(task_id, reason)
            if not task_is_due(task, on_date):
                raise TaskNotDue(task_id, _not_due_reason(task, on_date))

            occurrence = occurrence_key(task, on_date)
            key = claim_key(task_id, child_id, occurrence)
            if await get_completion_by_claim(db, key) is not None:
                raise AlreadyCompleted(task_id, child_id, occurrence)

            completion = TaskCompletion(
                task_id=task_id,
                child_id=child_id,
                family_id=task.family_id,
                occurrence_date=on_date,
                claim_key=key,
            )
            db.add(completion)
            try:
                await db.flush()
            except IntegrityError:
                await db.rollback()
                raise AlreadyCompleted(task_id, child_id, occurrence)

            events = [
                LifecycleEvent(
                    EventType.TASK_COMPLETED,
                    task.family_id,
                    child_id,
                    completion.id,
                    task.title,
                    {"requires_approval": not task.auto_approve},
                )
            ]
            balance = None
            if task.auto_approve:
                balance = await self._credit(db, completion, task, reviewer_id=None)
                events.append(self._approved_event(completion, task))
            await db.commit()
            logger.info(
                "Child %s completed task %s for %s (completion %s)",
                child_id,
                task_id,
                occurrence,
                completion.id,
            )

        await self.dispatcher.dispatch_all(db, events)
        return TransitionResult(completion, balance, True)

    async def approve(
        self, db: AsyncSession, completion_id: int, reviewer_id: int | None = None
    ) -> TransitionResult:
        """Approve a pending completion and credit its stars exactly once."""
        async with self.locks.hold(f"completion:{completion_id}"):
            completion = await get_completion(db, completion_id)
            if completion is None:
                raise CompletionNotFound(completion_id)
            next_status = completion_transition(
                completion_id, completion.status, Action.APPROVE
            )
            task = await get_task(db, completion.task_id)
            if task is None:
                raise TaskNotFound(completion.task_id)
            if next_status is None:
                balance = await ledger.get_balance(db, completion.child_id, task.star_type)
                logger.info("Completion %s already approved", completion_id)
                return TransitionResult(completion, balance, False)

            star_type = task.star_type
            try:
                balance = await self._credit(db, completion, task, reviewer_id)
                await db.commit()
            except IntegrityError:
                # Another writer committed this transition first
                await db.rollback()
                await db.refresh(completion)
                if completion.status != CompletionStatus.APPROVED.value:
                    raise
                balance = await ledger.get_balance(db, completion.child_id, star_type)
                return TransitionResult(completion, balance, False)
            logger.info(
                "Completion %s approved by user %s: +%s %s stars",
                completion_id,
                reviewer_id,
                completion.stars_awarded,
                task.star_type,
            )

        await self.dispatcher.dispatch(db, self._approved_event(completion, task))
        return TransitionResult(completion, balance, True)

    async def reject(
        self,
        db: AsyncSession,
        completion_id: int,
        reason: str | None = None,
        reviewer_id: int | None = None,
    ) -> TransitionResult:
        """Reject a pending completion; the occurrence becomes claimable again."""
        async with self.locks.hold(f"completion:{completion_id}"):
            completion = await get_completion(db, completion_id)
            if completion is None:
                raise CompletionNotFound(completion_id)
            next_status = completion_transition(
                completion_id, completion.status, Action.REJECT
            )
            task = await get_task(db, completion.task_id)
            if task is None:
                raise TaskNotFound(completion.task_id)
            if next_status is None:
                return TransitionResult(completion, None, False)

            completion.status = next_status.value
            completion.rejected_at = datetime.utcnow()
            completion.rejection_reason = reason
            completion.reviewer_id = reviewer_id
            completion.claim_key = None
            db.add(completion)
            await db.commit()
            logger.info("Completion %s rejected by user %s", completion_id, reviewer_id)

        await self.dispatcher.dispatch(
            db,
            LifecycleEvent(
                EventType.TASK_REJECTED,
                completion.family_id,
                completion.child_id,
                completion.id,
                task.title,
                {"reason": reason},
            ),
        )
        return TransitionResult(completion, None, True)

    async def _credit(
        self,
        db: AsyncSession,
        completion: TaskCompletion,
        task: Task,
        reviewer_id: int | None,
    ) -> int:
        entry_id = ledger.completion_entry_id(completion.id)
        balance = await ledger.apply_delta(
            db, completion.child_id, task.star_type, task.star_value, entry_id
        )
        entry = await ledger.get_entry(db, entry_id)
        completion.status = CompletionStatus.APPROVED.value
        completion.approved_at = datetime.utcnow()
        completion.stars_awarded = entry.delta
        completion.reviewer_id = reviewer_id
        db.add(completion)
        return balance

    def _approved_event(self, completion: TaskCompletion, task: Task) -> LifecycleEvent:
        return LifecycleEvent(
            EventType.TASK_APPROVED,
            completion.family_id,
            completion.child_id,
            completion.id,
            task.title,
            {"stars": completion.stars_awarded, "star_type": task.star_type},
        )

    async def due_tasks_for_child(
        self, db: AsyncSession, child_id: int, on_date: date | None = None
    ) -> list[Task]:
        """Active tasks assigned to the child, due on ``on_date`` and unclaimed."""
        on_date = on_date or self._clock()
        child = await get_child(db, child_id)
        if child is None:
            raise ChildNotFound(child_id)
        result = await db.execute(
            select(Task).where(
                Task.family_id == child.family_id,
                Task.is_active == True,  # noqa: E712
                Task.archived_at == None,  # noqa: E711
            ).order_by(Task.id)
        )
        due = []
        for task in result.scalars().all():
            if child_id not in (task.assigned_child_ids or []):
                continue
            if not task_is_due(task, on_date):
                continue
            key = claim_key(task.id, child_id, occurrence_key(task, on_date))
            if await get_completion_by_claim(db, key) is not None:
                continue
            due.append(task)
        return due


task_lifecycle = TaskLifecycle()
