"""Notification records for lifecycle transitions.

The dispatcher runs after a transition has committed.  Child actions notify
every parent of the family; parent actions notify the child.  Writing a
notification or delivering it may fail; the failure is logged and the
transition it describes stays committed.
"""

import logging
from typing import Protocol

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from family_rewards.directory import DirectoryCache, directory as default_directory
from family_rewards.events import EventType, LifecycleEvent
from family_rewards.models import Notification, User

logger = logging.getLogger(__name__)

CHANNEL_IN_APP = "in_app"
CHANNEL_PUSH = "push"

AUDIENCE_PARENTS = "parents"
AUDIENCE_CHILD = "child"

# event -> (notification type, audience, channel, title, message template)
NOTIFICATION_RULES = {
    EventType.TASK_COMPLETED: (
        "task_completion",
        AUDIENCE_PARENTS,
        CHANNEL_PUSH,
        "Task Completed!",
        '{child} has completed "{subject}" and is waiting for approval.',
    ),
    EventType.TASK_APPROVED: (
        "task_approval",
        AUDIENCE_CHILD,
        CHANNEL_IN_APP,
        "Task Approved!",
        '"{subject}" was approved. You earned {stars} stars.',
    ),
    EventType.TASK_REJECTED: (
        "task_rejection",
        AUDIENCE_CHILD,
        CHANNEL_IN_APP,
        "Task Not Approved",
        '"{subject}" was not approved.',
    ),
    EventType.REWARD_REQUESTED: (
        "reward_request",
        AUDIENCE_PARENTS,
        CHANNEL_PUSH,
        "Reward Request!",
        '{child} wants to redeem "{subject}".',
    ),
    EventType.REWARD_APPROVED: (
        "reward_approval",
        AUDIENCE_CHILD,
        CHANNEL_IN_APP,
        "Reward Approved!",
        '"{subject}" is yours! {stars} stars were spent.',
    ),
    EventType.REWARD_REJECTED: (
        "reward_rejection",
        AUDIENCE_CHILD,
        CHANNEL_IN_APP,
        "Reward Not Approved",
        '"{subject}" was not approved.',
    ),
    EventType.CUSTOM_REWARD_REQUESTED: (
        "custom_reward_request",
        AUDIENCE_PARENTS,
        CHANNEL_PUSH,
        "Custom Reward Request!",
        '{child} wants "{subject}" as a special reward.',
    ),
    EventType.CUSTOM_REWARD_APPROVED: (
        "custom_reward_approval",
        AUDIENCE_CHILD,
        CHANNEL_IN_APP,
        "Special Reward Approved!",
        '"{subject}" is yours! {stars} stars were spent.',
    ),
    EventType.CUSTOM_REWARD_REJECTED: (
        "custom_reward_rejection",
        AUDIENCE_CHILD,
        CHANNEL_IN_APP,
        "Special Reward Not Approved",
        '"{subject}" was not approved.',
    ),
}


class NotificationTransport(Protocol):
    async def deliver(self, notification: Notification, channel: str) -> None: ...


class LoggingTransport:
    """Transport that only records deliveries in the log."""

    async def deliver(self, notification: Notification, channel: str) -> None:
        logger.info(
            "Delivering notification %s (%s) via %s",
            notification.id,
            notification.type,
            channel,
        )


class NotificationDispatcher:
    def __init__(
        self,
        transport: NotificationTransport | None = None,
        names: DirectoryCache | None = None,
    ):
        self.transport = transport or LoggingTransport()
        self.names = names or default_directory

    async def _message(self, db: AsyncSession, event: LifecycleEvent, template: str) -> str:
        child = await self.names.child_name(db, event.child_id)
        message = template.format(
            child=child,
            subject=event.subject,
            stars=event.detail.get("stars", 0),
        )
        if event.type == EventType.TASK_COMPLETED and not event.detail.get(
            "requires_approval", True
        ):
            message = f'{child} has completed "{event.subject}".'
        reason = event.detail.get("reason")
        if reason:
            message = f"{message} Reason: {reason}"
        return message

    async def _parent_ids(self, db: AsyncSession, family_id: int) -> list[int]:
        result = await db.execute(select(User.id).where(User.family_id == family_id))
        return list(result.scalars().all())

    async def dispatch(self, db: AsyncSession, event: LifecycleEvent) -> list[Notification]:
        """Persist and deliver the notifications for one committed event."""
        ntype, audience, channel, title, template = NOTIFICATION_RULES[event.type]
        try:
            message = await self._message(db, event, template)
            records = []
            if audience == AUDIENCE_PARENTS:
                for parent_id in await self._parent_ids(db, event.family_id):
                    records.append(
                        Notification(
                            recipient_user_id=parent_id,
                            type=ntype,
                            title=title,
                            message=message,
                            child_id=event.child_id,
                            related_id=event.related_id,
                            channel=channel,
                        )
                    )
            else:
                records.append(
                    Notification(
                        recipient_child_id=event.child_id,
                        type=ntype,
                        title=title,
                        message=message,
                        child_id=event.child_id,
                        related_id=event.related_id,
                        channel=channel,
                    )
                )
            db.add_all(records)
            await db.commit()
        except SQLAlchemyError:
            logger.exception(
                "Failed to record %s notification for record %s",
                event.type.value,
                event.related_id,
            )
            await db.rollback()
            return []

        for record in records:
            try:
                await self.transport.deliver(record, channel)
            except Exception:
                logger.exception("Delivery of notification %s failed", record.id)
        return records

    async def dispatch_all(self, db: AsyncSession, events: list[LifecycleEvent]) -> None:
        for event in events:
            await self.dispatch(db, event)


dispatcher = NotificationDispatcher()


def _recipient_filter(stmt, user_id: int | None, child_id: int | None):
    if user_id is not None:
        stmt = stmt.where(Notification.recipient_user_id == user_id)
    if child_id is not None:
        stmt = stmt.where(Notification.recipient_child_id == child_id)
    return stmt


async def list_notifications(
    db: AsyncSession,
    *,
    user_id: int | None = None,
    child_id: int | None = None,
    limit: int = 50,
) -> list[Notification]:
    stmt = _recipient_filter(select(Notification), user_id, child_id)
    stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
    result = await db.execute(stmt)
    return result.scalars().all()


async def unread_count(
    db: AsyncSession, *, user_id: int | None = None, child_id: int | None = None
) -> int:
    stmt = _recipient_filter(
        select(func.count()).select_from(Notification).where(
            Notification.is_read == False  # noqa: E712
        ),
        user_id,
        child_id,
    )
    result = await db.execute(stmt)
    return result.scalar_one()


async def get_notification(db: AsyncSession, notification_id: int) -> Notification | None:
    result = await db.execute(
        select(Notification).where(Notification.id == notification_id)
    )
    return result.scalar_one_or_none()


async def mark_as_read(db: AsyncSession, notification: Notification) -> Notification:
    notification.is_read = True
    db.add(notification)
    await db.commit()
    await db.refresh(notification)
    return notification


async def mark_all_as_read(
    db: AsyncSession, *, user_id: int | None = None, child_id: int | None = None
) -> int:
    """Mark the notifications unread at call time as read, in one update.

    Returns the number of notifications marked.
    """
    stmt = _recipient_filter(
        select(Notification.id).where(Notification.is_read == False),  # noqa: E712
        user_id,
        child_id,
    )
    result = await db.execute(stmt)
    ids = list(result.scalars().all())
    if not ids:
        return 0
    await db.execute(
        update(Notification)
        .where(Notification.id.in_(ids))
        .values(is_read=True)
        .execution_options(synchronize_session="fetch")
    )
    await db.commit()
    return len(ids)
