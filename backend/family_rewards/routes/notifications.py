"""Notification inbox for parents and children."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from family_rewards import notifications
from family_rewards.acl import IDENTITY_CHILD
from family_rewards.auth import get_current_identity
from family_rewards.database import get_session
from family_rewards.models import Child, User
from family_rewards.schemas import MarkAllResult, NotificationRead, UnreadCount

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _recipient(identity: tuple[str, Child | User]) -> dict:
    kind, obj = identity
    if kind == IDENTITY_CHILD:
        return {"child_id": obj.id}
    return {"user_id": obj.id}


@router.get("/", response_model=list[NotificationRead])
async def list_notifications(
    limit: int = 50,
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Child | User] = Depends(get_current_identity),
):
    return await notifications.list_notifications(db, limit=limit, **_recipient(identity))


@router.get("/unread-count", response_model=UnreadCount)
async def unread_count(
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Child | User] = Depends(get_current_identity),
):
    return UnreadCount(unread=await notifications.unread_count(db, **_recipient(identity)))


@router.post("/read-all", response_model=MarkAllResult)
async def mark_all_read(
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Child | User] = Depends(get_current_identity),
):
    marked = await notifications.mark_all_as_read(db, **_recipient(identity))
    return MarkAllResult(marked=marked)


@router.post("/{notification_id}/read", response_model=NotificationRead)
async def mark_read(
    notification_id: int,
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Child | User] = Depends(get_current_identity),
):
    kind, obj = identity
    note = await notifications.get_notification(db, notification_id)
    if note is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    owner = note.recipient_child_id if kind == IDENTITY_CHILD else note.recipient_user_id
    if owner != obj.id:
        raise HTTPException(status_code=404, detail="Notification not found")
    return await notifications.mark_as_read(db, note)
