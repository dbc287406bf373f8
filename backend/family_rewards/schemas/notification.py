from datetime import datetime
from pydantic import BaseModel


class NotificationRead(BaseModel):
    id: int
    type: str
    title: str
    message: str
    child_id: int | None = None
    related_id: int | None = None
    channel: str
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True


class UnreadCount(BaseModel):
    unread: int


class MarkAllResult(BaseModel):
    marked: int
