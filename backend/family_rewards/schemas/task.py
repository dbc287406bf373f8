from datetime import date, datetime
from typing import Any
from pydantic import BaseModel, Field


class TaskCreate(BaseModel):
    title: str
    category: str = "chores"
    task_type: str = "one-time"
    recurrence: dict[str, Any] | None = None
    star_value: int = Field(default=0, ge=0)
    star_type: str | None = None
    assigned_child_ids: list[int] = []
    auto_approve: bool = False
    deadline: datetime | None = None


class TaskUpdate(BaseModel):
    title: str | None = None
    category: str | None = None
    task_type: str | None = None
    recurrence: dict[str, Any] | None = None
    star_value: int | None = Field(default=None, ge=0)
    star_type: str | None = None
    assigned_child_ids: list[int] | None = None
    is_active: bool | None = None
    auto_approve: bool | None = None
    deadline: datetime | None = None


class TaskRead(BaseModel):
    id: int
    family_id: int
    title: str
    category: str
    task_type: str
    recurrence: dict[str, Any] | None = None
    star_value: int
    star_type: str
    assigned_child_ids: list[int]
    is_active: bool
    auto_approve: bool
    deadline: datetime | None = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class DueTaskRead(TaskRead):
    next_due_date: date | None = None


class CompletionCreate(BaseModel):
    child_id: int | None = None
    occurrence_date: date | None = None


class CompletionRead(BaseModel):
    id: int
    task_id: int
    child_id: int
    family_id: int
    occurrence_date: date
    status: str
    completed_at: datetime
    approved_at: datetime | None = None
    rejected_at: datetime | None = None
    stars_awarded: int | None = None
    rejection_reason: str | None = None

    class Config:
        from_attributes = True


class CompletionResult(BaseModel):
    completion: CompletionRead
    balance: int | None = None
    changed: bool = True


class RejectRequest(BaseModel):
    reason: str | None = None
