"""Database models used by the family rewards service.

The models are defined with SQLModel (built on SQLAlchemy and Pydantic)
and represent families, parents, children, tasks and their completions,
rewards with redemption requests, custom rewards proposed by children, star
balances with their ledger, and notifications.  Status columns hold the
string values of the enums in ``family_rewards.states``.
"""

from typing import Optional, List
from datetime import datetime, date
from sqlmodel import SQLModel, Field, Relationship
from sqlalchemy import Column, JSON


class Family(SQLModel, table=True):
    """Household grouping parents and children, with its reward settings."""

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    auto_approve_rewards: bool = False
    auto_approve_threshold: Optional[int] = None
    default_star_type: str = "growth"
    created_at: datetime = Field(default_factory=datetime.utcnow)

    parents: List["User"] = Relationship(back_populates="family")
    children: List["Child"] = Relationship(back_populates="family")


class User(SQLModel, table=True):
    """Adult user of the system (parent or admin)."""

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str = Field(unique=True, index=True)
    password_hash: str
    role: str = "parent"  # 'parent' or 'admin'
    family_id: int = Field(foreign_key="family.id")

    family: Family = Relationship(back_populates="parents")


class Child(SQLModel, table=True):
    """Child member of a family who completes tasks and spends stars."""

    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id", index=True)
    first_name: str
    access_code: str = Field(unique=True)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    family: Family = Relationship(back_populates="children")


class Task(SQLModel, table=True):
    """Parent-defined task worth ``star_value`` stars of ``star_type``."""

    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id", index=True)
    title: str
    category: str = "chores"
    task_type: str = "one-time"  # one-time, recurring, bucket-list
    # {"type": "daily"} | {"type": "weekly", "days_of_week": [...]}
    # | {"type": "monthly", "days_of_month": [...]}
    recurrence: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    star_value: int = 0
    star_type: str = "growth"
    assigned_child_ids: List[int] = Field(
        sa_column=Column(JSON), default_factory=list
    )
    is_active: bool = True
    auto_approve: bool = False
    deadline: Optional[datetime] = None
    created_by: Optional[int] = Field(default=None, foreign_key="user.id")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
    archived_at: Optional[datetime] = None


class TaskCompletion(SQLModel, table=True):
    """A child's claim that one occurrence of a task is done."""

    id: Optional[int] = Field(default=None, primary_key=True)
    task_id: int = Field(foreign_key="task.id", index=True)
    child_id: int = Field(foreign_key="child.id", index=True)
    family_id: int = Field(foreign_key="family.id", index=True)
    occurrence_date: date
    status: str = "pending_approval"  # pending_approval, approved, rejected
    completed_at: datetime = Field(default_factory=datetime.utcnow)
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    stars_awarded: Optional[int] = None
    rejection_reason: Optional[str] = None
    reviewer_id: Optional[int] = Field(default=None, foreign_key="user.id")
    # Held while pending or approved, cleared on rejection
    claim_key: Optional[str] = Field(default=None, unique=True)


class Reward(SQLModel, table=True):
    """Reward a child can redeem for ``star_cost`` stars."""

    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id", index=True)
    name: str
    description: Optional[str] = None
    star_cost: int
    star_type: str = "growth"
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)


class RewardRequest(SQLModel, table=True):
    """Child's request to redeem a reward."""

    id: Optional[int] = Field(default=None, primary_key=True)
    reward_id: int = Field(foreign_key="reward.id", index=True)
    reward_name: str
    child_id: int = Field(foreign_key="child.id", index=True)
    family_id: int = Field(foreign_key="family.id", index=True)
    cost: int
    star_type: str = "growth"
    status: str = "pending"  # pending, approved, rejected, auto_approved, fulfilled
    is_auto_approved: bool = False
    rejection_reason: Optional[str] = None
    requested_at: datetime = Field(default_factory=datetime.utcnow)
    responded_at: Optional[datetime] = None
    reviewer_id: Optional[int] = Field(default=None, foreign_key="user.id")
    fulfilled_at: Optional[datetime] = None


class CustomRewardRequest(SQLModel, table=True):
    """Reward a child proposed themselves; a parent sets its star price."""

    id: Optional[int] = Field(default=None, primary_key=True)
    child_id: int = Field(foreign_key="child.id", index=True)
    family_id: int = Field(foreign_key="family.id", index=True)
    reward_name: str
    reward_link: Optional[str] = None
    star_type: str = "growth"
    stars_required: Optional[int] = None
    status: str = "pending"  # pending, stars_set, approved, rejected
    rejection_reason: Optional[str] = None
    requested_at: datetime = Field(default_factory=datetime.utcnow)
    priced_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    reviewer_id: Optional[int] = Field(default=None, foreign_key="user.id")


class StarBalance(SQLModel, table=True):
    """Current star balance of a child for one star type."""

    child_id: int = Field(foreign_key="child.id", primary_key=True)
    star_type: str = Field(primary_key=True)
    amount: int = 0


class LedgerEntry(SQLModel, table=True):
    """Applied balance mutation, keyed by the transition that caused it."""

    id: str = Field(primary_key=True)
    child_id: int = Field(foreign_key="child.id", index=True)
    star_type: str
    delta: int
    resulting_balance: int
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Notification(SQLModel, table=True):
    """In-app notification addressed to a parent or a child."""

    id: Optional[int] = Field(default=None, primary_key=True)
    recipient_user_id: Optional[int] = Field(
        default=None, foreign_key="user.id", index=True
    )
    recipient_child_id: Optional[int] = Field(
        default=None, foreign_key="child.id", index=True
    )
    type: str
    title: str
    message: str
    child_id: Optional[int] = None
    related_id: Optional[int] = None
    channel: str = "in_app"  # in_app or push
    is_read: bool = False
    created_at: datetime = Field(default_factory=datetime.utcnow)
