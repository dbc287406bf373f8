"""Lifecycle events emitted after a transition has been committed."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class EventType(str, Enum):
    TASK_COMPLETED = "task_completed"
    TASK_APPROVED = "task_approved"
    TASK_REJECTED = "task_rejected"
    REWARD_REQUESTED = "reward_requested"
    REWARD_APPROVED = "reward_approved"
    REWARD_REJECTED = "reward_rejected"
    CUSTOM_REWARD_REQUESTED = "custom_reward_requested"
    CUSTOM_REWARD_APPROVED = "custom_reward_approved"
    CUSTOM_REWARD_REJECTED = "custom_reward_rejected"


@dataclass
class LifecycleEvent:
    """A committed transition.

    ``related_id`` points at the completion, reward request or custom reward
    request that changed, and ``subject`` is the task title or reward name
    shown to people.
    """

    type: EventType
    family_id: int
    child_id: int
    related_id: int
    subject: str
    detail: dict[str, Any] = field(default_factory=dict)
