"""Convenience imports for all schema classes used by the API."""

from .user import UserCreate, UserResponse, UserLogin
from .child import (
    ChildCreate,
    ChildRead,
    ChildLogin,
    ChildUpdate,
    BalanceRead,
    LedgerEntryRead,
)
from .family import FamilySettingsRead, FamilySettingsUpdate
from .task import (
    TaskCreate,
    TaskUpdate,
    TaskRead,
    DueTaskRead,
    CompletionCreate,
    CompletionRead,
    CompletionResult,
    RejectRequest,
)
from .reward import (
    RewardCreate,
    RewardUpdate,
    RewardRead,
    RewardRequestCreate,
    RewardRequestRead,
    RedemptionResult,
    CustomRewardCreate,
    CustomRewardPrice,
    CustomRewardRead,
    CustomRewardResult,
)
from .notification import NotificationRead, UnreadCount, MarkAllResult
from .sync import (
    SnapshotRead,
    OfflineAction,
    ReplayRequest,
    ReplayResult,
)

__all__ = [
    "UserCreate",
    "UserResponse",
    "UserLogin",
    "ChildCreate",
    "ChildRead",
    "ChildLogin",
    "ChildUpdate",
    "BalanceRead",
    "LedgerEntryRead",
    "FamilySettingsRead",
    "FamilySettingsUpdate",
    "TaskCreate",
    "TaskUpdate",
    "TaskRead",
    "DueTaskRead",
    "CompletionCreate",
    "CompletionRead",
    "CompletionResult",
    "RejectRequest",
    "RewardCreate",
    "RewardUpdate",
    "RewardRead",
    "RewardRequestCreate",
    "RewardRequestRead",
    "RedemptionResult",
    "CustomRewardCreate",
    "CustomRewardPrice",
    "CustomRewardRead",
    "CustomRewardResult",
    "NotificationRead",
    "UnreadCount",
    "MarkAllResult",
    "SnapshotRead",
    "OfflineAction",
    "ReplayRequest",
    "ReplayResult",
]
