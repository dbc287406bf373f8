"""State tables for task completions, reward requests and custom rewards.

Every status change in the engine goes through one of the ``*_transition``
functions.  They return the next status, ``None`` when the request repeats
a transition that already happened (a retried call), or raise
``NotPending`` for anything the table does not allow.
"""

from enum import Enum
from typing import Optional

from family_rewards.errors import NotPending, StarsNotSet


class CompletionStatus(str, Enum):
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"


class RedemptionStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    AUTO_APPROVED = "auto_approved"
    FULFILLED = "fulfilled"


class CustomRewardStatus(str, Enum):
    PENDING = "pending"
    STARS_SET = "stars_set"
    APPROVED = "approved"
    REJECTED = "rejected"


class Action(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"
    FULFILL = "fulfill"
    SET_STARS = "set_stars"


_COMPLETION_TABLE = {
    (CompletionStatus.PENDING_APPROVAL, Action.APPROVE): CompletionStatus.APPROVED,
    (CompletionStatus.PENDING_APPROVAL, Action.REJECT): CompletionStatus.REJECTED,
    (CompletionStatus.APPROVED, Action.APPROVE): None,
    (CompletionStatus.REJECTED, Action.REJECT): None,
}

_REDEMPTION_TABLE = {
    (RedemptionStatus.PENDING, Action.APPROVE): RedemptionStatus.APPROVED,
    (RedemptionStatus.PENDING, Action.REJECT): RedemptionStatus.REJECTED,
    (RedemptionStatus.APPROVED, Action.APPROVE): None,
    (RedemptionStatus.AUTO_APPROVED, Action.APPROVE): None,
    (RedemptionStatus.REJECTED, Action.REJECT): None,
    # The parent hands the reward over after the stars were spent
    (RedemptionStatus.APPROVED, Action.FULFILL): RedemptionStatus.FULFILLED,
    (RedemptionStatus.AUTO_APPROVED, Action.FULFILL): RedemptionStatus.FULFILLED,
    (RedemptionStatus.FULFILLED, Action.FULFILL): None,
    (RedemptionStatus.FULFILLED, Action.APPROVE): None,
}

_CUSTOM_REWARD_TABLE = {
    (CustomRewardStatus.PENDING, Action.SET_STARS): CustomRewardStatus.STARS_SET,
    (CustomRewardStatus.STARS_SET, Action.SET_STARS): CustomRewardStatus.STARS_SET,
    (CustomRewardStatus.STARS_SET, Action.APPROVE): CustomRewardStatus.APPROVED,
    (CustomRewardStatus.PENDING, Action.REJECT): CustomRewardStatus.REJECTED,
    (CustomRewardStatus.STARS_SET, Action.REJECT): CustomRewardStatus.REJECTED,
    (CustomRewardStatus.APPROVED, Action.APPROVE): None,
    (CustomRewardStatus.REJECTED, Action.REJECT): None,
}


def completion_transition(
    completion_id: int, status: str, action: Action
) -> Optional[CompletionStatus]:
    key = (CompletionStatus(status), action)
    if key not in _COMPLETION_TABLE:
        raise NotPending("Completion", completion_id, status)
    return _COMPLETION_TABLE[key]


def redemption_transition(
    request_id: int, status: str, action: Action
) -> Optional[RedemptionStatus]:
    key = (RedemptionStatus(status), action)
    if key not in _REDEMPTION_TABLE:
        if action == Action.FULFILL:
            raise NotPending("Reward request", request_id, status, action.value)
        raise NotPending("Reward request", request_id, status)
    return _REDEMPTION_TABLE[key]


def custom_reward_transition(
    request_id: int, status: str, action: Action
) -> Optional[CustomRewardStatus]:
    """Custom rewards must be priced with ``SET_STARS`` before approval."""
    key = (CustomRewardStatus(status), action)
    if key == (CustomRewardStatus.PENDING, Action.APPROVE):
        raise StarsNotSet(request_id)
    if key not in _CUSTOM_REWARD_TABLE:
        raise NotPending("Custom reward request", request_id, status, action.value)
    return _CUSTOM_REWARD_TABLE[key]
