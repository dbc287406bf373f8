"""Reward catalogue, redemption requests and custom rewards."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from family_rewards.acl import PARENT_ROLES, acting_child, ensure_family
from family_rewards.auth import get_current_identity, require_role
from family_rewards.crud import (
    create_reward,
    get_custom_request,
    get_family,
    get_open_custom_requests_for_family,
    get_pending_requests_for_family,
    get_reward,
    get_reward_request,
    get_rewards_by_family,
    save_reward,
)
from family_rewards.database import get_session
from family_rewards.models import Child, Reward, User
from family_rewards.redemptions import redemption_lifecycle
from family_rewards.schemas import (
    CustomRewardCreate,
    CustomRewardPrice,
    CustomRewardRead,
    CustomRewardResult,
    RedemptionResult,
    RejectRequest,
    RewardCreate,
    RewardRead,
    RewardRequestCreate,
    RewardRequestRead,
    RewardUpdate,
)
from family_rewards.task_lifecycle import TransitionResult

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/rewards", tags=["rewards"])


def _redemption_result(result: TransitionResult) -> RedemptionResult:
    return RedemptionResult(
        request=RewardRequestRead.model_validate(result.record),
        balance=result.balance,
        changed=result.changed,
    )


def _custom_result(result: TransitionResult) -> CustomRewardResult:
    return CustomRewardResult(
        request=CustomRewardRead.model_validate(result.record),
        balance=result.balance,
        changed=result.changed,
    )


@router.post("/", response_model=RewardRead)
async def add_reward(
    reward_in: RewardCreate,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role(*PARENT_ROLES)),
):
    star_type = reward_in.star_type
    if star_type is None:
        family = await get_family(db, current_user.family_id)
        star_type = family.default_star_type
    reward = Reward(
        family_id=current_user.family_id,
        name=reward_in.name,
        description=reward_in.description,
        star_cost=reward_in.star_cost,
        star_type=star_type,
    )
    reward = await create_reward(db, reward)
    logger.info("User %s created reward %s", current_user.id, reward.id)
    return reward


@router.get("/", response_model=list[RewardRead])
async def list_rewards(
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Child | User] = Depends(get_current_identity),
):
    return await get_rewards_by_family(db, identity[1].family_id)


@router.get("/requests/pending", response_model=list[RewardRequestRead])
async def list_pending_requests(
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role(*PARENT_ROLES)),
):
    return await get_pending_requests_for_family(db, current_user.family_id)


@router.post("/requests/{request_id}/approve", response_model=RedemptionResult)
async def approve_request(
    request_id: int,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role(*PARENT_ROLES)),
):
    ensure_family(
        await get_reward_request(db, request_id), current_user.family_id, "Reward request"
    )
    result = await redemption_lifecycle.approve(db, request_id, reviewer_id=current_user.id)
    return _redemption_result(result)


@router.post("/requests/{request_id}/reject", response_model=RedemptionResult)
async def reject_request(
    request_id: int,
    body: RejectRequest | None = None,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role(*PARENT_ROLES)),
):
    ensure_family(
        await get_reward_request(db, request_id), current_user.family_id, "Reward request"
    )
    result = await redemption_lifecycle.reject(
        db,
        request_id,
        reason=body.reason if body else None,
        reviewer_id=current_user.id,
    )
    return _redemption_result(result)


@router.post("/requests/{request_id}/fulfill", response_model=RedemptionResult)
async def fulfill_request(
    request_id: int,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role(*PARENT_ROLES)),
):
    ensure_family(
        await get_reward_request(db, request_id), current_user.family_id, "Reward request"
    )
    result = await redemption_lifecycle.fulfill(db, request_id, reviewer_id=current_user.id)
    return _redemption_result(result)


@router.post("/custom", response_model=CustomRewardResult)
async def propose_custom_reward(
    body: CustomRewardCreate,
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Child | User] = Depends(get_current_identity),
):
    """Ask for a reward that is not in the catalogue."""

    child = await acting_child(db, identity, body.child_id)
    result = await redemption_lifecycle.propose(
        db, child.id, body.reward_name, body.reward_link, body.star_type
    )
    return _custom_result(result)


@router.get("/custom/pending", response_model=list[CustomRewardRead])
async def list_open_custom_rewards(
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role(*PARENT_ROLES)),
):
    return await get_open_custom_requests_for_family(db, current_user.family_id)


@router.post("/custom/{request_id}/stars", response_model=CustomRewardResult)
async def price_custom_reward(
    request_id: int,
    body: CustomRewardPrice,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role(*PARENT_ROLES)),
):
    ensure_family(
        await get_custom_request(db, request_id), current_user.family_id, "Custom reward request"
    )
    result = await redemption_lifecycle.set_custom_stars(
        db, request_id, body.stars, reviewer_id=current_user.id
    )
    return _custom_result(result)


@router.post("/custom/{request_id}/approve", response_model=CustomRewardResult)
async def approve_custom_reward(
    request_id: int,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role(*PARENT_ROLES)),
):
    ensure_family(
        await get_custom_request(db, request_id), current_user.family_id, "Custom reward request"
    )
    result = await redemption_lifecycle.approve_custom(
        db, request_id, reviewer_id=current_user.id
    )
    return _custom_result(result)


@router.post("/custom/{request_id}/reject", response_model=CustomRewardResult)
async def reject_custom_reward(
    request_id: int,
    body: RejectRequest | None = None,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role(*PARENT_ROLES)),
):
    ensure_family(
        await get_custom_request(db, request_id), current_user.family_id, "Custom reward request"
    )
    result = await redemption_lifecycle.reject_custom(
        db,
        request_id,
        reason=body.reason if body else None,
        reviewer_id=current_user.id,
    )
    return _custom_result(result)


@router.patch("/{reward_id}", response_model=RewardRead)
async def update_reward(
    reward_id: int,
    reward_in: RewardUpdate,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role(*PARENT_ROLES)),
):
    reward = ensure_family(await get_reward(db, reward_id), current_user.family_id, "Reward")
    for field, value in reward_in.model_dump(exclude_unset=True).items():
        if value is not None or field == "description":
            setattr(reward, field, value)
    return await save_reward(db, reward)


@router.delete("/{reward_id}", response_model=RewardRead)
async def delete_reward(
    reward_id: int,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role(*PARENT_ROLES)),
):
    """Deactivate the reward; past requests keep their copy of its name."""

    reward = ensure_family(await get_reward(db, reward_id), current_user.family_id, "Reward")
    reward.is_active = False
    reward = await save_reward(db, reward)
    logger.info("User %s deactivated reward %s", current_user.id, reward.id)
    return reward


@router.post("/{reward_id}/request", response_model=RedemptionResult)
async def request_reward(
    reward_id: int,
    body: RewardRequestCreate | None = None,
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Child | User] = Depends(get_current_identity),
):
    body = body or RewardRequestCreate()
    child = await acting_child(db, identity, body.child_id)
    result = await redemption_lifecycle.request(db, reward_id, child.id)
    return _redemption_result(result)
