"""Reward redemption workflow.

A child asks for a reward; the family's auto-approval policy decides once,
at request time, whether the stars are spent immediately or the request
waits for a parent.  Every debit is the guarded ledger update, so two
redemptions racing for the same stars can never both succeed.  Once the
stars are spent the parent marks the reward fulfilled when it is handed over.

A child may also propose a reward that is not in the catalogue.  A parent
prices it, and approving it spends that price through the same guarded
debit.  A priced request the child cannot afford yet stays open.
"""

import logging
from datetime import datetime
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from family_rewards import ledger
from family_rewards.crud import (
    get_child,
    get_custom_request,
    get_family,
    get_reward,
    get_reward_request,
)
from family_rewards.errors import (
    ChildNotFound,
    InsufficientStars,
    InvalidStarAmount,
    RequestNotFound,
    RewardNotFound,
)
from family_rewards.events import EventType, LifecycleEvent
from family_rewards.locks import KeyedLocks
from family_rewards.models import CustomRewardRequest, Family, RewardRequest
from family_rewards.notifications import NotificationDispatcher, dispatcher as default_dispatcher
from family_rewards.states import (
    Action,
    CustomRewardStatus,
    RedemptionStatus,
    custom_reward_transition,
    redemption_transition,
)
from family_rewards.task_lifecycle import TransitionResult

logger = logging.getLogger(__name__)

INSUFFICIENT_FUNDS = "insufficient_funds"

AutoApprovalPolicy = Callable[[int, Family], bool]


def default_policy(cost: int, family: Family) -> bool:
    """Auto-approve when the family enabled it and the cost is within its threshold."""
    if family is None or not family.auto_approve_rewards:
        return False
    threshold = family.auto_approve_threshold
    return threshold is None or cost <= threshold


class RedemptionLifecycle:
    def __init__(
        self,
        policy: AutoApprovalPolicy = default_policy,
        dispatcher: NotificationDispatcher | None = None,
    ):
        self.policy = policy
        self.dispatcher = dispatcher or default_dispatcher
        self.locks = KeyedLocks()

    def _event(self, event_type: EventType, req: RewardRequest, **detail) -> LifecycleEvent:
        detail.setdefault("stars", req.cost)
        return LifecycleEvent(
            event_type, req.family_id, req.child_id, req.id, req.reward_name, detail
        )

    async def _reload(self, db: AsyncSession, req) -> None:
        """Drop this session's writes and re-read ``req`` after a lost race."""
        await db.rollback()
        await db.refresh(req)

    async def _settled(
        self, db: AsyncSession, req, transition=redemption_transition
    ) -> TransitionResult:
        """Result for an approval another writer committed first."""
        # Raises NotPending if the other writer rejected it instead
        transition(req.id, req.status, Action.APPROVE)
        balance = await ledger.get_balance(db, req.child_id, req.star_type)
        logger.info("%s %s was approved concurrently", type(req).__name__, req.id)
        return TransitionResult(req, balance, False)

    async def _refuse_for_funds(
        self,
        db: AsyncSession,
        req: RewardRequest,
        exc: InsufficientStars,
        reviewer_id: int | None = None,
    ) -> InsufficientStars:
        req.status = RedemptionStatus.REJECTED.value
        req.rejection_reason = INSUFFICIENT_FUNDS
        req.responded_at = datetime.utcnow()
        req.reviewer_id = reviewer_id
        db.add(req)
        await db.commit()
        logger.info(
            "Reward request %s rejected: balance %s, cost %s",
            req.id,
            exc.current_balance,
            req.cost,
        )
        return InsufficientStars(
            exc.child_id,
            exc.star_type,
            exc.current_balance,
            exc.requested_amount,
            request_id=req.id,
        )

    async def request(
        self,
        db: AsyncSession,
        reward_id: int,
        child_id: int,
        cost: int | None = None,
    ) -> TransitionResult:
        """Record a redemption request, spending the stars now if auto-approved.

        Raises:
            InsufficientStars: the request was auto-approved but the balance
                was short.  The request is kept as ``rejected`` and the
                exception carries its id.
        """
        reward = await get_reward(db, reward_id)
        if reward is None or not reward.is_active:
            raise RewardNotFound(reward_id)
        child = await get_child(db, child_id)
        if child is None or child.family_id != reward.family_id:
            raise ChildNotFound(child_id)
        family = await get_family(db, reward.family_id)
        cost = reward.star_cost if cost is None else cost
        if cost <= 0:
            raise InvalidStarAmount(cost)
        auto = bool(self.policy(cost, family))

        async with self.locks.hold(f"stars:{child_id}"):
            req = RewardRequest(
                reward_id=reward.id,
                reward_name=reward.name,
                child_id=child_id,
                family_id=reward.family_id,
                cost=cost,
                star_type=reward.star_type,
                is_auto_approved=auto,
            )
            db.add(req)
            await db.flush()
            events = [self._event(EventType.REWARD_REQUESTED, req)]

            if not auto:
                await db.commit()
                logger.info(
                    "Child %s requested reward %s (request %s)", child_id, reward_id, req.id
                )
                await self.dispatcher.dispatch_all(db, events)
                return TransitionResult(req, None, True)

            try:
                balance = await ledger.apply_delta(
                    db,
                    child_id,
                    req.star_type,
                    -cost,
                    ledger.redemption_entry_id(req.id, ledger.ENTRY_DEBIT),
                )
            except InsufficientStars as exc:
                error = await self._refuse_for_funds(db, req, exc)
                events.append(
                    self._event(EventType.REWARD_REJECTED, req, reason="Not enough stars")
                )
                await self.dispatcher.dispatch_all(db, events)
                raise error

            req.status = RedemptionStatus.AUTO_APPROVED.value
            req.responded_at = datetime.utcnow()
            db.add(req)
            await db.commit()
            logger.info(
                "Reward request %s auto-approved: -%s %s stars", req.id, cost, req.star_type
            )

        events.append(self._event(EventType.REWARD_APPROVED, req))
        await self.dispatcher.dispatch_all(db, events)
        return TransitionResult(req, balance, True)

    async def approve(
        self, db: AsyncSession, request_id: int, reviewer_id: int | None = None
    ) -> TransitionResult:
        """Approve a pending request with a guarded debit of its cost."""
        req = await get_reward_request(db, request_id)
        if req is None:
            raise RequestNotFound(request_id)

        async with self.locks.hold(f"stars:{req.child_id}"):
            await db.refresh(req)
            next_status = redemption_transition(request_id, req.status, Action.APPROVE)
            if next_status is None:
                balance = await ledger.get_balance(db, req.child_id, req.star_type)
                logger.info("Reward request %s already approved", request_id)
                return TransitionResult(req, balance, False)

            try:
                balance = await ledger.apply_delta(
                    db,
                    req.child_id,
                    req.star_type,
                    -req.cost,
                    ledger.redemption_entry_id(req.id, ledger.ENTRY_DEBIT),
                )
                req.status = next_status.value
                req.responded_at = datetime.utcnow()
                req.reviewer_id = reviewer_id
                db.add(req)
                await db.commit()
            except InsufficientStars as exc:
                await self._reload(db, req)
                if req.status != RedemptionStatus.PENDING.value:
                    return await self._settled(db, req)
                error = await self._refuse_for_funds(db, req, exc, reviewer_id)
                await self.dispatcher.dispatch(
                    db,
                    self._event(EventType.REWARD_REJECTED, req, reason="Not enough stars"),
                )
                raise error
            except IntegrityError:
                await self._reload(db, req)
                if req.status == RedemptionStatus.PENDING.value:
                    raise
                return await self._settled(db, req)
            logger.info(
                "Reward request %s approved by user %s: -%s %s stars",
                request_id,
                reviewer_id,
                req.cost,
                req.star_type,
            )

        await self.dispatcher.dispatch(db, self._event(EventType.REWARD_APPROVED, req))
        return TransitionResult(req, balance, True)

    async def reject(
        self,
        db: AsyncSession,
        request_id: int,
        reason: str | None = None,
        reviewer_id: int | None = None,
    ) -> TransitionResult:
        """Reject a pending request, refunding any stars already held for it."""
        req = await get_reward_request(db, request_id)
        if req is None:
            raise RequestNotFound(request_id)

        async with self.locks.hold(f"stars:{req.child_id}"):
            await db.refresh(req)
            next_status = redemption_transition(request_id, req.status, Action.REJECT)
            if next_status is None:
                return TransitionResult(req, None, False)

            balance = None
            held = await ledger.get_entry(
                db, ledger.redemption_entry_id(req.id, ledger.ENTRY_DEBIT)
            )
            if held is not None:
                balance = await ledger.apply_delta(
                    db,
                    req.child_id,
                    req.star_type,
                    -held.delta,
                    ledger.redemption_entry_id(req.id, ledger.ENTRY_REFUND),
                )
            req.status = next_status.value
            req.rejection_reason = reason
            req.responded_at = datetime.utcnow()
            req.reviewer_id = reviewer_id
            db.add(req)
            await db.commit()
            logger.info(
                "Reward request %s rejected by user %s%s",
                request_id,
                reviewer_id,
                " (refunded)" if held is not None else "",
            )

        await self.dispatcher.dispatch(
            db, self._event(EventType.REWARD_REJECTED, req, reason=reason)
        )
        return TransitionResult(req, balance, True)

    async def fulfill(
        self, db: AsyncSession, request_id: int, reviewer_id: int | None = None
    ) -> TransitionResult:
        """Mark an approved request as handed over to the child."""
        req = await get_reward_request(db, request_id)
        if req is None:
            raise RequestNotFound(request_id)

        async with self.locks.hold(f"stars:{req.child_id}"):
            await db.refresh(req)
            next_status = redemption_transition(request_id, req.status, Action.FULFILL)
            if next_status is None:
                return TransitionResult(req, None, False)
            req.status = next_status.value
            req.fulfilled_at = datetime.utcnow()
            db.add(req)
            await db.commit()
            logger.info("Reward request %s fulfilled by user %s", request_id, reviewer_id)
        return TransitionResult(req, None, True)

    # --- Custom rewards ------------------------------------------------------

    def _custom_event(
        self, event_type: EventType, req: CustomRewardRequest, **detail
    ) -> LifecycleEvent:
        detail.setdefault("stars", req.stars_required or 0)
        return LifecycleEvent(
            event_type, req.family_id, req.child_id, req.id, req.reward_name, detail
        )

    async def _custom_request(self, db: AsyncSession, request_id: int) -> CustomRewardRequest:
        req = await get_custom_request(db, request_id)
        if req is None:
            raise RequestNotFound(request_id)
        return req

    async def propose(
        self,
        db: AsyncSession,
        child_id: int,
        reward_name: str,
        reward_link: str | None = None,
        star_type: str | None = None,
    ) -> TransitionResult:
        """Record a reward the child came up with; it waits for a price."""
        child = await get_child(db, child_id)
        if child is None:
            raise ChildNotFound(child_id)
        if star_type is None:
            family = await get_family(db, child.family_id)
            star_type = family.default_star_type
        req = CustomRewardRequest(
            child_id=child_id,
            family_id=child.family_id,
            reward_name=reward_name,
            reward_link=reward_link,
            star_type=star_type,
        )
        db.add(req)
        await db.commit()
        await db.refresh(req)
        logger.info("Child %s proposed custom reward %s", child_id, req.id)
        await self.dispatcher.dispatch(
            db, self._custom_event(EventType.CUSTOM_REWARD_REQUESTED, req)
        )
        return TransitionResult(req, None, True)

    async def set_custom_stars(
        self,
        db: AsyncSession,
        request_id: int,
        stars: int,
        reviewer_id: int | None = None,
    ) -> TransitionResult:
        """Price a custom request; an open request may be re-priced."""
        if stars <= 0:
            raise InvalidStarAmount(stars)
        req = await self._custom_request(db, request_id)

        async with self.locks.hold(f"stars:{req.child_id}"):
            await db.refresh(req)
            next_status = custom_reward_transition(request_id, req.status, Action.SET_STARS)
            changed = req.stars_required != stars or req.status != next_status.value
            req.status = next_status.value
            req.stars_required = stars
            req.priced_at = datetime.utcnow()
            req.reviewer_id = reviewer_id
            db.add(req)
            await db.commit()
            logger.info(
                "Custom reward request %s priced at %s stars by user %s",
                request_id,
                stars,
                reviewer_id,
            )
        return TransitionResult(req, None, changed)

    async def approve_custom(
        self, db: AsyncSession, request_id: int, reviewer_id: int | None = None
    ) -> TransitionResult:
        """Approve a priced custom request with a guarded debit of its price.

        Raises:
            StarsNotSet: no parent has priced the request yet.
            InsufficientStars: the balance is short.  The request stays
                priced and can be approved once the child has the stars.
        """
        req = await self._custom_request(db, request_id)

        async with self.locks.hold(f"stars:{req.child_id}"):
            await db.refresh(req)
            next_status = custom_reward_transition(request_id, req.status, Action.APPROVE)
            if next_status is None:
                balance = await ledger.get_balance(db, req.child_id, req.star_type)
                logger.info("Custom reward request %s already approved", request_id)
                return TransitionResult(req, balance, False)

            try:
                balance = await ledger.apply_delta(
                    db,
                    req.child_id,
                    req.star_type,
                    -req.stars_required,
                    ledger.custom_reward_entry_id(req.id),
                )
                req.status = next_status.value
                req.responded_at = datetime.utcnow()
                req.reviewer_id = reviewer_id
                db.add(req)
                await db.commit()
            except InsufficientStars:
                await self._reload(db, req)
                if req.status != CustomRewardStatus.STARS_SET.value:
                    return await self._settled(db, req, custom_reward_transition)
                raise
            except IntegrityError:
                await self._reload(db, req)
                if req.status == CustomRewardStatus.STARS_SET.value:
                    raise
                return await self._settled(db, req, custom_reward_transition)
            logger.info(
                "Custom reward request %s approved by user %s: -%s %s stars",
                request_id,
                reviewer_id,
                req.stars_required,
                req.star_type,
            )

        await self.dispatcher.dispatch(
            db, self._custom_event(EventType.CUSTOM_REWARD_APPROVED, req)
        )
        return TransitionResult(req, balance, True)

    async def reject_custom(
        self,
        db: AsyncSession,
        request_id: int,
        reason: str | None = None,
        reviewer_id: int | None = None,
    ) -> TransitionResult:
        req = await self._custom_request(db, request_id)

        async with self.locks.hold(f"stars:{req.child_id}"):
            await db.refresh(req)
            next_status = custom_reward_transition(request_id, req.status, Action.REJECT)
            if next_status is None:
                return TransitionResult(req, None, False)
            req.status = next_status.value
            req.rejection_reason = reason
            req.responded_at = datetime.utcnow()
            req.reviewer_id = reviewer_id
            db.add(req)
            await db.commit()
            logger.info("Custom reward request %s rejected by user %s", request_id, reviewer_id)

        await self.dispatcher.dispatch(
            db, self._custom_event(EventType.CUSTOM_REWARD_REJECTED, req, reason=reason)
        )
        return TransitionResult(req, None, True)


redemption_lifecycle = RedemptionLifecycle()
