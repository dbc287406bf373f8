"""Family settings and co-parent management."""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from family_rewards.acl import PARENT_ROLES, ROLE_PARENT
from family_rewards.auth import require_role
from family_rewards.crud import (
    create_user,
    get_family,
    get_parents_for_family,
    get_user_by_email,
    save_family,
)
from family_rewards.database import get_session
from family_rewards.models import User
from family_rewards.schemas import (
    FamilySettingsRead,
    FamilySettingsUpdate,
    UserCreate,
    UserResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/families", tags=["families"])


@router.get("/me/settings", response_model=FamilySettingsRead)
async def read_settings(
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role(*PARENT_ROLES)),
):
    return await get_family(db, current_user.family_id)


@router.patch("/me/settings", response_model=FamilySettingsRead)
async def update_settings(
    settings_in: FamilySettingsUpdate,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role(*PARENT_ROLES)),
):
    """Update reward settings; a ``null`` threshold removes the limit."""

    family = await get_family(db, current_user.family_id)
    for field, value in settings_in.model_dump(exclude_unset=True).items():
        if value is None and field != "auto_approve_threshold":
            continue
        setattr(family, field, value)
    family = await save_family(db, family)
    logger.info(
        "User %s updated settings of family %s (auto-approve %s, threshold %s)",
        current_user.id,
        family.id,
        family.auto_approve_rewards,
        family.auto_approve_threshold,
    )
    return family


@router.get("/me/parents", response_model=list[UserResponse])
async def list_parents(
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role(*PARENT_ROLES)),
):
    return await get_parents_for_family(db, current_user.family_id)


@router.post("/me/parents", response_model=UserResponse)
async def add_parent(
    user_in: UserCreate,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role(*PARENT_ROLES)),
):
    """Create a co-parent account in the caller's family."""

    if await get_user_by_email(db, user_in.email):
        raise HTTPException(
            status_code=400,
            detail={
                "code": "auth_email_registered",
                "message": "Email is already registered.",
            },
        )
    parent = await create_user(
        db,
        User(
            name=user_in.name,
            email=user_in.email,
            password_hash=user_in.password,
            role=ROLE_PARENT,
            family_id=current_user.family_id,
        ),
    )
    logger.info("User %s added co-parent %s", current_user.id, parent.id)
    return parent
