"""Authentication endpoints: parent login, child login and registration."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import OAuth2PasswordRequestForm
from sqlalchemy.ext.asyncio import AsyncSession
from family_rewards.auth import (
    authenticate_user,
    child_subject,
    create_access_token,
)
from family_rewards.database import get_session
from family_rewards.models import Family, User
from family_rewards.crud import (
    create_family,
    create_user,
    get_child_by_access_code,
    get_user_by_email,
)
from family_rewards.schemas import ChildLogin, UserCreate, UserResponse, UserLogin

logger = logging.getLogger(__name__)
router = APIRouter()


def _invalid_credentials() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={
            "code": "auth_invalid_credentials",
            "message": "Invalid email or password",
        },
    )


@router.post("/token")
async def login_for_access_token(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: AsyncSession = Depends(get_session),
):
    """OAuth2 password flow used by interactive docs and external clients."""

    user = await authenticate_user(db, form_data.username, form_data.password)
    if not user:
        logger.warning("Failed OAuth login for %s", form_data.username)
        raise _invalid_credentials()
    logger.info("User %s logged in via OAuth form", user.email)
    access_token = create_access_token(data={"sub": user.email})
    return {"access_token": access_token, "token_type": "bearer"}


@router.post("/login")
async def login(user_in: UserLogin, db: AsyncSession = Depends(get_session)):
    """JSON-based login used by the frontend."""

    user = await authenticate_user(
        db=db, email=user_in.email, password=user_in.password
    )
    if not user:
        logger.warning("Failed login for %s", user_in.email)
        raise _invalid_credentials()
    logger.info("User %s logged in", user.email)
    access_token = create_access_token(data={"sub": user.email})
    return {"access_token": access_token, "token_type": "bearer"}


@router.post("/child-login")
async def child_login(
    credentials: ChildLogin, db: AsyncSession = Depends(get_session)
):
    child = await get_child_by_access_code(db, credentials.access_code)
    if not child:
        logger.warning("Failed child login with an unknown access code")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "code": "auth_invalid_access_code",
                "message": "Invalid access code",
            },
        )
    logger.info("Child %s logged in", child.id)
    access_token = create_access_token(data={"sub": child_subject(child.id)})
    return {"access_token": access_token, "token_type": "bearer", "child_id": child.id}


@router.post("/register", response_model=UserResponse)
async def register(user_in: UserCreate, db: AsyncSession = Depends(get_session)):
    """Register a parent together with a new family."""

    if await get_user_by_email(db, user_in.email):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "code": "auth_email_registered",
                "message": "Email is already registered.",
            },
        )

    family = await create_family(
        db, Family(name=user_in.family_name or f"{user_in.name}'s family")
    )
    new_user = User(
        name=user_in.name,
        email=user_in.email,
        password_hash=user_in.password,
        role="parent",
        family_id=family.id,
    )
    new_user = await create_user(db, new_user)
    logger.info("User %s registered with family %s", new_user.email, family.id)
    return new_user
