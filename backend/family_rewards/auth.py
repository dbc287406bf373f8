# family_rewards/auth.py
from datetime import datetime, timedelta
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from family_rewards.models import User, Child
from family_rewards.database import get_session
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

import os

SECRET_KEY = os.getenv("SECRET_KEY", "super-secret-key")
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

CHILD_SUBJECT_PREFIX = "child:"

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/login")


def verify_password(plain_password, hashed_password):
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password):
    return pwd_context.hash(password)


async def authenticate_user(db: AsyncSession, email: str, password: str):
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if not user or not verify_password(password, user.password_hash):
        return None
    return user


def create_access_token(data: dict, expires_delta: timedelta | None = None):
    to_encode = data.copy()
    expire = datetime.utcnow() + (
        expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def child_subject(child_id: int) -> str:
    return f"{CHILD_SUBJECT_PREFIX}{child_id}"


def _credentials_exception() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
    )


def _decode_subject(token: str) -> str:
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError:
        raise _credentials_exception()
    sub = payload.get("sub")
    if not sub:
        raise _credentials_exception()
    return sub


async def _load_user(db: AsyncSession, email: str) -> User:
    result = await db.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()
    if user is None:
        raise _credentials_exception()
    return user


async def _load_child(db: AsyncSession, sub: str) -> Child:
    try:
        child_id = int(sub[len(CHILD_SUBJECT_PREFIX):])
    except ValueError:
        raise _credentials_exception()
    result = await db.execute(select(Child).where(Child.id == child_id))
    child = result.scalars().first()
    if child is None:
        raise _credentials_exception()
    return child


async def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_session),
):
    """Resolve the parent behind a bearer token; child tokens are refused."""
    sub = _decode_subject(token)
    if sub.startswith(CHILD_SUBJECT_PREFIX):
        raise _credentials_exception()
    return await _load_user(db, sub)


async def get_current_identity(
    token: str = Depends(oauth2_scheme),
    db: AsyncSession = Depends(get_session),
) -> tuple[str, User | Child]:
    """Return ("user", User) or ("child", Child) based on token subject."""
    sub = _decode_subject(token)
    if sub.startswith(CHILD_SUBJECT_PREFIX):
        return "child", await _load_child(db, sub)
    return "user", await _load_user(db, sub)


def require_role(*roles: str):
    """Dependency factory to require a user role."""

    async def role_dependency(current_user: User = Depends(get_current_user)):
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return current_user

    return role_dependency
