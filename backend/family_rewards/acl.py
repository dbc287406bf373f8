"""Access control helpers shared by the routers.

Parents act on everything inside their own family; a child acts only as
themselves.  Records of another family are reported as missing rather than
forbidden so ids do not leak across families.
"""

from fastapi import HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from family_rewards.crud import get_child
from family_rewards.models import Child, User

ROLE_PARENT = "parent"
ROLE_ADMIN = "admin"
PARENT_ROLES = (ROLE_PARENT, ROLE_ADMIN)

IDENTITY_USER = "user"
IDENTITY_CHILD = "child"


def not_found(what: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{what} not found")


def ensure_family(record, family_id: int, what: str):
    """Return ``record`` if it belongs to ``family_id``; raise 404 otherwise."""
    if record is None or record.family_id != family_id:
        raise not_found(what)
    return record


async def family_child(db: AsyncSession, user: User, child_id: int) -> Child:
    child = await get_child(db, child_id)
    return ensure_family(child, user.family_id, "Child")


async def acting_child(
    db: AsyncSession, identity: tuple[str, User | Child], child_id: int | None
) -> Child:
    """Resolve the child an action is performed for.

    A child token acts for itself and may not name another child; a parent
    must name a child of their family.
    """
    kind, obj = identity
    if kind == IDENTITY_CHILD:
        if child_id is not None and child_id != obj.id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not authorized")
        return obj
    if child_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="child_id is required"
        )
    return await family_child(db, obj, child_id)


def identity_family_id(identity: tuple[str, User | Child]) -> int:
    return identity[1].family_id
