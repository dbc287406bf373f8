"""Offline client support: family snapshots and replay of queued actions."""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from family_rewards import sync
from family_rewards.acl import acting_child, identity_family_id
from family_rewards.auth import get_current_identity
from family_rewards.database import get_session
from family_rewards.models import Child, User
from family_rewards.schemas import ReplayRequest, ReplayResult, SnapshotRead

router = APIRouter(prefix="/sync", tags=["sync"])


@router.get("/snapshot", response_model=SnapshotRead)
async def read_snapshot(
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Child | User] = Depends(get_current_identity),
):
    return await sync.build_snapshot(db, identity_family_id(identity))


@router.post("/replay", response_model=list[ReplayResult])
async def replay_actions(
    body: ReplayRequest,
    db: AsyncSession = Depends(get_session),
    identity: tuple[str, Child | User] = Depends(get_current_identity),
):
    child = await acting_child(db, identity, body.child_id)
    return await sync.replay(
        db, child.id, [action.model_dump() for action in body.actions]
    )
