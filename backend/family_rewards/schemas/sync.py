from datetime import date, datetime
from pydantic import BaseModel


class SnapshotChild(BaseModel):
    id: int
    first_name: str
    balances: dict[str, int]


class SnapshotFamily(BaseModel):
    id: int
    name: str
    default_star_type: str


class SnapshotRead(BaseModel):
    family: SnapshotFamily
    children: list[SnapshotChild]
    pending_completions: int
    pending_reward_requests: int
    open_custom_rewards: int = 0
    version: str
    synced_at: datetime


class OfflineAction(BaseModel):
    client_ref: str
    kind: str = "complete"
    task_id: int
    occurrence_date: date | None = None


class ReplayRequest(BaseModel):
    child_id: int | None = None
    actions: list[OfflineAction]


class ReplayResult(BaseModel):
    client_ref: str
    status: str
    code: str | None = None
    completion_id: int | None = None
