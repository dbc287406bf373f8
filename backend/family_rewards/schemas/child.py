from datetime import datetime
from pydantic import BaseModel


class ChildCreate(BaseModel):
    first_name: str
    access_code: str


class ChildRead(BaseModel):
    id: int
    family_id: int
    first_name: str

    class Config:
        from_attributes = True


class ChildLogin(BaseModel):
    access_code: str


class ChildUpdate(BaseModel):
    first_name: str | None = None
    access_code: str | None = None


class BalanceRead(BaseModel):
    child_id: int
    balances: dict[str, int]


class LedgerEntryRead(BaseModel):
    id: str
    star_type: str
    delta: int
    resulting_balance: int
    created_at: datetime

    class Config:
        from_attributes = True
