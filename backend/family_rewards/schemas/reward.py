from datetime import datetime
from pydantic import BaseModel, Field


class RewardCreate(BaseModel):
    name: str
    description: str | None = None
    star_cost: int = Field(gt=0)
    star_type: str | None = None


class RewardUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    star_cost: int | None = Field(default=None, gt=0)
    star_type: str | None = None
    is_active: bool | None = None


class RewardRead(BaseModel):
    id: int
    family_id: int
    name: str
    description: str | None = None
    star_cost: int
    star_type: str
    is_active: bool

    class Config:
        from_attributes = True


class RewardRequestCreate(BaseModel):
    child_id: int | None = None


class RewardRequestRead(BaseModel):
    id: int
    reward_id: int
    reward_name: str
    child_id: int
    family_id: int
    cost: int
    star_type: str
    status: str
    is_auto_approved: bool
    rejection_reason: str | None = None
    requested_at: datetime
    responded_at: datetime | None = None
    fulfilled_at: datetime | None = None

    class Config:
        from_attributes = True


class RedemptionResult(BaseModel):
    request: RewardRequestRead
    balance: int | None = None
    changed: bool = True


class CustomRewardCreate(BaseModel):
    reward_name: str = Field(min_length=1)
    reward_link: str | None = None
    star_type: str | None = None
    child_id: int | None = None


class CustomRewardPrice(BaseModel):
    stars: int = Field(gt=0)


class CustomRewardRead(BaseModel):
    id: int
    child_id: int
    family_id: int
    reward_name: str
    reward_link: str | None = None
    star_type: str
    stars_required: int | None = None
    status: str
    rejection_reason: str | None = None
    requested_at: datetime
    priced_at: datetime | None = None
    responded_at: datetime | None = None

    class Config:
        from_attributes = True


class CustomRewardResult(BaseModel):
    request: CustomRewardRead
    balance: int | None = None
    changed: bool = True
