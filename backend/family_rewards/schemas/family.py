from pydantic import BaseModel, Field


class FamilySettingsRead(BaseModel):
    id: int
    name: str
    auto_approve_rewards: bool
    auto_approve_threshold: int | None = None
    default_star_type: str

    class Config:
        from_attributes = True


class FamilySettingsUpdate(BaseModel):
    """Partial update of a family's reward settings."""

    name: str | None = None
    auto_approve_rewards: bool | None = None
    auto_approve_threshold: int | None = Field(default=None, ge=0)
    default_star_type: str | None = None
