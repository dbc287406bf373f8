# family_rewards/schemas/user.py

from pydantic import BaseModel, EmailStr

class UserCreate(BaseModel):
    name: str
    email: EmailStr
    password: str
    family_name: str | None = None

class UserResponse(BaseModel):
    id: int
    name: str
    email: EmailStr
    role: str
    family_id: int

    class Config:
        from_attributes = True


class UserLogin(BaseModel):
    email: EmailStr
    password: str
