from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, model_validator

from app.models.enums import UserRole


class UserBase(BaseModel):
    name: str
    email: EmailStr

    model_config = {"from_attributes": True}


class UserCreate(UserBase):
    password: str = Field(..., min_length=6)
    role: UserRole = UserRole.CONSUMER
    brand_id: Optional[int] = None

    @model_validator(mode="after")
    def check_role(self):
        if self.role == UserRole.ADMIN:
            raise ValueError("admin accounts cannot self-register")
        if self.role == UserRole.STAFF and not self.brand_id:
            raise ValueError("staff accounts need a brand_id")
        return self


class UserLogin(BaseModel):
    email: EmailStr
    password: str


class UserOut(UserBase):
    id: int
    role: str
    brand_id: Optional[int] = None
    created_at: datetime


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut
