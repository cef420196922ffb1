# user_schema.py
from pydantic import BaseModel, EmailStr, Field, ConfigDict
from typing import Optional
from datetime import datetime

from models.models import UserRole


# ---------------------------
# Create & Auth
# ---------------------------
class UserCreate(BaseModel):
    full_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=8)
    # Company registration number; the first account for a tenant becomes its admin
    tenant_key: str = Field(..., min_length=1, max_length=32)


class UserLogin(BaseModel):
    email: EmailStr
    password: str


# ---------------------------
# Read
# ---------------------------
class UserRead(BaseModel):
    id: int
    full_name: str = Field(..., max_length=100)
    email: EmailStr
    role: UserRole
    tenant_key: Optional[str] = None
    is_active: bool = Field(default=True)
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class TokenRead(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserRead
