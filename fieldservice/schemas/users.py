from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field
import enum


class UserRole(str, enum.Enum):
    admin = "admin"
    management = "management"
    call_admin = "call_admin"
    technician = "technician"


class UserCreate(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)
    name: str = Field(min_length=2)
    role: UserRole
    internal_pay_rate: Optional[float] = Field(default=None, ge=0)
    chargeout_rate: Optional[float] = Field(default=None, ge=0)


class UserUpdate(BaseModel):
    email: Optional[EmailStr] = None
    name: Optional[str] = Field(default=None, min_length=2)
    role: Optional[UserRole] = None
    internal_pay_rate: Optional[float] = Field(default=None, ge=0)
    chargeout_rate: Optional[float] = Field(default=None, ge=0)


class PasswordReset(BaseModel):
    password: str = Field(min_length=6)


class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    role: str
    disabled: bool = False
    internal_pay_rate: Optional[float] = None
    chargeout_rate: Optional[float] = None
    created_at: Optional[datetime] = None
    last_login_at: Optional[datetime] = None

    class Config:
        from_attributes = True
