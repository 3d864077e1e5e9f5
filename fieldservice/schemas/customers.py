from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class CustomerBase(BaseModel):
    company_name: str = Field(min_length=2)
    contact_person: str = Field(min_length=2)
    phone: str = Field(min_length=10)
    email: EmailStr
    address: str = Field(min_length=5)


class CustomerCreate(CustomerBase):
    pass


class CustomerUpdate(BaseModel):
    company_name: Optional[str] = Field(default=None, min_length=2)
    contact_person: Optional[str] = Field(default=None, min_length=2)
    phone: Optional[str] = Field(default=None, min_length=10)
    email: Optional[EmailStr] = None
    address: Optional[str] = Field(default=None, min_length=5)


class CustomerResponse(BaseModel):
    id: str
    company_name: str
    contact_person: str
    phone: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = None
    is_disabled: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
