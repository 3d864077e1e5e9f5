from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .tickets import MachineType


class MachineBase(BaseModel):
    customer_id: str = Field(min_length=1)
    type: MachineType
    serial_number: str = Field(min_length=1)
    installation_date: Optional[datetime] = None
    location: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("location", "notes", mode="before")
    @classmethod
    def empty_str_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class MachineCreate(MachineBase):
    pass


class MachineUpdate(BaseModel):
    customer_id: Optional[str] = Field(default=None, min_length=1)
    type: Optional[MachineType] = None
    serial_number: Optional[str] = Field(default=None, min_length=1)
    installation_date: Optional[datetime] = None
    location: Optional[str] = None
    notes: Optional[str] = None


class MachineResponse(BaseModel):
    id: str
    customer_id: str
    customer_name: Optional[str] = None
    type: str
    serial_number: str
    installation_date: Optional[datetime] = None
    location: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
