from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class PartBase(BaseModel):
    name: str = Field(min_length=2)
    description: str = Field(min_length=2)
    category: Optional[str] = None
    quantity_in_stock: int = Field(ge=0)
    min_quantity: int = Field(default=0, ge=0)


class PartCreate(PartBase):
    pass


class PartUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=2)
    description: Optional[str] = Field(default=None, min_length=2)
    category: Optional[str] = None
    quantity_in_stock: Optional[int] = Field(default=None, ge=0)
    min_quantity: Optional[int] = Field(default=None, ge=0)


class PartResponse(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    category: Optional[str] = None
    quantity_in_stock: int = 0
    min_quantity: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
