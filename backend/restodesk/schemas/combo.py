"""Combo schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class ComboItemIn(BaseModel):
    product_id: int
    quantity: int = Field(default=1, gt=0)
    is_optional: bool = False
    display_order: int = 0


class ComboItemResponse(ComboItemIn):
    id: int
    product_name: Optional[str] = None

    model_config = {"from_attributes": True}


class ComboCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    price: Decimal = Field(..., ge=0)
    image_url: Optional[str] = None
    is_active: bool = True
    is_featured: bool = False
    items: List[ComboItemIn] = Field(..., min_length=1)


class ComboUpdate(BaseModel):
    """Partial update; ``items`` replaces the whole item list when given."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    image_url: Optional[str] = None
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None
    items: Optional[List[ComboItemIn]] = Field(default=None, min_length=1)


class ComboResponse(BaseModel):
    id: int
    restaurant_id: int
    name: str
    description: Optional[str] = None
    price: Decimal
    image_url: Optional[str] = None
    is_active: bool
    is_featured: bool
    items: List[ComboItemResponse] = []
    available_quantity: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
