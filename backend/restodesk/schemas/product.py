"""Category and product schemas."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field


class CategoryBase(BaseModel):
    """Base category schema."""

    name: str = Field(..., min_length=1, max_length=120)
    description: Optional[str] = None
    display_order: int = 0
    is_active: bool = True


class CategoryCreate(CategoryBase):
    pass


class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=120)
    description: Optional[str] = None
    display_order: Optional[int] = None
    is_active: Optional[bool] = None


class CategoryResponse(CategoryBase):
    id: int
    restaurant_id: int
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class ProductBase(BaseModel):
    """Base product schema."""

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    price: Decimal = Field(..., ge=0)
    cost_price: Optional[Decimal] = Field(default=None, ge=0)
    category_id: Optional[int] = None
    image_url: Optional[str] = None
    minimum_stock: int = Field(default=0, ge=0)
    preparation_minutes: Optional[int] = Field(default=None, ge=0)
    display_order: int = 0
    is_active: bool = True
    is_available: bool = True
    is_featured: bool = False


class ProductCreate(ProductBase):
    """Product creation schema; opening stock is recorded as an entry."""

    stock: int = Field(default=0, ge=0)


class ProductUpdate(BaseModel):
    """Product update schema. Stock changes go through the stock endpoints."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    cost_price: Optional[Decimal] = Field(default=None, ge=0)
    category_id: Optional[int] = None
    image_url: Optional[str] = None
    minimum_stock: Optional[int] = Field(default=None, ge=0)
    preparation_minutes: Optional[int] = Field(default=None, ge=0)
    display_order: Optional[int] = None
    is_active: Optional[bool] = None
    is_available: Optional[bool] = None
    is_featured: Optional[bool] = None


class ProductResponse(ProductBase):
    id: int
    restaurant_id: int
    stock: int
    is_low_stock: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class StockLevelUpdate(BaseModel):
    stock: int = Field(..., ge=0)
    reason: Optional[str] = None


class MinimumStockUpdate(BaseModel):
    minimum_stock: int = Field(..., ge=0)
