"""Stock ledger schemas."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from restodesk.models.stock import MovementType

MANUAL_MOVEMENTS = (MovementType.ENTRY, MovementType.EXIT, MovementType.ADJUSTMENT)


class StockMovementCreate(BaseModel):
    """Manual movement. For ``adjustment`` the quantity is the new stock level."""

    product_id: int
    movement_type: MovementType
    quantity: int = Field(..., ge=0)
    reason: Optional[str] = Field(default=None, max_length=255)
    reference: Optional[str] = Field(default=None, max_length=100)

    @field_validator("movement_type", mode="before")
    @classmethod
    def parse_type(cls, v):
        movement_type = MovementType.parse(v)
        if movement_type not in MANUAL_MOVEMENTS:
            raise ValueError("movement_type must be one of: entry, exit, adjustment")
        return movement_type


class StockMovementResponse(BaseModel):
    id: int
    product_id: int
    movement_type: MovementType
    quantity: int
    stock_after: int
    reason: Optional[str] = None
    reference: Optional[str] = None
    unit_cost: Optional[Decimal] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class StockBatchCreate(BaseModel):
    product_id: int
    batch_number: str = Field(..., min_length=1, max_length=100)
    quantity: int = Field(..., gt=0)
    unit_cost: Optional[Decimal] = Field(default=None, ge=0)
    supplier: Optional[str] = None
    expiration_date: Optional[date] = None
    notes: Optional[str] = None


class StockBatchResponse(BaseModel):
    id: int
    product_id: int
    batch_number: str
    quantity: int
    unit_cost: Optional[Decimal] = None
    supplier: Optional[str] = None
    expiration_date: Optional[date] = None
    notes: Optional[str] = None
    received_at: datetime

    model_config = {"from_attributes": True}


class ProductionCreate(BaseModel):
    product_id: int
    quantity: int = Field(..., gt=0)
    unit_cost: Optional[Decimal] = Field(default=None, ge=0)
    produced_by: Optional[str] = None
    notes: Optional[str] = None


class ProductionResponse(BaseModel):
    id: int
    product_id: int
    quantity: int
    unit_cost: Optional[Decimal] = None
    produced_by: Optional[str] = None
    notes: Optional[str] = None
    produced_at: datetime

    model_config = {"from_attributes": True}
