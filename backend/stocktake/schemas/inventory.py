"""Physical inventory count schemas."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from stocktake.models.inventory import CloseMethod, CountStatus, VarianceType


class InventoryItemIn(BaseModel):
    """A counted product as sent by the client.

    ``variance`` and ``variance_type`` are accepted for compatibility but
    recomputed server-side.
    """

    product_id: int
    system_stock: Decimal = Field(ge=0)
    physical_count: Decimal = Field(ge=0)
    shrinkage: Decimal = Field(default=Decimal("0"), ge=0)
    shrinkage_notes: Optional[str] = Field(default=None, max_length=500)
    variance: Optional[Decimal] = None
    variance_type: Optional[VarianceType] = None


class DateRange(BaseModel):
    date_from: Optional[date] = None
    date_to: Optional[date] = None

    @model_validator(mode="after")
    def check_order(self) -> "DateRange":
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("date_from must not be after date_to")
        return self


class InventoryCountCreate(BaseModel):
    """Body of ``POST /inventory/physical``."""

    warehouse_id: Optional[int] = None
    date_range: DateRange = Field(default_factory=DateRange)
    notes: Optional[str] = Field(default=None, max_length=1000)
    created_by: Optional[str] = Field(default=None, max_length=100)
    items: List[InventoryItemIn]


class ResentItem(BaseModel):
    product_id: int
    physical_count: Decimal = Field(ge=0)


class InventoryCountClose(BaseModel):
    """Body of ``POST /inventory/physical/{id}/close``."""

    items: Optional[List[ResentItem]] = None
    closed_by: Optional[str] = Field(default=None, max_length=100)


class AcknowledgmentIn(BaseModel):
    event: str = Field(min_length=1, max_length=100)
    closed_by: Optional[str] = Field(default=None, max_length=100)


class ForceCloseIn(BaseModel):
    reason: str = Field(min_length=1, max_length=300)
    closed_by: Optional[str] = Field(default=None, max_length=100)


class InventoryCountItemResponse(BaseModel):
    product_id: int
    sku: Optional[str] = None
    product_name: Optional[str] = None
    system_stock: Decimal
    physical_count: Decimal
    shrinkage: Decimal
    shrinkage_notes: Optional[str] = None
    variance: Decimal
    variance_type: VarianceType

    model_config = {"from_attributes": True}


class InventoryCountSummary(BaseModel):
    id: int
    reference: Optional[str] = None
    warehouse_id: Optional[int] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    notes: Optional[str] = None
    status: CountStatus
    total_products: int
    total_variances: int
    created_by: Optional[str] = None
    created_at: datetime
    ack_deadline: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    closed_by: Optional[str] = None
    close_method: Optional[CloseMethod] = None

    model_config = {"from_attributes": True}


class InventoryCountResponse(InventoryCountSummary):
    items: List[InventoryCountItemResponse] = []


class StockAdjustment(BaseModel):
    product_id: int
    previous_qty: float
    counted_qty: float
    delta: float


class StockDrift(BaseModel):
    product_id: int
    saved_system_stock: float
    current_system_stock: float


class InventoryCountCloseResponse(BaseModel):
    """Response after closing an inventory count."""

    count_id: int
    reference: Optional[str] = None
    status: CountStatus
    closed_at: datetime
    close_method: CloseMethod
    movements_created: int
    adjustments: List[StockAdjustment]
    drift: List[StockDrift]
