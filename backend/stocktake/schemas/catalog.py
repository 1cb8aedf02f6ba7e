"""Read-only catalog schemas."""

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel


class WarehouseResponse(BaseModel):
    id: int
    name: str
    code: Optional[str] = None

    model_config = {"from_attributes": True}


class WarehouseStockResponse(BaseModel):
    warehouse_id: int
    quantity: Decimal

    model_config = {"from_attributes": True}


class CatalogProductResponse(BaseModel):
    id: int
    sku: str
    name: str
    unit: str
    system_stock: Decimal
    warehouse_stocks: List[WarehouseStockResponse] = []
