"""Count workspace schemas."""

from datetime import date
from decimal import Decimal
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from stocktake.models.inventory import VarianceType


class WorkspaceCreate(BaseModel):
    warehouse_id: Optional[int] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None


class WorkspaceScopeUpdate(BaseModel):
    warehouse_id: Optional[int] = None


class WorkspaceFilterUpdate(BaseModel):
    search: Optional[str] = Field(default=None, max_length=200)
    variances_only: Optional[bool] = None


class WorkspaceItemUpdate(BaseModel):
    """Raw user input; numbers are parsed by the workspace so malformed
    values come back as the workspace's validation error."""

    physical_count: Optional[Any] = None
    shrinkage: Optional[Any] = None
    shrinkage_notes: Optional[str] = Field(default=None, max_length=500)


class WorkspaceSelection(BaseModel):
    product_ids: List[int]


class WorkspaceSelectAll(BaseModel):
    selected: bool = True


class WorkspaceSave(BaseModel):
    notes: Optional[str] = Field(default=None, max_length=1000)
    created_by: Optional[str] = Field(default=None, max_length=100)


class WorkspaceEntry(BaseModel):
    product_id: int
    system_stock: Decimal
    physical_count: Decimal
    shrinkage: Decimal
    shrinkage_notes: str
    variance: Decimal
    variance_type: VarianceType

    model_config = {"from_attributes": True}


class WorkspaceProduct(BaseModel):
    id: int
    sku: str
    name: str
    system_stock: Decimal
    selected: bool
    entry: Optional[WorkspaceEntry] = None


class WorkspaceResponse(BaseModel):
    id: str
    warehouse_id: Optional[int] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    search: str
    variances_only: bool
    selected_ids: List[int]
    products: List[WorkspaceProduct]
    visible_stock_total: Decimal
