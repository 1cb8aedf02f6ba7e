"""SQLAlchemy models."""

from stocktake.models.product import Product
from stocktake.models.warehouse import Warehouse, WarehouseStock
from stocktake.models.stock import MovementReason, StockMovement
from stocktake.models.inventory import (
    CloseMethod,
    CountStatus,
    InventoryCount,
    InventoryCountItem,
    VarianceType,
)

__all__ = [
    "Product",
    "Warehouse",
    "WarehouseStock",
    "MovementReason",
    "StockMovement",
    "CloseMethod",
    "CountStatus",
    "InventoryCount",
    "InventoryCountItem",
    "VarianceType",
]
