# Services module

from stocktake.services.acknowledgment import AcknowledgmentChannel
from stocktake.services.catalog_provider import (
    CatalogProduct,
    CatalogProvider,
    CatalogSnapshot,
    DbCatalogProvider,
    WarehouseInfo,
    WarehouseStockEntry,
    build_snapshot,
)
from stocktake.services.count_workspace import (
    CountWorkspace,
    InventoryItem,
    WorkspaceRegistry,
    parse_quantity,
)
from stocktake.services.inventory_count_service import InventoryCountService
from stocktake.services.stock_aggregator import aggregate_stock, system_stock, to_quantity
from stocktake.services.variance import VarianceResult, classify
