"""Read-only catalog and warehouse-stock access for counting.

The count workspace never queries the database directly: it asks a
``CatalogProvider`` for a ``CatalogSnapshot`` and works on that. Tests pass
fixture providers; the API injects ``DbCatalogProvider``.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from stocktake.core.exceptions import CatalogUnavailableError
from stocktake.models.product import Product
from stocktake.models.warehouse import Warehouse

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WarehouseStockEntry:
    warehouse_id: int
    quantity: Any  # raw stored value, normalized by the stock aggregator


@dataclass(frozen=True)
class CatalogProduct:
    id: int
    sku: str
    name: str
    stock: Any = None
    warehouse_stocks: Tuple[WarehouseStockEntry, ...] = ()


@dataclass(frozen=True)
class WarehouseInfo:
    id: int
    name: str


@dataclass(frozen=True)
class CatalogSnapshot:
    """Products and warehouses of one tenant at load time."""

    products: Tuple[CatalogProduct, ...]
    warehouses: Tuple[WarehouseInfo, ...]
    _by_id: Dict[int, CatalogProduct] = field(init=False, repr=False, compare=False)

    def __post_init__(self):
        object.__setattr__(self, "_by_id", {p.id: p for p in self.products})

    def product(self, product_id: int) -> Optional[CatalogProduct]:
        return self._by_id.get(product_id)

    def has_warehouse(self, warehouse_id: int) -> bool:
        return any(w.id == warehouse_id for w in self.warehouses)


class CatalogProvider(Protocol):
    def load(self, tenant_id: str) -> CatalogSnapshot:
        """Return the full catalog for ``tenant_id`` or raise."""
        ...


class DbCatalogProvider:
    """Catalog provider backed by the ``products`` and ``warehouses`` tables."""

    def __init__(self, db: Session):
        self.db = db

    def load(self, tenant_id: str) -> CatalogSnapshot:
        try:
            warehouses = (
                self.db.query(Warehouse)
                .filter(Warehouse.tenant_id == tenant_id, Warehouse.active.is_(True))
                .order_by(Warehouse.id)
                .all()
            )
            products = (
                self.db.query(Product)
                .options(selectinload(Product.warehouse_stocks))
                .filter(Product.tenant_id == tenant_id, Product.active.is_(True))
                .order_by(Product.name, Product.id)
                .all()
            )
        except SQLAlchemyError as exc:
            logger.error("Catalog load failed for tenant %s: %s", tenant_id, exc)
            raise CatalogUnavailableError(
                "Products or warehouses could not be loaded; reload before counting", cause=exc
            ) from exc

        snapshot = CatalogSnapshot(
            products=tuple(
                CatalogProduct(
                    id=p.id,
                    sku=p.sku,
                    name=p.name,
                    stock=p.stock,
                    warehouse_stocks=tuple(
                        WarehouseStockEntry(ws.warehouse_id, ws.quantity) for ws in p.warehouse_stocks
                    ),
                )
                for p in products
            ),
            warehouses=tuple(WarehouseInfo(w.id, w.name) for w in warehouses),
        )
        logger.debug(
            "Catalog loaded for tenant %s: %s products, %s warehouses",
            tenant_id,
            len(snapshot.products),
            len(snapshot.warehouses),
        )
        return snapshot


def build_snapshot(products: List[Dict[str, Any]], warehouses: List[Dict[str, Any]]) -> CatalogSnapshot:
    """Build a snapshot from plain dicts as returned by a catalog API.

    Product dicts carry ``id``, ``sku``, ``name``, optional ``stock`` and an
    optional ``warehouse_stocks`` list of ``{"warehouse_id", "quantity"}``.
    """
    return CatalogSnapshot(
        products=tuple(
            CatalogProduct(
                id=int(p["id"]),
                sku=str(p.get("sku") or ""),
                name=str(p.get("name") or ""),
                stock=p.get("stock"),
                warehouse_stocks=tuple(
                    WarehouseStockEntry(int(ws["warehouse_id"]), ws.get("quantity"))
                    for ws in p.get("warehouse_stocks") or []
                ),
            )
            for p in products
        ),
        warehouses=tuple(WarehouseInfo(int(w["id"]), str(w.get("name") or "")) for w in warehouses),
    )

