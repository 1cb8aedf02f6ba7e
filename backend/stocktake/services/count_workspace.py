"""Count workspace - the in-progress, in-memory physical count.

A workspace holds a catalog snapshot, the draft ``InventoryItem`` per
product, the selection of products being counted and the visible-list
filter. Nothing in it is persisted until the lifecycle service saves the
selected items; abandoning a workspace leaves no trace.
"""

import logging
import threading
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from stocktake.core.exceptions import (
    CatalogUnavailableError,
    EmptySelectionError,
    InvalidQuantityError,
    ShrinkageNotesDisabledError,
    UncountedSelectionError,
    UnknownProductError,
    UnknownWarehouseError,
    WorkspaceNotFoundError,
)
from stocktake.models.inventory import VarianceType
from stocktake.services.catalog_provider import CatalogProduct, CatalogProvider, CatalogSnapshot
from stocktake.services.stock_aggregator import aggregate_stock, system_stock
from stocktake.services.variance import classify

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

# Matches the Numeric(12, 3) quantity columns
QUANTUM = Decimal("0.001")
MAX_QUANTITY = Decimal("999999999.999")


@dataclass(frozen=True)
class InventoryItem:
    """Draft count of one product."""

    product_id: int
    system_stock: Decimal
    physical_count: Decimal
    shrinkage: Decimal
    shrinkage_notes: str
    variance: Decimal
    variance_type: VarianceType


def parse_quantity(field: str, value: Any) -> Decimal:
    """Parse a user-entered quantity.

    Blank input counts as 0. Anything else must be a finite, non-negative
    number with at most three decimal places, the scale of the quantity
    columns. The result is quantized to that scale.

    Raises:
        InvalidQuantityError: for malformed, negative, non-finite, too
            precise or out-of-range input.
    """
    if value is None:
        return ZERO
    if isinstance(value, bool):
        raise InvalidQuantityError(field, value)
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return ZERO
    try:
        quantity = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidQuantityError(field, value)
    if not quantity.is_finite() or quantity < 0 or quantity > MAX_QUANTITY:
        raise InvalidQuantityError(field, value)
    quantized = quantity.quantize(QUANTUM)
    if quantized != quantity:
        raise InvalidQuantityError(field, value)
    return quantized


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CountWorkspace:
    """Mutable single-session collection of draft inventory items.

    All mutators hold the workspace lock, so concurrent edits are applied
    one at a time and every recomputation completes before the next edit.
    """

    def __init__(
        self,
        catalog: CatalogSnapshot,
        tenant_id: str,
        warehouse_id: Optional[int] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ):
        if warehouse_id is not None and not catalog.has_warehouse(warehouse_id):
            raise UnknownWarehouseError(warehouse_id)
        self.catalog = catalog
        self.tenant_id = tenant_id
        self.date_from = date_from
        self.date_to = date_to
        self.search = ""
        self.variances_only = False
        self.available = True
        self.last_activity = _utcnow()
        self._warehouse_id = warehouse_id
        self._entries: Dict[int, InventoryItem] = {}
        # dict keeps selection order
        self._selected: Dict[int, None] = {}
        self._lock = threading.RLock()

    @classmethod
    def open(
        cls,
        provider: CatalogProvider,
        tenant_id: str,
        warehouse_id: Optional[int] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> "CountWorkspace":
        """Load the catalog and start an empty workspace.

        Raises:
            CatalogUnavailableError: if the catalog cannot be loaded.
            UnknownWarehouseError: if ``warehouse_id`` is not in the catalog.
        """
        catalog = _load_catalog(provider, tenant_id)
        workspace = cls(catalog, tenant_id, warehouse_id, date_from, date_to)
        logger.info(
            "Count workspace opened: tenant=%s, warehouse=%s, products=%s",
            tenant_id,
            warehouse_id if warehouse_id is not None else "global",
            len(catalog.products),
        )
        return workspace

    # ------------------------------------------------------------------
    # Catalog and scope
    # ------------------------------------------------------------------
    @property
    def warehouse_id(self) -> Optional[int]:
        return self._warehouse_id

    def reload(self, provider: CatalogProvider) -> None:
        """Replace the catalog snapshot and recompute every draft.

        On failure the workspace becomes unavailable until a reload succeeds.
        Drafts and selections of products no longer in the catalog are
        dropped.
        """
        with self._lock:
            try:
                catalog = _load_catalog(provider, self.tenant_id)
            except CatalogUnavailableError:
                self.available = False
                raise
            self.catalog = catalog
            self.available = True
            if self._warehouse_id is not None and not catalog.has_warehouse(self._warehouse_id):
                logger.warning(
                    "Warehouse %s vanished from catalog of tenant %s; workspace scope reset to global",
                    self._warehouse_id,
                    self.tenant_id,
                )
                self._warehouse_id = None
            for product_id in list(self._entries):
                if catalog.product(product_id) is None:
                    del self._entries[product_id]
            for product_id in list(self._selected):
                if catalog.product(product_id) is None:
                    del self._selected[product_id]
            self._recompute_all()
            self.touch()

    def set_scope(self, warehouse_id: Optional[int]) -> None:
        """Switch the warehouse scope and recompute every drafted item."""
        with self._lock:
            self._require_available()
            if warehouse_id is not None and not self.catalog.has_warehouse(warehouse_id):
                raise UnknownWarehouseError(warehouse_id)
            self._warehouse_id = warehouse_id
            self._recompute_all()
            self.touch()

    # ------------------------------------------------------------------
    # Filtering and selection
    # ------------------------------------------------------------------
    def set_filter(self, search: Optional[str] = None, variances_only: Optional[bool] = None) -> None:
        with self._lock:
            if search is not None:
                self.search = search.strip()
            if variances_only is not None:
                self.variances_only = variances_only
            self.touch()

    def visible_products(self) -> List[CatalogProduct]:
        """Products passing the current search and variances-only filter."""
        with self._lock:
            self._require_available()
            term = self.search.lower()
            visible = []
            for product in self.catalog.products:
                if term and term not in product.name.lower() and term not in product.sku.lower():
                    continue
                if self.variances_only:
                    entry = self._entries.get(product.id)
                    if entry is None or entry.variance == 0:
                        continue
                visible.append(product)
            return visible

    def select(self, product_id: int) -> None:
        with self._lock:
            self._product(product_id)
            self._selected[product_id] = None
            self.touch()

    def deselect(self, product_id: int) -> None:
        with self._lock:
            self._selected.pop(product_id, None)
            self.touch()

    def select_all(self, selected: bool = True) -> None:
        """Select exactly the visible products, or clear the selection.

        Products hidden by the active filter are never selected.
        """
        with self._lock:
            if selected:
                self._selected = {p.id: None for p in self.visible_products()}
            else:
                self._selected = {}
            self.touch()

    @property
    def selected_ids(self) -> List[int]:
        with self._lock:
            return list(self._selected)

    # ------------------------------------------------------------------
    # Draft entries
    # ------------------------------------------------------------------
    def set_physical_count(self, product_id: int, value: Any) -> InventoryItem:
        physical_count = parse_quantity("physical_count", value)
        with self._lock:
            current = self._entries.get(product_id)
            return self._store(
                product_id,
                physical_count,
                current.shrinkage if current else ZERO,
                current.shrinkage_notes if current else "",
            )

    def set_shrinkage(self, product_id: int, value: Any) -> InventoryItem:
        shrinkage = parse_quantity("shrinkage", value)
        with self._lock:
            current = self._entries.get(product_id)
            # notes are only editable while shrinkage > 0
            notes = current.shrinkage_notes if current and shrinkage > 0 else ""
            return self._store(
                product_id,
                current.physical_count if current else ZERO,
                shrinkage,
                notes,
            )

    def set_shrinkage_notes(self, product_id: int, text: Optional[str]) -> InventoryItem:
        with self._lock:
            current = self._entries.get(product_id)
            self._product(product_id)
            if current is None or current.shrinkage <= 0:
                raise ShrinkageNotesDisabledError(product_id)
            return self._store(product_id, current.physical_count, current.shrinkage, text or "")

    def entry(self, product_id: int) -> Optional[InventoryItem]:
        with self._lock:
            return self._entries.get(product_id)

    @property
    def entries(self) -> Dict[int, InventoryItem]:
        with self._lock:
            return dict(self._entries)

    def aggregate_visible_stock(self) -> Decimal:
        """System stock summed over the visible products. Informational only."""
        with self._lock:
            return aggregate_stock(self.visible_products(), self._warehouse_id)

    def selected_items(self) -> List[InventoryItem]:
        """Drafts of the selected products, in selection order.

        Raises:
            EmptySelectionError: if nothing is selected.
            UncountedSelectionError: if a selected product has no draft.
        """
        with self._lock:
            self._require_available()
            if not self._selected:
                raise EmptySelectionError()
            missing = [pid for pid in self._selected if pid not in self._entries]
            if missing:
                raise UncountedSelectionError(missing)
            return [self._entries[pid] for pid in self._selected]

    def reset(self) -> None:
        """Clear drafts and selection for the next count cycle."""
        with self._lock:
            self._entries = {}
            self._selected = {}
            self.touch()

    def touch(self) -> None:
        self.last_activity = _utcnow()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _require_available(self) -> None:
        if not self.available:
            raise CatalogUnavailableError("Catalog failed to load; reload the workspace before counting")

    def _product(self, product_id: int) -> CatalogProduct:
        self._require_available()
        product = self.catalog.product(product_id)
        if product is None:
            raise UnknownProductError(product_id)
        return product

    def _build(
        self,
        product: CatalogProduct,
        physical_count: Decimal,
        shrinkage: Decimal,
        shrinkage_notes: str,
    ) -> InventoryItem:
        stock = system_stock(product, self._warehouse_id).quantize(QUANTUM)
        result = classify(stock, physical_count, shrinkage)
        return InventoryItem(
            product_id=product.id,
            system_stock=stock,
            physical_count=physical_count,
            shrinkage=shrinkage,
            shrinkage_notes=shrinkage_notes,
            variance=result.variance,
            variance_type=result.variance_type,
        )

    def _store(self, product_id, physical_count, shrinkage, shrinkage_notes) -> InventoryItem:
        item = self._build(self._product(product_id), physical_count, shrinkage, shrinkage_notes)
        self._entries[product_id] = item
        self.touch()
        return item

    def _recompute_all(self) -> None:
        for product_id, item in list(self._entries.items()):
            self._entries[product_id] = self._build(
                self.catalog.product(product_id),
                item.physical_count,
                item.shrinkage,
                item.shrinkage_notes,
            )


def _load_catalog(provider: CatalogProvider, tenant_id: str) -> CatalogSnapshot:
    try:
        return provider.load(tenant_id)
    except CatalogUnavailableError:
        raise
    except Exception as exc:
        logger.error("Catalog provider failed for tenant %s: %s", tenant_id, exc)
        raise CatalogUnavailableError(f"Catalog could not be loaded: {exc}", cause=exc) from exc


class WorkspaceRegistry:
    """In-process holder of API workspaces, keyed by opaque id per tenant."""

    def __init__(self, idle_timeout: timedelta):
        self.idle_timeout = idle_timeout
        self._workspaces: Dict[str, CountWorkspace] = {}
        self._lock = threading.Lock()

    def add(self, workspace: CountWorkspace) -> str:
        workspace_id = uuid.uuid4().hex
        with self._lock:
            self._purge_idle_locked(_utcnow())
            self._workspaces[workspace_id] = workspace
        return workspace_id

    def get(self, tenant_id: str, workspace_id: str) -> CountWorkspace:
        with self._lock:
            self._purge_idle_locked(_utcnow())
            workspace = self._workspaces.get(workspace_id)
        if workspace is None or workspace.tenant_id != tenant_id:
            raise WorkspaceNotFoundError(workspace_id)
        workspace.touch()
        return workspace

    def discard(self, tenant_id: str, workspace_id: str) -> None:
        with self._lock:
            workspace = self._workspaces.get(workspace_id)
            if workspace is None or workspace.tenant_id != tenant_id:
                raise WorkspaceNotFoundError(workspace_id)
            del self._workspaces[workspace_id]
        logger.info("Count workspace %s abandoned by tenant %s", workspace_id, tenant_id)

    def purge_idle(self, now: Optional[datetime] = None) -> int:
        with self._lock:
            return self._purge_idle_locked(now or _utcnow())

    def _purge_idle_locked(self, now: datetime) -> int:
        expired = [
            wid for wid, ws in self._workspaces.items()
            if now - ws.last_activity > self.idle_timeout
        ]
        for wid in expired:
            del self._workspaces[wid]
        if expired:
            logger.info("Discarded %s idle count workspaces", len(expired))
        return len(expired)

    def __len__(self) -> int:
        return len(self._workspaces)
