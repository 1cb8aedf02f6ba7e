"""Inventory count lifecycle - save, acknowledge, close.

A count is saved as ``pending`` with its items frozen. It becomes
``completed`` exactly once, when the report renderer acknowledges the
printed report (or an operator force-closes it), and closing is the only
operation that writes product stock.
"""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from stocktake.core.exceptions import (
    CountAlreadyClosedError,
    CountItemsMismatchError,
    CountNotFoundError,
    CountProtocolError,
    EmptySelectionError,
    InventoryValidationError,
    UnexpectedAcknowledgmentError,
    UnknownProductError,
    UnknownWarehouseError,
)
from stocktake.models.inventory import (
    CloseMethod,
    CountStatus,
    InventoryCount,
    InventoryCountItem,
    VarianceType,
)
from stocktake.models.product import Product
from stocktake.models.stock import MovementReason, StockMovement
from stocktake.models.warehouse import Warehouse, WarehouseStock
from stocktake.services.acknowledgment import AcknowledgmentChannel
from stocktake.services.count_workspace import CountWorkspace, parse_quantity
from stocktake.services.stock_aggregator import to_quantity
from stocktake.services.variance import classify

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class InventoryCountService:
    """Lifecycle manager for physical inventory counts."""

    def __init__(self, db: Session, channel: AcknowledgmentChannel):
        self.db = db
        self.channel = channel

    # ------------------------------------------------------------------
    # save
    # ------------------------------------------------------------------
    def save(
        self,
        tenant_id: str,
        items: Sequence[Any],
        warehouse_id: Optional[int] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> InventoryCount:
        """Persist counted items as a new pending count.

        Args:
            tenant_id: Owner of the count.
            items: Objects exposing ``product_id``, ``system_stock``,
                ``physical_count``, ``shrinkage`` and ``shrinkage_notes``
                (workspace ``InventoryItem``s or API payload items).
                Variances are recomputed here; client-supplied ones are
                ignored.
            warehouse_id: Scope of the count, None for global.
            date_from, date_to: Informational date-range label.
            notes: Free text; a descriptive default is generated.
            created_by: Operator name recorded on the count.

        Returns:
            The committed ``InventoryCount`` (status ``pending``).

        Raises:
            EmptySelectionError: if ``items`` is empty (no I/O performed).
            InventoryValidationError: for duplicate products or bad numbers.
            UnknownWarehouseError, UnknownProductError: for references
                outside the tenant's catalog.
        """
        rows = self._validate_items(items)

        try:
            warehouse = None
            if warehouse_id is not None:
                warehouse = (
                    self.db.query(Warehouse)
                    .filter(Warehouse.id == warehouse_id, Warehouse.tenant_id == tenant_id)
                    .first()
                )
                if warehouse is None:
                    raise UnknownWarehouseError(warehouse_id)

            product_ids = [row["product_id"] for row in rows]
            products = {
                p.id: p
                for p in self.db.query(Product)
                .filter(Product.tenant_id == tenant_id, Product.id.in_(product_ids))
                .all()
            }
            for product_id in product_ids:
                if product_id not in products:
                    raise UnknownProductError(product_id)

            deadline = self.channel.deadline_from_now()
            count = InventoryCount(
                tenant_id=tenant_id,
                warehouse_id=warehouse_id,
                date_from=date_from,
                date_to=date_to,
                notes=notes or self._default_notes(warehouse),
                status=CountStatus.PENDING,
                created_by=created_by,
                ack_deadline=deadline,
            )
            total_variances = 0
            for position, row in enumerate(rows):
                product = products[row["product_id"]]
                result = classify(row["system_stock"], row["physical_count"], row["shrinkage"])
                if result.variance != 0:
                    total_variances += 1
                count.items.append(
                    InventoryCountItem(
                        position=position,
                        product_id=product.id,
                        sku=product.sku,
                        product_name=product.name,
                        system_stock=row["system_stock"],
                        physical_count=row["physical_count"],
                        shrinkage=row["shrinkage"],
                        shrinkage_notes=row["shrinkage_notes"] or None,
                        variance=result.variance,
                        variance_type=result.variance_type,
                    )
                )
            count.total_products = len(rows)
            count.total_variances = total_variances

            self.db.add(count)
            self.db.flush()
            count.reference = f"INV-{count.id:06d}"
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(count)
        self.channel.expect(count.id, deadline)

        logger.info(
            "Inventory count saved: ID=%s, ref=%s, tenant=%s, warehouse=%s, products=%s, variances=%s, user=%s",
            count.id,
            count.reference,
            tenant_id,
            warehouse_id if warehouse_id is not None else "global",
            count.total_products,
            count.total_variances,
            created_by,
        )
        return count

    def save_workspace(
        self,
        workspace: CountWorkspace,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> InventoryCount:
        """Save the workspace's selected drafts; reset the workspace on success.

        The draft is left intact if saving fails so the user can retry.
        """
        items = workspace.selected_items()
        count = self.save(
            workspace.tenant_id,
            items,
            warehouse_id=workspace.warehouse_id,
            date_from=workspace.date_from,
            date_to=workspace.date_to,
            notes=notes,
            created_by=created_by,
        )
        workspace.reset()
        return count

    # ------------------------------------------------------------------
    # close
    # ------------------------------------------------------------------
    def close_count(
        self,
        tenant_id: str,
        count_id: int,
        items: Optional[Sequence[Any]] = None,
        closed_by: Optional[str] = None,
        method: CloseMethod = CloseMethod.ACKNOWLEDGED,
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Complete a pending count and apply its physical counts to stock.

        Steps:
        1. Validate the count exists for the tenant and is pending.
        2. If ``items`` are re-sent, check they match the frozen items.
        3. Flip the status with a conditional UPDATE, so only one caller
           can ever complete the count.
        4. Write stock for the count's scope and a ``StockMovement`` per
           non-zero change.
        5. Commit, or roll back leaving the count pending.

        Returns:
            A dict with ``count_id``, ``reference``, ``status``,
            ``closed_at``, ``close_method``, ``movements_created``,
            ``adjustments`` and ``drift``.

        Raises:
            CountNotFoundError: unknown count (for this tenant).
            CountAlreadyClosedError: the count is already completed.
            CountItemsMismatchError: re-sent items differ from the count.
        """
        count = self._get(tenant_id, count_id)
        if count.status == CountStatus.COMPLETED:
            raise CountAlreadyClosedError(count_id)
        if items is not None:
            self._check_resent_items(count, items)

        closed_at = _utcnow()
        movements: List[StockMovement] = []
        adjustments: List[Dict[str, Any]] = []
        drift: List[Dict[str, Any]] = []

        try:
            result = self.db.execute(
                update(InventoryCount)
                .where(
                    InventoryCount.id == count.id,
                    InventoryCount.status == CountStatus.PENDING,
                )
                .values(
                    status=CountStatus.COMPLETED,
                    closed_at=closed_at,
                    closed_by=closed_by,
                    close_method=method,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise CountAlreadyClosedError(count_id)

            for item in count.items:
                if count.is_global:
                    previous = self._apply_global(count, item, movements, reason, closed_by)
                else:
                    previous = self._apply_to_warehouse(count, item, movements, reason, closed_by)

                if previous != item.system_stock:
                    drift.append(
                        {
                            "product_id": item.product_id,
                            "saved_system_stock": float(item.system_stock),
                            "current_system_stock": float(previous),
                        }
                    )
                delta = item.physical_count - previous
                if delta != 0:
                    adjustments.append(
                        {
                            "product_id": item.product_id,
                            "previous_qty": float(previous),
                            "counted_qty": float(item.physical_count),
                            "delta": float(delta),
                        }
                    )

            for movement in movements:
                self.db.add(movement)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(count)
        self.channel.cancel(count.id)

        logger.info(
            "Inventory count closed: ID=%s, ref=%s, tenant=%s, method=%s, movements=%s, user=%s",
            count.id,
            count.reference,
            tenant_id,
            method.value,
            len(movements),
            closed_by,
        )
        if adjustments:
            logger.info("Stock adjustments for count %s: %s", count.id, adjustments)
        if drift:
            logger.warning(
                "Stock changed between save and close of count %s; counted values overwrote: %s",
                count.id,
                drift,
            )

        return {
            "count_id": count.id,
            "reference": count.reference,
            "status": count.status,
            "closed_at": count.closed_at,
            "close_method": count.close_method,
            "movements_created": len(movements),
            "adjustments": adjustments,
            "drift": drift,
        }

    def acknowledge(
        self,
        tenant_id: str,
        count_id: int,
        event: str,
        closed_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Handle the renderer's report-printed event and close the count.

        The event is accepted once. When the in-process subscription is
        missing (another worker saved the count, or the service restarted),
        the count's stored ``ack_deadline`` decides; the conditional UPDATE
        in ``close_count`` still guarantees a single application.

        Raises:
            CountNotFoundError: as for close.
            CountAlreadyClosedError: a duplicate delivery for a completed count.
            UnexpectedAcknowledgmentError: wrong token, or the deadline
                passed (only ``force_close`` can complete the count then).
        """
        count = self._get(tenant_id, count_id)
        subscription = self.channel.pending(count.id)
        outcome = self.channel.consume(count.id, event)

        if outcome == AcknowledgmentChannel.WRONG_TOKEN:
            raise UnexpectedAcknowledgmentError(count_id, f"unknown event {event!r}")
        if outcome == AcknowledgmentChannel.EXPIRED:
            raise UnexpectedAcknowledgmentError(
                count_id, "acknowledgment deadline passed; close the count manually"
            )
        if outcome == AcknowledgmentChannel.NOT_AWAITED:
            if count.status == CountStatus.COMPLETED:
                raise CountAlreadyClosedError(count_id)
            deadline = _as_aware(count.ack_deadline)
            if deadline is None or _utcnow() > deadline:
                raise UnexpectedAcknowledgmentError(
                    count_id, "acknowledgment deadline passed; close the count manually"
                )

        logger.info("Report acknowledged for inventory count %s (%s)", count.id, outcome)
        try:
            return self.close_count(
                tenant_id, count_id, closed_by=closed_by, method=CloseMethod.ACKNOWLEDGED
            )
        except CountProtocolError:
            raise
        except Exception:
            # the close rolled back; let a redelivered event retry it
            if subscription is not None:
                self.channel.restore(subscription)
            raise

    def force_close(
        self,
        tenant_id: str,
        count_id: int,
        reason: str,
        closed_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Operator close for counts whose acknowledgment never arrived."""
        if not reason or not reason.strip():
            raise InventoryValidationError("A reason is required to close a count manually")
        logger.warning(
            "Manual close requested for inventory count %s by %s: %s", count_id, closed_by, reason
        )
        return self.close_count(
            tenant_id,
            count_id,
            closed_by=closed_by,
            method=CloseMethod.MANUAL,
            reason=reason.strip(),
        )

    # ------------------------------------------------------------------
    # queries
    # ------------------------------------------------------------------
    def get_count(self, tenant_id: str, count_id: int) -> InventoryCount:
        return self._get(tenant_id, count_id)

    def list_history(
        self,
        tenant_id: str,
        status: Optional[CountStatus] = None,
        warehouse_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[InventoryCount], int]:
        query = self.db.query(InventoryCount).filter(InventoryCount.tenant_id == tenant_id)
        if status is not None:
            query = query.filter(InventoryCount.status == status)
        if warehouse_id is not None:
            query = query.filter(InventoryCount.warehouse_id == warehouse_id)
        total = query.count()
        counts = (
            query.order_by(InventoryCount.created_at.desc(), InventoryCount.id.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )
        return counts, total

    def build_report(self, tenant_id: str, count_id: int) -> Dict[str, Any]:
        """Assemble the payload handed to the external report renderer."""
        count = self._get(tenant_id, count_id)

        shortage = surplus = shrinkage = ZERO
        by_type = {vt.value: 0 for vt in VarianceType}
        lines = []
        for item in count.items:
            by_type[item.variance_type.value] += 1
            shrinkage += item.shrinkage
            if item.variance < 0:
                shortage += -item.variance
            elif item.variance > 0:
                surplus += item.variance
            lines.append(
                {
                    "product_id": item.product_id,
                    "sku": item.sku,
                    "product_name": item.product_name,
                    "system_stock": float(item.system_stock),
                    "physical_count": float(item.physical_count),
                    "shrinkage": float(item.shrinkage),
                    "shrinkage_notes": item.shrinkage_notes,
                    "variance": float(item.variance),
                    "variance_type": item.variance_type.value,
                }
            )

        return {
            "count_id": count.id,
            "reference": count.reference,
            "status": count.status.value,
            "created_at": count.created_at.isoformat() if count.created_at else None,
            "date_from": count.date_from.isoformat() if count.date_from else None,
            "date_to": count.date_to.isoformat() if count.date_to else None,
            "warehouse_id": count.warehouse_id,
            "warehouse_name": count.warehouse.name if count.warehouse else "Global",
            "notes": count.notes,
            "total_products": count.total_products,
            "total_variances": count.total_variances,
            "items": lines,
            "summary": {
                "by_variance_type": by_type,
                "total_shortage": float(shortage),
                "total_surplus": float(surplus),
                "total_shrinkage": float(shrinkage),
            },
            "acknowledgment": {
                "event": self.channel.token,
                "awaiting": count.status == CountStatus.PENDING,
                "deadline": count.ack_deadline.isoformat() if count.ack_deadline else None,
            },
        }

    # ------------------------------------------------------------------
    # internals
    # ------------------------------------------------------------------
    def _get(self, tenant_id: str, count_id: int) -> InventoryCount:
        count = (
            self.db.query(InventoryCount)
            .filter(InventoryCount.id == count_id, InventoryCount.tenant_id == tenant_id)
            .first()
        )
        if count is None:
            raise CountNotFoundError(count_id)
        return count

    @staticmethod
    def _validate_items(items: Sequence[Any]) -> List[Dict[str, Any]]:
        if not items:
            raise EmptySelectionError()
        rows = []
        seen = set()
        for item in items:
            product_id = item.product_id
            if product_id in seen:
                raise InventoryValidationError(f"Product {product_id} appears more than once in the count")
            seen.add(product_id)
            shrinkage = parse_quantity("shrinkage", item.shrinkage)
            rows.append(
                {
                    "product_id": product_id,
                    "system_stock": parse_quantity("system_stock", item.system_stock),
                    "physical_count": parse_quantity("physical_count", item.physical_count),
                    "shrinkage": shrinkage,
                    "shrinkage_notes": (getattr(item, "shrinkage_notes", None) or "") if shrinkage > 0 else "",
                }
            )
        return rows

    @staticmethod
    def _check_resent_items(count: InventoryCount, items: Sequence[Any]) -> None:
        saved = {item.product_id: item.physical_count for item in count.items}
        resent = {}
        for item in items:
            resent[item.product_id] = parse_quantity("physical_count", item.physical_count)
        if set(resent) != set(saved):
            raise CountItemsMismatchError(
                f"Items sent for count {count.id} do not match the saved products"
            )
        changed = sorted(pid for pid, qty in resent.items() if qty != saved[pid])
        if changed:
            raise CountItemsMismatchError(
                f"Physical counts differ from the saved count {count.id} for products {changed}"
            )

    @staticmethod
    def _default_notes(warehouse: Optional[Warehouse]) -> str:
        scope = f"Warehouse: {warehouse.name}" if warehouse is not None else "Global"
        return f"Physical inventory taken on {_utcnow().date().isoformat()} - {scope}"

    @staticmethod
    def _movement_notes(count: InventoryCount, item: InventoryCountItem, reason: Optional[str]) -> str:
        notes = f"Physical inventory {count.reference}"
        if item.shrinkage > 0:
            notes += f"; shrinkage {item.shrinkage.normalize()}"
            if item.shrinkage_notes:
                notes += f" ({item.shrinkage_notes})"
        if reason:
            notes += f"; manual close: {reason}"
        return notes[:500]

    def _movement(
        self,
        count: InventoryCount,
        item: InventoryCountItem,
        warehouse_id: Optional[int],
        delta: Decimal,
        reason: Optional[str],
        closed_by: Optional[str],
    ) -> StockMovement:
        return StockMovement(
            tenant_id=count.tenant_id,
            product_id=item.product_id,
            warehouse_id=warehouse_id,
            qty_delta=delta,
            reason=MovementReason.INVENTORY_COUNT.value,
            ref_type="inventory_count",
            ref_id=count.id,
            notes=self._movement_notes(count, item, reason),
            created_by=closed_by,
        )

    def _apply_to_warehouse(
        self,
        count: InventoryCount,
        item: InventoryCountItem,
        movements: List[StockMovement],
        reason: Optional[str],
        closed_by: Optional[str],
    ) -> Decimal:
        """Overwrite the count warehouse's record; returns the previous quantity."""
        record = (
            self.db.query(WarehouseStock)
            .filter(
                WarehouseStock.product_id == item.product_id,
                WarehouseStock.warehouse_id == count.warehouse_id,
            )
            .first()
        )
        previous = to_quantity(record.quantity) if record is not None else ZERO
        delta = item.physical_count - previous
        if record is not None:
            record.quantity = item.physical_count
        elif item.physical_count != 0:
            self.db.add(
                WarehouseStock(
                    product_id=item.product_id,
                    warehouse_id=count.warehouse_id,
                    quantity=item.physical_count,
                )
            )
        if delta != 0:
            movements.append(self._movement(count, item, count.warehouse_id, delta, reason, closed_by))
        return previous

    def _apply_global(
        self,
        count: InventoryCount,
        item: InventoryCountItem,
        movements: List[StockMovement],
        reason: Optional[str],
        closed_by: Optional[str],
    ) -> Decimal:
        """Make the product's total stock equal the physical count.

        Products without warehouse records get the legacy stock field set.
        Otherwise a surplus goes to the lowest-id warehouse and a shortage
        is drawn from warehouses in id order, never below zero.
        """
        records = (
            self.db.query(WarehouseStock)
            .filter(WarehouseStock.product_id == item.product_id)
            .order_by(WarehouseStock.warehouse_id)
            .all()
        )
        if not records:
            product = self.db.get(Product, item.product_id)
            previous = to_quantity(product.stock)
            product.stock = item.physical_count
            if item.physical_count != previous:
                movements.append(
                    self._movement(count, item, None, item.physical_count - previous, reason, closed_by)
                )
            return previous

        quantities = [to_quantity(r.quantity) for r in records]
        previous = sum(quantities, ZERO)
        delta = item.physical_count - previous

        if delta > 0:
            records[0].quantity = quantities[0] + delta
            movements.append(self._movement(count, item, records[0].warehouse_id, delta, reason, closed_by))
        elif delta < 0:
            remaining = -delta
            for record, quantity in zip(records, quantities):
                if remaining <= 0:
                    break
                taken = min(max(quantity, ZERO), remaining)
                if taken <= 0:
                    continue
                record.quantity = quantity - taken
                remaining -= taken
                movements.append(self._movement(count, item, record.warehouse_id, -taken, reason, closed_by))
        return previous
