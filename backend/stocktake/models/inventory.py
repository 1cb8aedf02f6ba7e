"""Physical inventory count and item models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import Date, DateTime, Enum as SQLEnum, ForeignKey, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stocktake.db.base import Base


class CountStatus(str, Enum):
    """Status of a saved inventory count."""

    PENDING = "pending"
    COMPLETED = "completed"


class VarianceType(str, Enum):
    """Classification of a counted item's variance."""

    EXACT = "exacto"
    SHORTAGE = "faltante"
    SURPLUS = "sobrante"


class CloseMethod(str, Enum):
    """How a count reached the completed state."""

    ACKNOWLEDGED = "acknowledged"  # Report renderer confirmed the printout
    MANUAL = "manual"  # Operator force-close


class InventoryCount(Base):
    """A saved physical inventory count.

    ``warehouse_id`` is NULL for a global count across all warehouses.
    Items are frozen at save time; only closing the count writes stock.
    """

    __tablename__ = "inventory_counts"

    id: Mapped[int] = mapped_column(primary_key=True)
    reference: Mapped[Optional[str]] = mapped_column(String(32), unique=True, nullable=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    warehouse_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("warehouses.id", ondelete="SET NULL"), nullable=True, index=True
    )
    date_from: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    date_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)
    status: Mapped[CountStatus] = mapped_column(
        SQLEnum(CountStatus), default=CountStatus.PENDING, nullable=False, index=True
    )
    total_products: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_variances: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    ack_deadline: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    close_method: Mapped[Optional[CloseMethod]] = mapped_column(SQLEnum(CloseMethod), nullable=True)

    # Relationships
    warehouse: Mapped[Optional["Warehouse"]] = relationship("Warehouse")
    items: Mapped[list["InventoryCountItem"]] = relationship(
        "InventoryCountItem",
        back_populates="count",
        cascade="all, delete-orphan",
        order_by="InventoryCountItem.position",
    )

    @property
    def is_global(self) -> bool:
        return self.warehouse_id is None


class InventoryCountItem(Base):
    """Frozen snapshot of one counted product."""

    __tablename__ = "inventory_count_items"

    id: Mapped[int] = mapped_column(primary_key=True)
    count_id: Mapped[int] = mapped_column(
        ForeignKey("inventory_counts.id", ondelete="CASCADE"), nullable=False, index=True
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    sku: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    product_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    system_stock: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    physical_count: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    shrinkage: Mapped[Decimal] = mapped_column(Numeric(12, 3), default=0, nullable=False)
    shrinkage_notes: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    variance: Mapped[Decimal] = mapped_column(Numeric(12, 3), nullable=False)
    variance_type: Mapped[VarianceType] = mapped_column(SQLEnum(VarianceType), nullable=False)

    # Relationships
    count: Mapped["InventoryCount"] = relationship("InventoryCount", back_populates="items")
    product: Mapped["Product"] = relationship("Product")


# Forward references
from stocktake.models.product import Product
from stocktake.models.warehouse import Warehouse
