"""Warehouse and per-warehouse stock models."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, CheckConstraint, ForeignKey, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stocktake.db.base import Base, TimestampMixin


class Warehouse(Base, TimestampMixin):
    """Physical location that holds stock."""

    __tablename__ = "warehouses"
    __table_args__ = (
        UniqueConstraint("tenant_id", "name", name="uq_warehouse_tenant_name"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    stock_records: Mapped[list["WarehouseStock"]] = relationship(
        "WarehouseStock", back_populates="warehouse"
    )


class WarehouseStock(Base, TimestampMixin):
    """Stock of one product in one warehouse."""

    __tablename__ = "warehouse_stock"
    __table_args__ = (
        UniqueConstraint("product_id", "warehouse_id", name="uq_warehouse_stock_product_warehouse"),
        CheckConstraint("quantity >= 0", name="ck_warehouse_stock_quantity_non_negative"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    product_id: Mapped[int] = mapped_column(
        ForeignKey("products.id", ondelete="CASCADE"), nullable=False, index=True
    )
    warehouse_id: Mapped[int] = mapped_column(
        ForeignKey("warehouses.id", ondelete="CASCADE"), nullable=False, index=True
    )
    quantity: Mapped[Decimal] = mapped_column(Numeric(12, 3), default=0, nullable=False)

    # Relationships
    product: Mapped["Product"] = relationship("Product", back_populates="warehouse_stocks")
    warehouse: Mapped["Warehouse"] = relationship("Warehouse", back_populates="stock_records")


# Forward references
from stocktake.models.product import Product
