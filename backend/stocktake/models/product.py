"""Product model."""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from stocktake.db.base import Base, TimestampMixin


class Product(Base, TimestampMixin):
    """Product in a tenant's catalog.

    ``stock`` is the legacy scalar stock field. It is authoritative only
    while the product has no ``warehouse_stocks`` rows at all.
    """

    __tablename__ = "products"
    __table_args__ = (
        UniqueConstraint("tenant_id", "sku", name="uq_product_tenant_sku"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    sku: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    unit: Mapped[str] = mapped_column(String(20), default="pcs", nullable=False)
    stock: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 3), default=0, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Relationships
    warehouse_stocks: Mapped[list["WarehouseStock"]] = relationship(
        "WarehouseStock",
        back_populates="product",
        order_by="WarehouseStock.warehouse_id",
        cascade="all, delete-orphan",
    )
    stock_movements: Mapped[list["StockMovement"]] = relationship(
        "StockMovement", back_populates="product"
    )


# Forward references
from stocktake.models.warehouse import WarehouseStock
from stocktake.models.stock import StockMovement
