"""System stock aggregation.

Works on any product-like object exposing ``stock`` (the legacy scalar
field) and ``warehouse_stocks`` (records with ``warehouse_id`` and
``quantity``), so ORM ``Product`` rows and ``CatalogProduct`` snapshots are
aggregated the same way.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional

ZERO = Decimal("0")


def to_quantity(value: Any) -> Decimal:
    """Normalize a stored quantity to a Decimal.

    Missing, blank, non-numeric and non-finite values become 0. Never raises.
    """
    if value is None or isinstance(value, bool):
        return ZERO
    try:
        if isinstance(value, Decimal):
            quantity = value
        elif isinstance(value, (int, float)):
            quantity = Decimal(str(value))
        else:
            text = str(value).strip()
            if not text:
                return ZERO
            quantity = Decimal(text)
    except (InvalidOperation, ValueError, TypeError):
        return ZERO
    if not quantity.is_finite():
        return ZERO
    return quantity


def system_stock(product: Any, warehouse_id: Optional[int] = None) -> Decimal:
    """Return the reconciliation baseline for ``product``.

    Args:
        product: Product-like object (see module docstring).
        warehouse_id: A specific warehouse, or None for the global scope.

    A specific warehouse without a record for the product yields 0. The
    global scope sums every warehouse record; only a product with no
    records at all falls back to the legacy ``stock`` field.
    """
    records = list(getattr(product, "warehouse_stocks", None) or [])

    if warehouse_id is not None:
        for record in records:
            if getattr(record, "warehouse_id", None) == warehouse_id:
                return to_quantity(getattr(record, "quantity", None))
        return ZERO

    if not records:
        return to_quantity(getattr(product, "stock", None))

    return sum((to_quantity(getattr(r, "quantity", None)) for r in records), ZERO)


def aggregate_stock(products: Iterable[Any], warehouse_id: Optional[int] = None) -> Decimal:
    """Sum ``system_stock`` over ``products`` (informational total only)."""
    return sum((system_stock(p, warehouse_id) for p in products), ZERO)
