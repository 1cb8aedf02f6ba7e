"""Exception taxonomy for physical inventory reconciliation.

Three families are kept apart because callers react to them differently:

- ``InventoryValidationError``: rejected locally before any persistence
  call; the user fixes the input and tries again.
- ``CountProtocolError``: the request can never succeed for the target count
  (unknown count, already closed, unexpected acknowledgment); it must not be
  retried automatically.
- ``CatalogUnavailableError``: the catalog could not be loaded completely;
  counting is refused until an explicit reload succeeds.

Transient persistence failures surface as ``sqlalchemy.exc.SQLAlchemyError``
and are not wrapped.
"""

from typing import Iterable, Optional


class InventoryValidationError(ValueError):
    """Invalid input to a workspace or lifecycle operation."""

    code = "validation_error"


class EmptySelectionError(InventoryValidationError):
    """Raised when saving a count with no selected products."""

    code = "empty_selection"

    def __init__(self, message: str = "No products selected for the count"):
        super().__init__(message)


class InvalidQuantityError(InventoryValidationError):
    """Raised when a count field receives a malformed, negative or too precise number."""

    code = "invalid_quantity"

    def __init__(self, field: str, value: object):
        self.field = field
        self.value = value
        super().__init__(f"Invalid value for {field}: {value!r}")


class ShrinkageNotesDisabledError(InventoryValidationError):
    """Raised when writing shrinkage notes for an item without shrinkage."""

    code = "shrinkage_notes_disabled"

    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(
            f"Shrinkage notes for product {product_id} require a shrinkage greater than 0"
        )


class UncountedSelectionError(InventoryValidationError):
    """Raised when selected products have no physical count entered."""

    code = "uncounted_selection"

    def __init__(self, product_ids: Iterable[int]):
        self.product_ids = sorted(product_ids)
        super().__init__(
            f"Selected products have no count entered: {self.product_ids}"
        )


class CountItemsMismatchError(InventoryValidationError):
    """Raised when items re-sent on close differ from the saved count."""

    code = "items_mismatch"


class UnknownProductError(InventoryValidationError):
    code = "unknown_product"

    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"Product {product_id} not found")


class UnknownWarehouseError(InventoryValidationError):
    code = "unknown_warehouse"

    def __init__(self, warehouse_id: int):
        self.warehouse_id = warehouse_id
        super().__init__(f"Warehouse {warehouse_id} not found")


class CountProtocolError(Exception):
    """A lifecycle request that cannot succeed for the target count."""

    code = "protocol_error"


class CountNotFoundError(CountProtocolError):
    code = "count_not_found"

    def __init__(self, count_id: int):
        self.count_id = count_id
        super().__init__(f"Inventory count {count_id} not found")


class CountAlreadyClosedError(CountProtocolError):
    code = "count_already_closed"

    def __init__(self, count_id: int):
        self.count_id = count_id
        super().__init__(f"Inventory count {count_id} is already completed")


class UnexpectedAcknowledgmentError(CountProtocolError):
    """Raised for duplicate, expired, or unsolicited acknowledgment events."""

    code = "unexpected_acknowledgment"

    def __init__(self, count_id: int, reason: str):
        self.count_id = count_id
        self.reason = reason
        super().__init__(f"Acknowledgment for inventory count {count_id} rejected: {reason}")


class WorkspaceNotFoundError(LookupError):
    code = "workspace_not_found"

    def __init__(self, workspace_id: str):
        self.workspace_id = workspace_id
        super().__init__(f"Workspace {workspace_id} not found")


class CatalogUnavailableError(Exception):
    """The catalog or warehouse list could not be loaded completely."""

    code = "catalog_unavailable"

    def __init__(self, message: str = "Catalog could not be loaded", cause: Optional[BaseException] = None):
        self.cause = cause
        super().__init__(message)
