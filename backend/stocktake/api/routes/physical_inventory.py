"""Physical inventory count routes: save, report, acknowledge, close, history."""

import logging
from typing import Optional

from fastapi import APIRouter, Query, Request, status

from stocktake.api.deps import CountService
from stocktake.core.rate_limit import limiter
from stocktake.core.responses import paginated_response
from stocktake.core.tenant import TenantId
from stocktake.models.inventory import CountStatus
from stocktake.schemas.inventory import (
    AcknowledgmentIn,
    ForceCloseIn,
    InventoryCountClose,
    InventoryCountCloseResponse,
    InventoryCountCreate,
    InventoryCountResponse,
    InventoryCountSummary,
)

logger = logging.getLogger("inventory")

router = APIRouter()


@router.post("/physical", response_model=InventoryCountResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def create_count(request: Request, data: InventoryCountCreate, tenant_id: TenantId, service: CountService):
    """Save counted items as a pending inventory count.

    The count stays pending until its report is acknowledged
    (``/acknowledge``) or an operator closes it manually.
    """
    return service.save(
        tenant_id,
        data.items,
        warehouse_id=data.warehouse_id,
        date_from=data.date_range.date_from,
        date_to=data.date_range.date_to,
        notes=data.notes,
        created_by=data.created_by,
    )


@router.get("/physical/{count_id}", response_model=InventoryCountResponse)
@limiter.limit("60/minute")
def get_count(request: Request, count_id: int, tenant_id: TenantId, service: CountService):
    """Get an inventory count with its frozen items."""
    return service.get_count(tenant_id, count_id)


@router.get("/physical/{count_id}/report")
@limiter.limit("60/minute")
def get_count_report(request: Request, count_id: int, tenant_id: TenantId, service: CountService):
    """Report payload for the external renderer (items joined with SKU and name)."""
    return service.build_report(tenant_id, count_id)


@router.post("/physical/{count_id}/acknowledge", response_model=InventoryCountCloseResponse)
@limiter.limit("30/minute")
def acknowledge_count(
    request: Request,
    count_id: int,
    data: AcknowledgmentIn,
    tenant_id: TenantId,
    service: CountService,
):
    """Deliver the renderer's report-printed event; closes the count once."""
    return service.acknowledge(tenant_id, count_id, data.event, closed_by=data.closed_by)


@router.post("/physical/{count_id}/close", response_model=InventoryCountCloseResponse)
@limiter.limit("30/minute")
def close_count(
    request: Request,
    count_id: int,
    tenant_id: TenantId,
    service: CountService,
    data: Optional[InventoryCountClose] = None,
):
    """
    Close a pending count.

    This will:
    1. Check the re-sent items (if any) against the saved count
    2. Mark the count as completed
    3. Overwrite stock for the count's scope with the physical counts
    4. Record stock movements for the adjustments
    """
    data = data or InventoryCountClose()
    return service.close_count(tenant_id, count_id, items=data.items, closed_by=data.closed_by)


@router.post("/physical/{count_id}/force-close", response_model=InventoryCountCloseResponse)
@limiter.limit("10/minute")
def force_close_count(
    request: Request,
    count_id: int,
    data: ForceCloseIn,
    tenant_id: TenantId,
    service: CountService,
):
    """Close a count whose report acknowledgment never arrived."""
    return service.force_close(tenant_id, count_id, data.reason, closed_by=data.closed_by)


@router.get("/history")
@limiter.limit("60/minute")
def list_history(
    request: Request,
    tenant_id: TenantId,
    service: CountService,
    status_filter: Optional[CountStatus] = Query(None, alias="status"),
    warehouse_id: Optional[int] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
):
    """List saved inventory counts, newest first."""
    counts, total = service.list_history(
        tenant_id, status=status_filter, warehouse_id=warehouse_id, skip=skip, limit=limit
    )
    items = [InventoryCountSummary.model_validate(c).model_dump(mode="json") for c in counts]
    return paginated_response(items, total, skip=skip, limit=limit)
