"""Count workspace routes.

A workspace is the in-memory draft of a count. It is never persisted;
``POST /{id}/save`` turns its selected drafts into a pending count.
"""

import logging

from fastapi import APIRouter, Request, status

from stocktake.api.deps import Catalog, CountService, Workspaces
from stocktake.core.exceptions import InventoryValidationError
from stocktake.core.rate_limit import limiter
from stocktake.core.tenant import TenantId
from stocktake.schemas.inventory import InventoryCountResponse
from stocktake.schemas.workspace import (
    WorkspaceCreate,
    WorkspaceEntry,
    WorkspaceFilterUpdate,
    WorkspaceItemUpdate,
    WorkspaceProduct,
    WorkspaceResponse,
    WorkspaceSave,
    WorkspaceScopeUpdate,
    WorkspaceSelectAll,
    WorkspaceSelection,
)
from stocktake.services.count_workspace import CountWorkspace
from stocktake.services.stock_aggregator import system_stock

logger = logging.getLogger("inventory")

router = APIRouter()


def _workspace_response(workspace_id: str, workspace: CountWorkspace) -> WorkspaceResponse:
    entries = workspace.entries
    selected = set(workspace.selected_ids)
    products = [
        WorkspaceProduct(
            id=p.id,
            sku=p.sku,
            name=p.name,
            system_stock=system_stock(p, workspace.warehouse_id),
            selected=p.id in selected,
            entry=WorkspaceEntry.model_validate(entries[p.id]) if p.id in entries else None,
        )
        for p in workspace.visible_products()
    ]
    return WorkspaceResponse(
        id=workspace_id,
        warehouse_id=workspace.warehouse_id,
        date_from=workspace.date_from,
        date_to=workspace.date_to,
        search=workspace.search,
        variances_only=workspace.variances_only,
        selected_ids=workspace.selected_ids,
        products=products,
        visible_stock_total=workspace.aggregate_visible_stock(),
    )


@router.post("", response_model=WorkspaceResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def open_workspace(
    request: Request,
    data: WorkspaceCreate,
    tenant_id: TenantId,
    catalog: Catalog,
    workspaces: Workspaces,
):
    """Load the catalog and start a new count draft."""
    workspace = CountWorkspace.open(
        catalog, tenant_id, warehouse_id=data.warehouse_id, date_from=data.date_from, date_to=data.date_to
    )
    workspace_id = workspaces.add(workspace)
    return _workspace_response(workspace_id, workspace)


@router.get("/{workspace_id}", response_model=WorkspaceResponse)
@limiter.limit("120/minute")
def get_workspace(request: Request, workspace_id: str, tenant_id: TenantId, workspaces: Workspaces):
    return _workspace_response(workspace_id, workspaces.get(tenant_id, workspace_id))


@router.delete("/{workspace_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("30/minute")
def abandon_workspace(request: Request, workspace_id: str, tenant_id: TenantId, workspaces: Workspaces):
    """Discard the draft; nothing is persisted."""
    workspaces.discard(tenant_id, workspace_id)


@router.post("/{workspace_id}/reload", response_model=WorkspaceResponse)
@limiter.limit("30/minute")
def reload_workspace(
    request: Request,
    workspace_id: str,
    tenant_id: TenantId,
    catalog: Catalog,
    workspaces: Workspaces,
):
    """Reload the catalog and recompute every draft."""
    workspace = workspaces.get(tenant_id, workspace_id)
    workspace.reload(catalog)
    return _workspace_response(workspace_id, workspace)


@router.put("/{workspace_id}/scope", response_model=WorkspaceResponse)
@limiter.limit("120/minute")
def set_scope(
    request: Request,
    workspace_id: str,
    data: WorkspaceScopeUpdate,
    tenant_id: TenantId,
    workspaces: Workspaces,
):
    workspace = workspaces.get(tenant_id, workspace_id)
    workspace.set_scope(data.warehouse_id)
    return _workspace_response(workspace_id, workspace)


@router.put("/{workspace_id}/filter", response_model=WorkspaceResponse)
@limiter.limit("120/minute")
def set_filter(
    request: Request,
    workspace_id: str,
    data: WorkspaceFilterUpdate,
    tenant_id: TenantId,
    workspaces: Workspaces,
):
    workspace = workspaces.get(tenant_id, workspace_id)
    workspace.set_filter(search=data.search, variances_only=data.variances_only)
    return _workspace_response(workspace_id, workspace)


@router.put("/{workspace_id}/items/{product_id}", response_model=WorkspaceEntry)
@limiter.limit("300/minute")
def update_item(
    request: Request,
    workspace_id: str,
    product_id: int,
    data: WorkspaceItemUpdate,
    tenant_id: TenantId,
    workspaces: Workspaces,
):
    """Edit one product's draft. Fields are applied in order: count, shrinkage, notes."""
    workspace = workspaces.get(tenant_id, workspace_id)
    fields = data.model_fields_set
    item = None
    if "physical_count" in fields:
        item = workspace.set_physical_count(product_id, data.physical_count)
    if "shrinkage" in fields:
        item = workspace.set_shrinkage(product_id, data.shrinkage)
    if "shrinkage_notes" in fields:
        item = workspace.set_shrinkage_notes(product_id, data.shrinkage_notes)
    if item is None:
        raise InventoryValidationError("No item fields to update")
    return WorkspaceEntry.model_validate(item)


@router.post("/{workspace_id}/select", response_model=WorkspaceResponse)
@limiter.limit("120/minute")
def select_products(
    request: Request,
    workspace_id: str,
    data: WorkspaceSelection,
    tenant_id: TenantId,
    workspaces: Workspaces,
):
    workspace = workspaces.get(tenant_id, workspace_id)
    for product_id in data.product_ids:
        workspace.select(product_id)
    return _workspace_response(workspace_id, workspace)


@router.post("/{workspace_id}/deselect", response_model=WorkspaceResponse)
@limiter.limit("120/minute")
def deselect_products(
    request: Request,
    workspace_id: str,
    data: WorkspaceSelection,
    tenant_id: TenantId,
    workspaces: Workspaces,
):
    workspace = workspaces.get(tenant_id, workspace_id)
    for product_id in data.product_ids:
        workspace.deselect(product_id)
    return _workspace_response(workspace_id, workspace)


@router.post("/{workspace_id}/select-all", response_model=WorkspaceResponse)
@limiter.limit("120/minute")
def select_all(
    request: Request,
    workspace_id: str,
    data: WorkspaceSelectAll,
    tenant_id: TenantId,
    workspaces: Workspaces,
):
    """Select every visible product (hidden ones never), or clear the selection."""
    workspace = workspaces.get(tenant_id, workspace_id)
    workspace.select_all(data.selected)
    return _workspace_response(workspace_id, workspace)


@router.post("/{workspace_id}/save", response_model=InventoryCountResponse, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def save_workspace(
    request: Request,
    workspace_id: str,
    data: WorkspaceSave,
    tenant_id: TenantId,
    workspaces: Workspaces,
    service: CountService,
):
    """Save the selected drafts as a pending count and clear the draft."""
    workspace = workspaces.get(tenant_id, workspace_id)
    count = service.save_workspace(workspace, notes=data.notes, created_by=data.created_by)
    logger.info("Workspace %s saved as inventory count %s", workspace_id, count.id)
    return count
