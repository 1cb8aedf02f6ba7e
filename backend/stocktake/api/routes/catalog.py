"""Read-only catalog routes feeding the count screen."""

from typing import Optional

from fastapi import APIRouter, Query, Request
from sqlalchemy.orm import selectinload

from stocktake.core.exceptions import UnknownWarehouseError
from stocktake.core.rate_limit import limiter
from stocktake.core.responses import list_response
from stocktake.core.tenant import TenantId
from stocktake.db.session import DbSession
from stocktake.models.product import Product
from stocktake.models.warehouse import Warehouse
from stocktake.schemas.catalog import CatalogProductResponse, WarehouseResponse, WarehouseStockResponse
from stocktake.services.stock_aggregator import aggregate_stock, system_stock

router = APIRouter()


@router.get("/warehouses")
@limiter.limit("60/minute")
def list_warehouses(request: Request, db: DbSession, tenant_id: TenantId):
    """List the tenant's active warehouses."""
    warehouses = (
        db.query(Warehouse)
        .filter(Warehouse.tenant_id == tenant_id, Warehouse.active.is_(True))
        .order_by(Warehouse.name)
        .all()
    )
    return list_response([WarehouseResponse.model_validate(w).model_dump() for w in warehouses])


@router.get("/products")
@limiter.limit("60/minute")
def list_products(
    request: Request,
    db: DbSession,
    tenant_id: TenantId,
    warehouse_id: Optional[int] = Query(None),
    search: Optional[str] = Query(None, max_length=200),
):
    """List active products with their system stock for the given scope.

    ``stock_total`` is the informational sum over the returned products.
    """
    if warehouse_id is not None:
        exists = (
            db.query(Warehouse.id)
            .filter(Warehouse.id == warehouse_id, Warehouse.tenant_id == tenant_id)
            .first()
        )
        if not exists:
            raise UnknownWarehouseError(warehouse_id)

    query = (
        db.query(Product)
        .options(selectinload(Product.warehouse_stocks))
        .filter(Product.tenant_id == tenant_id, Product.active.is_(True))
    )
    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(Product.name.ilike(pattern) | Product.sku.ilike(pattern))
    products = query.order_by(Product.name, Product.id).all()

    items = [
        CatalogProductResponse(
            id=p.id,
            sku=p.sku,
            name=p.name,
            unit=p.unit,
            system_stock=system_stock(p, warehouse_id),
            warehouse_stocks=[WarehouseStockResponse.model_validate(ws) for ws in p.warehouse_stocks],
        ).model_dump(mode="json")
        for p in products
    ]
    response = list_response(items)
    response["warehouse_id"] = warehouse_id
    response["stock_total"] = float(aggregate_stock(products, warehouse_id))
    return response
