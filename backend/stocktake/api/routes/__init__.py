"""API routes."""

from fastapi import APIRouter

from stocktake.api.routes import catalog, physical_inventory, workspaces

api_router = APIRouter()

api_router.include_router(catalog.router, prefix="/catalog", tags=["catalog"])
api_router.include_router(physical_inventory.router, prefix="/inventory", tags=["inventory"])
api_router.include_router(workspaces.router, prefix="/inventory/workspaces", tags=["inventory", "workspaces"])
