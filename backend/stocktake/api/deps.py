"""Shared FastAPI dependencies for the inventory routes.

The acknowledgment channel and workspace registry are process-wide; the
catalog provider and lifecycle service are built per request around the
request's database session.
"""

from datetime import timedelta
from functools import lru_cache
from typing import Annotated

from fastapi import Depends

from stocktake.core.config import settings
from stocktake.db.session import DbSession
from stocktake.services.acknowledgment import AcknowledgmentChannel
from stocktake.services.catalog_provider import CatalogProvider, DbCatalogProvider
from stocktake.services.count_workspace import WorkspaceRegistry
from stocktake.services.inventory_count_service import InventoryCountService


@lru_cache
def get_ack_channel() -> AcknowledgmentChannel:
    return AcknowledgmentChannel(
        token=settings.ack_event_token,
        timeout=timedelta(seconds=settings.ack_timeout_seconds),
    )


@lru_cache
def get_workspace_registry() -> WorkspaceRegistry:
    return WorkspaceRegistry(idle_timeout=timedelta(minutes=settings.workspace_idle_timeout_minutes))


def get_catalog_provider(db: DbSession) -> CatalogProvider:
    return DbCatalogProvider(db)


def get_count_service(
    db: DbSession,
    channel: Annotated[AcknowledgmentChannel, Depends(get_ack_channel)],
) -> InventoryCountService:
    return InventoryCountService(db, channel)


Catalog = Annotated[CatalogProvider, Depends(get_catalog_provider)]
CountService = Annotated[InventoryCountService, Depends(get_count_service)]
Workspaces = Annotated[WorkspaceRegistry, Depends(get_workspace_registry)]
