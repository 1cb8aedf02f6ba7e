"""Tenant resolution for multi-tenant requests.

Every catalog, workspace and count query is scoped to the tenant named in
the ``X-Tenant-ID`` header (configurable via ``settings.tenant_header``).
"""

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from stocktake.core.config import settings

logger = logging.getLogger(__name__)

MAX_TENANT_ID_LENGTH = 64


def get_tenant_id(request: Request) -> str:
    """Extract the tenant identifier from the request headers.

    Raises:
        HTTPException: 400 if the header is missing, blank or too long.
    """
    tenant_id = request.headers.get(settings.tenant_header, "").strip()
    if not tenant_id:
        logger.warning("Request to %s without %s header", request.url.path, settings.tenant_header)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{settings.tenant_header} header is required",
        )
    if len(tenant_id) > MAX_TENANT_ID_LENGTH:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{settings.tenant_header} header is too long",
        )
    return tenant_id


TenantId = Annotated[str, Depends(get_tenant_id)]
