import uuid

from fastapi import Header, HTTPException

from app.db import get_db
from app.services.omnibridge.context import set_tenant_id

TENANT_HEADER = "X-Tenant-ID"


def get_tenant_id(x_tenant_id: str | None = Header(default=None, alias=TENANT_HEADER)) -> uuid.UUID:
    """Tenant of the calling client; every management route is scoped to it."""
    if not x_tenant_id:
        raise HTTPException(status_code=400, detail=f"Missing {TENANT_HEADER} header")
    try:
        tenant_id = uuid.UUID(x_tenant_id.strip())
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid {TENANT_HEADER} header") from exc
    set_tenant_id(tenant_id)
    return tenant_id


__all__ = ["get_db", "get_tenant_id"]
