from __future__ import annotations

from uuid import UUID

from fastapi import Header, HTTPException, status


async def optional_tenant_id(x_tenant_id: str | None = Header(None, alias="X-Tenant-ID")) -> UUID | None:
    """Parse the caller's tenant from ``X-Tenant-ID`` when present."""

    if x_tenant_id is None or not x_tenant_id.strip():
        return None
    try:
        return UUID(x_tenant_id.strip())
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid tenant identifier",
        ) from exc
