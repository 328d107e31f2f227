from typing import Optional

from fastapi import Header, HTTPException, status

from mod_users.core.tenant import TenantContext, is_valid_tenant_id

OKAPI_HEADER_TENANT = "x-okapi-tenant"


def require_tenant(
    x_okapi_tenant: Optional[str] = Header(default=None, alias=OKAPI_HEADER_TENANT)
) -> TenantContext:
    if not x_okapi_tenant:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Missing {OKAPI_HEADER_TENANT} header"
        )
    tenant_id = x_okapi_tenant.strip().lower()
    if not is_valid_tenant_id(tenant_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid tenant id: {x_okapi_tenant}"
        )
    return TenantContext(tenant_id=tenant_id)
