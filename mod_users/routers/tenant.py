from fastapi import APIRouter, Depends, HTTPException, Response, status
from sqlalchemy.ext.asyncio import AsyncEngine

from mod_users.core.tenant import TenantContext
from mod_users.db import tenant_provisioning
from mod_users.db.router import get_engine
from mod_users.dependencies.tenant import require_tenant

router = APIRouter(prefix="/_/tenant", tags=["Tenant"])


@router.post("", status_code=status.HTTP_201_CREATED)
async def enable_tenant(
    tenant: TenantContext = Depends(require_tenant),
    engine: AsyncEngine = Depends(get_engine),
):
    try:
        schema = await tenant_provisioning.create_tenant_schema(engine, tenant.tenant_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {"tenant": tenant.tenant_id, "schema": schema}


@router.delete("", status_code=status.HTTP_204_NO_CONTENT)
async def disable_tenant(
    tenant: TenantContext = Depends(require_tenant),
    engine: AsyncEngine = Depends(get_engine),
):
    try:
        await tenant_provisioning.drop_tenant_schema(engine, tenant.tenant_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return Response(status_code=status.HTTP_204_NO_CONTENT)
