from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncEngine

from mod_users.core.tenant import TenantContext
from mod_users.db.postgres import PostgresClient
from mod_users.dependencies.tenant import require_tenant
from mod_users.services.expiration import ExpirationJob


def get_engine(request: Request) -> AsyncEngine:
    return request.app.state.engine


def get_tenant_client(
    tenant: TenantContext = Depends(require_tenant),
    engine: AsyncEngine = Depends(get_engine),
) -> PostgresClient:
    return PostgresClient(engine, tenant.tenant_id)


def get_expiration_job(request: Request) -> ExpirationJob:
    return request.app.state.expiration_job
