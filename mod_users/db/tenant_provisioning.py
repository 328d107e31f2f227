from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from mod_users.core.errors import PersistenceError
from mod_users.core.logger import get_logger
from mod_users.core.tenant import is_valid_tenant_id, schema_name
from mod_users.db.base_tenant import TenantBase
from mod_users.models import TABLE_NAME_GROUPS, TABLE_NAME_USERS, VIEW_NAME_USER_GROUPS_JOIN

logger = get_logger(__name__)


def users_groups_view_ddl(schema: str) -> str:
    return f"""
        CREATE OR REPLACE VIEW "{schema}".{VIEW_NAME_USER_GROUPS_JOIN} AS
        SELECT u.id, u.jsonb, g.jsonb AS group_jsonb
        FROM "{schema}".{TABLE_NAME_USERS} u
        LEFT JOIN "{schema}".{TABLE_NAME_GROUPS} g
          ON u.jsonb->>'patronGroup' = g.jsonb->>'id'
    """


def _create_tables(sync_conn, schema: str):
    TenantBase.metadata.create_all(
        bind=sync_conn.execution_options(schema_translate_map={None: schema})
    )


def _checked_schema(tenant_id: str) -> str:
    if not is_valid_tenant_id(tenant_id):
        raise ValueError(f"Invalid tenant id: {tenant_id!r}")
    return schema_name(tenant_id)


async def create_tenant_schema(engine: AsyncEngine, tenant_id: str) -> str:
    schema = _checked_schema(tenant_id)
    logger.info("[TENANT] Provisioning started: %s", schema)

    try:
        async with engine.begin() as conn:
            await conn.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{schema}"'))
            await conn.run_sync(_create_tables, schema)
            logger.info("[TENANT] Tables created: %s", schema)

            # view after the tables it selects from
            await conn.execute(text(users_groups_view_ddl(schema)))
            logger.info("[TENANT] View created: %s.%s", schema, VIEW_NAME_USER_GROUPS_JOIN)

    except SQLAlchemyError as e:
        raise PersistenceError(f"Tenant schema provisioning failed: {schema}") from e

    return schema


async def drop_tenant_schema(engine: AsyncEngine, tenant_id: str) -> None:
    schema = _checked_schema(tenant_id)
    try:
        async with engine.begin() as conn:
            await conn.execute(text(f'DROP SCHEMA IF EXISTS "{schema}" CASCADE'))
    except SQLAlchemyError as e:
        raise PersistenceError(f"Dropping tenant schema failed: {schema}") from e
    logger.info("[TENANT] Schema dropped: %s", schema)
