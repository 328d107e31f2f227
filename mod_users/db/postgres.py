import uuid
from typing import AsyncIterator, List

from sqlalchemy import text, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from mod_users.core.errors import PersistenceError
from mod_users.core.logger import get_logger
from mod_users.core.tenant import schema_name
from mod_users.models import relation_for

logger = get_logger(__name__)


class PostgresClient:
    """
    Tenant scoped handle on the shared engine. Tables are declared without a
    schema and mapped onto <tenant>_mod_users when statements run, so one
    client can serve any number of concurrent operations for its tenant.
    """

    def __init__(self, engine: AsyncEngine, tenant_id: str):
        self.tenant_id = tenant_id
        self.schema = schema_name(tenant_id)
        self.engine = engine.execution_options(
            schema_translate_map={None: self.schema}
        )

    async def stream(self, ctx) -> AsyncIterator[dict]:
        """Yield records for a QueryContext through a server side cursor."""
        try:
            async with self.engine.connect() as conn:
                result = await conn.stream(ctx.statement())
                async for row in result:
                    yield row.jsonb
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Streaming {ctx.table} for tenant {self.tenant_id} failed: {e}"
            ) from e

    async def get(self, ctx) -> List[dict]:
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(ctx.statement())
                return [row.jsonb for row in result]
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Query on {ctx.table} for tenant {self.tenant_id} failed: {e}"
            ) from e

    async def update(self, table: str, record_id, record: dict) -> None:
        relation = relation_for(table)
        try:
            key = uuid.UUID(str(record_id))
        except ValueError as e:
            raise PersistenceError(f"Invalid id {record_id!r}") from e

        stmt = (
            update(relation)
            .where(relation.c.id == key)
            .values(jsonb=record)
        )
        try:
            async with self.engine.begin() as conn:
                result = await conn.execute(stmt)
        except SQLAlchemyError as e:
            raise PersistenceError(f"Updating {table} {record_id} failed: {e}") from e

        if result.rowcount == 0:
            raise PersistenceError(f"No {table} record with id {record_id}")


class Catalog:
    """Queries against the shared pg_catalog, outside any tenant schema."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def list_namespaces(self, suffix: str) -> List[str]:
        # "_" is a LIKE wildcard and tenant suffixes are full of them
        pattern = "%" + suffix.replace("\\", "\\\\").replace("_", "\\_").replace("%", "\\%")
        query = text(
            "SELECT nspname FROM pg_catalog.pg_namespace WHERE nspname LIKE :pattern"
        )
        try:
            async with self.engine.connect() as conn:
                result = await conn.execute(query, {"pattern": pattern})
                return [row.nspname for row in result]
        except SQLAlchemyError as e:
            raise PersistenceError(f"Namespace query failed: {e}") from e
