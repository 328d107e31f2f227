import re

import pytest
from sqlalchemy.dialects import postgresql

from mod_users.core.errors import PersistenceError


def compile_sql(ctx):
    """Render a QueryContext for Postgres; returns (sql, bound parameter values)."""
    compiled = ctx.statement().compile(dialect=postgresql.dialect())
    return str(compiled), list(compiled.params.values())


class RecordingSink:
    def __init__(self) -> None:
        self.events = []

    @property
    def writes(self):
        return [payload for kind, payload in self.events if kind == "write"]

    def count(self, kind: str) -> int:
        return sum(1 for event, _ in self.events if event == kind)

    async def write(self, chunk: bytes) -> None:
        self.events.append(("write", chunk))

    async def end(self) -> None:
        self.events.append(("end", None))

    async def close(self) -> None:
        self.events.append(("close", None))


async def records_from(items, fail_at=None):
    for position, item in enumerate(items):
        if position == fail_at:
            raise PersistenceError("connection reset")
        yield item


class FakeTenantClient:
    """In-memory stand-in for PostgresClient, understands the expiration query."""

    _expired_before = re.compile(r"expirationDate < (\S+)")

    def __init__(self, tenant_id, users=(), fail_ids=(), fail_get=False):
        self.tenant_id = tenant_id
        self.users = {user["id"]: dict(user) for user in users}
        self.fail_ids = set(fail_ids)
        self.fail_get = fail_get
        self.queries = []
        self.updates = []

    async def get(self, ctx):
        self.queries.append(ctx)
        if self.fail_get:
            raise PersistenceError("relation does not exist")
        cutoff = self._expired_before.search(ctx.cql).group(1)
        return [
            dict(user)
            for user in self.users.values()
            if user.get("active") is True
            and user.get("expirationDate")
            and user["expirationDate"] < cutoff
        ]

    async def update(self, table, record_id, record):
        if record_id in self.fail_ids:
            raise PersistenceError(f"could not update {record_id}")
        self.updates.append((table, record_id, record))
        self.users[record_id] = dict(record)


class FakeCatalog:
    def __init__(self, namespaces=(), error=None):
        self.namespaces = list(namespaces)
        self.error = error
        self.calls = []

    async def list_namespaces(self, suffix):
        self.calls.append(suffix)
        if self.error is not None:
            raise self.error
        return list(self.namespaces)


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()
