import json
import threading

import pytest
from fastapi.testclient import TestClient

from mod_users.db import tenant_provisioning
from mod_users.db.router import get_engine, get_expiration_job, get_tenant_client
from mod_users.main import create_app
from mod_users.services.expiration import ExpirationJob

from conftest import records_from

USERS = [
    {"id": "u1", "username": "alice", "patronGroup": "g1"},
    {"id": "u2", "username": "bob", "patronGroup": "g2"},
]


class StreamingClient:
    def __init__(self, records, fail_at=None):
        self.tenant_id = "diku"
        self.records = records
        self.fail_at = fail_at
        self.contexts = []

    def stream(self, ctx):
        self.contexts.append(ctx)
        return records_from(self.records, fail_at=self.fail_at)


class FakeEngine:
    def __init__(self):
        self.disposed = False

    async def dispose(self):
        self.disposed = True


@pytest.fixture()
def app():
    return create_app(engine=FakeEngine(), run_scheduler=False)


def _client_with(app, fake):
    app.dependency_overrides[get_tenant_client] = lambda: fake
    return TestClient(app)


TENANT = {"x-okapi-tenant": "diku"}


def test_user_stream_writes_one_line_per_record(app):
    fake = StreamingClient(USERS)
    client = _client_with(app, fake)

    response = client.get("/userStream", params={"query": "active==true"}, headers=TENANT)

    assert response.status_code == 200
    assert [json.loads(line) for line in response.text.splitlines()] == USERS
    (ctx,) = fake.contexts
    assert ctx.table == "users"
    assert ctx.limit == 10 and ctx.offset == 0


def test_user_stream_uses_view_for_group_queries(app):
    fake = StreamingClient(USERS)
    client = _client_with(app, fake)

    response = client.get(
        "/userStream",
        params={"query": "patronGroup.group==staff", "limit": 5, "offset": 1},
        headers=TENANT,
    )

    assert response.status_code == 200
    (ctx,) = fake.contexts
    assert ctx.table == "users_groups_view"
    assert ctx.cql == "users_groups_view.group_jsonb.group==staff"
    assert (ctx.limit, ctx.offset) == (5, 1)


def test_user_stream_order_by(app):
    fake = StreamingClient(USERS)
    client = _client_with(app, fake)

    response = client.get(
        "/userStream",
        params={"orderBy": "username", "order": "asc"},
        headers=TENANT,
    )

    assert response.status_code == 200
    (ctx,) = fake.contexts
    assert ctx.cql == "cql.allRecords=1 sortBy username/sort.ascending"
    assert len(ctx.order_by) == 1


def test_malformed_query_is_rejected_before_streaming(app):
    fake = StreamingClient(USERS)
    client = _client_with(app, fake)

    response = client.get("/userStream", params={"query": "active==("}, headers=TENANT)

    assert response.status_code == 400
    assert "detail" in response.json()
    assert fake.contexts == []


def test_negative_limit_is_rejected(app):
    client = _client_with(app, StreamingClient(USERS))

    response = client.get("/userStream", params={"limit": -1}, headers=TENANT)

    assert response.status_code == 422


def test_stream_failure_ends_the_response(app):
    fake = StreamingClient(USERS, fail_at=1)
    client = _client_with(app, fake)

    response = client.get("/userStream", headers=TENANT)

    assert response.status_code == 200
    assert [json.loads(line)["id"] for line in response.text.splitlines()] == ["u1"]


def test_missing_tenant_header_is_rejected(app):
    client = TestClient(app)

    response = client.get("/userStream")

    assert response.status_code == 400


def test_invalid_tenant_is_rejected(app):
    client = TestClient(app)

    response = client.get("/userStream", headers={"x-okapi-tenant": "diku; drop"})

    assert response.status_code == 400


def test_expire_timer_starts_a_sweep(app):
    started = threading.Event()

    class Job:
        async def run(self):
            started.set()
            return []

    app.dependency_overrides[get_expiration_job] = lambda: Job()

    with TestClient(app) as client:
        response = client.post("/users/expire/timer")
        assert response.status_code == 204
        assert started.wait(timeout=5)


def test_lifespan_wires_expiration_job_and_disposes_engine():
    engine = FakeEngine()
    app = create_app(engine=engine, run_scheduler=False)

    with TestClient(app):
        assert isinstance(app.state.expiration_job, ExpirationJob)
        assert app.state.engine is engine

    assert engine.disposed


def test_enable_and_disable_tenant(app, monkeypatch):
    calls = []

    async def fake_create(engine, tenant_id):
        calls.append(("create", tenant_id))
        return f"{tenant_id}_mod_users"

    async def fake_drop(engine, tenant_id):
        calls.append(("drop", tenant_id))

    monkeypatch.setattr(tenant_provisioning, "create_tenant_schema", fake_create)
    monkeypatch.setattr(tenant_provisioning, "drop_tenant_schema", fake_drop)
    app.dependency_overrides[get_engine] = lambda: object()
    client = TestClient(app)

    created = client.post("/_/tenant", headers=TENANT)
    dropped = client.delete("/_/tenant", headers=TENANT)

    assert created.status_code == 201
    assert created.json() == {"tenant": "diku", "schema": "diku_mod_users"}
    assert dropped.status_code == 204
    assert calls == [("create", "diku"), ("drop", "diku")]
