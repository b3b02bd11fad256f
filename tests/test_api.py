"""
HTTP surface tests using FastAPI's TestClient against an in-memory core (no Redis, no worker).
Run: pytest tests/test_api.py -v
"""

import asyncio
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

import caserouter.main as main
from caserouter.core import RoutingCore, seed_mock_agents
from caserouter.models import Priority, WorkItem
from caserouter.services.catalog_store import InMemoryCatalogStore
from tests.factories import NOW, FixedClock, make_item


@pytest.fixture
def core():
    store = InMemoryCatalogStore()
    seed_mock_agents(store)
    return RoutingCore(store, clock=FixedClock())


@pytest.fixture
def client(core):
    main.app.dependency_overrides[main.get_core] = lambda: core
    yield TestClient(main.app)
    main.app.dependency_overrides.clear()


class _Job:
    job_id = "job-123"


class _FakePool:
    def __init__(self):
        self.enqueued = []

    async def enqueue_job(self, name, *args, **kwargs):
        self.enqueued.append(name)
        return _Job()


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json()["status"] == "ok"


def test_create_routes_and_returns_201(client):
    r = client.post(
        "/items",
        json=[{"id": "T-001", "subject": "API timeout", "type": "Technical", "required_product_tag": "core"}],
    )
    assert r.status_code == 201
    data = r.json()
    assert data["items"][0]["owner_id"] == "tech-1"
    assert data["items"][0]["priority"] == "Medium"
    assert data["assignments"][0]["reason"] == "skill-based automatic assignment"


def test_create_validation_failure_is_422(client):
    r = client.post("/items", json=[{"id": "T-002", "priority": "Critical"}])
    assert r.status_code == 422
    assert r.json()["errors"][0]["field"] == "business_impact"
    assert client.get("/items/T-002").status_code == 404


def test_update_uses_stored_previous_state(client):
    client.post("/items", json=[{"id": "U-1", "subject": "hello"}])
    item = client.get("/items/U-1").json()
    item["status"] = "InProgress"
    r = client.post("/items/updates", json=[item])
    assert r.status_code == 200
    assert r.json()["items"][0]["first_response_time"] is not None


def test_partial_update_keeps_owner_and_stamps(client):
    client.post("/items", json=[{"id": "G-1", "subject": "hello"}])
    assert client.get("/items/G-1").json()["owner_id"] == "generalist-1"

    r = client.post("/items/updates", json=[{"id": "G-1", "status": "InProgress"}])
    assert r.status_code == 200
    stored = client.get("/items/G-1").json()
    assert stored["owner_id"] == "generalist-1"
    assert stored["assignment_date"] is not None
    assert stored["first_response_time"] is not None

    client.post("/items/updates", json=[{"id": "G-1", "status": "OnHold", "first_response_time": None}])
    after = client.get("/items/G-1").json()
    assert after["first_response_time"] == stored["first_response_time"]
    assert after["owner_id"] == "generalist-1"
    assert after["subject"] == "hello"


def test_update_unknown_item_is_404(client):
    r = client.post("/items/updates", json=[{"id": "nope"}])
    assert r.status_code == 404


def test_manual_escalation(client, core):
    core.store.commit([make_item("E-1", owner_id="generalist-1")], [], [], [])
    r = client.post("/items/E-1/escalate", json={"reason": "VIP customer"})
    assert r.status_code == 200
    assert r.json() == {"item_id": "E-1", "status": "escalated", "target_id": "lead-1", "level": 1}
    assert core.store.list_escalation_records()[-1].reason == "VIP customer"


def test_manual_escalation_unknown_item(client):
    r = client.post("/items/missing/escalate", json={"reason": "x"})
    assert r.status_code == 404


def test_run_now(client, core):
    stale = make_item("S-1", owner_id="generalist-1", priority="High", created_at=NOW - timedelta(hours=5))
    core.store.commit([stale], [], [], [])
    r = client.post("/escalations/run-now")
    assert r.status_code == 200
    body = r.json()
    assert body["examined"] == 1 and body["committed"] is True
    assert body["outcomes"][0]["target_id"] == "lead-1"


def test_enqueue_run_without_pool_is_503(client, monkeypatch):
    monkeypatch.setattr(main, "STORE_BACKEND", "redis")
    monkeypatch.setattr(main, "_arq_pool", None)
    assert client.post("/escalations/run").status_code == 503


def test_enqueue_run_returns_202(client, monkeypatch):
    pool = _FakePool()
    monkeypatch.setattr(main, "STORE_BACKEND", "redis")
    monkeypatch.setattr(main, "_arq_pool", pool)
    r = client.post("/escalations/run")
    assert r.status_code == 202
    assert r.json()["job_id"] == "job-123"
    assert pool.enqueued == ["run_escalation_batch"]


def test_enqueue_run_needs_redis_backend(client, monkeypatch):
    pool = _FakePool()
    monkeypatch.setattr(main, "STORE_BACKEND", "memory")
    monkeypatch.setattr(main, "_arq_pool", pool)
    assert client.post("/escalations/run").status_code == 503
    assert pool.enqueued == []


def test_memory_backend_lifespan_drains_outbox(monkeypatch):
    monkeypatch.setattr(main, "STORE_BACKEND", "memory")
    monkeypatch.setattr(main, "WEBHOOK_URL", "")
    monkeypatch.setattr(main, "NOTIFICATION_DISPATCH_INTERVAL", 0.01)

    async def scenario():
        async with main.lifespan(main.app):
            assert main._arq_pool is None
            core = main._core
            core.on_item_created([WorkItem(id="HP-1", priority=Priority.HIGH)])
            for _ in range(200):
                if core.outbox.size() == 0:
                    break
                await asyncio.sleep(0.01)
            assert core.outbox.size() == 0
        assert main._dispatch_task is None

    asyncio.run(scenario())


def test_agents_upsert_and_get(client):
    agent = {"id": "new-1", "name": "New", "skills": ["Billing"], "experience_level": "Senior"}
    r = client.put("/agents/new-1", json=agent)
    assert r.status_code == 200
    assert r.json()["skills"] == ["Billing"]
    assert client.get("/agents/new-1").json()["experience_level"] == "Senior"
    assert any(a["id"] == "new-1" for a in client.get("/agents").json())


def test_agent_id_mismatch(client):
    r = client.put("/agents/other", json={"id": "new-2"})
    assert r.status_code == 400


def test_audit_endpoints(client):
    client.post("/items", json=[{"id": "A-1", "subject": "invoice"}])
    assignments = client.get("/audit/assignments").json()
    assert assignments[-1]["item_id"] == "A-1"
    assert client.get("/audit/escalations").json() == []
    assert client.get("/audit/failures").json() == []
