"""
Redis-backed catalog store and notification queue.

Requires: Redis running (uses db 15, flushed before and after each test).
Run: pytest tests/test_redis_store.py -v
"""

import os
from datetime import timedelta

import pytest
import redis

from caserouter.core import RoutingCore
from caserouter.errors import DependencyFailure
from caserouter.models import FailureRecord, Priority, WorkItem
from caserouter.notifications import RedisNotificationQueue, enqueue_notification
from caserouter.services.redis_store import RedisCatalogStore
from caserouter.sla import response_thresholds
from tests.factories import NOW, FixedClock, make_agent, make_item, make_lead

TEST_REDIS_URL = os.environ.get("TEST_REDIS_URL", "redis://localhost:6379/15")


@pytest.fixture
def client():
    r = redis.from_url(TEST_REDIS_URL, decode_responses=True)
    try:
        r.ping()
    except redis.ConnectionError:
        pytest.skip("Redis not running")
    r.flushdb()
    yield r
    r.flushdb()


@pytest.fixture
def store(client):
    return RedisCatalogStore(TEST_REDIS_URL, client=client)


class TestRedisCatalogStore:
    def test_agent_order_is_registration_order(self, store):
        for agent_id in ("b", "a", "c"):
            store.upsert_agent(make_agent(agent_id))
        store.upsert_agent(make_agent("a", skills=("Billing",)))
        assert [a.id for a in store.list_agents()] == ["b", "a", "c"]
        assert store.get_agent("a").skills == {"Billing"}

    def test_query_agents_filters(self, store):
        store.upsert_agent(make_agent("tech", skills=("Technical",)))
        store.upsert_agent(make_lead("lead"))
        assert [a.id for a in store.query_agents(skill="Technical", available_for_assignment=True)] == ["tech"]
        assert [a.id for a in store.query_agents(available_for_escalation=True)] == ["lead"]

    def test_commit_tracks_open_items(self, store):
        store.commit([make_item("o", owner_id="x"), make_item("c", owner_id="x", status="Closed")], [], [], [])
        assert store.query_open_item_counts_by_owner(["x", "y"]) == {"x": 1, "y": 0}
        store.commit([make_item("o", owner_id="x", status="Closed")], [], [], [])
        assert store.query_open_item_counts_by_owner(["x"]) == {"x": 0}
        assert store.get_item("o").status == "Closed"

    def test_breaching_query(self, store):
        stale = make_item("stale", priority=Priority.HIGH, created_at=NOW - timedelta(hours=5), owner_id="x")
        fresh = make_item("fresh", priority=Priority.HIGH, owner_id="x")
        store.commit([stale, fresh], [], [], [])
        assert [i.id for i in store.query_breaching_items(response_thresholds(NOW))] == ["stale"]

    def test_get_items_skips_missing(self, store):
        store.commit([make_item("one")], [], [], [])
        assert list(store.get_items(["one", "two"])) == ["one"]

    def test_failure_log_tail(self, store):
        for n in range(3):
            store.record_failure(FailureRecord(component="test", message=f"m{n}"))
        assert [f.message for f in store.list_failure_records(limit=2)] == ["m1", "m2"]

    def test_connection_error_is_dependency_failure(self):
        unreachable = RedisCatalogStore(
            client=redis.Redis(host="127.0.0.1", port=1, socket_connect_timeout=0.2)
        )
        with pytest.raises(DependencyFailure) as exc:
            unreachable.get_item("x")
        assert exc.value.component == "catalog-store"


class TestEndToEnd:
    def test_create_then_escalate(self, store, client):
        outbox = RedisNotificationQueue(TEST_REDIS_URL, client=client)
        clock = FixedClock()
        core = RoutingCore(store, outbox=outbox, clock=clock)
        store.upsert_agent(make_agent("tech", skills=("Technical",)))
        store.upsert_agent(make_lead("lead"))

        created = core.on_item_created([
            WorkItem(id="E2E-1", type="Technical", required_product_tag="core", priority=Priority.HIGH),
        ])
        assert created.items[0].owner_id == "tech"
        assert store.list_assignment_records()[-1].agent_id == "tech"

        clock.advance(hours=5)
        summary = core.run_escalation_batch()
        assert summary.committed
        assert store.get_item("E2E-1").owner_id == "lead"
        assert store.get_agent("lead").current_escalated_cases == 1
        # creation notification, then the escalation one
        assert outbox.size() == 2


class TestRedisNotificationQueue:
    def test_roundtrip_order(self, client):
        queue = RedisNotificationQueue(TEST_REDIS_URL, client=client)
        enqueue_notification(queue, "a", "lead", "r")
        enqueue_notification(queue, "b", None, "r", ["x"])
        assert queue.size() == 2
        assert queue.pop().item_id == "a"
        assert queue.pop().cc_list == ["x"]
        assert queue.pop() is None
