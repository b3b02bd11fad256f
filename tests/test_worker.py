"""
ARQ job functions called directly with a hand-built ctx (no Redis, no worker process).
Run: pytest tests/test_worker.py -v
"""

import asyncio
from datetime import timedelta

from caserouter import worker
from caserouter.core import RoutingCore
from caserouter.notifications import Notifier
from caserouter.services.catalog_store import InMemoryCatalogStore
from tests.factories import NOW, FixedClock, make_item, make_lead


def _ctx():
    stale = make_item("W-1", owner_id="agent-1", priority="High", created_at=NOW - timedelta(hours=6))
    store = InMemoryCatalogStore(agents=[make_lead("lead")], items=[stale])
    core = RoutingCore(store, clock=FixedClock())
    return {"core": core, "notifier": Notifier(core.outbox, webhook_url="")}


def test_run_escalation_batch_returns_json_summary():
    ctx = _ctx()
    result = asyncio.run(worker.run_escalation_batch(ctx))
    assert result["committed"] is True
    assert result["outcomes"][0] == {"item_id": "W-1", "status": "escalated", "target_id": "lead", "level": 1}
    assert ctx["core"].store.get_item("W-1").owner_id == "lead"


def test_dispatch_notifications_drains_outbox():
    ctx = _ctx()
    asyncio.run(worker.run_escalation_batch(ctx))
    assert asyncio.run(worker.dispatch_notifications(ctx)) == 1
    assert ctx["core"].outbox.size() == 0


def test_cron_jobs_are_unique():
    assert all(job.unique for job in worker.WorkerSettings.cron_jobs)
