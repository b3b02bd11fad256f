"""
ARQ background worker: scheduled escalation runs and outbound notification dispatch.

run_escalation_batch is an hourly cron job declared unique, so ARQ never starts a second
run while one is active. It can also be enqueued on demand by the API.
"""

import asyncio
import logging
from dataclasses import replace

from arq import cron, run_worker
from arq.connections import RedisSettings

from caserouter.config import (
    ESCALATION_CRON_MINUTE,
    NOTIFICATION_DISPATCH_LIMIT,
    REDIS_CONN_TIMEOUT,
    REDIS_URL,
    WEBHOOK_URL,
)
from caserouter.core import build_core
from caserouter.notifications import Notifier

logger = logging.getLogger(__name__)


async def startup(ctx: dict) -> None:
    core = build_core(backend="redis")
    ctx["core"] = core
    ctx["notifier"] = Notifier(core.outbox, webhook_url=WEBHOOK_URL)


async def run_escalation_batch(ctx: dict) -> dict:
    """ARQ job: find breaching items and escalate them; returns the run summary."""
    core = ctx["core"]
    try:
        summary = await asyncio.to_thread(core.run_escalation_batch)
    except Exception as e:
        logger.exception("Escalation run failed: %s", e)
        raise
    return summary.model_dump(mode="json")


async def dispatch_notifications(ctx: dict) -> int:
    """ARQ job: drain the outbound notification queue (each request attempted once)."""
    delivered = await ctx["notifier"].dispatch_pending(limit=NOTIFICATION_DISPATCH_LIMIT)
    if delivered:
        logger.info("Dispatched %d notifications.", delivered)
    return delivered


class WorkerSettings:
    functions = [run_escalation_batch, dispatch_notifications]
    cron_jobs = [
        cron(run_escalation_batch, minute={ESCALATION_CRON_MINUTE}, unique=True),
        cron(dispatch_notifications, second={0}, unique=True),
    ]
    on_startup = startup
    redis_settings = replace(
        RedisSettings.from_dsn(REDIS_URL),
        conn_timeout=REDIS_CONN_TIMEOUT,
    )


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    logger.info("Worker starting (Redis: %s).", REDIS_URL.split("@")[-1] if "@" in REDIS_URL else REDIS_URL)
    run_worker(WorkerSettings)
