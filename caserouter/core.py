"""Wires the store, engines and outbox together and exposes the core's entry points."""

import logging
from typing import Callable, Iterable, Mapping, Optional, Sequence

from caserouter.business_hours import BusinessHoursCalendar, Calendar
from caserouter.classifier import SkillClassifier
from caserouter.config import REDIS_URL, STORE_BACKEND
from caserouter.models import (
    Agent,
    EscalationOutcome,
    EscalationRunSummary,
    ExperienceLevel,
    LifecycleResult,
    Role,
    WorkItem,
    utcnow,
)
from caserouter.notifications import InMemoryNotificationQueue, NotificationQueue, RedisNotificationQueue
from caserouter.services.catalog_store import CatalogStore, InMemoryCatalogStore
from caserouter.services.escalation_engine import EscalationEngine
from caserouter.services.lifecycle import CloseHook, LifecycleHandler
from caserouter.services.redis_store import RedisCatalogStore
from caserouter.services.routing_engine import RoutingEngine
from caserouter.services.workload_index import WorkloadIndex

logger = logging.getLogger(__name__)


class RoutingCore:
    def __init__(
        self,
        store: CatalogStore,
        outbox: Optional[NotificationQueue] = None,
        calendar: Optional[Calendar] = None,
        classifier: Optional[SkillClassifier] = None,
        clock: Callable = utcnow,
        close_hooks: Optional[Sequence[CloseHook]] = None,
        **routing_options,
    ):
        self.store = store
        self.outbox = outbox if outbox is not None else InMemoryNotificationQueue()
        self.workload_index = WorkloadIndex(store)
        self.routing = RoutingEngine(
            store, classifier=classifier, workload_index=self.workload_index, clock=clock, **routing_options
        )
        self.escalation = EscalationEngine(store, outbox=self.outbox, calendar=calendar, clock=clock)
        self.lifecycle = LifecycleHandler(
            store, self.routing, outbox=self.outbox, clock=clock, close_hooks=close_hooks
        )

    def on_item_created(self, items: Iterable[WorkItem]) -> LifecycleResult:
        return self.lifecycle.on_item_created(items)

    def on_item_updated(self, items: Iterable[WorkItem], previous_states: Mapping[str, WorkItem]) -> LifecycleResult:
        return self.lifecycle.on_item_updated(items, previous_states)

    def escalate_manually(self, item_id: str, reason: str, actor: str = "system") -> EscalationOutcome:
        return self.escalation.escalate_manually(item_id, reason, actor=actor)

    def run_escalation_batch(self) -> EscalationRunSummary:
        return self.escalation.run_batch()


# Mock agents for each skill and escalation tier (used at startup when SEED_MOCK_AGENTS=1)
MOCK_AGENTS = [
    Agent(id="tech-1", name="Tech Support", skills={"Technical"}, experience_level=ExperienceLevel.SENIOR),
    Agent(id="billing-1", name="Billing Support", skills={"Billing"}, experience_level=ExperienceLevel.JUNIOR),
    Agent(id="account-1", name="Account Support", skills={"Account"}, experience_level=ExperienceLevel.SENIOR),
    Agent(id="generalist-1", name="General Support", skills={"General"}, experience_level=ExperienceLevel.JUNIOR),
    Agent(
        id="lead-1", name="Team Lead", role=Role.TEAM_LEAD, experience_level=ExperienceLevel.EXPERT,
        available_for_assignment=False, available_for_escalation=True,
    ),
    Agent(
        id="manager-1", name="Support Manager", role=Role.MANAGER, experience_level=ExperienceLevel.EXPERT,
        available_for_assignment=False, available_for_escalation=True,
    ),
    Agent(
        id="director-1", name="Support Director", role=Role.DIRECTOR, experience_level=ExperienceLevel.EXPERT,
        available_for_assignment=False, available_for_escalation=True,
    ),
]


def seed_mock_agents(store: CatalogStore) -> int:
    """Register mock agents only if they don't exist. Preserves counters on restart."""
    seeded = 0
    for agent in MOCK_AGENTS:
        if store.get_agent(agent.id) is None:
            store.upsert_agent(agent)
            seeded += 1
    if seeded:
        logger.info("Seeded %d mock agents (existing agents left unchanged).", seeded)
    return seeded


def build_core(backend: str = STORE_BACKEND, redis_url: str = REDIS_URL) -> RoutingCore:
    """Build a RoutingCore for the configured backend ("memory" or "redis")."""
    if backend == "redis":
        store = RedisCatalogStore(redis_url)
        outbox = RedisNotificationQueue(redis_url)
    else:
        store = InMemoryCatalogStore()
        outbox = InMemoryNotificationQueue()
    return RoutingCore(store, outbox=outbox, calendar=BusinessHoursCalendar())
