"""
Unit of work: stages every mutation of one batch and commits them in one store call.
Notification requests are released only after a successful commit.
"""

import logging
from typing import Optional

from caserouter.errors import DependencyFailure
from caserouter.models import (
    Agent,
    AssignmentRecord,
    EscalationRecord,
    FailureRecord,
    WorkItem,
)
from caserouter.notifications import NotificationQueue, enqueue_notification
from caserouter.services.catalog_store import CatalogStore

logger = logging.getLogger(__name__)


def record_failure(
    store: CatalogStore,
    component: str,
    message: str,
    detail: str = "",
    actor: str = "system",
) -> None:
    """Append a FailureRecord. If the audit write itself fails, only log."""
    logger.warning("%s: %s %s", component, message, detail)
    try:
        store.record_failure(FailureRecord(component=component, message=message, detail=detail, actor=actor))
    except Exception:
        logger.exception("Could not write failure record for %s", component)


class UnitOfWork:
    def __init__(self, store: CatalogStore, outbox: Optional[NotificationQueue] = None, actor: str = "system"):
        self.store = store
        self.outbox = outbox
        self.actor = actor
        self.items: dict[str, WorkItem] = {}
        self.agents: dict[str, Agent] = {}
        self.assignment_records: list[AssignmentRecord] = []
        self.escalation_records: list[EscalationRecord] = []
        self.notifications: list[dict] = []
        self.committed = False

    def stage_item(self, item: WorkItem) -> None:
        self.items[item.id] = item

    def stage_agent(self, agent: Agent) -> None:
        self.agents[agent.id] = agent

    def staged_agent(self, agent: Agent) -> Agent:
        """Prefer this batch's pending version of an agent over the store's copy."""
        return self.agents.get(agent.id, agent)

    def notify(
        self,
        item_id: str,
        target_agent_id: Optional[str],
        reason: str,
        cc_list: Optional[list[str]] = None,
    ) -> None:
        """Hold a notification until the batch commits."""
        self.notifications.append(
            {"item_id": item_id, "target_agent_id": target_agent_id, "reason": reason, "cc_list": cc_list}
        )

    def commit(self) -> None:
        """Persist everything staged, all or nothing; then hand notifications to the outbox."""
        if self.committed:
            return
        if self.items or self.agents or self.assignment_records or self.escalation_records:
            try:
                self.store.commit(
                    list(self.items.values()),
                    list(self.agents.values()),
                    self.assignment_records,
                    self.escalation_records,
                )
            except DependencyFailure as e:
                record_failure(self.store, "unit-of-work", "batch commit failed", str(e), self.actor)
                raise
        self.committed = True
        self._flush_notifications()

    def _flush_notifications(self) -> None:
        if self.outbox is None:
            return
        for pending in self.notifications:
            try:
                enqueue_notification(self.outbox, **pending)
            except Exception as e:
                record_failure(
                    self.store, "notification", "enqueue failed",
                    f"item={pending['item_id']} target={pending['target_agent_id']}: {e}", self.actor,
                )
