"""
Catalog store interface (agents, work items, audit log) and an in-process implementation.
The core only queries the store and hands it whole batches to commit atomically.
"""

import logging
import threading
from datetime import datetime
from typing import Iterable, Optional, Protocol

from caserouter.config import MAX_ESCALATION_LEVEL
from caserouter.models import (
    Agent,
    AssignmentRecord,
    EscalationRecord,
    FailureRecord,
    Priority,
    Role,
    WorkItem,
)

logger = logging.getLogger(__name__)


class CatalogStore(Protocol):
    def query_agents(
        self,
        skill: Optional[str] = None,
        role: Optional[Role] = None,
        available_for_assignment: Optional[bool] = None,
        available_for_escalation: Optional[bool] = None,
    ) -> list[Agent]:
        ...

    def query_open_item_counts_by_owner(self, agent_ids: Iterable[str]) -> dict[str, int]:
        ...

    def query_breaching_items(
        self,
        thresholds: dict[Priority, datetime],
        exclude_max_escalation: bool = True,
        limit: Optional[int] = None,
    ) -> list[WorkItem]:
        ...

    def get_item(self, item_id: str) -> Optional[WorkItem]:
        ...

    def get_items(self, item_ids: Iterable[str]) -> dict[str, WorkItem]:
        ...

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        ...

    def list_agents(self) -> list[Agent]:
        ...

    def upsert_agent(self, agent: Agent) -> None:
        ...

    def commit(
        self,
        items: Iterable[WorkItem],
        agents: Iterable[Agent],
        assignment_records: Iterable[AssignmentRecord],
        escalation_records: Iterable[EscalationRecord],
    ) -> None:
        ...

    def record_failure(self, record: FailureRecord) -> None:
        ...

    def list_assignment_records(self, limit: int = 100) -> list[AssignmentRecord]:
        ...

    def list_escalation_records(self, limit: int = 100) -> list[EscalationRecord]:
        ...

    def list_failure_records(self, limit: int = 100) -> list[FailureRecord]:
        ...


def agent_matches(
    agent: Agent,
    skill: Optional[str] = None,
    role: Optional[Role] = None,
    available_for_assignment: Optional[bool] = None,
    available_for_escalation: Optional[bool] = None,
) -> bool:
    """Filter predicate shared by store implementations; None means "don't filter"."""
    if skill is not None and skill not in agent.skills:
        return False
    if role is not None and agent.role != role:
        return False
    if available_for_assignment is not None and agent.available_for_assignment != available_for_assignment:
        return False
    if available_for_escalation is not None and agent.available_for_escalation != available_for_escalation:
        return False
    return True


def select_breaching(
    items: Iterable[WorkItem],
    thresholds: dict[Priority, datetime],
    exclude_max_escalation: bool = True,
    limit: Optional[int] = None,
) -> list[WorkItem]:
    """
    Open items whose response clock started before their priority's threshold,
    ordered by priority (highest first) then clock (oldest first).
    """
    breaching = []
    for item in items:
        if not item.is_open or item.priority is None or item.effective_clock is None:
            continue
        if exclude_max_escalation and (item.escalation_level or 0) >= MAX_ESCALATION_LEVEL:
            continue
        if item.effective_clock < thresholds[item.priority]:
            breaching.append(item)
    breaching.sort(key=lambda i: (-i.priority.rank, i.effective_clock))
    return breaching[:limit] if limit is not None else breaching


class InMemoryCatalogStore:
    """Thread-safe in-process store. Reads and writes are deep copies so callers never share state."""

    def __init__(self, agents: Optional[Iterable[Agent]] = None, items: Optional[Iterable[WorkItem]] = None):
        self._lock = threading.Lock()
        self._agents: dict[str, Agent] = {}
        self._items: dict[str, WorkItem] = {}
        self._assignments: list[AssignmentRecord] = []
        self._escalations: list[EscalationRecord] = []
        self._failures: list[FailureRecord] = []
        for agent in agents or []:
            self.upsert_agent(agent)
        for item in items or []:
            self._items[item.id] = item.model_copy(deep=True)

    def query_agents(
        self,
        skill: Optional[str] = None,
        role: Optional[Role] = None,
        available_for_assignment: Optional[bool] = None,
        available_for_escalation: Optional[bool] = None,
    ) -> list[Agent]:
        with self._lock:
            return [
                a.model_copy(deep=True)
                for a in self._agents.values()
                if agent_matches(a, skill, role, available_for_assignment, available_for_escalation)
            ]

    def query_open_item_counts_by_owner(self, agent_ids: Iterable[str]) -> dict[str, int]:
        counts = {aid: 0 for aid in agent_ids}
        with self._lock:
            for item in self._items.values():
                if item.is_open and item.owner_id in counts:
                    counts[item.owner_id] += 1
        return counts

    def query_breaching_items(
        self,
        thresholds: dict[Priority, datetime],
        exclude_max_escalation: bool = True,
        limit: Optional[int] = None,
    ) -> list[WorkItem]:
        with self._lock:
            snapshot = [i.model_copy(deep=True) for i in self._items.values()]
        return select_breaching(snapshot, thresholds, exclude_max_escalation, limit)

    def get_item(self, item_id: str) -> Optional[WorkItem]:
        with self._lock:
            item = self._items.get(item_id)
            return item.model_copy(deep=True) if item else None

    def get_items(self, item_ids: Iterable[str]) -> dict[str, WorkItem]:
        with self._lock:
            return {
                iid: self._items[iid].model_copy(deep=True)
                for iid in item_ids
                if iid in self._items
            }

    def get_agent(self, agent_id: str) -> Optional[Agent]:
        with self._lock:
            agent = self._agents.get(agent_id)
            return agent.model_copy(deep=True) if agent else None

    def list_agents(self) -> list[Agent]:
        return self.query_agents()

    def upsert_agent(self, agent: Agent) -> None:
        with self._lock:
            self._agents[agent.id] = agent.model_copy(deep=True)
        logger.info("Agent %s registered (role=%s, skills=%s).", agent.id, agent.role.value, sorted(agent.skills))

    def commit(
        self,
        items: Iterable[WorkItem],
        agents: Iterable[Agent],
        assignment_records: Iterable[AssignmentRecord],
        escalation_records: Iterable[EscalationRecord],
    ) -> None:
        staged_items = [i.model_copy(deep=True) for i in items]
        staged_agents = [a.model_copy(deep=True) for a in agents]
        with self._lock:
            for item in staged_items:
                self._items[item.id] = item
            for agent in staged_agents:
                self._agents[agent.id] = agent
            self._assignments.extend(assignment_records)
            self._escalations.extend(escalation_records)

    def record_failure(self, record: FailureRecord) -> None:
        with self._lock:
            self._failures.append(record)

    def list_assignment_records(self, limit: int = 100) -> list[AssignmentRecord]:
        with self._lock:
            return list(self._assignments[-limit:])

    def list_escalation_records(self, limit: int = 100) -> list[EscalationRecord]:
        with self._lock:
            return list(self._escalations[-limit:])

    def list_failure_records(self, limit: int = 100) -> list[FailureRecord]:
        with self._lock:
            return list(self._failures[-limit:])
