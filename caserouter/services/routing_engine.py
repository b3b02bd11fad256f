"""
Skill- and workload-aware assignment of queued work items to agents.

For each item:
  - required skill comes from the SkillClassifier;
  - candidates are agents available for assignment holding that skill, else the "General" pool;
  - High/Critical items prefer Senior/Expert candidates, falling back to the whole pool;
  - the candidate with the lowest open workload wins, ties going to the first candidate.

Workloads are read once per agent per batch. With ROUTING_INTRA_BATCH_INCREMENT the
snapshot is bumped after every in-batch assignment so one batch does not pile onto a
single agent.
"""

import logging
from typing import Callable, Iterable, Optional

import numpy as np

from caserouter.classifier import DEFAULT_SKILL, SkillClassifier
from caserouter.config import ROUTING_ENFORCE_CAPACITY, ROUTING_INTRA_BATCH_INCREMENT
from caserouter.errors import DependencyFailure
from caserouter.models import (
    Agent,
    AssignmentRecord,
    ExperienceLevel,
    ItemType,
    Priority,
    URGENT_PRIORITIES,
    WorkItem,
    utcnow,
)
from caserouter.services.catalog_store import CatalogStore
from caserouter.services.unit_of_work import UnitOfWork, record_failure
from caserouter.services.workload_index import WorkloadIndex

logger = logging.getLogger(__name__)

ASSIGNMENT_REASON = "skill-based automatic assignment"
SENIOR_LEVELS = frozenset({ExperienceLevel.SENIOR, ExperienceLevel.EXPERT})


def pick_least_loaded(candidates: list[Agent], workloads: dict[str, int]) -> Optional[Agent]:
    """Candidate with the lowest workload; np.argmin returns the first minimum, keeping input order on ties."""
    if not candidates:
        return None
    loads = np.array([workloads.get(a.id, 0) for a in candidates], dtype=np.int64)
    return candidates[int(np.argmin(loads))]


def select_agent(candidates: list[Agent], priority: Priority, workloads: dict[str, int]) -> Optional[Agent]:
    if priority in URGENT_PRIORITIES:
        seniors = [a for a in candidates if a.experience_level in SENIOR_LEVELS]
        if seniors:
            return pick_least_loaded(seniors, workloads)
    return pick_least_loaded(candidates, workloads)


class RoutingEngine:
    def __init__(
        self,
        store: CatalogStore,
        classifier: Optional[SkillClassifier] = None,
        workload_index: Optional[WorkloadIndex] = None,
        clock: Callable = utcnow,
        intra_batch_increment: bool = ROUTING_INTRA_BATCH_INCREMENT,
        enforce_capacity: bool = ROUTING_ENFORCE_CAPACITY,
    ):
        self.store = store
        self.classifier = classifier or SkillClassifier()
        self.workload_index = workload_index or WorkloadIndex(store)
        self.clock = clock
        self.intra_batch_increment = intra_batch_increment
        self.enforce_capacity = enforce_capacity

    def candidates_for(self, skill: str) -> list[Agent]:
        """Agents available for assignment with `skill`, else the General pool (may be empty)."""
        pool = self.store.query_agents(skill=skill, available_for_assignment=True)
        if not pool and skill != DEFAULT_SKILL:
            logger.debug("No agents for skill %s; falling back to %s pool.", skill, DEFAULT_SKILL)
            pool = self.store.query_agents(skill=DEFAULT_SKILL, available_for_assignment=True)
        return pool

    def _choose(self, item: WorkItem, workloads: dict[str, int]) -> Optional[Agent]:
        skill = self.classifier.classify(item)
        pool = self.candidates_for(skill)
        if not pool:
            return None
        missing = [a.id for a in pool if a.id not in workloads]
        if missing:
            workloads.update(self.workload_index.load(missing))
        if self.enforce_capacity:
            pool = [a for a in pool if workloads[a.id] < a.max_cases]
        return select_agent(pool, item.priority or Priority.MEDIUM, workloads)

    def assign(self, items: Iterable[WorkItem], uow: Optional[UnitOfWork] = None) -> list[AssignmentRecord]:
        """
        Assign every queued item in the batch. Items are updated in place and staged on `uow`;
        without a uow the batch gets its own and is committed here.
        Items that already have a person as owner are left alone.
        """
        own_uow = uow is None
        if own_uow:
            uow = UnitOfWork(self.store)
        workloads: dict[str, int] = {}
        records: list[AssignmentRecord] = []
        for item in items:
            if not item.is_queued or not item.is_open:
                continue
            try:
                agent = self._choose(item, workloads)
            except DependencyFailure as e:
                record_failure(self.store, "routing-engine", f"candidate lookup failed for item {item.id}", str(e))
                continue
            if agent is None:
                logger.info("No eligible agent for item %s; it stays queued.", item.id)
                continue

            now = self.clock()
            item.previous_owner_id = item.owner_id
            item.owner_id = agent.id
            item.assignment_date = now
            item.last_owner_change_at = now
            record = AssignmentRecord(
                item_id=item.id,
                agent_id=agent.id,
                timestamp=now,
                reason=ASSIGNMENT_REASON,
                priority=item.priority or Priority.MEDIUM,
                type=item.type or ItemType.GENERAL,
            )
            uow.stage_item(item)
            uow.assignment_records.append(record)
            records.append(record)
            if self.intra_batch_increment:
                workloads[agent.id] = workloads.get(agent.id, 0) + 1
            logger.info("Assigned item %s to agent %s (workload %d).", item.id, agent.id, workloads.get(agent.id, 0))
        if own_uow:
            uow.commit()
        return records
