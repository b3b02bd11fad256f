"""
Escalation of items that breach their response SLA through TeamLead -> Manager -> Director.

The scheduled run (run_batch) only acts inside operating hours; if the calendar cannot be
consulted the run proceeds anyway. Each run escalates at most ESCALATION_BATCH_LIMIT items
and commits them as one unit of work.
"""

import logging
from typing import Callable, Optional

from caserouter.business_hours import AlwaysOpenCalendar, Calendar
from caserouter.config import ESCALATION_BATCH_LIMIT, MAX_ESCALATION_LEVEL, QUEUE_OWNER_ID
from caserouter.errors import DependencyFailure
from caserouter.models import (
    Agent,
    EscalationLevel,
    EscalationOutcome,
    EscalationRecord,
    EscalationRunSummary,
    EscalationStatus,
    Priority,
    WorkItem,
    utcnow,
)
from caserouter.notifications import NotificationQueue
from caserouter.services.catalog_store import CatalogStore
from caserouter.services.unit_of_work import UnitOfWork, record_failure
from caserouter.sla import apply_targets, response_thresholds

logger = logging.getLogger(__name__)

SCHEDULED_REASON = "response SLA breached"


class EscalationEngine:
    def __init__(
        self,
        store: CatalogStore,
        outbox: Optional[NotificationQueue] = None,
        calendar: Optional[Calendar] = None,
        clock: Callable = utcnow,
        batch_limit: int = ESCALATION_BATCH_LIMIT,
    ):
        self.store = store
        self.outbox = outbox
        self.calendar = calendar or AlwaysOpenCalendar()
        self.clock = clock
        self.batch_limit = batch_limit

    def find_breaching(self) -> list[WorkItem]:
        """Open, not fully escalated items past their response threshold; priority desc, oldest first."""
        thresholds = response_thresholds(self.clock())
        items = self.store.query_breaching_items(thresholds, exclude_max_escalation=True, limit=self.batch_limit)
        return items[: self.batch_limit]

    def current_level(self, item: WorkItem) -> EscalationLevel:
        raw = item.escalation_level or 0
        if raw > MAX_ESCALATION_LEVEL:
            logger.warning(
                "Item %s has escalation level %d above max %d; clamping.",
                item.id, raw, MAX_ESCALATION_LEVEL,
            )
        return EscalationLevel.clamp(raw)

    def select_target(self, level: EscalationLevel, uow: UnitOfWork) -> Optional[Agent]:
        """Available agent of the next tier's role with the fewest escalated cases (first wins on ties)."""
        candidates = self.store.query_agents(role=level.target_role, available_for_escalation=True)
        candidates = [uow.staged_agent(a) for a in candidates]
        if not candidates:
            return None
        return min(candidates, key=lambda a: a.current_escalated_cases)

    def escalate(self, item: WorkItem, reason: str, uow: Optional[UnitOfWork] = None) -> EscalationOutcome:
        """Hand the item to the next tier. The item is updated in place and staged on `uow`."""
        own_uow = uow is None
        if own_uow:
            uow = UnitOfWork(self.store, self.outbox)
        if not item.is_open:
            return EscalationOutcome(item_id=item.id, status=EscalationStatus.NOT_OPEN)

        level = self.current_level(item)
        try:
            target = self.select_target(level, uow)
        except DependencyFailure as e:
            record_failure(self.store, "escalation-engine", f"target lookup failed for item {item.id}", str(e))
            return EscalationOutcome(item_id=item.id, status=EscalationStatus.FAILED)
        if target is None:
            logger.warning("No available %s to escalate item %s to.", level.target_role.value, item.id)
            return EscalationOutcome(item_id=item.id, status=EscalationStatus.NO_TARGET)

        now = self.clock()
        original_owner = item.owner_id
        new_level = level.next()
        if original_owner != target.id:
            item.previous_owner_id = original_owner
            item.last_owner_change_at = now
        item.owner_id = target.id
        item.escalation_level = int(new_level)
        item.escalation_date = now
        item.escalation_reason = reason
        item.priority = (item.priority or Priority.MEDIUM).escalated()
        if item.sla_start_time is None:
            item.sla_start_time = item.created_at or now
        apply_targets(item)

        target.current_escalated_cases += 1
        record = EscalationRecord(
            item_id=item.id,
            escalated_to_id=target.id,
            timestamp=now,
            level=int(new_level),
            reason=reason,
            priority=item.priority,
            original_owner_id=original_owner,
        )
        uow.stage_item(item)
        uow.stage_agent(target)
        uow.escalation_records.append(record)
        cc = [original_owner] if original_owner and original_owner != QUEUE_OWNER_ID else []
        uow.notify(item.id, target.id, reason, cc_list=cc)
        logger.info(
            "Escalated item %s to %s %s (level %d, priority %s).",
            item.id, target.role.value, target.id, int(new_level), item.priority.value,
        )
        outcome = EscalationOutcome(
            item_id=item.id, status=EscalationStatus.ESCALATED, target_id=target.id, level=int(new_level)
        )
        if own_uow:
            try:
                uow.commit()
            except DependencyFailure:
                return EscalationOutcome(item_id=item.id, status=EscalationStatus.FAILED)
        return outcome

    def escalate_manually(self, item_id: str, reason: str, actor: str = "system") -> EscalationOutcome:
        """Escalate one item on request, outside the scheduled run."""
        try:
            item = self.store.get_item(item_id)
        except DependencyFailure as e:
            record_failure(self.store, "escalation-engine", f"could not load item {item_id}", str(e), actor)
            return EscalationOutcome(item_id=item_id, status=EscalationStatus.FAILED)
        if item is None:
            return EscalationOutcome(item_id=item_id, status=EscalationStatus.NOT_FOUND)
        uow = UnitOfWork(self.store, self.outbox, actor=actor)
        outcome = self.escalate(item, reason, uow)
        try:
            uow.commit()
        except DependencyFailure:
            return EscalationOutcome(item_id=item_id, status=EscalationStatus.FAILED)
        return outcome

    def within_operating_hours(self, now) -> bool:
        try:
            return bool(self.calendar.is_within(now))
        except Exception as e:
            logger.warning("Operating-hours check failed (%s); treating run as eligible.", e)
            return True

    def run_batch(self) -> EscalationRunSummary:
        """Scheduled pass: escalate every breaching item found, committing once."""
        now = self.clock()
        summary = EscalationRunSummary(started_at=now, eligible=self.within_operating_hours(now))
        if not summary.eligible:
            logger.info("Outside operating hours; escalation run skipped.")
            return summary
        try:
            items = self.find_breaching()
        except DependencyFailure as e:
            record_failure(self.store, "escalation-engine", "breaching query failed", str(e), "escalation-scheduler")
            return summary

        summary.examined = len(items)
        uow = UnitOfWork(self.store, self.outbox, actor="escalation-scheduler")
        for item in items:
            summary.outcomes.append(self.escalate(item, SCHEDULED_REASON, uow))
        try:
            uow.commit()
            summary.committed = True
        except DependencyFailure:
            logger.error("Escalation run at %s rolled back; items will be retried next run.", now.isoformat())
        escalated = sum(1 for o in summary.outcomes if o.status == EscalationStatus.ESCALATED)
        logger.info("Escalation run: %d breaching, %d escalated.", summary.examined, escalated)
        return summary
