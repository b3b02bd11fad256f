"""
Lifecycle handler: reacts to work-item create/update batches.

Create: defaults, channel-tier priority floor, SLA targets, validation, then routing of
queued items and notifications for High/Critical items.
Update: first-response/resolution stamps, reopen reset, SLA recompute on priority change,
owner-change bookkeeping, escalation-level monotonicity.

Every batch is one unit of work. A context-local scope marks the batch in progress so that
code called from inside it (close hooks, for instance) cannot re-enter the handler.
"""

import logging
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime
from typing import Callable, Iterable, Mapping, Optional, Sequence

from caserouter.config import LIFECYCLE_BATCH_LIMIT, MAX_ESCALATION_LEVEL, QUEUE_OWNER_ID
from caserouter.errors import FieldError, ItemNotFound, ValidationFailure
from caserouter.models import (
    CustomerTier,
    ItemStatus,
    ItemType,
    LifecycleResult,
    Priority,
    URGENT_PRIORITIES,
    WorkItem,
    utcnow,
)
from caserouter.notifications import NotificationQueue
from caserouter.services.catalog_store import CatalogStore
from caserouter.services.routing_engine import RoutingEngine
from caserouter.services.unit_of_work import UnitOfWork, record_failure
from caserouter.sla import apply_targets

logger = logging.getLogger(__name__)

CloseHook = Callable[[WorkItem], None]

# Set by the handler only: first_response_time/resolution_time are set once.
SYSTEM_FIELDS = frozenset({
    "first_response_time",
    "resolution_time",
    "previous_owner_id",
    "last_owner_change_at",
})

_active_batch: ContextVar[Optional[str]] = ContextVar("caserouter_lifecycle_batch", default=None)


@contextmanager
def lifecycle_scope(label: str):
    """Mark a lifecycle batch as in progress for the current context."""
    token = _active_batch.set(label)
    try:
        yield
    finally:
        _active_batch.reset(token)


def active_batch() -> Optional[str]:
    return _active_batch.get()


def validate_item(item: WorkItem) -> list[FieldError]:
    errors = []
    if item.type == ItemType.TECHNICAL and not (item.required_product_tag or "").strip():
        errors.append(FieldError(item.id, "required_product_tag", "required for Technical items"))
    if item.priority == Priority.CRITICAL and not (item.business_impact or "").strip():
        errors.append(FieldError(item.id, "business_impact", "required for Critical items"))
    return errors


class LifecycleHandler:
    def __init__(
        self,
        store: CatalogStore,
        routing: RoutingEngine,
        outbox: Optional[NotificationQueue] = None,
        clock: Callable[[], datetime] = utcnow,
        batch_limit: int = LIFECYCLE_BATCH_LIMIT,
        close_hooks: Optional[Sequence[CloseHook]] = None,
    ):
        self.store = store
        self.routing = routing
        self.outbox = outbox
        self.clock = clock
        self.batch_limit = batch_limit
        self.close_hooks: list[CloseHook] = list(close_hooks or [])

    def _check_batch_size(self, items: list[WorkItem]) -> None:
        if len(items) > self.batch_limit:
            raise ValidationFailure(
                [FieldError("*", "batch", f"{len(items)} items exceeds the limit of {self.batch_limit}")]
            )

    # --- create ---

    def prepare_new(self, item: WorkItem, now: datetime) -> WorkItem:
        """Fill defaults, apply the channel-tier rule and stamp SLA targets (in place)."""
        if item.priority is None:
            item.priority = Priority.MEDIUM
        if item.type is None:
            item.type = ItemType.GENERAL
        if item.supplied_channel and not (item.origin or "").strip():
            item.origin = item.supplied_channel
        if not item.owner_id:
            item.owner_id = QUEUE_OWNER_ID
        if item.created_at is None:
            item.created_at = now
        if item.sla_start_time is None:
            item.sla_start_time = now
        if item.escalation_level is None:
            item.escalation_level = 0
        if item.customer_tier == CustomerTier.CHANNEL and item.priority.rank < Priority.HIGH.rank:
            logger.info("Item %s from channel-tier customer raised to High.", item.id)
            item.priority = Priority.HIGH
        apply_targets(item)
        return item

    def on_item_created(self, items: Iterable[WorkItem]) -> LifecycleResult:
        batch = [i.model_copy(deep=True) for i in items]
        self._check_batch_size(batch)
        if active_batch() is not None:
            logger.debug("Lifecycle batch %s already active; nested create ignored.", active_batch())
            return LifecycleResult()

        with lifecycle_scope(f"create-{uuid.uuid4().hex[:8]}"):
            existing = self.store.get_items(i.id for i in batch)
            fresh = [i for i in batch if i.id not in existing]
            now = self.clock()
            for item in fresh:
                self.prepare_new(item, now)
            errors = [e for item in fresh for e in validate_item(item)]
            if errors:
                raise ValidationFailure(errors)

            uow = UnitOfWork(self.store, self.outbox)
            for item in fresh:
                uow.stage_item(item)
            assignments = self.routing.assign([i for i in fresh if i.is_queued], uow=uow)
            for item in fresh:
                if item.priority in URGENT_PRIORITIES:
                    uow.notify(
                        item.id,
                        None if item.is_queued else item.owner_id,
                        f"new {item.priority.value} priority item",
                    )
            uow.commit()

        by_id = {i.id: i for i in fresh}
        result_items = [by_id.get(i.id) or existing[i.id] for i in batch]
        return LifecycleResult(items=result_items, assignments=assignments)

    # --- update ---

    def apply_update(self, item: WorkItem, previous: WorkItem, now: datetime) -> tuple[bool, bool]:
        """
        Apply transition bookkeeping to `item` given its stored `previous` state (in place).
        Fields the payload leaves out keep their stored values; the stamps in SYSTEM_FIELDS
        are never taken from the payload.
        Returns (priority_raised, closed_now).
        """
        for name in WorkItem.model_fields:
            if name in SYSTEM_FIELDS or name not in item.model_fields_set:
                setattr(item, name, getattr(previous, name))
        if item.priority is None:
            item.priority = previous.priority or Priority.MEDIUM
        if item.type is None:
            item.type = previous.type or ItemType.GENERAL
        if not item.owner_id:
            item.owner_id = QUEUE_OWNER_ID
        if item.created_at is None:
            item.created_at = previous.created_at
        if item.sla_start_time is None:
            item.sla_start_time = previous.sla_start_time or item.created_at or now
        if item.escalation_level is None:
            item.escalation_level = previous.escalation_level or 0

        prev_level = previous.escalation_level or 0
        reopened = previous.status == ItemStatus.CLOSED and item.is_open
        if reopened:
            logger.info("Item %s reopened; escalation level and SLA clock reset.", item.id)
            item.escalation_level = 0
            item.sla_start_time = now
        elif item.escalation_level < prev_level:
            logger.warning(
                "Item %s escalation level lowered %d -> %d while open; keeping %d.",
                item.id, prev_level, item.escalation_level, prev_level,
            )
            item.escalation_level = prev_level
        if item.escalation_level > MAX_ESCALATION_LEVEL:
            logger.warning("Item %s escalation level %d above max; clamping.", item.id, item.escalation_level)
            item.escalation_level = MAX_ESCALATION_LEVEL

        if previous.status == ItemStatus.NEW and item.status != ItemStatus.NEW and item.first_response_time is None:
            item.first_response_time = now
        closed_now = item.status == ItemStatus.CLOSED and previous.status != ItemStatus.CLOSED
        if closed_now and item.resolution_time is None:
            item.resolution_time = now

        priority_raised = previous.priority is not None and item.priority.rank > previous.priority.rank
        if priority_raised:
            logger.info(
                "Item %s priority raised %s -> %s.", item.id, previous.priority.value, item.priority.value
            )
        apply_targets(item)

        if item.owner_id != previous.owner_id:
            item.last_owner_change_at = now
            item.previous_owner_id = previous.owner_id
        return priority_raised, closed_now

    def on_item_updated(
        self,
        items: Iterable[WorkItem],
        previous_states: Mapping[str, WorkItem],
    ) -> LifecycleResult:
        batch = [i.model_copy(deep=True) for i in items]
        self._check_batch_size(batch)
        if active_batch() is not None:
            logger.debug("Lifecycle batch %s already active; nested update ignored.", active_batch())
            return LifecycleResult()

        with lifecycle_scope(f"update-{uuid.uuid4().hex[:8]}"):
            now = self.clock()
            raised, closed = [], []
            for item in batch:
                previous = previous_states.get(item.id)
                if previous is None:
                    raise ItemNotFound(item.id)
                priority_raised, closed_now = self.apply_update(item, previous, now)
                if priority_raised:
                    raised.append(item.id)
                if closed_now:
                    closed.append(item)
            errors = [e for item in batch for e in validate_item(item)]
            if errors:
                raise ValidationFailure(errors)

            uow = UnitOfWork(self.store, self.outbox)
            for item in batch:
                uow.stage_item(item)
            uow.commit()
            self._run_close_hooks(closed)

        return LifecycleResult(items=batch, escalation_candidates=raised, closed_items=[i.id for i in closed])

    def _run_close_hooks(self, closed: list[WorkItem]) -> None:
        for item in closed:
            for hook in self.close_hooks:
                try:
                    hook(item.model_copy(deep=True))
                except Exception as e:
                    record_failure(self.store, "close-hook", f"hook failed for item {item.id}", repr(e))
