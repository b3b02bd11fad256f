"""
SLA calculator: response/resolution deadlines from priority and start time.
Pure functions over a fixed hours table.
"""

from datetime import datetime, timedelta

from caserouter.models import Priority, SlaTargets, WorkItem

# priority -> (response hours, resolution hours)
SLA_HOURS: dict[Priority, tuple[int, int]] = {
    Priority.CRITICAL: (1, 4),
    Priority.HIGH: (4, 24),
    Priority.MEDIUM: (24, 72),
    Priority.LOW: (72, 168),
}


def response_hours(priority: Priority) -> int:
    return SLA_HOURS[priority][0]


def compute_targets(priority: Priority, start_time: datetime) -> SlaTargets:
    """Return (response, resolution) deadlines counted from start_time."""
    response_h, resolution_h = SLA_HOURS[priority]
    return SlaTargets(
        response=start_time + timedelta(hours=response_h),
        resolution=start_time + timedelta(hours=resolution_h),
    )


def apply_targets(item: WorkItem) -> WorkItem:
    """Stamp the item's SLA targets from its current priority and sla_start_time (in place)."""
    targets = compute_targets(item.priority, item.sla_start_time)
    item.response_sla_target = targets.response
    item.resolution_sla_target = targets.resolution
    return item


def response_thresholds(now: datetime) -> dict[Priority, datetime]:
    """Per-priority cut-off: an open item whose clock started before this has breached its response SLA."""
    return {p: now - timedelta(hours=response_hours(p)) for p in SLA_HOURS}
