"""Builders and a controllable clock shared by the test modules."""

from datetime import datetime, timedelta, timezone

from caserouter.config import QUEUE_OWNER_ID
from caserouter.models import (
    Agent,
    ExperienceLevel,
    ItemStatus,
    ItemType,
    Priority,
    Role,
    WorkItem,
)
from caserouter.sla import apply_targets

# A Monday, 10:00 UTC (inside default operating hours)
NOW = datetime(2026, 3, 2, 10, 0, tzinfo=timezone.utc)


class FixedClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


def make_agent(
    agent_id: str,
    skills=("General",),
    experience: ExperienceLevel = ExperienceLevel.JUNIOR,
    role: Role = Role.AGENT,
    assign: bool = True,
    escalate: bool = False,
    escalated_cases: int = 0,
    max_cases: int = 10,
) -> Agent:
    return Agent(
        id=agent_id,
        name=agent_id.title(),
        skills=set(skills),
        experience_level=experience,
        role=role,
        available_for_assignment=assign,
        available_for_escalation=escalate,
        current_escalated_cases=escalated_cases,
        max_cases=max_cases,
    )


def make_lead(agent_id: str, role: Role = Role.TEAM_LEAD, escalated_cases: int = 0, available: bool = True) -> Agent:
    return make_agent(
        agent_id,
        skills=(),
        experience=ExperienceLevel.EXPERT,
        role=role,
        assign=False,
        escalate=available,
        escalated_cases=escalated_cases,
    )


def make_item(item_id: str, **overrides) -> WorkItem:
    """A stored-looking item: defaults filled and SLA targets stamped."""
    fields = dict(
        subject="General question",
        priority=Priority.MEDIUM,
        type=ItemType.GENERAL,
        status=ItemStatus.NEW,
        owner_id=QUEUE_OWNER_ID,
        escalation_level=0,
        created_at=NOW,
        sla_start_time=overrides.get("created_at", NOW),
    )
    fields.update(overrides)
    return apply_targets(WorkItem(id=item_id, **fields))


def owned_items(owner_id: str, count: int) -> list[WorkItem]:
    """Open items owned by an agent, used to give it a workload."""
    return [
        make_item(f"{owner_id}-load-{n}", owner_id=owner_id, status=ItemStatus.IN_PROGRESS)
        for n in range(count)
    ]
