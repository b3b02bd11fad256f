"""Data models for the work-item routing and escalation engine."""

from datetime import datetime, timezone
from enum import Enum, IntEnum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from caserouter.config import MAX_ESCALATION_LEVEL, QUEUE_OWNER_ID


def utcnow() -> datetime:
    """Default clock for every engine (timezone-aware UTC)."""
    return datetime.now(timezone.utc)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# --- Ordered enums ---


class Priority(str, Enum):
    """Work-item priority, ordered Low < Medium < High < Critical."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"

    @property
    def rank(self) -> int:
        return _PRIORITY_ORDER.index(self)

    def escalated(self) -> "Priority":
        """One automatic escalation step: Low->Medium, Medium->High; High and Critical are fixed points."""
        if self in (Priority.LOW, Priority.MEDIUM):
            return _PRIORITY_ORDER[self.rank + 1]
        return self


_PRIORITY_ORDER = [Priority.LOW, Priority.MEDIUM, Priority.HIGH, Priority.CRITICAL]
URGENT_PRIORITIES = frozenset({Priority.HIGH, Priority.CRITICAL})


class ExperienceLevel(str, Enum):
    """Agent seniority. Senior and Expert agents take High/Critical items first."""

    JUNIOR = "Junior"
    SENIOR = "Senior"
    EXPERT = "Expert"


class Role(str, Enum):
    AGENT = "Agent"
    TEAM_LEAD = "TeamLead"
    MANAGER = "Manager"
    DIRECTOR = "Director"


class EscalationLevel(IntEnum):
    """Depth in the escalation chain. TERMINAL is the last tier."""

    NONE = 0
    FIRST = 1
    SECOND = 2
    TERMINAL = MAX_ESCALATION_LEVEL

    @classmethod
    def clamp(cls, level: int) -> "EscalationLevel":
        return cls(max(cls.NONE, min(int(level), cls.TERMINAL)))

    def next(self) -> "EscalationLevel":
        """Successor level; TERMINAL is a fixed point."""
        return EscalationLevel.clamp(self + 1)

    @property
    def target_role(self) -> Role:
        """Role that receives an item escalated from this level."""
        if self <= EscalationLevel.FIRST:
            return Role.TEAM_LEAD
        if self == EscalationLevel.SECOND:
            return Role.MANAGER
        return Role.DIRECTOR


class ItemType(str, Enum):
    TECHNICAL = "Technical"
    BILLING = "Billing"
    ACCOUNT = "Account"
    GENERAL = "General"


class ItemStatus(str, Enum):
    """New, InProgress, OnHold and Escalated are open substates."""

    NEW = "New"
    IN_PROGRESS = "InProgress"
    ON_HOLD = "OnHold"
    ESCALATED = "Escalated"
    CLOSED = "Closed"

    @property
    def is_open(self) -> bool:
        return self != ItemStatus.CLOSED


class CustomerTier(str, Enum):
    STANDARD = "Standard"
    CHANNEL = "Channel"


# --- Catalog records ---


class Agent(BaseModel):
    """A human agent with skills, seniority and escalation role."""

    id: str = Field(..., description="Unique agent identifier")
    name: str = Field(default="", description="Display name")
    skills: set[str] = Field(default_factory=set, description="Skill tags")
    experience_level: ExperienceLevel = ExperienceLevel.JUNIOR
    max_cases: int = Field(default=10, ge=1)
    available_for_assignment: bool = True
    available_for_escalation: bool = False
    role: Role = Role.AGENT
    current_escalated_cases: int = Field(default=0, ge=0, description="Escalation tie-break counter")


class WorkItem(BaseModel):
    """A support case routed and escalated by the engine."""

    id: str = Field(..., description="Unique work item identifier")
    subject: str = ""
    description: str = ""
    type: Optional[ItemType] = None
    priority: Optional[Priority] = None
    status: ItemStatus = ItemStatus.NEW
    owner_id: Optional[str] = Field(None, description="Agent id or the queue sentinel")
    escalation_level: Optional[int] = Field(None, ge=0)
    created_at: Optional[datetime] = None
    assignment_date: Optional[datetime] = None
    sla_start_time: Optional[datetime] = None
    response_sla_target: Optional[datetime] = None
    resolution_sla_target: Optional[datetime] = None
    first_response_time: Optional[datetime] = None
    resolution_time: Optional[datetime] = None
    last_owner_change_at: Optional[datetime] = None
    previous_owner_id: Optional[str] = None
    escalation_date: Optional[datetime] = None
    escalation_reason: Optional[str] = None
    business_impact: Optional[str] = None
    required_product_tag: Optional[str] = None
    origin: Optional[str] = None
    supplied_channel: Optional[str] = None
    customer_tier: CustomerTier = CustomerTier.STANDARD

    @field_validator(
        "created_at",
        "assignment_date",
        "sla_start_time",
        "response_sla_target",
        "resolution_sla_target",
        "first_response_time",
        "resolution_time",
        "last_owner_change_at",
        "escalation_date",
    )
    @classmethod
    def _utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value)

    @property
    def is_open(self) -> bool:
        return self.status.is_open

    @property
    def is_queued(self) -> bool:
        """True while no person owns the item."""
        return not self.owner_id or self.owner_id == QUEUE_OWNER_ID

    @property
    def effective_clock(self) -> datetime:
        """Start of the response clock used for breach detection."""
        return self.assignment_date or self.created_at


# --- Audit records (append-only) ---


class AssignmentRecord(BaseModel):
    item_id: str
    agent_id: str
    timestamp: datetime
    reason: str
    priority: Priority
    type: ItemType


class EscalationRecord(BaseModel):
    item_id: str
    escalated_to_id: str
    timestamp: datetime
    level: int
    reason: str
    priority: Priority
    original_owner_id: Optional[str] = None


class FailureRecord(BaseModel):
    component: str
    message: str
    detail: str = ""
    timestamp: datetime = Field(default_factory=utcnow)
    actor: str = "system"


# --- Outbound messages and results ---


class NotificationRequest(BaseModel):
    """Fire-and-forget request for the notifier component."""

    item_id: str
    target_agent_id: Optional[str] = None
    reason: str
    cc_list: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)


class SlaTargets(BaseModel):
    response: datetime
    resolution: datetime


class EscalationStatus(str, Enum):
    ESCALATED = "escalated"
    NO_TARGET = "no-target"
    NOT_OPEN = "not-open"
    NOT_FOUND = "not-found"
    FAILED = "failed"


class EscalationOutcome(BaseModel):
    item_id: str
    status: EscalationStatus
    target_id: Optional[str] = None
    level: Optional[int] = None


class EscalationRunSummary(BaseModel):
    """Result of one scheduled escalation pass."""

    started_at: datetime
    eligible: bool = Field(..., description="False when outside operating hours")
    examined: int = 0
    outcomes: list[EscalationOutcome] = Field(default_factory=list)
    committed: bool = False


class LifecycleResult(BaseModel):
    """Result of one create/update batch."""

    items: list[WorkItem] = Field(default_factory=list)
    assignments: list[AssignmentRecord] = Field(default_factory=list)
    escalation_candidates: list[str] = Field(
        default_factory=list, description="Ids of items whose priority was raised"
    )
    closed_items: list[str] = Field(default_factory=list)
