"""Domain models for service obligations and their scheduling state."""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Optional


class Priority(str, Enum):
    UPCOMING = "upcoming"
    DUE_SOON = "due_soon"
    OVERDUE = "overdue"


PRIORITY_RANK = {Priority.OVERDUE: 0, Priority.DUE_SOON: 1, Priority.UPCOMING: 2}


class CandidateState(str, Enum):
    ACTIVE = "active"
    SNOOZED = "snoozed"
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"


@dataclass(slots=True, frozen=True)
class Coordinates:
    lat: float
    lng: float


@dataclass(slots=True, frozen=True)
class TimeWindow:
    """Arrival constraint in minutes since midnight."""

    start: float
    end: float
    is_hard: bool = True


@dataclass(slots=True, frozen=True)
class Workday:
    start: float
    end: float


@dataclass(slots=True)
class SchedulingState:
    """Persisted scheduling state of a candidate (owned by an external store)."""

    state: CandidateState = CandidateState.ACTIVE
    snoozed_until: Optional[date] = None


@dataclass(slots=True)
class Candidate:
    """A pending service obligation awaiting scheduling."""

    id: str
    customer_id: str
    device_id: str
    device_type: Optional[str]
    coordinates: Coordinates
    due_date: Optional[date] = None
    priority: Priority = Priority.UPCOMING
    scheduling: SchedulingState = field(default_factory=SchedulingState)
    service_duration_minutes: Optional[float] = None
    device_type_duration_minutes: Optional[float] = None
    time_window: Optional[TimeWindow] = None
    never_serviced: bool = False
    name: Optional[str] = None


@dataclass(slots=True)
class DeviceRevisionInfo:
    """Revision history of one device, the raw input of the candidate queue."""

    device_id: str
    customer_id: str
    revision_interval_months: int
    coordinates: Coordinates
    device_type: Optional[str] = None
    last_completed_date: Optional[date] = None
    installation_date: Optional[date] = None
    scheduling: SchedulingState = field(default_factory=SchedulingState)
    candidate_id: Optional[str] = None
    service_duration_minutes: Optional[float] = None
    device_type_duration_minutes: Optional[float] = None
    name: Optional[str] = None


@dataclass(slots=True)
class OverdueInfo:
    device_id: str
    is_overdue: bool
    never_serviced: bool
    next_due_date: Optional[date]
    overdue_days: int
    overdue_from_installation: bool = False
