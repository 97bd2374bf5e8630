"""Routing domain models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import List, Optional

from ...models.domain import Coordinates, TimeWindow, Workday


class InsertionStatus(str, Enum):
    OK = "ok"
    TIGHT = "tight"
    CONFLICT = "conflict"


STATUS_RANK = {InsertionStatus.OK: 0, InsertionStatus.TIGHT: 1, InsertionStatus.CONFLICT: 2}

TIME_WINDOW_VIOLATION = "time_window_violation"
WORKDAY_EXCEEDED = "workday_exceeded"
UNREACHABLE = "unreachable"
MATRIX_UNAVAILABLE = "matrix_unavailable"


@dataclass(slots=True, frozen=True)
class ArrivalBufferConfig:
    """Per-route padding policy applied to every travel leg."""

    percent: float = 10.0
    fixed_minutes: float = 0.0
    apply_to_service: bool = False


@dataclass(slots=True)
class RouteStop:
    id: str
    customer_id: str
    coordinates: Coordinates
    order: int
    service_duration_minutes: Optional[float] = None
    time_window: Optional[TimeWindow] = None
    arrival: Optional[float] = None
    departure: Optional[float] = None
    name: Optional[str] = None
    candidate_id: Optional[str] = None
    device_type_duration_minutes: Optional[float] = None


@dataclass(slots=True)
class Route:
    depot: Coordinates
    stops: List[RouteStop] = field(default_factory=list)
    date: Optional[date] = None
    crew_id: Optional[str] = None


@dataclass(slots=True, frozen=True)
class MatrixEntry:
    """One origin/destination pair; ``None`` marks an unreachable pair."""

    distance_km: Optional[float]
    duration_min: Optional[float]

    @property
    def reachable(self) -> bool:
        return self.distance_km is not None and self.duration_min is not None


@dataclass(slots=True)
class InsertionPosition:
    insert_after_index: int
    insert_after_name: str
    insert_before_name: str
    delta_km: float
    delta_min: float
    estimated_arrival: float
    estimated_departure: float
    status: InsertionStatus
    conflict_reason: Optional[str] = None
    slack_minutes: Optional[float] = None


@dataclass(slots=True)
class InsertionResult:
    candidate_id: str
    best_position: Optional[InsertionPosition]
    all_positions: List[InsertionPosition]
    is_feasible: bool
    infeasible_reason: Optional[str] = None


@dataclass(slots=True)
class BatchInsertionResult:
    candidate_id: str
    best_delta_km: float
    best_delta_min: float
    best_insert_after_index: int
    status: InsertionStatus
    is_feasible: bool
    infeasible_reason: Optional[str] = None


@dataclass(slots=True)
class BatchInsertionResponse:
    results: List[BatchInsertionResult]
    processing_time_ms: int


@dataclass(slots=True)
class CrewContext:
    crew_id: str
    name: str
    workday: Workday
    route: Route
    buffer: ArrivalBufferConfig = field(default_factory=ArrivalBufferConfig)

    @property
    def depot(self) -> Coordinates:
        return self.route.depot


@dataclass(slots=True)
class CrewInsertion:
    """Precomputed insertion outcome of one crew for one candidate."""

    crew_id: str
    crew_name: str
    result: InsertionResult


@dataclass(slots=True)
class CrewComparison:
    """One crew's best insertion next to the current crew's."""

    crew_id: str
    crew_name: str
    is_feasible: bool
    delta_min: Optional[float]
    delta_km: Optional[float]
    savings_min: float
    savings_km: float
    is_better: bool


@dataclass(slots=True)
class CrewRecommendation:
    crew_id: str
    crew_name: str
    savings_min: float
    savings_km: float
    score: float
    formatted_savings: str


@dataclass(slots=True)
class StopSchedule:
    stop_id: str
    estimated_arrival: float
    estimated_departure: float
    distance_from_previous_km: float
    duration_from_previous_min: float
    service_duration_minutes: float
    waiting_minutes: float = 0.0
    time_window_violated: bool = False


@dataclass(slots=True)
class RouteSchedule:
    stops: List[StopSchedule]
    depot_departure: float
    return_to_depot_distance_km: float
    return_to_depot_duration_min: float
    route_end: float
    total_distance_km: float
    total_travel_minutes: float
    total_service_minutes: float
    exceeds_workday: bool = False
