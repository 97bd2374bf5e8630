"""Routing request/response schemas."""

from __future__ import annotations

from datetime import date
from typing import List, Optional

from pydantic import Field

from ..services.routing.models import InsertionStatus
from .messages import CamelModel

HHMM_PATTERN = r"^\d{1,2}:\d{2}(:\d{2})?$"


class CoordinatesModel(CamelModel):
    lat: float = Field(..., ge=-90.0, le=90.0)
    lng: float = Field(..., ge=-180.0, le=180.0)


class TimeWindowModel(CamelModel):
    start: str = Field(..., pattern=HHMM_PATTERN, description="Earliest arrival (HH:MM).")
    end: str = Field(..., pattern=HHMM_PATTERN, description="Latest arrival (HH:MM).")
    is_hard: bool = True


class BufferModel(CamelModel):
    percent: float = Field(10.0, ge=0.0, le=100.0)
    fixed_minutes: float = Field(0.0, ge=0.0, le=120.0)
    apply_to_service: bool = False


class RouteStopModel(CamelModel):
    id: str
    customer_id: str
    coordinates: CoordinatesModel
    order: int = Field(..., ge=0)
    service_duration_minutes: Optional[float] = None
    device_type_duration_minutes: Optional[float] = None
    time_window: Optional[TimeWindowModel] = None
    arrival_time: Optional[str] = Field(default=None, pattern=HHMM_PATTERN)
    departure_time: Optional[str] = Field(default=None, pattern=HHMM_PATTERN)
    name: Optional[str] = None
    candidate_id: Optional[str] = None


class CandidateModel(CamelModel):
    id: str
    customer_id: str
    device_id: Optional[str] = Field(default=None, description="Defaults to the candidate id.")
    device_type: Optional[str] = None
    coordinates: CoordinatesModel
    service_duration_minutes: Optional[float] = None
    device_type_duration_minutes: Optional[float] = None
    time_window: Optional[TimeWindowModel] = None
    name: Optional[str] = None


class RouteContextModel(CamelModel):
    route_stops: List[RouteStopModel] = Field(default_factory=list)
    depot: CoordinatesModel
    date: date
    workday_start: Optional[str] = Field(default=None, pattern=HHMM_PATTERN)
    workday_end: Optional[str] = Field(default=None, pattern=HHMM_PATTERN)
    buffer: Optional[BufferModel] = None


class InsertionRequest(RouteContextModel):
    candidate: CandidateModel


class BatchInsertionRequest(RouteContextModel):
    candidates: List[CandidateModel] = Field(default_factory=list)
    best_only: bool = Field(
        default=True,
        description="Use the 1xK + Kx1 bulk lookup. False runs the exact per-candidate calculation.",
    )


class InsertionPositionModel(CamelModel):
    insert_after_index: int
    insert_after_name: str
    insert_before_name: str
    delta_km: Optional[float] = Field(None, description="Null when a leg is unreachable.")
    delta_min: Optional[float] = None
    formatted_delta: Optional[str] = None
    estimated_arrival: str
    estimated_departure: str
    status: InsertionStatus
    conflict_reason: Optional[str] = None
    slack_minutes: Optional[float] = None


class InsertionResponse(CamelModel):
    candidate_id: str
    best_position: Optional[InsertionPositionModel] = None
    all_positions: List[InsertionPositionModel]
    is_feasible: bool
    infeasible_reason: Optional[str] = None


class BatchInsertionResultModel(CamelModel):
    candidate_id: str
    best_delta_km: float
    best_delta_min: float
    best_insert_after_index: int
    status: InsertionStatus
    is_feasible: bool
    infeasible_reason: Optional[str] = None


class BatchInsertionResponseModel(CamelModel):
    results: List[BatchInsertionResultModel]
    processing_time_ms: int


class CrewModel(CamelModel):
    crew_id: str
    name: str
    depot: CoordinatesModel
    route_stops: List[RouteStopModel] = Field(default_factory=list)
    workday_start: Optional[str] = Field(default=None, pattern=HHMM_PATTERN)
    workday_end: Optional[str] = Field(default=None, pattern=HHMM_PATTERN)
    buffer: Optional[BufferModel] = None


class CompareCrewsRequest(CamelModel):
    current_crew_id: str
    crews: List[CrewModel] = Field(..., min_length=1)
    candidate: CandidateModel
    date: date
    min_savings_min: Optional[float] = Field(default=None, ge=0.0)
    min_savings_km: Optional[float] = Field(default=None, ge=0.0)


class CrewComparisonModel(CamelModel):
    crew_id: str
    crew_name: str
    is_feasible: bool
    delta_min: Optional[float] = None
    delta_km: Optional[float] = None
    savings_min: float
    savings_km: float
    is_better: bool


class CrewRecommendationModel(CamelModel):
    crew_id: str
    crew_name: str
    savings_min: float
    savings_km: float
    score: float
    formatted_savings: str


class CompareCrewsResponse(CamelModel):
    current_feasible: bool
    comparisons: List[CrewComparisonModel]
    best_alternative: Optional[CrewRecommendationModel] = None


class ScheduleRequest(RouteContextModel):
    return_to_depot: Optional[bool] = None


class StopScheduleModel(CamelModel):
    stop_id: str
    estimated_arrival: str
    estimated_departure: str
    distance_from_previous_km: float
    duration_from_previous_min: float
    service_duration_minutes: float
    waiting_minutes: float
    time_window_violated: bool


class ScheduleResponse(CamelModel):
    stops: List[StopScheduleModel]
    depot_departure: str
    route_end: str
    return_to_depot_distance_km: float
    return_to_depot_duration_min: float
    total_distance_km: float
    total_travel_minutes: float
    total_service_minutes: float
    exceeds_workday: bool
