"""Revision inbox request/response schemas."""

from __future__ import annotations

from datetime import date
from typing import List, Literal, Optional

from pydantic import Field, model_validator

from ..models.domain import CandidateState, Priority
from ..services.revisions.snooze import SnoozeOffset
from .messages import CamelModel
from .routing import CoordinatesModel


class OverdueRequest(CamelModel):
    device_id: str
    revision_interval_months: int
    last_completed_date: Optional[date] = None
    installation_date: Optional[date] = None
    today: date


class OverdueResponse(CamelModel):
    device_id: str
    is_overdue: bool
    never_serviced: bool
    next_due_date: Optional[date] = None
    overdue_days: int
    overdue_from_installation: bool
    formatted_overdue: Optional[str] = Field(
        default=None, description="Display form of the overdue span, e.g. '1 months, 15 days'."
    )


class SchedulingStateModel(CamelModel):
    state: CandidateState = CandidateState.ACTIVE
    snoozed_until: Optional[date] = None

    @model_validator(mode="after")
    def validate_snoozed_until(self) -> "SchedulingStateModel":
        if self.state is CandidateState.SNOOZED and self.snoozed_until is None:
            raise ValueError("snoozedUntil is required for a snoozed candidate")
        return self


class SnoozePreferenceModel(CamelModel):
    default_offset_days: SnoozeOffset = SnoozeOffset.ONE_WEEK


class DeviceModel(CamelModel):
    device_id: str
    customer_id: str
    revision_interval_months: int
    coordinates: CoordinatesModel
    device_type: Optional[str] = None
    last_completed_date: Optional[date] = None
    installation_date: Optional[date] = None
    scheduling: SchedulingStateModel = Field(default_factory=SchedulingStateModel)
    candidate_id: Optional[str] = None
    service_duration_minutes: Optional[float] = None
    device_type_duration_minutes: Optional[float] = None
    name: Optional[str] = None


class QueueRequest(CamelModel):
    devices: List[DeviceModel] = Field(default_factory=list)
    today: date
    priority_filter: Optional[List[Priority]] = None
    due_soon_days: Optional[int] = Field(default=None, ge=0)


class QueueItemModel(CamelModel):
    id: str
    customer_id: str
    device_id: str
    device_type: Optional[str] = None
    coordinates: CoordinatesModel
    due_date: Optional[date] = None
    priority: Priority
    state: CandidateState
    never_serviced: bool
    service_duration_minutes: Optional[float] = None
    device_type_duration_minutes: Optional[float] = None
    name: Optional[str] = None


class QueueResponse(CamelModel):
    items: List[QueueItemModel]
    total: int
    overdue_count: int
    due_soon_count: int
    hidden_count: int


class SnoozeRequest(CamelModel):
    action: Literal["snooze", "unsnooze", "schedule", "cancel"] = "snooze"
    state: SchedulingStateModel = Field(default_factory=SchedulingStateModel)
    today: date
    snooze_until: Optional[date] = None
    offset_days: Optional[SnoozeOffset] = None
    preference: Optional[SnoozePreferenceModel] = None


class SnoozeResponse(CamelModel):
    state: SchedulingStateModel
    preference: SnoozePreferenceModel
