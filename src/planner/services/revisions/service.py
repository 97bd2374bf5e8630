"""Revision inbox orchestration for the API layer."""

from __future__ import annotations

import logging

from ...models.domain import Coordinates, DeviceRevisionInfo, SchedulingState
from ...schemas.revisions import (
    OverdueRequest,
    OverdueResponse,
    QueueItemModel,
    QueueRequest,
    QueueResponse,
    SchedulingStateModel,
    SnoozePreferenceModel,
    SnoozeRequest,
    SnoozeResponse,
)
from ...schemas.routing import CoordinatesModel
from .overdue import calculate_overdue_info, format_overdue_duration
from .queue import build_candidate_queue
from .snooze import SnoozePreference, state_machine

logger = logging.getLogger(__name__)


def overdue_for_request(payload: OverdueRequest) -> OverdueResponse:
    info = calculate_overdue_info(
        payload.device_id,
        payload.revision_interval_months,
        payload.last_completed_date,
        payload.installation_date,
        payload.today,
    )
    return OverdueResponse(
        device_id=info.device_id,
        is_overdue=info.is_overdue,
        never_serviced=info.never_serviced,
        next_due_date=info.next_due_date,
        overdue_days=info.overdue_days,
        overdue_from_installation=info.overdue_from_installation,
        formatted_overdue=format_overdue_duration(info.overdue_days) if info.is_overdue else None,
    )


def queue_for_request(payload: QueueRequest) -> QueueResponse:
    devices = [
        DeviceRevisionInfo(
            device_id=device.device_id,
            customer_id=device.customer_id,
            revision_interval_months=device.revision_interval_months,
            coordinates=Coordinates(lat=device.coordinates.lat, lng=device.coordinates.lng),
            device_type=device.device_type,
            last_completed_date=device.last_completed_date,
            installation_date=device.installation_date,
            scheduling=SchedulingState(state=device.scheduling.state, snoozed_until=device.scheduling.snoozed_until),
            candidate_id=device.candidate_id,
            service_duration_minutes=device.service_duration_minutes,
            device_type_duration_minutes=device.device_type_duration_minutes,
            name=device.name,
        )
        for device in payload.devices
    ]
    queue = build_candidate_queue(
        devices,
        payload.today,
        priorities=payload.priority_filter,
        due_soon_days=payload.due_soon_days,
    )
    return QueueResponse(
        items=[
            QueueItemModel(
                id=item.id,
                customer_id=item.customer_id,
                device_id=item.device_id,
                device_type=item.device_type,
                coordinates=CoordinatesModel(lat=item.coordinates.lat, lng=item.coordinates.lng),
                due_date=item.due_date,
                priority=item.priority,
                state=item.scheduling.state,
                never_serviced=item.never_serviced,
                service_duration_minutes=item.service_duration_minutes,
                device_type_duration_minutes=item.device_type_duration_minutes,
                name=item.name,
            )
            for item in queue.items
        ],
        total=len(queue.items),
        overdue_count=queue.overdue_count,
        due_soon_count=queue.due_soon_count,
        hidden_count=queue.hidden_count,
    )


def snooze_for_request(payload: SnoozeRequest) -> SnoozeResponse:
    current = SchedulingState(state=payload.state.state, snoozed_until=payload.state.snoozed_until)
    preference = (
        SnoozePreference(default_offset=payload.preference.default_offset_days)
        if payload.preference
        else SnoozePreference()
    )

    if payload.action == "snooze":
        new_state, preference = state_machine.snooze(
            current,
            payload.today,
            until=payload.snooze_until,
            offset=payload.offset_days,
            preference=preference,
        )
    elif payload.action == "unsnooze":
        new_state = state_machine.unsnooze(current, payload.today)
    elif payload.action == "schedule":
        new_state = state_machine.schedule(current, payload.today)
    else:
        new_state = state_machine.cancel(current, payload.today)

    logger.info(f"Scheduling state {current.state.value} -> {new_state.state.value} ({payload.action})")
    return SnoozeResponse(
        state=SchedulingStateModel(state=new_state.state, snoozed_until=new_state.snoozed_until),
        preference=SnoozePreferenceModel(default_offset_days=preference.default_offset),
    )
