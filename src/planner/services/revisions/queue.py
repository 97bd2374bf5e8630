"""Planning inbox candidate queue."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Iterable, Optional, Sequence

from ...config import settings
from ...models.domain import PRIORITY_RANK, Candidate, DeviceRevisionInfo, Priority
from .overdue import calculate_overdue_info, classify_priority
from .snooze import SnoozeStateMachine, state_machine

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CandidateQueue:
    items: list[Candidate]
    overdue_count: int
    due_soon_count: int
    hidden_count: int


def candidate_from_device(
    device: DeviceRevisionInfo,
    today: date,
    *,
    due_soon_days: int,
    machine: SnoozeStateMachine = state_machine,
) -> Candidate:
    info = calculate_overdue_info(
        device.device_id,
        device.revision_interval_months,
        device.last_completed_date,
        device.installation_date,
        today,
    )
    # Never-serviced devices without any anchor date are due now.
    due_date = info.next_due_date or today
    return Candidate(
        id=device.candidate_id or device.device_id,
        customer_id=device.customer_id,
        device_id=device.device_id,
        device_type=device.device_type,
        coordinates=device.coordinates,
        due_date=due_date,
        priority=classify_priority(due_date, today, due_soon_days),
        scheduling=machine.effective_state(device.scheduling, today),
        service_duration_minutes=device.service_duration_minutes,
        device_type_duration_minutes=device.device_type_duration_minutes,
        never_serviced=info.never_serviced,
        name=device.name,
    )


def _sort_key(candidate: Candidate) -> tuple:
    return (PRIORITY_RANK[candidate.priority], candidate.due_date or date.max, candidate.id)


def build_candidate_queue(
    devices: Iterable[DeviceRevisionInfo],
    today: date,
    *,
    priorities: Optional[Sequence[Priority]] = None,
    due_soon_days: Optional[int] = None,
    machine: SnoozeStateMachine = state_machine,
) -> CandidateQueue:
    """Build the inbox: active candidates ordered by urgency.

    Snoozed, scheduled and cancelled candidates are left out; an expired snooze
    counts as active again.
    """

    window = settings.due_soon_days if due_soon_days is None else due_soon_days
    wanted = set(priorities) if priorities else None

    items: list[Candidate] = []
    hidden = 0
    for device in devices:
        candidate = candidate_from_device(device, today, due_soon_days=window, machine=machine)
        if not machine.is_visible(candidate.scheduling, today):
            hidden += 1
            continue
        if wanted is not None and candidate.priority not in wanted:
            continue
        items.append(candidate)

    items.sort(key=_sort_key)
    overdue = sum(1 for item in items if item.priority is Priority.OVERDUE)
    due_soon = sum(1 for item in items if item.priority is Priority.DUE_SOON)
    logger.info(f"Candidate queue built: {len(items)} items ({overdue} overdue, {due_soon} due soon, {hidden} hidden)")
    return CandidateQueue(items=items, overdue_count=overdue, due_soon_count=due_soon, hidden_count=hidden)
