"""Overdue evaluation for device revisions.

Business rules:

1. With a completed revision: ``next_due = last_completed + interval``.
2. Without one but with an installation date: ``next_due = installation + interval``
   and the device is still reported as never serviced.
3. Without either anchor the device is never serviced and cannot be judged
   overdue.
"""

from __future__ import annotations

import calendar
from datetime import date
from typing import Optional

from ...errors import InvalidRequestError
from ...models.domain import OverdueInfo, Priority

DAYS_PER_YEAR = 365
DAYS_PER_MONTH = 30


def add_months(value: date, months: int) -> date:
    """Calendar-month addition clamped to the last day of the target month.

    ``add_months(date(2025, 1, 31), 1)`` is ``date(2025, 2, 28)``.
    """

    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(value.day, last_day))


def _overdue_days(next_due: date, today: date) -> int:
    return max(0, (today - next_due).days)


def calculate_overdue_info(
    device_id: str,
    revision_interval_months: int,
    last_completed_date: Optional[date],
    installation_date: Optional[date],
    today: date,
) -> OverdueInfo:
    if revision_interval_months <= 0:
        raise InvalidRequestError(
            f"Revision interval must be positive (device {device_id}: {revision_interval_months})."
        )

    if last_completed_date is not None:
        next_due = add_months(last_completed_date, revision_interval_months)
        overdue_days = _overdue_days(next_due, today)
        return OverdueInfo(
            device_id=device_id,
            is_overdue=overdue_days > 0,
            never_serviced=False,
            next_due_date=next_due,
            overdue_days=overdue_days,
        )

    if installation_date is not None:
        first_due = add_months(installation_date, revision_interval_months)
        overdue_days = _overdue_days(first_due, today)
        return OverdueInfo(
            device_id=device_id,
            is_overdue=overdue_days > 0,
            never_serviced=True,
            next_due_date=first_due,
            overdue_days=overdue_days,
            overdue_from_installation=overdue_days > 0,
        )

    return OverdueInfo(
        device_id=device_id,
        is_overdue=False,
        never_serviced=True,
        next_due_date=None,
        overdue_days=0,
    )


def format_overdue_duration(days: int) -> Optional[str]:
    """Format an overdue span as years, months and days for display.

    Uses 365-day years and 30-day months; this is display bucketing, not
    calendar-accurate date math. Returns ``None`` for negative input.
    """

    if days < 0:
        return None
    if days == 0:
        return "0 days"

    years, remainder = divmod(days, DAYS_PER_YEAR)
    months, remaining_days = divmod(remainder, DAYS_PER_MONTH)

    parts: list[str] = []
    if years > 0:
        parts.append(f"{years} years")
    if months > 0:
        parts.append(f"{months} months")
    if remaining_days > 0:
        parts.append(f"{remaining_days} days")
    return ", ".join(parts)


def classify_priority(due_date: date, today: date, due_soon_days: int) -> Priority:
    days_until_due = (due_date - today).days
    if days_until_due < 0:
        return Priority.OVERDUE
    if days_until_due <= due_soon_days:
        return Priority.DUE_SOON
    return Priority.UPCOMING
