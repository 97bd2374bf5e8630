"""Scheduling state machine for inbox candidates.

``active -> snoozed(until) -> active`` once ``until <= today``; ``active ->
scheduled``; ``active | snoozed -> cancelled``. Snooze expiry is evaluated
lazily on every query, there is no background timer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from enum import IntEnum
from typing import Optional

from ...errors import InvalidRequestError, InvalidTransitionError
from ...models.domain import CandidateState, SchedulingState

logger = logging.getLogger(__name__)


class SnoozeOffset(IntEnum):
    ONE_DAY = 1
    ONE_WEEK = 7
    TWO_WEEKS = 14
    ONE_MONTH = 30


@dataclass(slots=True, frozen=True)
class SnoozePreference:
    """Last snooze offset chosen by a user, offered as the next default."""

    default_offset: SnoozeOffset = SnoozeOffset.ONE_WEEK


def _offset(days: int) -> SnoozeOffset:
    try:
        return SnoozeOffset(days)
    except ValueError:
        allowed = ", ".join(str(int(item)) for item in SnoozeOffset)
        raise InvalidRequestError(f"Snooze offset must be one of {allowed} days, got {days}.") from None


class SnoozeStateMachine:
    def effective_state(self, current: SchedulingState, today: date) -> SchedulingState:
        """Return ``current`` with an expired snooze resolved back to active."""

        if current.state is CandidateState.SNOOZED and current.snoozed_until is None:
            raise InvalidRequestError("A snoozed candidate needs a snooze-until date.")
        if current.state is CandidateState.SNOOZED and current.snoozed_until <= today:
            return SchedulingState(state=CandidateState.ACTIVE)
        return current

    def is_visible(self, current: SchedulingState, today: date) -> bool:
        return self.effective_state(current, today).state is CandidateState.ACTIVE

    def snooze(
        self,
        current: SchedulingState,
        today: date,
        *,
        until: Optional[date] = None,
        offset: Optional[SnoozeOffset] = None,
        preference: Optional[SnoozePreference] = None,
    ) -> tuple[SchedulingState, SnoozePreference]:
        """Snooze a candidate until ``until`` or ``today + offset``.

        Without either argument the preference's default offset is used. When an
        offset is chosen explicitly it becomes the returned preference's default.
        Re-snoozing an already snoozed candidate replaces its date.
        """

        preference = preference or SnoozePreference()
        state = self.effective_state(current, today)
        if state.state not in (CandidateState.ACTIVE, CandidateState.SNOOZED):
            raise InvalidTransitionError(f"Cannot snooze a {state.state.value} candidate.")

        if until is not None and offset is not None:
            raise InvalidRequestError("Pass either a snooze date or an offset, not both.")
        if until is None:
            chosen = _offset(offset) if offset is not None else preference.default_offset
            until = today + timedelta(days=int(chosen))
            if offset is not None:
                preference = SnoozePreference(default_offset=chosen)
        if until <= today:
            raise InvalidRequestError(f"Snooze date {until.isoformat()} must be after {today.isoformat()}.")

        logger.debug(f"Snoozing candidate until {until.isoformat()} (was {state.state.value})")
        return SchedulingState(state=CandidateState.SNOOZED, snoozed_until=until), preference

    def unsnooze(self, current: SchedulingState, today: date) -> SchedulingState:
        state = self.effective_state(current, today)
        if state.state is CandidateState.ACTIVE:
            return state
        if state.state is not CandidateState.SNOOZED:
            raise InvalidTransitionError(f"Cannot unsnooze a {state.state.value} candidate.")
        return SchedulingState(state=CandidateState.ACTIVE)

    def schedule(self, current: SchedulingState, today: date) -> SchedulingState:
        state = self.effective_state(current, today)
        if state.state is not CandidateState.ACTIVE:
            raise InvalidTransitionError(f"Cannot schedule a {state.state.value} candidate.")
        return SchedulingState(state=CandidateState.SCHEDULED)

    def cancel(self, current: SchedulingState, today: date) -> SchedulingState:
        state = self.effective_state(current, today)
        if state.state not in (CandidateState.ACTIVE, CandidateState.SNOOZED):
            raise InvalidTransitionError(f"Cannot cancel a {state.state.value} candidate.")
        return SchedulingState(state=CandidateState.CANCELLED)


state_machine = SnoozeStateMachine()
