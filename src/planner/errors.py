"""Error taxonomy shared by the engines and the API layer."""

from __future__ import annotations


class PlannerError(Exception):
    """Base class for errors surfaced to callers with a stable code."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidRequestError(PlannerError, ValueError):
    """Malformed input: not retried, aborts the whole request."""

    code = "VALIDATION_ERROR"


class InvalidTransitionError(PlannerError, ValueError):
    """A scheduling state change that the state machine does not allow."""

    code = "INVALID_TRANSITION"


class MatrixUnavailableError(PlannerError, ConnectionError):
    """The travel-time capability failed or timed out."""

    code = "MATRIX_UNAVAILABLE"
