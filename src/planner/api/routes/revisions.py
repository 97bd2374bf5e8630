"""Revision inbox endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, status

from ...errors import PlannerError
from ...schemas.messages import ErrorResponse, RequestEnvelope, SuccessResponse, success
from ...schemas.revisions import (
    OverdueRequest,
    OverdueResponse,
    QueueRequest,
    QueueResponse,
    SnoozeRequest,
    SnoozeResponse,
)
from ...services.revisions.service import overdue_for_request, queue_for_request, snooze_for_request
from ..responses import internal_error_response, planner_error_response

router = APIRouter(prefix="/revisions", tags=["revisions"])

ERROR_RESPONSES = {400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}}


@router.post(
    "/overdue",
    response_model=SuccessResponse[OverdueResponse],
    status_code=status.HTTP_200_OK,
    responses=ERROR_RESPONSES,
)
def overdue(envelope: RequestEnvelope[OverdueRequest]):
    try:
        return success(envelope, overdue_for_request(envelope.payload))
    except PlannerError as exc:
        return planner_error_response(exc, envelope.id)
    except Exception as exc:
        logging.exception(f"Error evaluating overdue state: {exc}")
        return internal_error_response(envelope.id, f"Failed to evaluate overdue state: {str(exc)}")


@router.post(
    "/queue",
    response_model=SuccessResponse[QueueResponse],
    status_code=status.HTTP_200_OK,
    responses=ERROR_RESPONSES,
)
def queue(envelope: RequestEnvelope[QueueRequest]):
    """Planning inbox: active candidates ordered by urgency."""
    try:
        return success(envelope, queue_for_request(envelope.payload))
    except PlannerError as exc:
        return planner_error_response(exc, envelope.id)
    except Exception as exc:
        logging.exception(f"Error building candidate queue: {exc}")
        return internal_error_response(envelope.id, f"Failed to build candidate queue: {str(exc)}")


@router.post(
    "/snooze",
    response_model=SuccessResponse[SnoozeResponse],
    status_code=status.HTTP_200_OK,
    responses=ERROR_RESPONSES,
)
def snooze(envelope: RequestEnvelope[SnoozeRequest]):
    """Apply a scheduling state transition (snooze by default)."""
    try:
        return success(envelope, snooze_for_request(envelope.payload))
    except PlannerError as exc:
        return planner_error_response(exc, envelope.id)
    except Exception as exc:
        logging.exception(f"Error changing scheduling state: {exc}")
        return internal_error_response(envelope.id, f"Failed to change scheduling state: {str(exc)}")
