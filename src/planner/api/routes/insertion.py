"""Route insertion and schedule endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, status

from ...errors import PlannerError
from ...schemas.messages import ErrorResponse, RequestEnvelope, SuccessResponse, success
from ...schemas.routing import (
    BatchInsertionRequest,
    BatchInsertionResponseModel,
    CompareCrewsRequest,
    CompareCrewsResponse,
    InsertionRequest,
    InsertionResponse,
    ScheduleRequest,
    ScheduleResponse,
)
from ...services.routing.service import (
    calculate_batch_for_request,
    calculate_insertion_for_request,
    compare_crews_for_request,
    recalculate_schedule_for_request,
)
from ..responses import internal_error_response, planner_error_response

router = APIRouter(prefix="/route", tags=["route"])

ERROR_RESPONSES = {
    400: {"model": ErrorResponse},
    500: {"model": ErrorResponse},
    503: {"model": ErrorResponse},
}


@router.post(
    "/insertion/calculate",
    response_model=SuccessResponse[InsertionResponse],
    status_code=status.HTTP_200_OK,
    responses=ERROR_RESPONSES,
)
def calculate(envelope: RequestEnvelope[InsertionRequest]):
    """Evaluate every insertion position of one candidate in a route."""
    try:
        return success(envelope, calculate_insertion_for_request(envelope.payload))
    except PlannerError as exc:
        return planner_error_response(exc, envelope.id)
    except Exception as exc:
        logging.exception(f"Error calculating insertion: {exc}")
        return internal_error_response(envelope.id, f"Failed to calculate insertion: {str(exc)}")


@router.post(
    "/insertion/batch",
    response_model=SuccessResponse[BatchInsertionResponseModel],
    status_code=status.HTTP_200_OK,
    responses=ERROR_RESPONSES,
)
def batch(envelope: RequestEnvelope[BatchInsertionRequest]):
    """Best insertion of many candidates into one route, sorted for the inbox."""
    try:
        return success(envelope, calculate_batch_for_request(envelope.payload))
    except PlannerError as exc:
        return planner_error_response(exc, envelope.id)
    except Exception as exc:
        logging.exception(f"Error calculating batch insertion: {exc}")
        return internal_error_response(envelope.id, f"Failed to calculate batch insertion: {str(exc)}")


@router.post(
    "/insertion/compare-crews",
    response_model=SuccessResponse[CompareCrewsResponse],
    status_code=status.HTTP_200_OK,
    responses=ERROR_RESPONSES,
)
def compare(envelope: RequestEnvelope[CompareCrewsRequest]):
    try:
        return success(envelope, compare_crews_for_request(envelope.payload))
    except PlannerError as exc:
        return planner_error_response(exc, envelope.id)
    except Exception as exc:
        logging.exception(f"Error comparing crews: {exc}")
        return internal_error_response(envelope.id, f"Failed to compare crews: {str(exc)}")


@router.post(
    "/schedule",
    response_model=SuccessResponse[ScheduleResponse],
    status_code=status.HTTP_200_OK,
    responses=ERROR_RESPONSES,
)
def schedule(envelope: RequestEnvelope[ScheduleRequest]):
    """Recompute arrival and departure estimates of an ordered route."""
    try:
        return success(envelope, recalculate_schedule_for_request(envelope.payload))
    except PlannerError as exc:
        return planner_error_response(exc, envelope.id)
    except Exception as exc:
        logging.exception(f"Error recalculating schedule: {exc}")
        return internal_error_response(envelope.id, f"Failed to recalculate schedule: {str(exc)}")
