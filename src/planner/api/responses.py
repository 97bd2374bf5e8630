"""Error envelopes returned by the endpoints."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import status
from fastapi.responses import JSONResponse

from ..errors import PlannerError
from ..schemas.messages import ErrorDetail, ErrorResponse

logger = logging.getLogger(__name__)

STATUS_BY_CODE = {
    "VALIDATION_ERROR": status.HTTP_400_BAD_REQUEST,
    "INVALID_TRANSITION": status.HTTP_400_BAD_REQUEST,
    "MATRIX_UNAVAILABLE": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def _error(request_id: Optional[str], code: str, message: str, status_code: int) -> JSONResponse:
    body = ErrorResponse(id=request_id, error=ErrorDetail(code=code, message=message))
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


def planner_error_response(exc: PlannerError, request_id: Optional[str] = None) -> JSONResponse:
    status_code = STATUS_BY_CODE.get(exc.code, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if status_code >= 500:
        logger.warning(f"Request {request_id} failed with {exc.code}: {exc.message}")
    return _error(request_id, exc.code, exc.message, status_code)


def internal_error_response(request_id: Optional[str], message: str) -> JSONResponse:
    return _error(request_id, "INTERNAL_ERROR", message, status.HTTP_500_INTERNAL_SERVER_ERROR)
