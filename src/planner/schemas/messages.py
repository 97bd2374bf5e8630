"""Request/response envelopes shared by every endpoint."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Generic, Optional, TypeVar
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

PayloadT = TypeVar("PayloadT")


class CamelModel(BaseModel):
    """camelCase on the wire, snake_case accepted on input."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RequestEnvelope(BaseModel, Generic[PayloadT]):
    id: str = Field(default_factory=lambda: str(uuid4()), description="Caller-assigned request id.")
    timestamp: datetime = Field(default_factory=_now)
    payload: PayloadT


class SuccessResponse(BaseModel, Generic[PayloadT]):
    id: str
    timestamp: datetime
    payload: PayloadT


class ErrorDetail(BaseModel):
    code: str
    message: str


class ErrorResponse(BaseModel):
    id: Optional[str] = None
    timestamp: datetime = Field(default_factory=_now)
    error: ErrorDetail


def success(request: RequestEnvelope, payload: PayloadT) -> SuccessResponse[PayloadT]:
    """Echo the caller's id and timestamp around ``payload``."""
    return SuccessResponse(id=request.id, timestamp=request.timestamp, payload=payload)
