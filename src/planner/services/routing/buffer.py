"""Arrival buffer padding."""

from __future__ import annotations

from ...config import settings
from .models import ArrivalBufferConfig


def pad(raw_minutes: float, config: ArrivalBufferConfig) -> float:
    """Pad a raw travel (or service) estimate: ``raw * (1 + percent/100) + fixed``.

    Bounds are enforced by the request schemas; out-of-range values simply
    produce larger or smaller buffers here.
    """

    return raw_minutes * (1.0 + config.percent / 100.0) + config.fixed_minutes


def pad_service(service_minutes: float, config: ArrivalBufferConfig) -> float:
    return pad(service_minutes, config) if config.apply_to_service else service_minutes


def default_buffer() -> ArrivalBufferConfig:
    return ArrivalBufferConfig(
        percent=settings.default_buffer_percent,
        fixed_minutes=settings.default_buffer_fixed_minutes,
    )
