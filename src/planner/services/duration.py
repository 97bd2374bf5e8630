"""Service duration resolution."""

from __future__ import annotations

from typing import Optional


def resolve_service_duration(
    stop_override: Optional[float],
    device_type_default: Optional[float],
    global_default: float,
) -> float:
    """Resolve the effective service duration in minutes.

    Priority chain: stop-level override, then the device type default, then the
    global default. Zero or negative values are treated as unset because the
    source data cannot tell an explicit zero apart from a missing value. The
    global default is returned unconditionally; settings validate it as > 0.
    """

    if stop_override is not None and stop_override > 0:
        return stop_override
    if device_type_default is not None and device_type_default > 0:
        return device_type_default
    return global_default
