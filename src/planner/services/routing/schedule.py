"""Sequential schedule recalculation and route-local edits.

Edits never reorder anything beyond what was asked and always return a new
``Route`` with a dense 0-based stop order. Times of stops at or after the
edited position are cleared; ``compute_route_schedule`` recomputes them.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from typing import List, Optional, Sequence

from ...config import settings
from ...errors import InvalidRequestError, MatrixUnavailableError
from ...models.domain import Candidate, Coordinates, Workday
from ..duration import resolve_service_duration
from .buffer import default_buffer, pad, pad_service
from .insertion import query_with_retry, validate_route, validate_workday
from .matrix import MatrixProvider
from .models import ArrivalBufferConfig, InsertionPosition, MatrixEntry, Route, RouteSchedule, RouteStop, StopSchedule

logger = logging.getLogger(__name__)


def _fetch_legs(
    provider: MatrixProvider, points: Sequence[Coordinates]
) -> List[MatrixEntry]:
    pairs = list(zip(points[:-1], points[1:]))
    workers = max(1, min(settings.max_parallel_matrix_requests, len(pairs)))
    with ThreadPoolExecutor(max_workers=workers) as executor:
        rows = list(executor.map(lambda pair: query_with_retry(provider, provider.query, pair[0], [pair[1]]), pairs))
    legs: List[MatrixEntry] = []
    for index, row in enumerate(rows):
        if not row or not row[0].reachable:
            raise MatrixUnavailableError(f"No road connection for leg {index} of the route.")
        legs.append(row[0])
    return legs


def compute_route_schedule(
    route: Route,
    workday: Workday,
    provider: MatrixProvider,
    *,
    buffer: Optional[ArrivalBufferConfig] = None,
    global_default: Optional[float] = None,
    return_to_depot: Optional[bool] = None,
) -> RouteSchedule:
    """Walk the route from the depot at workday start and estimate every stop.

    Each leg is padded by the arrival buffer, the crew waits for a window start,
    and service durations follow the override chain.
    """

    buffer = buffer or default_buffer()
    global_default = settings.default_service_duration_minutes if global_default is None else global_default
    return_to_depot = settings.return_to_depot if return_to_depot is None else return_to_depot
    validate_workday(workday)
    stops = validate_route(route)

    if not stops:
        return RouteSchedule(
            stops=[],
            depot_departure=workday.start,
            return_to_depot_distance_km=0.0,
            return_to_depot_duration_min=0.0,
            route_end=workday.start,
            total_distance_km=0.0,
            total_travel_minutes=0.0,
            total_service_minutes=0.0,
        )

    points = [route.depot] + [stop.coordinates for stop in stops]
    if return_to_depot:
        points.append(route.depot)
    legs = _fetch_legs(provider, points)

    clock = workday.start
    schedules: List[StopSchedule] = []
    total_km = 0.0
    total_travel = 0.0
    total_service = 0.0
    for stop, leg in zip(stops, legs):
        travel = pad(leg.duration_min, buffer)
        arrival = clock + travel
        waiting = 0.0
        window = stop.time_window
        if window is not None and arrival < window.start:
            waiting = window.start - arrival
            arrival = window.start
        service = pad_service(
            resolve_service_duration(stop.service_duration_minutes, stop.device_type_duration_minutes, global_default),
            buffer,
        )
        departure = arrival + service
        schedules.append(
            StopSchedule(
                stop_id=stop.id,
                estimated_arrival=arrival,
                estimated_departure=departure,
                distance_from_previous_km=leg.distance_km,
                duration_from_previous_min=travel,
                service_duration_minutes=service,
                waiting_minutes=waiting,
                time_window_violated=window is not None and arrival > window.end,
            )
        )
        total_km += leg.distance_km
        total_travel += travel
        total_service += service
        clock = departure

    return_km = 0.0
    return_min = 0.0
    if return_to_depot:
        return_leg = legs[-1]
        return_km = return_leg.distance_km
        return_min = pad(return_leg.duration_min, buffer)
        total_km += return_km
        total_travel += return_min
    route_end = clock + return_min

    logger.info(f"Recalculated schedule for {len(stops)} stops: {total_km:.1f} km, ends at {route_end:.0f} min")
    return RouteSchedule(
        stops=schedules,
        depot_departure=workday.start,
        return_to_depot_distance_km=return_km,
        return_to_depot_duration_min=return_min,
        route_end=route_end,
        total_distance_km=total_km,
        total_travel_minutes=total_travel,
        total_service_minutes=total_service,
        exceeds_workday=route_end > workday.end,
    )


def _renumber(stops: Sequence[RouteStop], stale_from: int) -> List[RouteStop]:
    renumbered: List[RouteStop] = []
    for index, stop in enumerate(stops):
        if index >= stale_from:
            renumbered.append(replace(stop, order=index, arrival=None, departure=None))
        else:
            renumbered.append(replace(stop, order=index))
    return renumbered


def insert_stop(route: Route, stop: RouteStop, position: int) -> Route:
    """Insert ``stop`` so that it ends up at index ``position``."""

    stops = validate_route(route)
    if not 0 <= position <= len(stops):
        raise InvalidRequestError(f"Insert position {position} is outside 0..{len(stops)}.")
    updated = stops[:position] + [stop] + stops[position:]
    renumbered = _renumber(updated, position + 1)
    # Keep the times the caller computed for the new stop itself.
    renumbered[position] = replace(stop, order=position)
    return replace(route, stops=renumbered)


def move_stop(route: Route, from_index: int, to_index: int) -> Route:
    stops = validate_route(route)
    if not 0 <= from_index < len(stops) or not 0 <= to_index < len(stops):
        raise InvalidRequestError(f"Move {from_index} -> {to_index} is outside 0..{len(stops) - 1}.")
    updated = list(stops)
    moved = updated.pop(from_index)
    updated.insert(to_index, moved)
    return replace(route, stops=_renumber(updated, min(from_index, to_index)))


def remove_stop(route: Route, index: int) -> Route:
    stops = validate_route(route)
    if not 0 <= index < len(stops):
        raise InvalidRequestError(f"Stop index {index} is outside 0..{len(stops) - 1}.")
    updated = stops[:index] + stops[index + 1 :]
    return replace(route, stops=_renumber(updated, index))


def stop_from_candidate(candidate: Candidate, *, order: int = 0, stop_id: Optional[str] = None) -> RouteStop:
    """Route stop that references ``candidate``; the candidate itself stays unowned."""

    return RouteStop(
        id=stop_id or f"stop-{candidate.id}",
        customer_id=candidate.customer_id,
        coordinates=candidate.coordinates,
        order=order,
        service_duration_minutes=candidate.service_duration_minutes,
        time_window=candidate.time_window,
        name=candidate.name,
        candidate_id=candidate.id,
        device_type_duration_minutes=candidate.device_type_duration_minutes,
    )


def apply_insertion(route: Route, candidate: Candidate, position: InsertionPosition) -> Route:
    """Insert ``candidate`` where the insertion engine placed it."""

    index = position.insert_after_index + 1
    stop = stop_from_candidate(candidate, order=index)
    stop = replace(stop, arrival=position.estimated_arrival, departure=position.estimated_departure)
    return insert_stop(route, stop, index)
