"""Insertion engine: where can a candidate go into an existing route, and at what cost.

Every gap of the route (after the depot, between consecutive stops, before the
return to the depot) is evaluated with the same rules:

* marginal cost ``delta = leg(prev, c) + leg(c, next) - leg(prev, next)``; travel
  minutes are padded by the crew's arrival buffer, distances are not;
* the candidate's arrival waits for its time window start;
* the push caused downstream is carried undiminished to every later stop, which
  must still meet its hard window, and the route must end within the workday.
"""

from __future__ import annotations

import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, TypeVar

from ...config import settings
from ...errors import InvalidRequestError, MatrixUnavailableError
from ...models.domain import Candidate, Coordinates, TimeWindow, Workday
from ...timeutil import ceil_to_grid
from ..duration import resolve_service_duration
from .buffer import default_buffer, pad, pad_service
from .matrix import MatrixProvider
from .models import (
    MATRIX_UNAVAILABLE,
    STATUS_RANK,
    TIME_WINDOW_VIOLATION,
    UNREACHABLE,
    WORKDAY_EXCEEDED,
    ArrivalBufferConfig,
    BatchInsertionResponse,
    BatchInsertionResult,
    InsertionPosition,
    InsertionResult,
    InsertionStatus,
    MatrixEntry,
    Route,
    RouteStop,
)

logger = logging.getLogger(__name__)

DEPOT_NAME = "Depot"
END_OF_ROUTE_NAME = "End of route"

T = TypeVar("T")


@dataclass(slots=True)
class InsertionOptions:
    """Tunables shared by single, batch and multi-crew insertion."""

    buffer: ArrivalBufferConfig
    global_default: float
    tight_slack_minutes: float
    arrival_rounding_minutes: int
    return_to_depot: bool

    @classmethod
    def from_settings(
        cls,
        *,
        buffer: Optional[ArrivalBufferConfig] = None,
        global_default: Optional[float] = None,
        tight_slack_minutes: Optional[float] = None,
        arrival_rounding_minutes: Optional[int] = None,
        return_to_depot: Optional[bool] = None,
    ) -> "InsertionOptions":
        return cls(
            buffer=buffer or default_buffer(),
            global_default=(
                global_default if global_default is not None else settings.default_service_duration_minutes
            ),
            tight_slack_minutes=(
                tight_slack_minutes if tight_slack_minutes is not None else settings.tight_slack_minutes
            ),
            arrival_rounding_minutes=(
                arrival_rounding_minutes
                if arrival_rounding_minutes is not None
                else settings.arrival_rounding_minutes
            ),
            return_to_depot=return_to_depot if return_to_depot is not None else settings.return_to_depot,
        )


@dataclass(slots=True)
class _GapLegs:
    """Matrix lookups of one candidate for one gap."""

    to_candidate: MatrixEntry
    from_candidate: Optional[MatrixEntry]
    edge: Optional[MatrixEntry]


@dataclass(slots=True)
class _Timeline:
    """Known (or estimated) timing of the existing route."""

    stops: List[RouteStop]
    services: List[float]
    arrivals: List[Optional[float]]
    departures: List[float]
    workday: Workday


def insertion_cost(position: InsertionPosition) -> float:
    """Cost used to rank insertion positions within one route."""

    return position.delta_min


def _position_key(position: InsertionPosition) -> tuple:
    return (insertion_cost(position), position.delta_km, position.insert_after_index)


def format_insertion_delta(delta_min: float, delta_km: float) -> str:
    """Display helper, e.g. ``"+12min / +3.4km"``."""

    minutes = int(round(delta_min))
    min_sign = "+" if minutes >= 0 else ""
    km_sign = "+" if delta_km >= 0 else ""
    return f"{min_sign}{minutes}min / {km_sign}{delta_km:.1f}km"


def validate_workday(workday: Workday) -> None:
    if workday.end <= workday.start:
        raise InvalidRequestError("Workday end must be after workday start.")


def validate_route(route: Route) -> List[RouteStop]:
    """Check route invariants and return its stops in visiting order."""

    stops = sorted(route.stops, key=lambda stop: stop.order)
    orders = [stop.order for stop in stops]
    if orders != list(range(len(stops))):
        raise InvalidRequestError(f"Route stop order must be dense and 0-based, got {orders}.")

    last_arrival: Optional[float] = None
    for stop in stops:
        if stop.service_duration_minutes is not None and stop.service_duration_minutes < 0:
            raise InvalidRequestError(f"Stop {stop.id} has a negative service duration.")
        if stop.arrival is None:
            continue
        if last_arrival is not None and stop.arrival < last_arrival:
            raise InvalidRequestError(f"Stop {stop.id} arrives before the previous stop.")
        last_arrival = stop.arrival
    return stops


def _build_timeline(stops: List[RouteStop], workday: Workday, options: InsertionOptions) -> _Timeline:
    services: List[float] = []
    arrivals: List[Optional[float]] = []
    departures: List[float] = []
    for stop in stops:
        service = pad_service(
            resolve_service_duration(
                stop.service_duration_minutes, stop.device_type_duration_minutes, options.global_default
            ),
            options.buffer,
        )
        window_start = stop.time_window.start if stop.time_window is not None else None
        if stop.departure is not None:
            departure = stop.departure
        else:
            # Crew starts at the window start (or the planned arrival) when nothing better is known.
            anchor = window_start if window_start is not None else stop.arrival
            departure = anchor + service if anchor is not None else workday.start

        if stop.arrival is not None:
            arrival: Optional[float] = stop.arrival
        elif stop.departure is not None:
            arrival = stop.departure - service
        else:
            arrival = window_start

        services.append(service)
        arrivals.append(arrival)
        departures.append(departure)
    return _Timeline(stops=stops, services=services, arrivals=arrivals, departures=departures, workday=workday)


def _stop_label(stop: RouteStop) -> str:
    return stop.name or stop.id


def _gap_names(stops: Sequence[RouteStop], gap: int, return_to_depot: bool) -> tuple[str, str]:
    after = DEPOT_NAME if gap == 0 else _stop_label(stops[gap - 1])
    if gap < len(stops):
        before = _stop_label(stops[gap])
    else:
        before = DEPOT_NAME if return_to_depot else END_OF_ROUTE_NAME
    return after, before


def _gap_points(route: Route, stops: Sequence[RouteStop], return_to_depot: bool) -> List[tuple[Coordinates, Optional[Coordinates]]]:
    points: List[tuple[Coordinates, Optional[Coordinates]]] = []
    for gap in range(len(stops) + 1):
        prev = route.depot if gap == 0 else stops[gap - 1].coordinates
        if gap < len(stops):
            nxt: Optional[Coordinates] = stops[gap].coordinates
        else:
            nxt = route.depot if return_to_depot else None
        points.append((prev, nxt))
    return points


def query_with_retry(provider: MatrixProvider, fn: Callable[..., T], *args) -> T:
    """Call a matrix lookup, retrying failures with exponential backoff.

    Providers that already retry their own transport are called once.
    """

    retries = 0 if provider.retries_internally else settings.matrix_max_retries
    attempt = 0
    while True:
        try:
            return fn(*args)
        except (ConnectionError, TimeoutError) as exc:
            attempt += 1
            if attempt > retries:
                raise MatrixUnavailableError(f"Matrix lookup failed after {retries} retries: {exc}") from exc
            wait_time = settings.matrix_backoff_seconds * (2 ** (attempt - 1))
            logger.debug(f"Matrix lookup failed, retrying in {wait_time:.1f}s (attempt {attempt}/{retries}): {exc}")
            time.sleep(wait_time)


def _fetch_gap(
    provider: MatrixProvider,
    prev: Coordinates,
    nxt: Optional[Coordinates],
    candidates: Sequence[Candidate],
) -> List[_GapLegs]:
    """1xK + Kx1 lookup for one gap.

    ``query(prev, [c1..cK, next])`` yields every ``prev -> c`` leg plus the
    route's own ``prev -> next`` edge; ``query_reverse([c1..cK], next)`` yields
    every ``c -> next`` leg.
    """

    coords = [candidate.coordinates for candidate in candidates]
    forward = query_with_retry(provider, provider.query, prev, coords + ([nxt] if nxt is not None else []))
    if len(forward) != len(coords) + (1 if nxt is not None else 0):
        raise MatrixUnavailableError("Matrix provider returned an unexpected number of entries.")
    edge = forward[len(coords)] if nxt is not None else None
    if nxt is not None:
        backward: Sequence[Optional[MatrixEntry]] = query_with_retry(provider, provider.query_reverse, coords, nxt)
        if len(backward) != len(coords):
            raise MatrixUnavailableError("Matrix provider returned an unexpected number of entries.")
    else:
        backward = [None] * len(coords)
    return [
        _GapLegs(to_candidate=forward[i], from_candidate=backward[i], edge=edge) for i in range(len(coords))
    ]


def _padded(entry: Optional[MatrixEntry], buffer: ArrivalBufferConfig) -> float:
    if entry is None or not entry.reachable:
        return 0.0
    return pad(entry.duration_min, buffer)


def _km(entry: Optional[MatrixEntry]) -> float:
    if entry is None or not entry.reachable:
        return 0.0
    return entry.distance_km


def _evaluate_gap(
    gap: int,
    timeline: _Timeline,
    service: float,
    window: Optional[TimeWindow],
    legs: Sequence[_GapLegs],
    options: InsertionOptions,
) -> InsertionPosition:
    stops = timeline.stops
    workday = timeline.workday
    gap_legs = legs[gap]
    after_name, before_name = _gap_names(stops, gap, options.return_to_depot)
    prev_departure = workday.start if gap == 0 else timeline.departures[gap - 1]

    if not gap_legs.to_candidate.reachable or (
        gap_legs.from_candidate is not None and not gap_legs.from_candidate.reachable
    ):
        return InsertionPosition(
            insert_after_index=gap - 1,
            insert_after_name=after_name,
            insert_before_name=before_name,
            delta_km=math.inf,
            delta_min=math.inf,
            estimated_arrival=prev_departure,
            estimated_departure=prev_departure + service,
            status=InsertionStatus.CONFLICT,
            conflict_reason=UNREACHABLE,
        )

    buffer = options.buffer
    travel_in = pad(gap_legs.to_candidate.duration_min, buffer)
    travel_out = _padded(gap_legs.from_candidate, buffer)
    edge_travel = _padded(gap_legs.edge, buffer)
    delta_km = gap_legs.to_candidate.distance_km + _km(gap_legs.from_candidate) - _km(gap_legs.edge)
    delta_min = travel_in + travel_out - edge_travel + service

    arrival = prev_departure + travel_in
    if window is not None and arrival < window.start:
        arrival = window.start
    arrival = ceil_to_grid(arrival, options.arrival_rounding_minutes)
    departure = arrival + service

    reason: Optional[str] = None
    soft_miss = False
    slacks: List[float] = []

    if window is not None:
        if window.is_hard:
            slacks.append(window.end - arrival)
            if arrival > window.end:
                reason = TIME_WINDOW_VIOLATION
        elif arrival > window.end:
            soft_miss = True

    if gap < len(stops):
        new_next_arrival = departure + travel_out
        old_next_arrival = timeline.arrivals[gap]
        push = max(0.0, new_next_arrival - old_next_arrival) if old_next_arrival is not None else 0.0
        for index in range(gap, len(stops)):
            stop_window = stops[index].time_window
            old_arrival = timeline.arrivals[index]
            if stop_window is None or old_arrival is None:
                continue
            shifted = old_arrival + push
            if stop_window.is_hard:
                slacks.append(stop_window.end - shifted)
                if shifted > stop_window.end and reason is None:
                    reason = TIME_WINDOW_VIOLATION
            elif shifted > stop_window.end:
                soft_miss = True
        return_leg = legs[-1].edge if options.return_to_depot else None
        route_end = timeline.departures[-1] + push + _padded(return_leg, buffer)
    else:
        route_end = departure + travel_out

    slacks.append(workday.end - route_end)
    if route_end > workday.end and reason is None:
        reason = WORKDAY_EXCEEDED

    slack = min(slacks)
    if reason is not None:
        status = InsertionStatus.CONFLICT
    elif slack < options.tight_slack_minutes or soft_miss:
        status = InsertionStatus.TIGHT
    else:
        status = InsertionStatus.OK

    return InsertionPosition(
        insert_after_index=gap - 1,
        insert_after_name=after_name,
        insert_before_name=before_name,
        delta_km=delta_km,
        delta_min=delta_min,
        estimated_arrival=arrival,
        estimated_departure=departure,
        status=status,
        conflict_reason=reason,
        slack_minutes=slack,
    )


def _result_from_legs(
    candidate: Candidate,
    timeline: _Timeline,
    legs: Sequence[_GapLegs],
    options: InsertionOptions,
) -> InsertionResult:
    service = pad_service(
        resolve_service_duration(
            candidate.service_duration_minutes, candidate.device_type_duration_minutes, options.global_default
        ),
        options.buffer,
    )
    positions = [
        _evaluate_gap(gap, timeline, service, candidate.time_window, legs, options) for gap in range(len(legs))
    ]
    feasible = [position for position in positions if position.status is not InsertionStatus.CONFLICT]
    best = min(feasible, key=_position_key) if feasible else None

    infeasible_reason = None
    if best is None:
        conflicts = sorted(positions, key=lambda position: position.insert_after_index)
        infeasible_reason = conflicts[0].conflict_reason if conflicts else None

    return InsertionResult(
        candidate_id=candidate.id,
        best_position=best,
        all_positions=sorted(positions, key=_position_key),
        is_feasible=best is not None,
        infeasible_reason=infeasible_reason,
    )


def _unavailable(candidate_id: str) -> InsertionResult:
    return InsertionResult(
        candidate_id=candidate_id,
        best_position=None,
        all_positions=[],
        is_feasible=False,
        infeasible_reason=MATRIX_UNAVAILABLE,
    )


def calculate_insertion(
    route: Route,
    candidate: Candidate,
    workday: Workday,
    provider: MatrixProvider,
    *,
    options: Optional[InsertionOptions] = None,
    buffer: Optional[ArrivalBufferConfig] = None,
) -> InsertionResult:
    """Evaluate every gap of ``route`` for ``candidate`` and pick the cheapest feasible one."""

    options = options or InsertionOptions.from_settings(buffer=buffer)
    validate_workday(workday)
    stops = validate_route(route)
    timeline = _build_timeline(stops, workday, options)
    gaps = _gap_points(route, stops, options.return_to_depot)

    workers = max(1, min(settings.max_parallel_matrix_requests, len(gaps)))
    try:
        with ThreadPoolExecutor(max_workers=workers) as executor:
            fetched = list(executor.map(lambda gap: _fetch_gap(provider, gap[0], gap[1], [candidate]), gaps))
    except MatrixUnavailableError as exc:
        logger.warning(f"Matrix unavailable for candidate {candidate.id}: {exc}")
        return _unavailable(candidate.id)

    return _result_from_legs(candidate, timeline, [legs[0] for legs in fetched], options)


def _batch_entry(result: InsertionResult) -> BatchInsertionResult:
    if result.best_position is not None:
        best = result.best_position
        return BatchInsertionResult(
            candidate_id=result.candidate_id,
            best_delta_km=best.delta_km,
            best_delta_min=best.delta_min,
            best_insert_after_index=best.insert_after_index,
            status=best.status,
            is_feasible=True,
        )
    finite = [
        position for position in result.all_positions if math.isfinite(position.delta_min)
    ]
    cheapest = min(finite, key=_position_key) if finite else None
    return BatchInsertionResult(
        candidate_id=result.candidate_id,
        best_delta_km=cheapest.delta_km if cheapest else 0.0,
        best_delta_min=cheapest.delta_min if cheapest else 0.0,
        best_insert_after_index=cheapest.insert_after_index if cheapest else -1,
        status=InsertionStatus.CONFLICT,
        is_feasible=False,
        infeasible_reason=result.infeasible_reason,
    )


def sort_batch_results(results: Sequence[BatchInsertionResult]) -> List[BatchInsertionResult]:
    """Feasible first, then ok < tight < conflict, then cheaper, then candidate id."""

    return sorted(
        results,
        key=lambda item: (not item.is_feasible, STATUS_RANK[item.status], item.best_delta_min, item.candidate_id),
    )


def _fetch_gap_per_candidate(
    provider: MatrixProvider,
    prev: Coordinates,
    nxt: Optional[Coordinates],
    candidates: Sequence[Candidate],
) -> List[Optional[_GapLegs]]:
    legs: List[Optional[_GapLegs]] = []
    for candidate in candidates:
        try:
            legs.append(_fetch_gap(provider, prev, nxt, [candidate])[0])
        except MatrixUnavailableError as exc:
            logger.warning(f"Matrix unavailable for candidate {candidate.id}: {exc}")
            legs.append(None)
    return legs


def _bulk_gap(
    provider: MatrixProvider,
    prev: Coordinates,
    nxt: Optional[Coordinates],
    candidates: Sequence[Candidate],
) -> List[Optional[_GapLegs]]:
    try:
        return list(_fetch_gap(provider, prev, nxt, candidates))
    except MatrixUnavailableError as exc:
        logger.warning(f"Bulk matrix lookup failed for a gap, retrying per candidate: {exc}")
        return _fetch_gap_per_candidate(provider, prev, nxt, candidates)


def calculate_batch_insertion(
    route: Route,
    candidates: Sequence[Candidate],
    workday: Workday,
    provider: MatrixProvider,
    *,
    best_only: bool = True,
    options: Optional[InsertionOptions] = None,
    buffer: Optional[ArrivalBufferConfig] = None,
) -> BatchInsertionResponse:
    """Evaluate many candidates against one route.

    With ``best_only`` the matrix is queried once per gap for all candidates
    together; otherwise each candidate runs the full single calculation.
    A candidate whose lookups fail is reported as ``matrix_unavailable``
    without affecting the others.
    """

    started = time.perf_counter()
    options = options or InsertionOptions.from_settings(buffer=buffer)

    ids = [candidate.id for candidate in candidates]
    duplicates = sorted({candidate_id for candidate_id in ids if ids.count(candidate_id) > 1})
    if duplicates:
        raise InvalidRequestError(f"Duplicate candidate ids in batch: {', '.join(duplicates)}.")
    validate_workday(workday)
    stops = validate_route(route)

    if not candidates:
        return BatchInsertionResponse(results=[], processing_time_ms=int((time.perf_counter() - started) * 1000))

    workers = max(1, settings.max_parallel_matrix_requests)
    if best_only:
        timeline = _build_timeline(stops, workday, options)
        gaps = _gap_points(route, stops, options.return_to_depot)
        with ThreadPoolExecutor(max_workers=min(workers, len(gaps))) as executor:
            per_gap = list(executor.map(lambda gap: _bulk_gap(provider, gap[0], gap[1], candidates), gaps))

        results: List[InsertionResult] = []
        for index, candidate in enumerate(candidates):
            legs = [gap_legs[index] for gap_legs in per_gap]
            if any(entry is None for entry in legs):
                results.append(_unavailable(candidate.id))
                continue
            results.append(_result_from_legs(candidate, timeline, legs, options))
    else:
        with ThreadPoolExecutor(max_workers=min(workers, len(candidates))) as executor:
            results = list(
                executor.map(
                    lambda candidate: calculate_insertion(route, candidate, workday, provider, options=options),
                    candidates,
                )
            )

    entries = sort_batch_results([_batch_entry(result) for result in results])
    elapsed_ms = int((time.perf_counter() - started) * 1000)
    feasible = sum(1 for entry in entries if entry.is_feasible)
    logger.info(
        f"Batch insertion: {len(entries)} candidates, {feasible} feasible, {len(stops)} stops, "
        f"best_only={best_only}, {elapsed_ms}ms"
    )
    return BatchInsertionResponse(results=entries, processing_time_ms=elapsed_ms)
