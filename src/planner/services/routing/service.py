"""High-level routing orchestration: request schemas in, response schemas out."""

from __future__ import annotations

import logging
import math
from typing import List, Optional, Sequence

from ...config import settings
from ...models.domain import Candidate, Coordinates, TimeWindow, Workday
from ...schemas.routing import (
    BatchInsertionRequest,
    BatchInsertionResponseModel,
    BatchInsertionResultModel,
    BufferModel,
    CandidateModel,
    CompareCrewsRequest,
    CompareCrewsResponse,
    CoordinatesModel,
    CrewComparisonModel,
    CrewRecommendationModel,
    InsertionPositionModel,
    InsertionRequest,
    InsertionResponse,
    RouteStopModel,
    ScheduleRequest,
    ScheduleResponse,
    StopScheduleModel,
    TimeWindowModel,
)
from ...timeutil import format_hhmm, parse_hhmm
from .buffer import default_buffer
from .crews import build_comparisons, compare_crews, evaluate_crews
from .insertion import (
    InsertionOptions,
    calculate_batch_insertion,
    calculate_insertion,
    format_insertion_delta,
)
from .matrix import MatrixProvider, get_matrix_provider
from .models import ArrivalBufferConfig, CrewContext, InsertionPosition, InsertionResult, Route, RouteStop
from .schedule import compute_route_schedule

logger = logging.getLogger(__name__)


def _coordinates(model: CoordinatesModel) -> Coordinates:
    return Coordinates(lat=model.lat, lng=model.lng)


def _time_window(model: Optional[TimeWindowModel]) -> Optional[TimeWindow]:
    if model is None:
        return None
    return TimeWindow(start=parse_hhmm(model.start), end=parse_hhmm(model.end), is_hard=model.is_hard)


def _buffer(model: Optional[BufferModel]) -> ArrivalBufferConfig:
    if model is None:
        return default_buffer()
    return ArrivalBufferConfig(
        percent=model.percent,
        fixed_minutes=model.fixed_minutes,
        apply_to_service=model.apply_to_service,
    )


def _workday(start: Optional[str], end: Optional[str]) -> Workday:
    return Workday(
        start=parse_hhmm(start or settings.default_workday_start),
        end=parse_hhmm(end or settings.default_workday_end),
    )


def _stops(models: Sequence[RouteStopModel]) -> List[RouteStop]:
    return [
        RouteStop(
            id=model.id,
            customer_id=model.customer_id,
            coordinates=_coordinates(model.coordinates),
            order=model.order,
            service_duration_minutes=model.service_duration_minutes,
            device_type_duration_minutes=model.device_type_duration_minutes,
            time_window=_time_window(model.time_window),
            arrival=parse_hhmm(model.arrival_time) if model.arrival_time else None,
            departure=parse_hhmm(model.departure_time) if model.departure_time else None,
            name=model.name,
            candidate_id=model.candidate_id,
        )
        for model in models
    ]


def _candidate(model: CandidateModel) -> Candidate:
    return Candidate(
        id=model.id,
        customer_id=model.customer_id,
        device_id=model.device_id or model.id,
        device_type=model.device_type,
        coordinates=_coordinates(model.coordinates),
        service_duration_minutes=model.service_duration_minutes,
        device_type_duration_minutes=model.device_type_duration_minutes,
        time_window=_time_window(model.time_window),
        name=model.name,
    )


def _finite(value: Optional[float]) -> Optional[float]:
    if value is None or not math.isfinite(value):
        return None
    return value


def _position_model(position: InsertionPosition) -> InsertionPositionModel:
    finite = math.isfinite(position.delta_min) and math.isfinite(position.delta_km)
    return InsertionPositionModel(
        insert_after_index=position.insert_after_index,
        insert_after_name=position.insert_after_name,
        insert_before_name=position.insert_before_name,
        delta_km=_finite(position.delta_km),
        delta_min=_finite(position.delta_min),
        formatted_delta=format_insertion_delta(position.delta_min, position.delta_km) if finite else None,
        estimated_arrival=format_hhmm(position.estimated_arrival),
        estimated_departure=format_hhmm(position.estimated_departure),
        status=position.status,
        conflict_reason=position.conflict_reason,
        slack_minutes=_finite(position.slack_minutes),
    )


def _insertion_response(result: InsertionResult) -> InsertionResponse:
    return InsertionResponse(
        candidate_id=result.candidate_id,
        best_position=_position_model(result.best_position) if result.best_position else None,
        all_positions=[_position_model(position) for position in result.all_positions],
        is_feasible=result.is_feasible,
        infeasible_reason=result.infeasible_reason,
    )


def calculate_insertion_for_request(
    payload: InsertionRequest, provider: Optional[MatrixProvider] = None
) -> InsertionResponse:
    provider = provider or get_matrix_provider()
    route = Route(depot=_coordinates(payload.depot), stops=_stops(payload.route_stops), date=payload.date)
    result = calculate_insertion(
        route,
        _candidate(payload.candidate),
        _workday(payload.workday_start, payload.workday_end),
        provider,
        buffer=_buffer(payload.buffer),
    )
    logger.info(
        f"Insertion for candidate {result.candidate_id} on {payload.date.isoformat()} "
        f"({len(route.stops)} stops, provider={provider.name}): feasible={result.is_feasible}"
    )
    return _insertion_response(result)


def calculate_batch_for_request(
    payload: BatchInsertionRequest, provider: Optional[MatrixProvider] = None
) -> BatchInsertionResponseModel:
    provider = provider or get_matrix_provider()
    route = Route(depot=_coordinates(payload.depot), stops=_stops(payload.route_stops), date=payload.date)
    response = calculate_batch_insertion(
        route,
        [_candidate(model) for model in payload.candidates],
        _workday(payload.workday_start, payload.workday_end),
        provider,
        best_only=payload.best_only,
        buffer=_buffer(payload.buffer),
    )
    return BatchInsertionResponseModel(
        results=[
            BatchInsertionResultModel(
                candidate_id=item.candidate_id,
                best_delta_km=item.best_delta_km,
                best_delta_min=item.best_delta_min,
                best_insert_after_index=item.best_insert_after_index,
                status=item.status,
                is_feasible=item.is_feasible,
                infeasible_reason=item.infeasible_reason,
            )
            for item in response.results
        ],
        processing_time_ms=response.processing_time_ms,
    )


def compare_crews_for_request(
    payload: CompareCrewsRequest, provider: Optional[MatrixProvider] = None
) -> CompareCrewsResponse:
    provider = provider or get_matrix_provider()
    crews = [
        CrewContext(
            crew_id=crew.crew_id,
            name=crew.name,
            workday=_workday(crew.workday_start, crew.workday_end),
            route=Route(
                depot=_coordinates(crew.depot),
                stops=_stops(crew.route_stops),
                date=payload.date,
                crew_id=crew.crew_id,
            ),
            buffer=_buffer(crew.buffer),
        )
        for crew in payload.crews
    ]
    insertions = evaluate_crews(crews, _candidate(payload.candidate), provider, options=InsertionOptions.from_settings())
    comparisons = build_comparisons(
        payload.current_crew_id,
        insertions,
        min_savings_min=payload.min_savings_min,
        min_savings_km=payload.min_savings_km,
    )
    current_feasible = any(
        item.result.is_feasible for item in insertions if item.crew_id == payload.current_crew_id
    )
    recommendation = compare_crews(
        payload.current_crew_id,
        insertions,
        min_savings_min=payload.min_savings_min,
        min_savings_km=payload.min_savings_km,
    )
    if recommendation is not None:
        logger.info(
            f"Crew {recommendation.crew_id} recommended over {payload.current_crew_id} "
            f"for candidate {payload.candidate.id}: {recommendation.formatted_savings}"
        )
    return CompareCrewsResponse(
        current_feasible=current_feasible,
        comparisons=[
            CrewComparisonModel(
                crew_id=item.crew_id,
                crew_name=item.crew_name,
                is_feasible=item.is_feasible,
                delta_min=item.delta_min,
                delta_km=item.delta_km,
                savings_min=item.savings_min,
                savings_km=item.savings_km,
                is_better=item.is_better,
            )
            for item in comparisons
        ],
        best_alternative=(
            CrewRecommendationModel(
                crew_id=recommendation.crew_id,
                crew_name=recommendation.crew_name,
                savings_min=recommendation.savings_min,
                savings_km=recommendation.savings_km,
                score=recommendation.score,
                formatted_savings=recommendation.formatted_savings,
            )
            if recommendation
            else None
        ),
    )


def recalculate_schedule_for_request(
    payload: ScheduleRequest, provider: Optional[MatrixProvider] = None
) -> ScheduleResponse:
    provider = provider or get_matrix_provider()
    route = Route(depot=_coordinates(payload.depot), stops=_stops(payload.route_stops), date=payload.date)
    schedule = compute_route_schedule(
        route,
        _workday(payload.workday_start, payload.workday_end),
        provider,
        buffer=_buffer(payload.buffer),
        return_to_depot=payload.return_to_depot,
    )
    return ScheduleResponse(
        stops=[
            StopScheduleModel(
                stop_id=stop.stop_id,
                estimated_arrival=format_hhmm(stop.estimated_arrival),
                estimated_departure=format_hhmm(stop.estimated_departure),
                distance_from_previous_km=round(stop.distance_from_previous_km, 3),
                duration_from_previous_min=round(stop.duration_from_previous_min, 2),
                service_duration_minutes=stop.service_duration_minutes,
                waiting_minutes=round(stop.waiting_minutes, 2),
                time_window_violated=stop.time_window_violated,
            )
            for stop in schedule.stops
        ],
        depot_departure=format_hhmm(schedule.depot_departure),
        route_end=format_hhmm(schedule.route_end),
        return_to_depot_distance_km=round(schedule.return_to_depot_distance_km, 3),
        return_to_depot_duration_min=round(schedule.return_to_depot_duration_min, 2),
        total_distance_km=round(schedule.total_distance_km, 3),
        total_travel_minutes=round(schedule.total_travel_minutes, 2),
        total_service_minutes=schedule.total_service_minutes,
        exceeds_workday=schedule.exceeds_workday,
    )
