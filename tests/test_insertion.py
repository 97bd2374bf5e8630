import pytest

from planner.config import settings
from planner.errors import InvalidRequestError, MatrixUnavailableError
from planner.models.domain import Candidate, Coordinates, TimeWindow, Workday
from planner.services.routing.insertion import (
    InsertionOptions,
    calculate_insertion,
    format_insertion_delta,
    insertion_cost,
)
from planner.services.routing.matrix import MatrixProvider
from planner.services.routing.models import (
    ArrivalBufferConfig,
    InsertionStatus,
    MatrixEntry,
    Route,
    RouteStop,
)

NO_BUFFER = ArrivalBufferConfig(percent=0.0, fixed_minutes=0.0)
WORKDAY = Workday(start=480.0, end=1020.0)


class LineMatrix(MatrixProvider):
    """Points on a line: one unit of longitude is one km and one minute."""

    name = "line"

    def __init__(self):
        self.calls = 0

    def query(self, origin, destinations):
        self.calls += 1
        return [
            MatrixEntry(distance_km=abs(origin.lng - dest.lng), duration_min=abs(origin.lng - dest.lng))
            for dest in destinations
        ]


class FailingMatrix(MatrixProvider):
    def __init__(self):
        self.calls = 0

    def query(self, origin, destinations):
        self.calls += 1
        raise MatrixUnavailableError("routing engine down")


def _at(x: float) -> Coordinates:
    return Coordinates(lat=0.0, lng=x)


def _candidate(x: float, window: TimeWindow | None = None, service: float | None = 30) -> Candidate:
    return Candidate(
        id=f"cand-{x:g}",
        customer_id="cust",
        device_id="dev",
        device_type=None,
        coordinates=_at(x),
        service_duration_minutes=service,
        time_window=window,
    )


def _stop(stop_id: str, x: float, order: int, **kwargs) -> RouteStop:
    return RouteStop(id=stop_id, customer_id=f"cust-{stop_id}", coordinates=_at(x), order=order, **kwargs)


def _options(**overrides) -> InsertionOptions:
    values = dict(
        buffer=NO_BUFFER,
        global_default=60.0,
        tight_slack_minutes=15.0,
        arrival_rounding_minutes=0,
        return_to_depot=True,
    )
    values.update(overrides)
    return InsertionOptions(**values)


def test_empty_route_inserts_after_depot():
    result = calculate_insertion(Route(depot=_at(0)), _candidate(10), WORKDAY, LineMatrix(), options=_options())

    assert result.is_feasible
    best = result.best_position
    assert best.insert_after_index == -1
    assert best.insert_after_name == "Depot"
    assert best.insert_before_name == "Depot"
    assert best.delta_km == pytest.approx(20.0)
    assert best.delta_min == pytest.approx(50.0)
    assert best.estimated_arrival == pytest.approx(490.0)
    assert best.estimated_departure == pytest.approx(520.0)
    assert best.status is InsertionStatus.OK
    assert insertion_cost(best) == best.delta_min


def test_buffer_pads_travel_but_not_distance():
    options = _options(buffer=ArrivalBufferConfig(percent=10.0, fixed_minutes=0.0))
    result = calculate_insertion(Route(depot=_at(0)), _candidate(10), WORKDAY, LineMatrix(), options=options)

    best = result.best_position
    assert best.delta_km == pytest.approx(20.0)
    assert best.delta_min == pytest.approx(11.0 + 11.0 + 30.0)
    assert best.estimated_arrival == pytest.approx(491.0)


def test_arrival_waits_for_window_start_and_rounds():
    window = TimeWindow(start=600.0, end=720.0)
    result = calculate_insertion(
        Route(depot=_at(0)), _candidate(10, window=window), WORKDAY, LineMatrix(), options=_options()
    )
    assert result.best_position.estimated_arrival == pytest.approx(600.0)

    rounded = calculate_insertion(
        Route(depot=_at(0)), _candidate(7), WORKDAY, LineMatrix(), options=_options(arrival_rounding_minutes=15)
    )
    assert rounded.best_position.estimated_arrival == pytest.approx(495.0)


def test_candidate_hard_window_violation():
    window = TimeWindow(start=480.0, end=485.0)
    result = calculate_insertion(
        Route(depot=_at(0)), _candidate(10, window=window), WORKDAY, LineMatrix(), options=_options()
    )

    assert not result.is_feasible
    assert result.best_position is None
    assert result.infeasible_reason == "time_window_violation"
    assert result.all_positions[0].status is InsertionStatus.CONFLICT


def test_soft_window_miss_is_tight_not_conflict():
    window = TimeWindow(start=480.0, end=485.0, is_hard=False)
    result = calculate_insertion(
        Route(depot=_at(0)), _candidate(10, window=window), WORKDAY, LineMatrix(), options=_options()
    )

    assert result.is_feasible
    assert result.best_position.status is InsertionStatus.TIGHT


def test_workday_exceeded():
    result = calculate_insertion(
        Route(depot=_at(0)), _candidate(30), Workday(start=480.0, end=540.0), LineMatrix(), options=_options()
    )

    assert not result.is_feasible
    assert result.infeasible_reason == "workday_exceeded"


def test_tight_when_slack_below_threshold():
    # Back at the depot at 530, ten minutes before the end of the day.
    result = calculate_insertion(
        Route(depot=_at(0)), _candidate(10), Workday(start=480.0, end=540.0), LineMatrix(), options=_options()
    )

    assert result.best_position.status is InsertionStatus.TIGHT
    assert result.best_position.slack_minutes == pytest.approx(10.0)


def test_downstream_hard_window_pushes_to_later_gap():
    stop = _stop(
        "A",
        10,
        0,
        arrival=490.0,
        departure=520.0,
        service_duration_minutes=30,
        time_window=TimeWindow(start=480.0, end=495.0),
        name="Alpha",
    )
    route = Route(depot=_at(0), stops=[stop])

    result = calculate_insertion(route, _candidate(5), WORKDAY, LineMatrix(), options=_options())

    assert result.is_feasible
    assert result.best_position.insert_after_index == 0
    assert result.best_position.insert_after_name == "Alpha"
    assert result.best_position.insert_before_name == "Depot"
    assert result.best_position.estimated_arrival == pytest.approx(525.0)

    before_alpha = next(p for p in result.all_positions if p.insert_after_index == -1)
    assert before_alpha.status is InsertionStatus.CONFLICT
    assert before_alpha.conflict_reason == "time_window_violation"
    assert len(result.all_positions) == 2


def test_cheapest_gap_wins_between_stops():
    stops = [
        _stop("A", 10, 0, arrival=490.0, departure=520.0, service_duration_minutes=30),
        _stop("B", 20, 1, arrival=530.0, departure=560.0, service_duration_minutes=30),
    ]
    result = calculate_insertion(Route(depot=_at(0), stops=stops), _candidate(15), WORKDAY, LineMatrix(), options=_options())

    best = result.best_position
    assert best.insert_after_index == 0
    assert best.insert_after_name == "A"
    assert best.insert_before_name == "B"
    assert best.delta_km == pytest.approx(0.0)
    assert best.delta_min == pytest.approx(30.0)
    assert [p.insert_after_index for p in result.all_positions][0] == 0
    assert len(result.all_positions) == 3


def test_open_route_ends_without_depot():
    stops = [_stop("A", 10, 0, arrival=490.0, departure=520.0, service_duration_minutes=30)]
    result = calculate_insertion(
        Route(depot=_at(0), stops=stops), _candidate(20), WORKDAY, LineMatrix(), options=_options(return_to_depot=False)
    )

    best = result.best_position
    assert best.insert_after_index == 0
    assert best.insert_before_name == "End of route"
    assert best.delta_km == pytest.approx(10.0)
    assert best.delta_min == pytest.approx(40.0)


def test_calculation_is_idempotent():
    stops = [
        _stop("A", 10, 0, arrival=490.0, departure=520.0, service_duration_minutes=30),
        _stop("B", 25, 1, time_window=TimeWindow(start=540.0, end=600.0)),
    ]
    route = Route(depot=_at(0), stops=stops)
    provider = LineMatrix()

    first = calculate_insertion(route, _candidate(18), WORKDAY, provider, options=_options())
    second = calculate_insertion(route, _candidate(18), WORKDAY, provider, options=_options())

    assert first == second


def test_matrix_failure_reports_unavailable(monkeypatch):
    monkeypatch.setattr(settings, "matrix_max_retries", 2)
    monkeypatch.setattr(settings, "matrix_backoff_seconds", 0.0)
    provider = FailingMatrix()

    result = calculate_insertion(Route(depot=_at(0)), _candidate(10), WORKDAY, provider, options=_options())

    assert not result.is_feasible
    assert result.infeasible_reason == "matrix_unavailable"
    assert result.all_positions == []
    assert provider.calls == 3


def test_self_retrying_provider_called_once(monkeypatch):
    monkeypatch.setattr(settings, "matrix_max_retries", 2)
    monkeypatch.setattr(settings, "matrix_backoff_seconds", 0.0)
    provider = FailingMatrix()
    provider.retries_internally = True

    result = calculate_insertion(Route(depot=_at(0)), _candidate(10), WORKDAY, provider, options=_options())

    assert result.infeasible_reason == "matrix_unavailable"
    assert provider.calls == 1


def test_unreachable_leg_is_conflict():
    class IslandMatrix(LineMatrix):
        def query(self, origin, destinations):
            return [
                MatrixEntry(None, None) if dest.lng == 99 or origin.lng == 99 else MatrixEntry(1.0, 1.0)
                for dest in destinations
            ]

    result = calculate_insertion(Route(depot=_at(0)), _candidate(99), WORKDAY, IslandMatrix(), options=_options())

    assert not result.is_feasible
    assert result.infeasible_reason == "unreachable"


@pytest.mark.parametrize(
    "stops",
    [
        [_stop("A", 1, 1)],
        [_stop("A", 1, 0), _stop("B", 2, 0)],
        [_stop("A", 1, 0, arrival=600.0), _stop("B", 2, 1, arrival=540.0)],
        [_stop("A", 1, 0, service_duration_minutes=-5)],
    ],
)
def test_invalid_routes_rejected(stops):
    with pytest.raises(InvalidRequestError):
        calculate_insertion(Route(depot=_at(0), stops=stops), _candidate(10), WORKDAY, LineMatrix(), options=_options())


def test_workday_end_must_follow_start():
    with pytest.raises(InvalidRequestError):
        calculate_insertion(Route(depot=_at(0)), _candidate(10), Workday(start=600.0, end=600.0), LineMatrix())


def test_format_insertion_delta():
    assert format_insertion_delta(12.3, 3.44) == "+12min / +3.4km"
    assert format_insertion_delta(-4.0, -1.25) == "-4min / -1.2km"
