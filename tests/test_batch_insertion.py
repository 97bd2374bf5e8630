import pytest

from planner.config import settings
from planner.errors import InvalidRequestError, MatrixUnavailableError
from planner.models.domain import Candidate, Coordinates, Workday
from planner.services.routing.insertion import InsertionOptions, calculate_batch_insertion, sort_batch_results
from planner.services.routing.matrix import MatrixProvider
from planner.services.routing.models import (
    ArrivalBufferConfig,
    BatchInsertionResult,
    InsertionStatus,
    MatrixEntry,
    Route,
    RouteStop,
)

WORKDAY = Workday(start=480.0, end=600.0)


class LineMatrix(MatrixProvider):
    name = "line"

    def __init__(self):
        self.query_calls = 0
        self.reverse_calls = 0

    def _entry(self, a, b):
        return MatrixEntry(distance_km=abs(a.lng - b.lng), duration_min=abs(a.lng - b.lng))

    def query(self, origin, destinations):
        self.query_calls += 1
        return [self._entry(origin, dest) for dest in destinations]

    def query_reverse(self, origins, destination):
        self.reverse_calls += 1
        return [self._entry(origin, destination) for origin in origins]


class FlakyMatrix(LineMatrix):
    """Fails every lookup that touches longitude 77."""

    def query(self, origin, destinations):
        if origin.lng == 77 or any(dest.lng == 77 for dest in destinations):
            raise MatrixUnavailableError("tile missing")
        return super().query(origin, destinations)

    def query_reverse(self, origins, destination):
        if destination.lng == 77 or any(origin.lng == 77 for origin in origins):
            raise MatrixUnavailableError("tile missing")
        return super().query_reverse(origins, destination)


def _at(x: float) -> Coordinates:
    return Coordinates(lat=0.0, lng=x)


def _candidate(cid: str, x: float) -> Candidate:
    return Candidate(
        id=cid,
        customer_id=f"cust-{cid}",
        device_id=f"dev-{cid}",
        device_type=None,
        coordinates=_at(x),
        service_duration_minutes=30,
    )


def _options() -> InsertionOptions:
    return InsertionOptions(
        buffer=ArrivalBufferConfig(percent=0.0, fixed_minutes=0.0),
        global_default=60.0,
        tight_slack_minutes=15.0,
        arrival_rounding_minutes=0,
        return_to_depot=True,
    )


@pytest.fixture(autouse=True)
def fast_retries(monkeypatch):
    monkeypatch.setattr(settings, "matrix_max_retries", 1)
    monkeypatch.setattr(settings, "matrix_backoff_seconds", 0.0)


def _candidates():
    return [
        _candidate("far", 100),
        _candidate("near", 5),
        _candidate("mid", 10),
        _candidate("edge", 40),
    ]


def test_batch_orders_feasible_ok_tight_conflict():
    response = calculate_batch_insertion(Route(depot=_at(0)), _candidates(), WORKDAY, LineMatrix(), options=_options())

    assert [item.candidate_id for item in response.results] == ["near", "mid", "edge", "far"]
    near, mid, edge, far = response.results
    assert near.status is InsertionStatus.OK
    assert near.best_delta_min == pytest.approx(40.0)
    assert near.best_insert_after_index == -1
    assert mid.best_delta_km == pytest.approx(20.0)
    assert edge.status is InsertionStatus.TIGHT
    assert not far.is_feasible
    assert far.status is InsertionStatus.CONFLICT
    assert far.infeasible_reason == "workday_exceeded"
    assert response.processing_time_ms >= 0


def test_best_only_uses_one_bulk_lookup_per_gap():
    stops = [
        RouteStop(id="A", customer_id="a", coordinates=_at(10), order=0, arrival=490.0, departure=520.0),
        RouteStop(id="B", customer_id="b", coordinates=_at(20), order=1, arrival=530.0, departure=560.0),
    ]
    provider = LineMatrix()

    calculate_batch_insertion(Route(depot=_at(0), stops=stops), _candidates(), Workday(480.0, 1020.0), provider, options=_options())

    assert provider.query_calls == 3
    assert provider.reverse_calls == 3


def test_best_only_matches_exact_calculation():
    stops = [
        RouteStop(id="A", customer_id="a", coordinates=_at(10), order=0, arrival=490.0, departure=520.0),
        RouteStop(id="B", customer_id="b", coordinates=_at(20), order=1, arrival=530.0, departure=560.0),
    ]
    route = Route(depot=_at(0), stops=stops)
    workday = Workday(480.0, 1020.0)

    bulk = calculate_batch_insertion(route, _candidates(), workday, LineMatrix(), options=_options())
    exact = calculate_batch_insertion(route, _candidates(), workday, LineMatrix(), best_only=False, options=_options())

    assert [(r.candidate_id, r.best_insert_after_index, r.status) for r in bulk.results] == [
        (r.candidate_id, r.best_insert_after_index, r.status) for r in exact.results
    ]


def test_failed_candidate_does_not_affect_others():
    candidates = [_candidate("good", 10), _candidate("broken", 77), _candidate("other", 5)]

    response = calculate_batch_insertion(Route(depot=_at(0)), candidates, Workday(480.0, 1020.0), FlakyMatrix(), options=_options())

    by_id = {item.candidate_id: item for item in response.results}
    assert by_id["good"].is_feasible
    assert by_id["other"].is_feasible
    assert not by_id["broken"].is_feasible
    assert by_id["broken"].infeasible_reason == "matrix_unavailable"
    assert response.results[-1].candidate_id == "broken"


def test_duplicate_candidate_ids_rejected():
    with pytest.raises(InvalidRequestError):
        calculate_batch_insertion(
            Route(depot=_at(0)), [_candidate("x", 1), _candidate("x", 2)], WORKDAY, LineMatrix(), options=_options()
        )


def test_empty_batch():
    response = calculate_batch_insertion(Route(depot=_at(0)), [], WORKDAY, LineMatrix(), options=_options())

    assert response.results == []


def test_sort_batch_results_tie_breaks_on_candidate_id():
    def _item(cid, feasible, status, delta_min):
        return BatchInsertionResult(
            candidate_id=cid,
            best_delta_km=1.0,
            best_delta_min=delta_min,
            best_insert_after_index=0,
            status=status,
            is_feasible=feasible,
        )

    ordered = sort_batch_results(
        [
            _item("c", False, InsertionStatus.CONFLICT, 1.0),
            _item("b", True, InsertionStatus.OK, 20.0),
            _item("a", True, InsertionStatus.OK, 20.0),
            _item("d", True, InsertionStatus.TIGHT, 5.0),
        ]
    )

    assert [item.candidate_id for item in ordered] == ["a", "b", "d", "c"]
