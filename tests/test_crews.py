import pytest

from planner.errors import InvalidRequestError
from planner.models.domain import Candidate, Coordinates, Workday
from planner.services.routing.crews import build_comparisons, compare_crews, crew_switch_score, evaluate_crews
from planner.services.routing.insertion import InsertionOptions
from planner.services.routing.matrix import MatrixProvider
from planner.services.routing.models import (
    ArrivalBufferConfig,
    CrewContext,
    CrewInsertion,
    InsertionPosition,
    InsertionResult,
    InsertionStatus,
    MatrixEntry,
    Route,
)


def _position(delta_min: float, delta_km: float, status=InsertionStatus.OK, index: int = -1) -> InsertionPosition:
    return InsertionPosition(
        insert_after_index=index,
        insert_after_name="Depot",
        insert_before_name="Depot",
        delta_km=delta_km,
        delta_min=delta_min,
        estimated_arrival=500.0,
        estimated_departure=530.0,
        status=status,
        conflict_reason="workday_exceeded" if status is InsertionStatus.CONFLICT else None,
    )


def _crew(crew_id: str, *positions: InsertionPosition) -> CrewInsertion:
    feasible = [p for p in positions if p.status is not InsertionStatus.CONFLICT]
    best = min(feasible, key=lambda p: p.delta_min) if feasible else None
    return CrewInsertion(
        crew_id=crew_id,
        crew_name=f"Crew {crew_id}",
        result=InsertionResult(
            candidate_id="cand",
            best_position=best,
            all_positions=list(positions),
            is_feasible=best is not None,
            infeasible_reason=None if best else "workday_exceeded",
        ),
    )


def test_below_both_thresholds_returns_none():
    crews = [_crew("current", _position(50, 20)), _crew("other", _position(45, 17))]

    assert compare_crews("current", crews, min_savings_min=10, min_savings_km=5) is None


def test_minute_threshold_met():
    crews = [_crew("current", _position(50, 20)), _crew("other", _position(30, 19))]

    recommendation = compare_crews("current", crews, min_savings_min=10, min_savings_km=5, km_weight=2.0)

    assert recommendation.crew_id == "other"
    assert recommendation.crew_name == "Crew other"
    assert recommendation.savings_min == pytest.approx(20)
    assert recommendation.savings_km == pytest.approx(1)
    assert recommendation.score == pytest.approx(22)
    assert recommendation.formatted_savings == "20 min"


def test_both_thresholds_formatted():
    crews = [_crew("current", _position(50, 20)), _crew("other", _position(30, 10))]

    recommendation = compare_crews("current", crews, min_savings_min=10, min_savings_km=5)

    assert recommendation.formatted_savings == "20 min / 10.0 km"


def test_highest_score_wins():
    crews = [
        _crew("current", _position(60, 40)),
        _crew("minutes", _position(35, 38)),  # 25 min, 2 km -> 29
        _crew("distance", _position(55, 20)),  # 5 min, 20 km -> 45
    ]

    recommendation = compare_crews("current", crews, min_savings_min=10, min_savings_km=5, km_weight=2.0)

    assert recommendation.crew_id == "distance"
    assert recommendation.formatted_savings == "20.0 km"


def test_infeasible_alternatives_never_recommended():
    crews = [
        _crew("current", _position(60, 40)),
        _crew("blocked", _position(10, 5, status=InsertionStatus.CONFLICT)),
    ]

    assert compare_crews("current", crews) is None


def test_infeasible_current_crew_without_reference_recommends_nothing():
    crews = [_crew("current"), _crew("other", _position(45, 17))]

    assert compare_crews("current", crews, min_savings_min=10, min_savings_km=5) is None


def test_infeasible_current_crew_still_needs_threshold_savings():
    crews = [
        _crew("current", _position(80, 30, status=InsertionStatus.CONFLICT)),
        _crew("other", _position(75, 29)),
    ]

    assert compare_crews("current", crews, min_savings_min=10, min_savings_km=5) is None


def test_costlier_crew_never_recommended_when_current_infeasible():
    crews = [
        _crew("current", _position(40, 10, status=InsertionStatus.CONFLICT)),
        _crew("other", _position(60, 20)),
    ]

    assert compare_crews("current", crews, min_savings_min=10, min_savings_km=5) is None
    comparisons = build_comparisons("current", crews, min_savings_min=10, min_savings_km=5)
    assert not comparisons[1].is_better


def test_infeasible_current_crew_compared_against_cheapest_conflict():
    crews = [
        _crew("current", _position(80, 30, status=InsertionStatus.CONFLICT), _position(95, 31, status=InsertionStatus.CONFLICT)),
        _crew("other", _position(60, 28)),
    ]

    recommendation = compare_crews("current", crews, min_savings_min=10, min_savings_km=5)

    assert recommendation.savings_min == pytest.approx(20)
    assert recommendation.formatted_savings == "20 min"


def test_zero_thresholds_still_require_positive_savings():
    crews = [_crew("current", _position(50, 20)), _crew("other", _position(50, 20))]

    assert compare_crews("current", crews, min_savings_min=0, min_savings_km=0) is None


def test_unknown_current_crew_rejected():
    with pytest.raises(InvalidRequestError):
        compare_crews("ghost", [_crew("a", _position(10, 1))])


def test_crew_switch_score_weights_km():
    assert crew_switch_score(10, 5, 2.0) == 20
    assert crew_switch_score(10, 5, 0.0) == 10


def test_build_comparisons_marks_better_crews():
    crews = [_crew("current", _position(50, 20)), _crew("other", _position(30, 19)), _crew("worse", _position(70, 30))]

    comparisons = build_comparisons("current", crews)

    assert [c.crew_id for c in comparisons] == ["current", "other", "worse"]
    assert not comparisons[0].is_better
    assert comparisons[1].is_better
    assert comparisons[1].savings_min == pytest.approx(20)
    assert not comparisons[2].is_better


class LineMatrix(MatrixProvider):
    def query(self, origin, destinations):
        return [
            MatrixEntry(distance_km=abs(origin.lng - dest.lng), duration_min=abs(origin.lng - dest.lng))
            for dest in destinations
        ]


def test_evaluate_crews_keeps_input_order_and_uses_crew_depot():
    workday = Workday(start=480.0, end=1020.0)
    candidate = Candidate(
        id="cand",
        customer_id="cust",
        device_id="dev",
        device_type=None,
        coordinates=Coordinates(0.0, 50.0),
        service_duration_minutes=30,
    )
    crews = [
        CrewContext(crew_id="far", name="Far", workday=workday, route=Route(depot=Coordinates(0.0, 0.0))),
        CrewContext(crew_id="near", name="Near", workday=workday, route=Route(depot=Coordinates(0.0, 45.0))),
    ]
    options = InsertionOptions(
        buffer=ArrivalBufferConfig(percent=0.0),
        global_default=60.0,
        tight_slack_minutes=15.0,
        arrival_rounding_minutes=0,
        return_to_depot=True,
    )

    insertions = evaluate_crews(crews, candidate, LineMatrix(), options=options)

    assert [item.crew_id for item in insertions] == ["far", "near"]
    assert insertions[1].result.best_position.delta_km == pytest.approx(10.0)

    recommendation = compare_crews("far", insertions, min_savings_min=10, min_savings_km=5)
    assert recommendation.crew_id == "near"
    assert recommendation.savings_km == pytest.approx(90.0)
