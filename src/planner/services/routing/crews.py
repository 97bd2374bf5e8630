"""Multi-crew comparison: would another crew take this candidate more cheaply?"""

from __future__ import annotations

import logging
import math
from concurrent.futures import ThreadPoolExecutor
from typing import List, Optional, Sequence

from ...config import settings
from ...errors import InvalidRequestError
from ...models.domain import Candidate
from .insertion import InsertionOptions, calculate_insertion, insertion_cost
from .matrix import MatrixProvider
from .models import (
    CrewComparison,
    CrewContext,
    CrewInsertion,
    CrewRecommendation,
    InsertionPosition,
    InsertionResult,
)

logger = logging.getLogger(__name__)


def crew_switch_score(savings_min: float, savings_km: float, km_weight: Optional[float] = None) -> float:
    """Ranking score for switching crews; kilometres weigh ``km_weight`` minutes each."""

    weight = settings.crew_savings_km_weight if km_weight is None else km_weight
    return savings_min + savings_km * weight


def _reference_position(result: InsertionResult) -> Optional[InsertionPosition]:
    if result.best_position is not None:
        return result.best_position
    reported = [position for position in result.all_positions if math.isfinite(position.delta_min)]
    if not reported:
        return None
    return min(reported, key=lambda position: (insertion_cost(position), position.delta_km))


def _savings(reference: Optional[InsertionPosition], best: InsertionPosition) -> tuple[float, float]:
    if reference is None:
        return 0.0, 0.0
    return reference.delta_min - best.delta_min, reference.delta_km - best.delta_km


def _format_savings(
    savings_min: float,
    savings_km: float,
    min_savings_min: float,
    min_savings_km: float,
) -> str:
    parts: List[str] = []
    if savings_min >= min_savings_min:
        parts.append(f"{round(savings_min)} min")
    if savings_km >= min_savings_km:
        parts.append(f"{savings_km:.1f} km")
    return " / ".join(parts)


def _qualifies(savings_min: float, savings_km: float, threshold_min: float, threshold_km: float) -> bool:
    if savings_min <= 0 and savings_km <= 0:
        return False
    return savings_min >= threshold_min or savings_km >= threshold_km


def _thresholds(min_savings_min: Optional[float], min_savings_km: Optional[float]) -> tuple[float, float]:
    return (
        settings.min_crew_savings_minutes if min_savings_min is None else min_savings_min,
        settings.min_crew_savings_km if min_savings_km is None else min_savings_km,
    )


def _find_current(current_crew_id: str, crew_insertions: Sequence[CrewInsertion]) -> CrewInsertion:
    for insertion in crew_insertions:
        if insertion.crew_id == current_crew_id:
            return insertion
    raise InvalidRequestError(f"Current crew {current_crew_id} is not among the compared crews.")


def build_comparisons(
    current_crew_id: str,
    crew_insertions: Sequence[CrewInsertion],
    *,
    min_savings_min: Optional[float] = None,
    min_savings_km: Optional[float] = None,
) -> List[CrewComparison]:
    """Per-crew view relative to the current crew, in input order."""

    threshold_min, threshold_km = _thresholds(min_savings_min, min_savings_km)
    current = _find_current(current_crew_id, crew_insertions)
    reference = _reference_position(current.result)
    comparisons: List[CrewComparison] = []
    for insertion in crew_insertions:
        best = insertion.result.best_position
        if best is None:
            comparisons.append(
                CrewComparison(
                    crew_id=insertion.crew_id,
                    crew_name=insertion.crew_name,
                    is_feasible=False,
                    delta_min=None,
                    delta_km=None,
                    savings_min=0.0,
                    savings_km=0.0,
                    is_better=False,
                )
            )
            continue
        savings_min, savings_km = _savings(reference, best)
        is_other = insertion.crew_id != current_crew_id
        comparisons.append(
            CrewComparison(
                crew_id=insertion.crew_id,
                crew_name=insertion.crew_name,
                is_feasible=True,
                delta_min=best.delta_min,
                delta_km=best.delta_km,
                savings_min=savings_min if is_other else 0.0,
                savings_km=savings_km if is_other else 0.0,
                is_better=is_other and _qualifies(savings_min, savings_km, threshold_min, threshold_km),
            )
        )
    return comparisons


def compare_crews(
    current_crew_id: str,
    crew_insertions: Sequence[CrewInsertion],
    *,
    min_savings_min: Optional[float] = None,
    min_savings_km: Optional[float] = None,
    km_weight: Optional[float] = None,
) -> Optional[CrewRecommendation]:
    """Recommend the best alternative crew, or ``None`` when switching is not worth it.

    A crew qualifies when it is feasible and saves at least ``min_savings_min``
    minutes or ``min_savings_km`` kilometres over the current crew's reference
    position. The reference is the current crew's best position, or its
    cheapest conflicting one when it cannot take the candidate; with no
    reference at all there are no savings and nothing is recommended.
    """

    threshold_min, threshold_km = _thresholds(min_savings_min, min_savings_km)
    current = _find_current(current_crew_id, crew_insertions)
    reference = _reference_position(current.result)

    ranked: List[tuple[tuple, CrewRecommendation]] = []
    for insertion in crew_insertions:
        if insertion.crew_id == current_crew_id:
            continue
        best = insertion.result.best_position
        if best is None:
            continue
        savings_min, savings_km = _savings(reference, best)
        if not _qualifies(savings_min, savings_km, threshold_min, threshold_km):
            continue
        score = crew_switch_score(savings_min, savings_km, km_weight)
        recommendation = CrewRecommendation(
            crew_id=insertion.crew_id,
            crew_name=insertion.crew_name,
            savings_min=savings_min,
            savings_km=savings_km,
            score=score,
            formatted_savings=_format_savings(savings_min, savings_km, threshold_min, threshold_km),
        )
        ranked.append(((-score, best.delta_min, insertion.crew_id), recommendation))

    if not ranked:
        return None
    ranked.sort(key=lambda item: item[0])
    return ranked[0][1]


def evaluate_crews(
    crews: Sequence[CrewContext],
    candidate: Candidate,
    provider: MatrixProvider,
    *,
    options: Optional[InsertionOptions] = None,
) -> List[CrewInsertion]:
    """Run the insertion for every crew concurrently, one worker per crew.

    Each crew uses its own workday and arrival buffer; results keep the input
    order.
    """

    if not crews:
        return []

    def _run(crew: CrewContext) -> CrewInsertion:
        crew_options = InsertionOptions(
            buffer=crew.buffer,
            global_default=options.global_default if options else settings.default_service_duration_minutes,
            tight_slack_minutes=options.tight_slack_minutes if options else settings.tight_slack_minutes,
            arrival_rounding_minutes=(
                options.arrival_rounding_minutes if options else settings.arrival_rounding_minutes
            ),
            return_to_depot=options.return_to_depot if options else settings.return_to_depot,
        )
        result = calculate_insertion(crew.route, candidate, crew.workday, provider, options=crew_options)
        return CrewInsertion(crew_id=crew.crew_id, crew_name=crew.name, result=result)

    with ThreadPoolExecutor(max_workers=len(crews)) as executor:
        insertions = list(executor.map(_run, crews))
    logger.info(
        f"Evaluated candidate {candidate.id} for {len(crews)} crews "
        f"({sum(1 for item in insertions if item.result.is_feasible)} feasible)"
    )
    return insertions
