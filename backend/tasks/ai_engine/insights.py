# tasks/ai_engine/insights.py
"""Reduce per-match execution history into population statistics."""

import math
from collections import Counter
from typing import Dict, Iterable, List

from ..models import ConfidenceLevel, ExecutionOutcome
from .contracts import AggregatedInsights, SimilarTaskMatch

MAX_COMMON_ITEMS = 5

# Success prediction when no similar task history exists.
BASE_PREDICTION_BY_CONFIDENCE: Dict[str, int] = {
    ConfidenceLevel.HIGH: 80,
    ConfidenceLevel.MEDIUM: 65,
    ConfidenceLevel.LOW: 50,
}
HIGH_CONFIDENCE_BONUS = 10
HIGH_CONFIDENCE_CAP = 95
LOW_CONFIDENCE_PENALTY = 15
LOW_CONFIDENCE_FLOOR = 30


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _recurring(items: Iterable[str], fold_case: bool = True) -> List[str]:
    """Items seen more than once, most frequent first."""
    counts: Counter = Counter()
    display: Dict[str, str] = {}
    for item in items:
        if not item:
            continue
        key = item.strip().lower() if fold_case else item.strip()
        display.setdefault(key, item.strip())
        counts[key] += 1
    return [display[key] for key, count in counts.most_common() if count > 1][:MAX_COMMON_ITEMS]


def aggregate_insights(matches: List[SimilarTaskMatch]) -> AggregatedInsights:
    """
    Zero matches yields the neutral default (accuracy 1.0, success 100%):
    missing history must not bias estimates downward.
    """
    if not matches:
        return AggregatedInsights()

    ratios = [
        m.execution_insights.estimated_vs_actual
        for m in matches
        if m.execution_insights.estimated_vs_actual is not None and m.execution_insights.estimated_vs_actual > 0
    ]
    avg_accuracy = sum(ratios) / len(ratios) if ratios else 1.0

    completed = sum(1 for m in matches if m.execution_insights.outcome == ExecutionOutcome.COMPLETED)

    return AggregatedInsights(
        avg_estimation_accuracy=avg_accuracy,
        common_subtasks_added=_recurring(
            [title for m in matches for title in m.execution_insights.added_subtask_titles]
        ),
        common_stall_points=_recurring(
            [point for m in matches for point in m.execution_insights.stall_points],
            fold_case=False,
        ),
        success_rate=completed / len(matches) * 100,
    )


def calculate_success_prediction(insights: AggregatedInsights, has_history: bool, confidence: str) -> int:
    """Success probability percentage for an enrichment proposal."""
    if not has_history:
        return BASE_PREDICTION_BY_CONFIDENCE.get(confidence, BASE_PREDICTION_BY_CONFIDENCE[ConfidenceLevel.MEDIUM])

    prediction = insights.success_rate
    if confidence == ConfidenceLevel.HIGH:
        prediction = min(prediction + HIGH_CONFIDENCE_BONUS, HIGH_CONFIDENCE_CAP)
    elif confidence == ConfidenceLevel.LOW:
        prediction = max(prediction - LOW_CONFIDENCE_PENALTY, LOW_CONFIDENCE_FLOOR)
    return _round_half_up(prediction)
