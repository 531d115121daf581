from __future__ import annotations
from typing import Literal, Mapping

from perfdash.models import AvgScores, CATEGORY_FIELDS, Metrics, round_half_up

ScoreBand = Literal["good", "average", "poor"]


def calculate_average_scores(results: Mapping[str, Metrics]) -> AvgScores:
    """Unweighted per-category mean over every route, rounded half-up.

    Failed routes carry zeros and still count in the denominator.
    """
    count = len(results)
    if count == 0:
        return AvgScores()
    totals = {f: 0 for f in CATEGORY_FIELDS}
    for metrics in results.values():
        for f in CATEGORY_FIELDS:
            totals[f] += getattr(metrics, f)
    return AvgScores(**{f: round_half_up(totals[f] / count) for f in CATEGORY_FIELDS})


def score_band(score: int) -> ScoreBand:
    if score >= 90:
        return "good"
    if score >= 50:
        return "average"
    return "poor"
