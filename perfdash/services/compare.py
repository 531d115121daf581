from __future__ import annotations
from typing import Any, Dict, List, Sequence

from perfdash.models import CATEGORY_FIELDS, LighthouseResult
from perfdash.services.score import score_band

MAX_COMPARE = 3

CATEGORY_LABELS = {
    "performance": "Performance",
    "best_practices": "Best Practices",
    "accessibility": "Accessibility",
    "seo": "SEO",
}


def filter_results(results: Sequence[LighthouseResult], search: str | None) -> List[LighthouseResult]:
    """Case-insensitive substring match on url or domain."""
    term = (search or "").strip().lower()
    if not term:
        return list(results)
    return [r for r in results if term in r.url.lower() or term in r.domain.lower()]


def group_by_domain(results: Sequence[LighthouseResult]) -> Dict[str, List[LighthouseResult]]:
    groups: Dict[str, List[LighthouseResult]] = {}
    for r in results:
        groups.setdefault(r.domain, []).append(r)
    return groups


def _route_name(result: LighthouseResult, path: str) -> str:
    for route in result.routes:
        if route.path == path and route.name:
            return route.name
    return path


def compare_results(results: Sequence[LighthouseResult]) -> Dict[str, Any]:
    """Side-by-side view of 2-3 runs; every difference is relative to the first one."""
    if not 2 <= len(results) <= MAX_COMPARE:
        raise ValueError(f"Select between 2 and {MAX_COMPARE} results to compare (got {len(results)})")
    baseline = results[0]

    categories = []
    for f in CATEGORY_FIELDS:
        base = getattr(baseline.avg_scores, f)
        entries = []
        for r in results:
            score = getattr(r.avg_scores, f)
            entries.append({"id": r.id, "score": score, "band": score_band(score), "diff": score - base})
        key = "bestPractices" if f == "best_practices" else f
        categories.append({"key": key, "label": CATEGORY_LABELS[f], "results": entries})

    runs = []
    for r in results:
        runs.append({
            "id": r.id,
            "domain": r.domain,
            "url": r.url,
            "timestamp": r.timestamp.isoformat(),
            "avg_scores": r.avg_scores.to_wire(),
            "routes": [
                {"path": path, "name": _route_name(r, path), "metrics": m.to_wire()}
                for path, m in r.results.items()
            ],
        })
    return {"baseline": baseline.id, "categories": categories, "runs": runs}
