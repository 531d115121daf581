from __future__ import annotations
from datetime import datetime
from typing import Any, Dict

from perfdash.services.audit import insights_url
from perfdash.services.orchestrator import RunOutcome


def export_filename(timestamp: datetime) -> str:
    return f"lighthouse-results-{timestamp.strftime('%Y-%m-%d')}.json"


def build_export(outcome: RunOutcome) -> Dict[str, Any]:
    """Downloadable document: run summary plus every raw audit response, untouched."""
    if outcome.result is None:
        raise ValueError("run has no result to export")
    result = outcome.result
    return {
        "testInfo": {
            "id": result.id,
            "url": result.url,
            "timestamp": result.timestamp.isoformat(),
            "strategy": outcome.strategy,
            "insightsUrl": insights_url(result.url, outcome.strategy),
            "routes": [r.to_wire() for r in result.routes],
        },
        "summary": {path: m.to_wire() for path, m in result.results.items()},
        "avgScores": result.avg_scores.to_wire(),
        "coreWebVitals": {
            path: {k: v.to_wire() for k, v in vitals.items()}
            for path, vitals in outcome.core_web_vitals.items()
        },
        "fullApiResults": outcome.raw_responses,
    }
