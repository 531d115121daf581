from __future__ import annotations
from typing import Any, Dict, Optional, Tuple, Union
import json
import logging
import math
import re

from pydantic import ValidationError

from perfdash.errors import MalformedAuditResponse
from perfdash.models import CoreWebVital, Metrics, round_half_up

logger = logging.getLogger(__name__)

RawResponse = Union[Dict[str, Any], str, bytes]

# Lighthouse category id -> Metrics JSON key
CATEGORY_IDS = {
    "performance": "performance",
    "accessibility": "accessibility",
    "best-practices": "bestPractices",
    "seo": "seo",
}

# Metrics key -> audit ids, in order of preference
TIMING_AUDITS = {
    "fcp": ("first-contentful-paint",),
    "lcp": ("largest-contentful-paint",),
    "cls": ("cumulative-layout-shift",),
    "fid": ("first-input-delay", "max-potential-fid"),
    "tbt": ("total-blocking-time",),
    "si": ("speed-index",),
}

VITAL_TITLES = {
    "fcp": "First Contentful Paint",
    "lcp": "Largest Contentful Paint",
    "cls": "Cumulative Layout Shift",
    "tbt": "Total Blocking Time",
    "si": "Speed Index",
    "fid": "Max Potential First Input Delay",
}

_NUMBER = re.compile(r"\d+(?:\.\d+)?")


def _load(raw: RawResponse) -> Dict[str, Any]:
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise MalformedAuditResponse(f"audit response is not JSON: {e}") from e
    if not isinstance(raw, dict):
        raise MalformedAuditResponse(f"audit response must be an object, got {type(raw).__name__}")
    return raw


def _is_report(obj: Any) -> bool:
    return isinstance(obj, dict) and ("categories" in obj or "audits" in obj)


def unwrap_lighthouse_result(raw: RawResponse) -> Dict[str, Any]:
    """Return the Lighthouse report inside a PageSpeed (`lighthouseResult`) or
    local runner (`lhr`) response; a bare report is returned as is."""
    data = _load(raw)
    for key in ("lighthouseResult", "lhr"):
        if _is_report(data.get(key)):
            return data[key]
    if _is_report(data):
        return data
    raise MalformedAuditResponse("audit response has no Lighthouse result")


def parse_display_value(text: Optional[str], as_milliseconds: bool = True) -> Optional[float]:
    """'1.2 s' -> 1200.0, '150 ms' -> 150.0; with as_milliseconds=False the bare number."""
    if not isinstance(text, str) or not text:
        return None
    text = text.replace(",", "").replace("\u00a0", " ")
    m = _NUMBER.search(text)
    if not m:
        return None
    value = float(m.group(0))
    if not as_milliseconds:
        return value
    unit = text[m.end():].strip().lower()
    if unit.startswith("ms"):
        return value
    if unit.startswith("s"):
        return value * 1000.0
    return value


def _number(x: Any) -> Optional[float]:
    if isinstance(x, bool) or not isinstance(x, (int, float)):
        return None
    x = float(x)
    return x if math.isfinite(x) else None


def _section(report: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = report.get(key)
    return value if isinstance(value, dict) else {}


def _pick_audit(audits: Dict[str, Any], key: str) -> Tuple[Optional[str], Dict[str, Any]]:
    for audit_id in TIMING_AUDITS[key]:
        audit = audits.get(audit_id)
        if isinstance(audit, dict):
            return audit_id, audit
    return None, {}


def _timing(audits: Dict[str, Any], key: str) -> Optional[float]:
    _, audit = _pick_audit(audits, key)
    value = _number(audit.get("numericValue"))
    if value is not None:
        return value
    return parse_display_value(audit.get("displayValue"), as_milliseconds=(key != "cls"))


def _extracted(data: Dict[str, Any], part: str) -> Optional[Dict[str, Any]]:
    extracted = data.get("extractedMetrics")
    if not isinstance(extracted, dict) or not isinstance(extracted.get(part), dict):
        return None
    return extracted[part]


def _from_extracted(data: Dict[str, Any]) -> Optional[Metrics]:
    values = _extracted(data, "metrics")
    if values is None:
        return None
    unavailable = [k for k in Metrics.failed().unavailable if _number(values.get(k)) is None]
    clean = {k: v for k, v in values.items() if k not in unavailable}
    return Metrics.model_validate({**clean, "unavailable": unavailable})


def normalize_metrics(raw: RawResponse) -> Metrics:
    """Fold one raw audit response into a fully populated Metrics record."""
    data = _load(raw)
    try:
        report = unwrap_lighthouse_result(data)
    except MalformedAuditResponse:
        pre = _from_extracted(data)
        if pre is None:
            raise
        return pre

    categories = _section(report, "categories")
    audits = _section(report, "audits")
    values: Dict[str, Any] = {}
    unavailable = []

    for category_id, key in CATEGORY_IDS.items():
        cat = categories.get(category_id)
        score = _number(cat.get("score")) if isinstance(cat, dict) else None
        if score is None:
            unavailable.append(key)
            values[key] = 0
        else:
            values[key] = round_half_up(score * 100)

    for key in TIMING_AUDITS:
        value = _timing(audits, key)
        if value is None:
            unavailable.append(key)
            value = 0
        values[key] = value

    return Metrics.model_validate({**values, "unavailable": unavailable})


def _extracted_vitals(data: Dict[str, Any]) -> Dict[str, CoreWebVital]:
    given = _extracted(data, "coreWebVitals") or {}
    vitals: Dict[str, CoreWebVital] = {}
    for key, default_title in VITAL_TITLES.items():
        entry = given.get(key)
        vitals[key] = CoreWebVital(title=default_title)
        if not isinstance(entry, dict):
            continue
        try:
            vitals[key] = CoreWebVital.model_validate({"title": default_title, **entry})
        except ValidationError as e:
            logger.warning("Ignoring malformed %s detail from local runner: %s", key, e.errors()[:1])
    return vitals


def extract_core_web_vitals(raw: RawResponse) -> Dict[str, CoreWebVital]:
    """Per-metric detail from the report audits; a local runner that only sends
    `extractedMetrics` has its own `coreWebVitals` block used instead."""
    data = _load(raw)
    try:
        audits = _section(unwrap_lighthouse_result(data), "audits")
    except MalformedAuditResponse:
        return _extracted_vitals(data)

    vitals: Dict[str, CoreWebVital] = {}
    for key, default_title in VITAL_TITLES.items():
        audit_id, audit = _pick_audit(audits, key)
        if audit_id is None:
            vitals[key] = CoreWebVital(title=default_title)
            continue
        score = _number(audit.get("score"))
        vitals[key] = CoreWebVital(
            value=_timing(audits, key) or 0,
            score=round_half_up(score * 100) if score is not None else 0,
            display_value=audit.get("displayValue") or "N/A",
            title=audit.get("title") or default_title,
        )
    return vitals
