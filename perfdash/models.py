from __future__ import annotations
from typing import Any, Dict, List, Optional
from datetime import datetime, timezone
from urllib.parse import urlparse
import math
import uuid

from pydantic import BaseModel, ConfigDict, Field as PField, field_validator
from sqlalchemy import DateTime, func
from sqlmodel import SQLModel, Field, Column, JSON

CATEGORY_FIELDS = ("performance", "accessibility", "best_practices", "seo")
TIMING_FIELDS = ("fcp", "lcp", "cls", "fid", "tbt", "si")
METRIC_FIELDS = CATEGORY_FIELDS + TIMING_FIELDS
# JSON keys, as stored in `results` documents
METRIC_KEYS = ("performance", "accessibility", "bestPractices", "seo") + TIMING_FIELDS


class LighthouseResultRow(SQLModel, table=True):
    """Row in the shared `lighthouse_results` table (provisioned externally)."""

    __tablename__ = "lighthouse_results"

    id: str = Field(default_factory=lambda: str(uuid.uuid4()), primary_key=True)
    domain: str = Field(index=True)
    url: str
    timestamp: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False, index=True))
    routes: list = Field(sa_column=Column(JSON, nullable=False), default_factory=list)
    results: dict = Field(sa_column=Column(JSON, nullable=False), default_factory=dict)
    avg_scores: dict = Field(sa_column=Column(JSON, nullable=False), default_factory=dict)
    created_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), server_default=func.now(), index=True),
    )
    updated_at: Optional[datetime] = Field(
        default=None,
        sa_column=Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now()),
    )


def normalize_timestamp(value: Any) -> datetime:
    """Coerce a datetime, epoch milliseconds or ISO-8601 text into an aware UTC datetime."""
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, bool):
        raise ValueError(f"not a timestamp: {value!r}")
    elif isinstance(value, (int, float)):
        dt = datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.isdigit():
            dt = datetime.fromtimestamp(int(text) / 1000.0, tz=timezone.utc)
        else:
            if text.endswith("Z"):
                text = text[:-1] + "+00:00"
            dt = datetime.fromisoformat(text)
    else:
        raise ValueError(f"not a timestamp: {value!r}")
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def extract_domain(url: str) -> str:
    try:
        p = urlparse(url)
        if p.scheme and p.hostname:
            return p.hostname
    except ValueError:
        pass
    return url


class _Wire(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class Metrics(_Wire):
    """Canonical per-route audit numbers. Zero means scored zero or not measured;
    `unavailable` tells the two apart."""

    performance: int = 0
    accessibility: int = 0
    best_practices: int = PField(default=0, alias="bestPractices")
    seo: int = 0
    fcp: float = 0
    lcp: float = 0
    cls: float = 0
    fid: float = 0
    tbt: float = 0
    si: float = 0
    unavailable: List[str] = PField(default_factory=list)

    @field_validator(*CATEGORY_FIELDS, mode="before")
    @classmethod
    def _score(cls, v):
        if v is None:
            return 0
        v = float(v)
        return round_half_up(v) if math.isfinite(v) else 0

    @field_validator(*TIMING_FIELDS, mode="before")
    @classmethod
    def _timing(cls, v):
        return 0 if v is None else v

    @classmethod
    def failed(cls) -> "Metrics":
        return cls(unavailable=list(METRIC_KEYS))


class AvgScores(_Wire):
    performance: int = 0
    accessibility: int = 0
    best_practices: int = PField(default=0, alias="bestPractices")
    seo: int = 0


class CoreWebVital(_Wire):
    value: float = 0
    score: int = 0
    display_value: str = PField(default="N/A", alias="displayValue")
    title: str = ""


class RouteConfig(_Wire):
    id: str
    path: str
    name: str = ""

    @field_validator("path", mode="before")
    @classmethod
    def _leading_slash(cls, v):
        v = (v or "").strip()
        if v and not v.startswith("/"):
            v = "/" + v
        return v


class ResultDraft(_Wire):
    """What a finished run hands to the store; id, domain and averages are derived there."""

    url: str
    timestamp: datetime
    routes: List[RouteConfig] = PField(default_factory=list)
    results: Dict[str, Metrics] = PField(default_factory=dict)

    @field_validator("timestamp", mode="before")
    @classmethod
    def _ts(cls, v):
        return normalize_timestamp(v)


class LighthouseResult(_Wire):
    id: str
    domain: str
    url: str
    timestamp: datetime
    routes: List[RouteConfig] = PField(default_factory=list)
    results: Dict[str, Metrics] = PField(default_factory=dict)
    avg_scores: AvgScores = PField(default_factory=AvgScores)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def _ts(cls, v):
        return normalize_timestamp(v)

    @field_validator("created_at", "updated_at", mode="before")
    @classmethod
    def _optional_ts(cls, v):
        return None if v in (None, "") else normalize_timestamp(v)

    def to_draft(self) -> ResultDraft:
        return ResultDraft(url=self.url, timestamp=self.timestamp, routes=self.routes, results=self.results)
