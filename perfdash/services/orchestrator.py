"""Drives one test run: every route audited in order, one result saved at the end."""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence
from urllib.parse import urlparse
import asyncio
import logging

from perfdash.errors import AuditCallFailed, InvalidRunInput, MalformedAuditResponse, RunFailed
from perfdash.models import CoreWebVital, LighthouseResult, Metrics, ResultDraft, RouteConfig
from perfdash.services.audit import AuditProvider, Strategy
from perfdash.services.normalize import extract_core_web_vitals, normalize_metrics
from perfdash.services.store import ResultStore, StoreSource, Stored, build_record

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], Awaitable[None]]

HOME_ROUTE = RouteConfig(id="1", path="/", name="Home Page")


class RunState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class RunOutcome:
    state: RunState
    strategy: str
    result: Optional[LighthouseResult] = None
    source: Optional[StoreSource] = None
    raw_responses: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    core_web_vitals: Dict[str, Dict[str, CoreWebVital]] = field(default_factory=dict)
    warnings: List[str] = field(default_factory=list)


def validate_base_url(base_url: str) -> str:
    base_url = (base_url or "").strip()
    p = urlparse(base_url)
    if p.scheme not in ("http", "https") or not p.netloc:
        raise InvalidRunInput(f"Base URL must be absolute with an http or https scheme: {base_url!r}")
    return base_url


def build_full_url(base_url: str, path: str) -> str:
    path = path if path.startswith("/") else f"/{path}"
    return f"{base_url.rstrip('/')}{path}"


def prepare_routes(routes: Optional[Sequence[RouteConfig]]) -> List[RouteConfig]:
    if routes is None:
        return [HOME_ROUTE]
    seen = set()
    out: List[RouteConfig] = []
    for r in routes:
        if not r.path.strip() or r.path in seen:
            continue
        seen.add(r.path)
        out.append(r)
    if not out:
        raise InvalidRunInput("At least one route with a path is required")
    return out


class RunOrchestrator:
    """Audits routes one after another with a fixed pause between calls.

    A failing route is recorded as zero Metrics and the run goes on. A failed
    save only adds a warning; the result is still returned, marked UNSAVED.
    The run itself fails only when the route loop breaks (progress or sleep).
    """

    def __init__(
        self,
        provider: AuditProvider,
        store: ResultStore,
        *,
        delay_seconds: float = 1.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.provider = provider
        self.store = store
        self.delay_seconds = delay_seconds
        self.sleep = sleep
        self.state = RunState.IDLE

    async def _audit_route(self, full_url: str, strategy: Strategy, outcome: RunOutcome, path: str) -> Metrics:
        try:
            raw = await self.provider.audit(full_url, strategy)
            metrics = normalize_metrics(raw)
            vitals = extract_core_web_vitals(raw)
        except (AuditCallFailed, MalformedAuditResponse) as e:
            logger.error("Failed to analyze %s: %s", full_url, e)
            outcome.warnings.append(f"{path}: {e}")
            return Metrics.failed()
        except Exception as e:
            logger.exception("Unexpected error analyzing %s", full_url)
            outcome.warnings.append(f"{path}: {type(e).__name__}: {e}")
            return Metrics.failed()
        outcome.raw_responses[path] = raw
        outcome.core_web_vitals[path] = vitals
        return metrics

    async def _save(self, draft: ResultDraft) -> Stored[LighthouseResult]:
        try:
            return await self.store.save_result(draft)
        except Exception:
            logger.exception("Saving result for %s failed", draft.url)
            return Stored(build_record(draft, self.store.local.new_id([])), StoreSource.UNSAVED)

    async def run(
        self,
        base_url: str,
        strategy: Strategy = "mobile",
        routes: Optional[Sequence[RouteConfig]] = None,
        progress: Optional[ProgressCallback] = None,
    ) -> RunOutcome:
        try:
            base_url = validate_base_url(base_url)
            plan = prepare_routes(routes)
        except InvalidRunInput:
            self.state = RunState.FAILED
            raise
        if strategy not in ("mobile", "desktop"):
            self.state = RunState.FAILED
            raise InvalidRunInput(f"Unknown strategy: {strategy!r}")

        self.state = RunState.RUNNING
        outcome = RunOutcome(state=self.state, strategy=strategy)
        logger.info("Running performance test for %s (%s), %d route(s)", base_url, strategy, len(plan))
        try:
            results: Dict[str, Metrics] = {}
            for i, route in enumerate(plan):
                full_url = build_full_url(base_url, route.path)
                logger.info("[%d/%d] Analyzing %s", i + 1, len(plan), full_url)
                results[route.path] = await self._audit_route(full_url, strategy, outcome, route.path)
                if progress is not None:
                    await progress(i + 1, len(plan), full_url)
                if i < len(plan) - 1 and self.delay_seconds > 0:
                    await self.sleep(self.delay_seconds)
            draft = ResultDraft(url=base_url, timestamp=datetime.now(timezone.utc), routes=plan, results=results)
        except Exception as e:
            self.state = RunState.FAILED
            raise RunFailed(f"Run for {base_url} failed: {e}") from e

        stored = await self._save(draft)
        if stored.source is StoreSource.LOCAL:
            outcome.warnings.append("Results saved locally only. Database connection failed.")
        elif stored.source is StoreSource.UNSAVED:
            outcome.warnings.append("Results could not be saved.")
        self.state = RunState.COMPLETED
        outcome.state = self.state
        outcome.result = stored.value
        outcome.source = stored.source
        return outcome
