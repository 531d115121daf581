from __future__ import annotations

import uuid
import asyncio
import json
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Request, HTTPException
from pydantic import BaseModel
from starlette.responses import JSONResponse, StreamingResponse

from perfdash.errors import InvalidRunInput, RunFailed
from perfdash.models import RouteConfig
from perfdash.services.export import build_export, export_filename
from perfdash.services.orchestrator import RunOrchestrator, RunOutcome, prepare_routes, validate_base_url
from perfdash.services.progress import create_job, update_job, finish_job, fail_job, get_job

router = APIRouter()

# strong refs so background runs are not garbage collected mid-flight
_tasks: set = set()


class RunRequest(BaseModel):
    url: str
    strategy: Literal["mobile", "desktop"] = "mobile"
    routes: Optional[List[RouteConfig]] = None


def outcome_summary(outcome: RunOutcome) -> Dict[str, Any]:
    return {
        "state": outcome.state.value,
        "strategy": outcome.strategy,
        "source": outcome.source.value if outcome.source else None,
        "warnings": outcome.warnings,
        "result": outcome.result.to_wire() if outcome.result else None,
        "coreWebVitals": {
            path: {k: v.to_wire() for k, v in vitals.items()}
            for path, vitals in outcome.core_web_vitals.items()
        },
    }


def _snapshot(job: Dict[str, Any]) -> Dict[str, Any]:
    out = {k: v for k, v in job.items() if k != "result"}
    if isinstance(job.get("result"), RunOutcome):
        out["result"] = outcome_summary(job["result"])
    return out


@router.post("/api/runs")
async def start_run(request: Request, body: RunRequest):
    provider = getattr(request.app.state, "provider", None)
    if provider is None:
        detail = getattr(request.app.state, "provider_error", None) or "No audit provider configured"
        raise HTTPException(status_code=503, detail=detail)
    try:
        base_url = validate_base_url(body.url)
        routes = prepare_routes(body.routes)
    except InvalidRunInput as e:
        raise HTTPException(status_code=400, detail=str(e))

    config = request.app.state.config
    orchestrator = RunOrchestrator(provider, request.app.state.store, delay_seconds=config.route_delay)
    job_id = str(uuid.uuid4())
    await create_job(job_id, total=len(routes))

    async def progress(current: int, total: int, url: str):
        await update_job(job_id, int(current * 100 / total) if total else 100, f"Analyzed {url}", current=current)

    async def runner():
        try:
            await update_job(job_id, 1, "Queued")
            outcome = await orchestrator.run(base_url, body.strategy, routes, progress=progress)
            await finish_job(job_id, outcome)
        except (RunFailed, InvalidRunInput) as e:
            await fail_job(job_id, str(e))

    task = asyncio.create_task(runner())
    _tasks.add(task)
    task.add_done_callback(_tasks.discard)
    return {"job_id": job_id, "total": len(routes)}


@router.get("/api/runs/{job_id}")
async def run_status(job_id: str):
    job = await get_job(job_id)
    if not job:
        raise HTTPException(status_code=404, detail="job not found")
    return JSONResponse(_snapshot(job))


@router.get("/events/{job_id}")
async def events(job_id: str):
    async def event_stream():
        last_len = 0
        for _ in range(900):
            job = await get_job(job_id)
            if not job:
                yield "event: error\n"
                yield "data: {\"msg\": \"unknown job\", \"progress\": 100}\n\n"
                return
            msgs = job.get("messages") or []
            for i in range(last_len, len(msgs)):
                payload = {"msg": msgs[i]["msg"], "progress": int(job.get("progress", 0)),
                           "current": job.get("current", 0), "total": job.get("total", 0)}
                yield "data: " + json.dumps(payload) + "\n\n"
            last_len = len(msgs)
            if job.get("status") in ("done", "failed"):
                yield "data: " + json.dumps({"msg": job["status"], "progress": 100}) + "\n\n"
                return
            await asyncio.sleep(1)
    return StreamingResponse(event_stream(), media_type="text/event-stream")


@router.get("/api/runs/{job_id}/download")
async def download(job_id: str):
    job = await get_job(job_id)
    outcome = job.get("result") if job else None
    if not isinstance(outcome, RunOutcome) or outcome.result is None:
        raise HTTPException(status_code=404, detail="no finished run for this job")
    filename = export_filename(outcome.result.timestamp)
    return JSONResponse(
        build_export(outcome),
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
