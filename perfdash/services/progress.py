from __future__ import annotations
import asyncio, time
from typing import Dict, Any

_jobs: Dict[str, Dict[str, Any]] = {}
_lock = asyncio.Lock()

# finished jobs hold full raw audit reports; only the newest ones are kept
MAX_FINISHED_JOBS = 20

def _evict_finished():
    finished = [k for k, j in _jobs.items() if j["status"] in ("done", "failed")]
    for job_id in finished[:max(0, len(finished) - MAX_FINISHED_JOBS + 1)]:
        del _jobs[job_id]

async def create_job(job_id: str, total: int = 0):
    async with _lock:
        _evict_finished()
        _jobs[job_id] = {"status": "pending", "progress": 0, "current": 0, "total": total,
                         "messages": [], "result": None, "error": None, "started": time.time()}

async def update_job(job_id: str, progress: int, message: str, current: int | None = None):
    async with _lock:
        if job_id in _jobs:
            job = _jobs[job_id]
            job["status"] = "running"
            job["progress"] = progress
            if current is not None:
                job["current"] = current
            job["messages"].append({"ts": time.time(), "msg": message})

async def finish_job(job_id: str, result: Any):
    async with _lock:
        if job_id in _jobs:
            _jobs[job_id]["status"] = "done"
            _jobs[job_id]["progress"] = 100
            _jobs[job_id]["result"] = result

async def fail_job(job_id: str, error: str):
    async with _lock:
        if job_id in _jobs:
            _jobs[job_id]["status"] = "failed"
            _jobs[job_id]["progress"] = 100
            _jobs[job_id]["error"] = error
            _jobs[job_id]["messages"].append({"ts": time.time(), "msg": f"Error: {error}"})

async def get_job(job_id: str) -> Dict[str, Any] | None:
    async with _lock:
        return _jobs.get(job_id)
