from __future__ import annotations
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query, Request

from perfdash.errors import ResultStoreUnavailable
from perfdash.services.compare import MAX_COMPARE, compare_results, filter_results, group_by_domain
from perfdash.services.store import ResultStore

router = APIRouter(prefix="/api")


def _store(request: Request) -> ResultStore:
    return request.app.state.store


@router.get("/results")
async def list_results(request: Request, domain: Optional[str] = None, q: Optional[str] = None, grouped: bool = False):
    try:
        stored = await _store(request).get_results_by_domain(domain or None)
    except ResultStoreUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    results = filter_results(stored.value, q)
    payload = {"source": stored.source.value, "count": len(results), "results": [r.to_wire() for r in results]}
    if grouped:
        payload["groups"] = {d: [r.id for r in rs] for d, rs in group_by_domain(results).items()}
    return payload


@router.get("/domains")
async def list_domains(request: Request):
    try:
        stored = await _store(request).get_all_domains()
    except ResultStoreUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    return {"source": stored.source.value, "domains": stored.value}


@router.get("/results/{result_id}")
async def get_result(request: Request, result_id: str):
    try:
        stored = await _store(request).get_result_by_id(result_id)
    except ResultStoreUnavailable as e:
        raise HTTPException(status_code=503, detail=str(e))
    if stored.value is None:
        raise HTTPException(status_code=404, detail="result not found")
    return {"source": stored.source.value, "result": stored.value.to_wire()}


@router.get("/compare")
async def compare(request: Request, ids: List[str] = Query(...)):
    if not 2 <= len(ids) <= MAX_COMPARE:
        raise HTTPException(status_code=400, detail=f"Select between 2 and {MAX_COMPARE} results to compare")
    store = _store(request)
    found = []
    for result_id in ids:
        try:
            stored = await store.get_result_by_id(result_id)
        except ResultStoreUnavailable as e:
            raise HTTPException(status_code=503, detail=str(e))
        if stored.value is None:
            raise HTTPException(status_code=404, detail=f"result {result_id} not found")
        found.append(stored.value)
    return compare_results(found)
