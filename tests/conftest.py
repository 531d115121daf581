# tests/conftest.py
from __future__ import annotations
from typing import Any, Dict

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine

from perfdash.db import init_db, make_session_factory
from perfdash.errors import RemoteStoreUnavailable
from perfdash.services.history import ResultRepository
from perfdash.services.local_history import LocalHistory
from perfdash.services.store import ResultStore


def _psi(performance=0.9, accessibility=0.8, best_practices=0.7, seo=0.6, audits=None) -> Dict[str, Any]:
    default_audits = {
        "first-contentful-paint": {"title": "First Contentful Paint", "numericValue": 1200.5, "displayValue": "1.2 s", "score": 0.91},
        "largest-contentful-paint": {"title": "Largest Contentful Paint", "numericValue": 2500.0, "displayValue": "2.5 s", "score": 0.75},
        "cumulative-layout-shift": {"title": "Cumulative Layout Shift", "numericValue": 0.05, "displayValue": "0.05", "score": 0.98},
        "max-potential-fid": {"title": "Max Potential First Input Delay", "numericValue": 120.0, "displayValue": "120 ms", "score": 0.8},
        "total-blocking-time": {"title": "Total Blocking Time", "numericValue": 150.0, "displayValue": "150 ms", "score": 0.9},
        "speed-index": {"title": "Speed Index", "numericValue": 3100.0, "displayValue": "3.1 s", "score": 0.7},
    }
    if audits is not None:
        default_audits = audits
    return {
        "id": "https://example.com/",
        "lighthouseResult": {
            "categories": {
                "performance": {"score": performance},
                "accessibility": {"score": accessibility},
                "best-practices": {"score": best_practices},
                "seo": {"score": seo},
            },
            "audits": default_audits,
        },
    }


@pytest.fixture
def make_psi():
    return _psi


@pytest.fixture
def local(tmp_path) -> LocalHistory:
    return LocalHistory(tmp_path / "history")


@pytest_asyncio.fixture
async def engine(tmp_path):
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'remote.db'}")
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def repo(engine) -> ResultRepository:
    return ResultRepository(make_session_factory(engine))


@pytest.fixture
def store(repo, local) -> ResultStore:
    return ResultStore(repo, local)


class DownRepository(ResultRepository):
    """Remote that is configured but unreachable."""

    def __init__(self):
        super().__init__(session_factory=None)

    async def insert(self, record):
        raise RemoteStoreUnavailable("connection refused")

    async def list_results(self, domain=None, limit=None):
        raise RemoteStoreUnavailable("connection refused")

    async def list_domains(self):
        raise RemoteStoreUnavailable("connection refused")

    async def get(self, result_id):
        raise RemoteStoreUnavailable("connection refused")

    async def probe(self):
        raise RemoteStoreUnavailable("connection refused")


@pytest.fixture
def down_repo() -> DownRepository:
    return DownRepository()


@pytest.fixture
def down_store(down_repo, local) -> ResultStore:
    return ResultStore(down_repo, local)
