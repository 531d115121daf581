# tests/test_migrate.py
from datetime import datetime, timezone

import pytest

from perfdash.errors import RemoteStoreUnavailable
from perfdash.models import AvgScores, LighthouseResult, Metrics, RouteConfig
from perfdash.services.history import ResultRepository
from perfdash.services.migrate import migrate_local_results
from perfdash.services.store import ResultStore

TS = datetime(2025, 3, 1, 8, 30, tzinfo=timezone.utc)


def _cached(result_id, url, perf=(80, 60)):
    # stale derived fields on purpose; migration must recompute them
    return LighthouseResult(
        id=result_id,
        domain="stale.invalid",
        url=url,
        timestamp=TS,
        routes=[RouteConfig(id="1", path="/"), RouteConfig(id="2", path="/pricing")],
        results={"/": Metrics(performance=perf[0]), "/pricing": Metrics(performance=perf[1])},
        avg_scores=AvgScores(performance=1),
    )


class FlakyRepository(ResultRepository):
    def __init__(self, inner: ResultRepository, failing_url: str):
        super().__init__(inner.session_factory, inner.query_limit)
        self.failing_url = failing_url

    async def insert(self, record):
        if record.url == self.failing_url:
            raise RemoteStoreUnavailable("connection reset")
        return await super().insert(record)


@pytest.mark.asyncio
async def test_local_records_move_to_remote_with_recomputed_fields(store, local):
    await local.replace([_cached("1700000000001", "https://one.example"), _cached("1700000000000", "https://two.example")])

    report = await migrate_local_results(store)

    assert not report.skipped
    assert report.attempted == 2 and len(report.migrated) == 2 and report.failed == []
    assert report.cleared
    assert await local.read() == []
    remote = await store.remote.list_results()
    assert sorted(r.domain for r in remote) == ["one.example", "two.example"]
    assert {r.avg_scores.performance for r in remote} == {70}
    assert all(r.timestamp == TS for r in remote)
    # remote assigns its own ids
    assert not {r.id for r in remote} & {"1700000000001", "1700000000000"}


@pytest.mark.asyncio
async def test_failed_record_does_not_stop_batch_and_local_is_cleared(repo, local):
    store = ResultStore(FlakyRepository(repo, "https://bad.example"), local)
    await local.replace([_cached("3", "https://bad.example"), _cached("2", "https://good.example")])

    report = await migrate_local_results(store)

    assert report.failed == ["3"]
    assert len(report.migrated) == 1
    assert report.cleared
    assert await local.read() == []
    assert [r.url for r in await repo.list_results()] == ["https://good.example"]


@pytest.mark.asyncio
async def test_retain_failed_keeps_only_leftovers(repo, local):
    store = ResultStore(FlakyRepository(repo, "https://bad.example"), local)
    await local.replace([_cached("3", "https://bad.example"), _cached("2", "https://good.example")])

    report = await migrate_local_results(store, retain_failed=True)

    assert not report.cleared
    assert [r.id for r in await local.read()] == ["3"]


@pytest.mark.asyncio
async def test_skipped_when_remote_not_configured(local):
    await local.replace([_cached("1", "https://one.example")])
    report = await migrate_local_results(ResultStore(None, local))
    assert report.skipped and report.reason == "not_configured"
    assert [r.id for r in await local.read()] == ["1"]


@pytest.mark.asyncio
async def test_skipped_when_remote_unreachable(down_store, local):
    await local.replace([_cached("1", "https://one.example")])
    report = await migrate_local_results(down_store)
    assert report.skipped and report.reason == "connection_error"
    assert len(await local.read()) == 1


@pytest.mark.asyncio
async def test_nothing_to_migrate(store):
    report = await migrate_local_results(store)
    assert not report.skipped
    assert report.attempted == 0 and not report.cleared


@pytest.mark.asyncio
async def test_unreadable_local_history_is_reported(store, local):
    local.directory.mkdir(parents=True, exist_ok=True)
    local.path.write_text("{oops")
    report = await migrate_local_results(store)
    assert report.skipped and report.reason == "local_unreadable"
