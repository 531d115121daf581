# tests/test_store.py
from datetime import datetime, timezone
import json

import pytest
from sqlalchemy.ext.asyncio import create_async_engine

from perfdash.db import make_session_factory
from perfdash.errors import ResultStoreUnavailable
from perfdash.models import LighthouseResult, Metrics, ResultDraft, RouteConfig, extract_domain
from perfdash.services.history import ResultRepository
from perfdash.services.local_history import LocalHistory
from perfdash.services.store import ResultStore, StoreSource

TS = datetime(2025, 6, 10, 12, 0, 0, tzinfo=timezone.utc)


def _draft(url="https://example.com", perf=(80, 60), ts=TS):
    routes = [RouteConfig(id="1", path="/", name="Home"), RouteConfig(id="2", path="/about", name="About")]
    results = {"/": Metrics(performance=perf[0], seo=90, fcp=1200), "/about": Metrics(performance=perf[1], seo=70)}
    return ResultDraft(url=url, timestamp=ts, routes=routes, results=results)


def test_domain_extraction():
    assert extract_domain("https://example.com/ignored-path") == "example.com"
    assert extract_domain("http://Sub.Example.org:8080/x?y=1") == "sub.example.org"
    assert extract_domain("not-a-url") == "not-a-url"


def test_timestamp_normalization_accepts_epoch_millis_and_iso():
    a = ResultDraft(url="https://x.io", timestamp=1749556800000)
    b = ResultDraft(url="https://x.io", timestamp="2025-06-10T12:00:00Z")
    assert a.timestamp == b.timestamp == TS
    assert a.timestamp.tzinfo is not None


@pytest.mark.asyncio
async def test_save_remote_then_read_back(store):
    saved = await store.save_result(_draft())
    assert saved.source is StoreSource.REMOTE
    rec = saved.value
    assert rec.id and rec.domain == "example.com"
    assert rec.avg_scores.performance == 70 and rec.avg_scores.seo == 80
    assert rec.created_at is not None

    back = await store.get_result_by_id(rec.id)
    assert back.source is StoreSource.REMOTE
    assert back.value.routes == rec.routes
    assert back.value.results == rec.results
    assert list(back.value.results) == ["/", "/about"]
    assert back.value.avg_scores == rec.avg_scores
    assert back.value.timestamp == TS


@pytest.mark.asyncio
async def test_remote_save_is_mirrored_into_local_history(store, local):
    saved = await store.save_result(_draft())
    cached = await local.read()
    assert [r.id for r in cached] == [saved.value.id]


@pytest.mark.asyncio
async def test_remote_failure_falls_back_to_local(down_store, local):
    saved = await down_store.save_result(_draft())
    assert saved.source is StoreSource.LOCAL
    assert saved.value.id.isdigit()
    assert saved.value.avg_scores.performance == 70

    back = await down_store.get_result_by_id(saved.value.id)
    assert back.source is StoreSource.LOCAL
    assert back.value.results == saved.value.results
    assert back.value.avg_scores == saved.value.avg_scores


@pytest.mark.asyncio
async def test_local_only_when_not_configured(local):
    store = ResultStore(None, local)
    saved = await store.save_result(_draft(url="not-a-url"))
    assert saved.source is StoreSource.LOCAL
    assert saved.value.domain == "not-a-url"
    listed = await store.get_results_by_domain()
    assert listed.source is StoreSource.LOCAL
    assert [r.id for r in listed.value] == [saved.value.id]


@pytest.mark.asyncio
async def test_local_history_is_capped_newest_first(local):
    store = ResultStore(None, local)
    ids = []
    for i in range(11):
        saved = await store.save_result(_draft(url=f"https://site{i}.example"))
        ids.append(saved.value.id)
    records = await local.read()
    assert len(records) == 10
    assert records[0].url == "https://site10.example"
    assert "https://site0.example" not in [r.url for r in records]
    assert len(set(ids)) == 11


@pytest.mark.asyncio
async def test_filter_by_domain_is_subset_of_unfiltered(store):
    await store.save_result(_draft(url="https://a.example"))
    await store.save_result(_draft(url="https://b.example"))
    await store.save_result(_draft(url="https://a.example/shop"))

    everything = (await store.get_results_by_domain()).value
    only_a = (await store.get_results_by_domain("a.example")).value
    assert len(everything) == 3
    assert {r.domain for r in only_a} == {"a.example"}
    assert {r.id for r in only_a} <= {r.id for r in everything}
    assert len(only_a) == 2


@pytest.mark.asyncio
async def test_remote_results_ordered_by_timestamp_desc(store):
    older = datetime(2024, 1, 1, tzinfo=timezone.utc)
    await store.save_result(_draft(url="https://old.example", ts=older))
    await store.save_result(_draft(url="https://new.example"))
    listed = (await store.get_results()).value
    assert [r.domain for r in listed] == ["new.example", "old.example"]


@pytest.mark.asyncio
async def test_read_falls_back_to_local_on_remote_error(down_store, local):
    await local.replace([])
    saved = await ResultStore(None, local).save_result(_draft(url="https://cached.example"))
    listed = await down_store.get_results_by_domain("cached.example")
    assert listed.source is StoreSource.LOCAL
    assert [r.id for r in listed.value] == [saved.value.id]
    assert (await down_store.get_results_by_domain("other.example")).value == []


@pytest.mark.asyncio
async def test_domains_remote_and_fallback(store, down_store, local):
    await store.save_result(_draft(url="https://a.example"))
    await store.save_result(_draft(url="https://b.example"))
    await store.save_result(_draft(url="https://a.example/x"))

    remote = await store.get_all_domains()
    assert remote.source is StoreSource.REMOTE
    assert sorted(remote.value) == ["a.example", "b.example"]

    # the same local file also holds the mirrored copies
    fallback = await down_store.get_all_domains()
    assert fallback.source is StoreSource.LOCAL
    assert fallback.value == ["a.example", "b.example"]


@pytest.mark.asyncio
async def test_unknown_id_is_none_in_both_tiers(store):
    got = await store.get_result_by_id("does-not-exist")
    assert got.value is None
    assert got.source is StoreSource.LOCAL


@pytest.mark.asyncio
async def test_save_never_raises_when_both_tiers_fail(tmp_path, down_repo):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("x")
    saved = await ResultStore(down_repo, LocalHistory(blocker)).save_result(_draft())
    assert saved.source is StoreSource.UNSAVED
    assert saved.value.id
    assert saved.value.avg_scores.performance == 70


@pytest.mark.asyncio
async def test_read_raises_when_both_tiers_fail(down_store, local):
    local.directory.mkdir(parents=True, exist_ok=True)
    local.path.write_text("{broken")
    with pytest.raises(ResultStoreUnavailable):
        await down_store.get_results_by_domain()


@pytest.mark.asyncio
async def test_connection_status(store, local, down_store, tmp_path):
    assert (await ResultStore(None, local).test_connection()).reason == "not_configured"
    ok = await store.test_connection()
    assert ok.success and ok.reason == "ok"
    down = await down_store.test_connection()
    assert not down.success and down.reason == "connection_error"


@pytest.mark.asyncio
async def test_connection_reports_missing_table(tmp_path, local):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
    try:
        status = await ResultStore(ResultRepository(make_session_factory(engine)), local).test_connection()
    finally:
        await engine.dispose()
    assert not status.success
    assert status.reason == "schema_missing"


@pytest.mark.asyncio
async def test_missing_table_on_save_degrades_to_local(tmp_path, local):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'empty.db'}")
    try:
        saved = await ResultStore(ResultRepository(make_session_factory(engine)), local).save_result(_draft())
    finally:
        await engine.dispose()
    assert saved.source is StoreSource.LOCAL


@pytest.mark.asyncio
async def test_corrupt_local_entries_are_skipped(local):
    good = LighthouseResult(id="1", domain="x.io", url="https://x.io", timestamp=TS)
    await local.replace([good])
    raw = json.loads(local.path.read_text())
    raw.append({"id": "2"})
    local.path.write_text(json.dumps(raw))
    assert [r.id for r in await local.read()] == ["1"]


@pytest.mark.asyncio
async def test_local_history_persists_across_instances(tmp_path):
    first = LocalHistory(tmp_path, limit=3)
    await first.prepend(LighthouseResult(id="", domain="x.io", url="https://x.io", timestamp=TS))
    again = await LocalHistory(tmp_path, limit=3).read()
    assert len(again) == 1 and again[0].id.isdigit()
    assert (tmp_path / "lighthouse-history.json").exists()
