from __future__ import annotations
from dataclasses import dataclass, field
from typing import List
import logging

from perfdash.errors import LocalStoreError, MigrationItemFailed, PerfDashError
from perfdash.models import LighthouseResult
from perfdash.services.store import ResultStore

logger = logging.getLogger(__name__)


@dataclass
class MigrationReport:
    skipped: bool = False
    reason: str = ""
    attempted: int = 0
    migrated: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    cleared: bool = False


async def migrate_local_results(store: ResultStore, *, retain_failed: bool = False) -> MigrationReport:
    """Push runs that only exist in local history to the remote store, then drop them locally.

    Domain and averages are recomputed by the store rather than copied from the
    cached record. A failing record never stops the batch. By default the local
    list is cleared afterwards no matter what; with `retain_failed` only the
    records that could not be uploaded are kept.
    """
    status = await store.test_connection()
    if not status.success:
        logger.info("Skipping local history migration: %s (%s)", status.reason, status.message)
        return MigrationReport(skipped=True, reason=status.reason)

    report = MigrationReport(reason=status.reason)
    try:
        local = await store.local.read()
    except LocalStoreError as e:
        logger.error("Migration failed, local history unreadable: %s", e)
        return MigrationReport(skipped=True, reason="local_unreadable")
    if not local:
        return report

    logger.info("Found %d local results to migrate", len(local))
    leftovers: List[LighthouseResult] = []
    for record in local:
        report.attempted += 1
        try:
            saved = await store.save_to_remote(record.to_draft())
        except PerfDashError as e:
            logger.error("%s", MigrationItemFailed(record.id, e))
            report.failed.append(record.id)
            leftovers.append(record)
            continue
        report.migrated.append(saved.id)

    if retain_failed and leftovers:
        await store.local.replace(leftovers)
    else:
        await store.local.clear()
        report.cleared = True
    logger.info("Data migration completed: %d migrated, %d failed", len(report.migrated), len(report.failed))
    return report
