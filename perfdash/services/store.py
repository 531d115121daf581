from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Generic, List, Literal, Optional, TypeVar
import logging

from sqlalchemy.ext.asyncio import AsyncEngine

from perfdash.config import AppConfig
from perfdash.db import make_engine, make_session_factory
from perfdash.errors import (
    InvalidConfiguration,
    LocalStoreError,
    RemoteStoreError,
    RemoteStoreSchemaError,
    ResultStoreUnavailable,
)
from perfdash.models import LighthouseResult, ResultDraft, extract_domain
from perfdash.services.history import ResultRepository
from perfdash.services.local_history import LocalHistory
from perfdash.services.score import calculate_average_scores

logger = logging.getLogger(__name__)

T = TypeVar("T")


class StoreSource(str, Enum):
    REMOTE = "remote"
    LOCAL = "local"
    UNSAVED = "unsaved"


@dataclass
class Stored(Generic[T]):
    """A value together with the backing store that actually served it."""

    value: T
    source: StoreSource


ConnectionReason = Literal["ok", "not_configured", "schema_missing", "connection_error"]


@dataclass
class ConnectionStatus:
    success: bool
    reason: ConnectionReason
    message: str = ""


def build_record(draft: ResultDraft, result_id: str = "") -> LighthouseResult:
    """Derive domain and averages from a draft; these are never taken from the caller."""
    return LighthouseResult(
        id=result_id,
        domain=extract_domain(draft.url),
        url=draft.url,
        timestamp=draft.timestamp,
        routes=draft.routes,
        results=draft.results,
        avg_scores=calculate_average_scores(draft.results),
    )


class ResultStore:
    """Facade over the remote repository and the local fallback list.

    `remote` is None when no database is configured; the store then runs
    local-only for its whole lifetime.
    """

    def __init__(self, remote: Optional[ResultRepository], local: LocalHistory):
        self.remote = remote
        self.local = local

    @property
    def remote_configured(self) -> bool:
        return self.remote is not None

    async def save_to_remote(self, draft: ResultDraft) -> LighthouseResult:
        if self.remote is None:
            raise InvalidConfiguration("remote store is not configured")
        return await self.remote.insert(build_record(draft))

    async def save_result(self, draft: ResultDraft) -> Stored[LighthouseResult]:
        record = build_record(draft)
        if self.remote is not None:
            try:
                saved = await self.remote.insert(record)
            except RemoteStoreError as e:
                logger.error("Error saving to remote store, falling back to local history: %s", e)
            else:
                try:
                    await self.local.prepend(saved)
                except LocalStoreError as e:
                    logger.warning("Could not mirror result %s into local history: %s", saved.id, e)
                return Stored(saved, StoreSource.REMOTE)

        try:
            return Stored(await self.local.prepend(record), StoreSource.LOCAL)
        except LocalStoreError as e:
            logger.error("Local history write failed, result %s is not persisted: %s", record.url, e)
            return Stored(record.model_copy(update={"id": self.local.new_id([])}), StoreSource.UNSAVED)

    async def _local_results(self, domain: Optional[str], cause: Optional[Exception] = None) -> List[LighthouseResult]:
        try:
            records = await self.local.read()
        except LocalStoreError as e:
            if cause is not None:
                raise ResultStoreUnavailable(f"remote: {cause}; local: {e}") from e
            raise ResultStoreUnavailable(str(e)) from e
        if domain:
            records = [r for r in records if r.domain == domain]
        return records

    async def get_results_by_domain(self, domain: Optional[str] = None) -> Stored[List[LighthouseResult]]:
        cause = None
        if self.remote is not None:
            try:
                return Stored(await self.remote.list_results(domain), StoreSource.REMOTE)
            except RemoteStoreError as e:
                logger.error("Error fetching from remote store: %s", e)
                cause = e
        return Stored(await self._local_results(domain, cause), StoreSource.LOCAL)

    async def get_results(self) -> Stored[List[LighthouseResult]]:
        return await self.get_results_by_domain(None)

    async def get_all_domains(self) -> Stored[List[str]]:
        cause = None
        if self.remote is not None:
            try:
                return Stored(await self.remote.list_domains(), StoreSource.REMOTE)
            except RemoteStoreError as e:
                logger.error("Error fetching domains from remote store: %s", e)
                cause = e
        records = await self._local_results(None, cause)
        return Stored(list(dict.fromkeys(extract_domain(r.url) for r in records)), StoreSource.LOCAL)

    async def get_result_by_id(self, result_id: str) -> Stored[Optional[LighthouseResult]]:
        cause = None
        if self.remote is not None:
            try:
                found = await self.remote.get(result_id)
                if found is not None:
                    return Stored(found, StoreSource.REMOTE)
            except RemoteStoreError as e:
                logger.error("Error fetching result %s from remote store: %s", result_id, e)
                cause = e
        try:
            return Stored(await self.local.find(result_id), StoreSource.LOCAL)
        except LocalStoreError as e:
            if cause is not None:
                raise ResultStoreUnavailable(f"remote: {cause}; local: {e}") from e
            raise ResultStoreUnavailable(str(e)) from e

    async def test_connection(self) -> ConnectionStatus:
        if self.remote is None:
            return ConnectionStatus(False, "not_configured", "No database URL configured (PERFDASH_DB_URL).")
        try:
            await self.remote.probe()
        except RemoteStoreSchemaError as e:
            return ConnectionStatus(False, "schema_missing", str(e))
        except RemoteStoreError as e:
            return ConnectionStatus(False, "connection_error", str(e))
        return ConnectionStatus(True, "ok", "Database connection successful.")


def build_store(config: AppConfig, engine: Optional[AsyncEngine] = None) -> ResultStore:
    local = LocalHistory(config.history_dir, key=config.history_key, limit=config.history_limit)
    if engine is None:
        engine = make_engine(config)
    if engine is None:
        logger.warning("Database credentials not found (PERFDASH_DB_URL), using local history only")
        return ResultStore(None, local)
    return ResultStore(ResultRepository(make_session_factory(engine), query_limit=config.query_limit), local)
