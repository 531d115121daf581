from __future__ import annotations
from typing import List, Optional
from datetime import timezone
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from perfdash.errors import RemoteStoreError, RemoteStoreSchemaError, RemoteStoreUnavailable
from perfdash.models import LighthouseResult, LighthouseResultRow

_SCHEMA_HINTS = ("no such table", "does not exist", "undefinedtable", "no such column", "undefined column")


def is_schema_error(exc: BaseException) -> bool:
    text = f"{type(getattr(exc, 'orig', None) or exc).__name__} {exc}".lower()
    return any(h in text for h in _SCHEMA_HINTS)


def _translate(exc: Exception, action: str) -> RemoteStoreError:
    if is_schema_error(exc):
        return RemoteStoreSchemaError(f"{action}: lighthouse_results table is missing or outdated ({exc})")
    if isinstance(exc, IntegrityError):
        return RemoteStoreError(f"{action}: constraint violation ({exc.orig})")
    return RemoteStoreUnavailable(f"{action}: {exc}")


def row_to_result(row: LighthouseResultRow) -> LighthouseResult:
    return LighthouseResult(
        id=row.id,
        domain=row.domain,
        url=row.url,
        timestamp=row.timestamp,
        routes=row.routes or [],
        results=row.results or {},
        avg_scores=row.avg_scores or {},
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


class ResultRepository:
    """SQL access to the `lighthouse_results` table.

    Every SQLAlchemy/driver failure leaves this class as a RemoteStoreError subclass.
    """

    def __init__(self, session_factory: sessionmaker, query_limit: int = 50):
        self.session_factory = session_factory
        self.query_limit = query_limit

    async def insert(self, record: LighthouseResult) -> LighthouseResult:
        """Persist a run; the row gets a fresh uuid and server-side created_at/updated_at."""
        row = LighthouseResultRow(
            domain=record.domain,
            url=record.url,
            timestamp=record.timestamp.astimezone(timezone.utc),
            routes=[r.to_wire() for r in record.routes],
            results={path: m.to_wire() for path, m in record.results.items()},
            avg_scores=record.avg_scores.to_wire(),
        )
        try:
            async with self.session_factory() as session:
                session.add(row)
                await session.commit()
                await session.refresh(row)
                return row_to_result(row)
        except (SQLAlchemyError, OSError) as e:
            raise _translate(e, "insert") from e

    async def list_results(self, domain: Optional[str] = None, limit: Optional[int] = None) -> List[LighthouseResult]:
        stmt = select(LighthouseResultRow).order_by(LighthouseResultRow.timestamp.desc())
        if domain:
            stmt = stmt.where(LighthouseResultRow.domain == domain)
        stmt = stmt.limit(limit or self.query_limit)
        try:
            async with self.session_factory() as session:
                res = await session.execute(stmt)
                rows = res.scalars().all()
        except (SQLAlchemyError, OSError) as e:
            raise _translate(e, "list") from e
        return [row_to_result(r) for r in rows]

    async def list_domains(self) -> List[str]:
        stmt = select(LighthouseResultRow.domain).order_by(
            LighthouseResultRow.created_at.desc(), LighthouseResultRow.timestamp.desc()
        )
        try:
            async with self.session_factory() as session:
                res = await session.execute(stmt)
                domains = res.scalars().all()
        except (SQLAlchemyError, OSError) as e:
            raise _translate(e, "domains") from e
        # dict keeps first (most recent) occurrence order
        return list(dict.fromkeys(domains))

    async def get(self, result_id: str) -> Optional[LighthouseResult]:
        try:
            async with self.session_factory() as session:
                res = await session.execute(select(LighthouseResultRow).where(LighthouseResultRow.id == result_id))
                row = res.scalars().first()
        except (SQLAlchemyError, OSError) as e:
            raise _translate(e, "get") from e
        return row_to_result(row) if row else None

    async def probe(self) -> None:
        """Cheap existence check; raises RemoteStoreSchemaError / RemoteStoreUnavailable."""
        try:
            async with self.session_factory() as session:
                await session.execute(select(LighthouseResultRow.id).limit(1))
        except (SQLAlchemyError, OSError) as e:
            raise _translate(e, "probe") from e
