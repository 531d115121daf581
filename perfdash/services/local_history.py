from __future__ import annotations
from pathlib import Path
from typing import List, Optional
import asyncio
import json
import logging
import os
import tempfile
import time

from pydantic import ValidationError

from perfdash.errors import LocalStoreError
from perfdash.models import LighthouseResult

logger = logging.getLogger(__name__)


class LocalHistory:
    """Bounded newest-first list of runs kept under a single named key.

    The key maps to `<directory>/<key>.json`. Every mutation is a full
    read-modify-write under one lock, so the list never exceeds `limit`.
    """

    def __init__(self, directory: Path | str, key: str = "lighthouse-history", limit: int = 10):
        self.directory = Path(directory)
        self.key = key
        self.limit = limit
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self.directory / f"{self.key}.json"

    def _read_raw(self) -> list:
        try:
            text = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return []
        except OSError as e:
            raise LocalStoreError(f"cannot read {self.path}: {e}") from e
        if not text.strip():
            return []
        try:
            data = json.loads(text)
        except ValueError as e:
            raise LocalStoreError(f"{self.path} is not valid JSON: {e}") from e
        if not isinstance(data, list):
            raise LocalStoreError(f"{self.path} does not hold a list")
        return data

    def _parse(self, raw: list) -> List[LighthouseResult]:
        out: List[LighthouseResult] = []
        for item in raw:
            try:
                out.append(LighthouseResult.model_validate(item))
            except ValidationError as e:
                logger.warning("Skipping unreadable local history entry: %s", e.errors()[:1])
        return out

    def _write(self, records: List[LighthouseResult]) -> None:
        payload = json.dumps([r.to_wire() for r in records], indent=2)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=f".{self.key}.", suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
            os.replace(tmp, self.path)
        except OSError as e:
            raise LocalStoreError(f"cannot write {self.path}: {e}") from e

    def new_id(self, existing: List[LighthouseResult]) -> str:
        taken = {r.id for r in existing}
        candidate = int(time.time() * 1000)
        while str(candidate) in taken:
            candidate += 1
        return str(candidate)

    async def read(self) -> List[LighthouseResult]:
        async with self._lock:
            return self._parse(self._read_raw())

    async def prepend(self, record: LighthouseResult) -> LighthouseResult:
        """Insert at the head, assigning a time-derived id when the record has none."""
        async with self._lock:
            records = self._parse(self._read_raw())
            if not record.id:
                record = record.model_copy(update={"id": self.new_id(records)})
            self._write([record] + records[: self.limit - 1])
            return record

    async def find(self, result_id: str) -> Optional[LighthouseResult]:
        for r in await self.read():
            if r.id == result_id:
                return r
        return None

    async def replace(self, records: List[LighthouseResult]) -> None:
        async with self._lock:
            self._write(list(records)[: self.limit])

    async def clear(self) -> None:
        async with self._lock:
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass
            except OSError as e:
                raise LocalStoreError(f"cannot remove {self.path}: {e}") from e
