from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional
import os

DEFAULT_HISTORY_KEY = "lighthouse-history"
DEFAULT_LIGHTHOUSE_SERVER = "http://localhost:3001"


def _flag(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    return int(raw) if raw else default


def _float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    return float(raw) if raw else default


@dataclass
class AppConfig:
    """Runtime configuration; read once at startup and passed down explicitly."""

    db_url: Optional[str] = None
    create_schema: bool = False
    history_dir: Path = field(default_factory=lambda: Path("."))
    history_key: str = DEFAULT_HISTORY_KEY
    history_limit: int = 10
    query_limit: int = 50
    audit_source: str = "pagespeed"
    pagespeed_api_key: Optional[str] = None
    lighthouse_server: str = DEFAULT_LIGHTHOUSE_SERVER
    route_delay: float = 1.0
    migration_retain_failed: bool = False

    @property
    def remote_configured(self) -> bool:
        return bool(self.db_url)

    @classmethod
    def from_env(cls) -> "AppConfig":
        return cls(
            db_url=(os.getenv("PERFDASH_DB_URL") or "").strip() or None,
            create_schema=_flag("PERFDASH_CREATE_SCHEMA"),
            history_dir=Path(os.getenv("PERFDASH_HISTORY_DIR") or "."),
            history_key=os.getenv("PERFDASH_HISTORY_KEY") or DEFAULT_HISTORY_KEY,
            history_limit=_int("PERFDASH_HISTORY_LIMIT", 10),
            query_limit=_int("PERFDASH_QUERY_LIMIT", 50),
            audit_source=(os.getenv("PERFDASH_AUDIT_SOURCE") or "pagespeed").strip().lower(),
            pagespeed_api_key=(os.getenv("PERFDASH_PAGESPEED_API_KEY") or "").strip() or None,
            lighthouse_server=os.getenv("PERFDASH_LIGHTHOUSE_SERVER") or DEFAULT_LIGHTHOUSE_SERVER,
            route_delay=_float("PERFDASH_ROUTE_DELAY", 1.0),
            migration_retain_failed=_flag("PERFDASH_MIGRATION_RETAIN_FAILED"),
        )
