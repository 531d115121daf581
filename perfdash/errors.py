from __future__ import annotations
from typing import Optional


class PerfDashError(Exception):
    """Base class for everything perfdash raises on purpose."""


class MalformedAuditResponse(PerfDashError):
    pass


class AuditCallFailed(PerfDashError):
    def __init__(self, url: str, message: str):
        super().__init__(f"Failed to analyze {url}: {message}")
        self.url = url


class NetworkError(AuditCallFailed):
    pass


class RateLimited(AuditCallFailed):
    pass


class InvalidUrl(AuditCallFailed):
    pass


class UpstreamError(AuditCallFailed):
    def __init__(self, url: str, status: int, body: str = ""):
        super().__init__(url, f"upstream returned {status} {body[:200]}".rstrip())
        self.status = status
        self.body = body


class RemoteStoreError(PerfDashError):
    pass


class RemoteStoreUnavailable(RemoteStoreError):
    pass


class RemoteStoreSchemaError(RemoteStoreError):
    pass


class LocalStoreError(PerfDashError):
    pass


class ResultStoreUnavailable(PerfDashError):
    """Neither backing store could serve a read."""


class MigrationItemFailed(PerfDashError):
    def __init__(self, result_id: Optional[str], cause: Exception):
        super().__init__(f"could not migrate result {result_id}: {cause}")
        self.result_id = result_id
        self.cause = cause


class InvalidConfiguration(PerfDashError):
    pass


class InvalidRunInput(PerfDashError, ValueError):
    pass


class RunFailed(PerfDashError):
    pass
