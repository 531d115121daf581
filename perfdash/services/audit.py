from __future__ import annotations
from typing import Any, Dict, Literal, Optional, Protocol
from urllib.parse import quote
import logging

import httpx

from perfdash.config import AppConfig
from perfdash.errors import (
    InvalidConfiguration,
    InvalidUrl,
    MalformedAuditResponse,
    NetworkError,
    RateLimited,
    UpstreamError,
)

logger = logging.getLogger(__name__)

Strategy = Literal["mobile", "desktop"]

PAGESPEED_ENDPOINT = "https://www.googleapis.com/pagespeedonline/v5/runPagespeed"
CATEGORIES = ("performance", "accessibility", "best-practices", "seo")


class AuditProvider(Protocol):
    async def audit(self, url: str, strategy: Strategy) -> Dict[str, Any]:
        ...


def _check(url: str, r: httpx.Response) -> Dict[str, Any]:
    if r.status_code == 429:
        raise RateLimited(url, "rate limited by audit service")
    if r.status_code == 400:
        raise InvalidUrl(url, r.text[:300])
    if r.status_code >= 300:
        raise UpstreamError(url, r.status_code, r.text)
    try:
        data = r.json()
    except ValueError as e:
        raise MalformedAuditResponse(f"{url}: response is not JSON") from e
    if not isinstance(data, dict):
        raise MalformedAuditResponse(f"{url}: response is not an object")
    return data


def insights_url(url: str, strategy: Strategy = "mobile") -> str:
    cats = "".join(f"&category={c}" for c in CATEGORIES)
    return f"https://pagespeed.web.dev/analysis?url={quote(url, safe='')}&form_factor={strategy}{cats}"


class PageSpeedClient:
    """Hosted PageSpeed Insights v5."""

    name = "pagespeed"

    def __init__(self, api_key: str, endpoint: str = PAGESPEED_ENDPOINT, timeout: float = 120.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self.endpoint = endpoint
        self.timeout = timeout
        self.transport = transport

    async def audit(self, url: str, strategy: Strategy = "mobile") -> Dict[str, Any]:
        params = [("url", url), ("key", self.api_key), ("strategy", strategy)]
        params += [("category", c) for c in CATEGORIES]
        logger.info("Fetching PageSpeed data for %s (%s)", url, strategy)
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.get(self.endpoint, params=params)
        except httpx.HTTPError as e:
            raise NetworkError(url, str(e) or type(e).__name__) from e
        return _check(url, r)


class LocalLighthouseClient:
    """Lighthouse runner exposed over HTTP on this machine (`POST /analyze`)."""

    name = "local"

    def __init__(self, base_url: str = "http://localhost:3001", timeout: float = 180.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.transport = transport

    async def health(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=5.0, transport=self.transport) as client:
                r = await client.get(f"{self.base_url}/health")
            return r.status_code == 200
        except httpx.HTTPError as e:
            logger.warning("Lighthouse server health check failed: %s", e)
            return False

    async def audit(self, url: str, strategy: Strategy = "mobile") -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                r = await client.post(f"{self.base_url}/analyze", json={"url": url, "strategy": strategy},
                                      headers={"Accept": "application/json"})
        except httpx.HTTPError as e:
            raise NetworkError(url, str(e) or type(e).__name__) from e
        return _check(url, r)


def build_provider(config: AppConfig) -> AuditProvider:
    if config.audit_source == "local":
        return LocalLighthouseClient(config.lighthouse_server)
    if config.audit_source == "pagespeed":
        if not config.pagespeed_api_key:
            raise InvalidConfiguration("PageSpeed Insights API key is required (PERFDASH_PAGESPEED_API_KEY)")
        return PageSpeedClient(config.pagespeed_api_key)
    raise InvalidConfiguration(f"unknown audit source: {config.audit_source!r}")
