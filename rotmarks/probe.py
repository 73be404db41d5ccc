from __future__ import annotations

import httpx

from .log import get_logger
from .model import Broken, Fixed, ProbeResult, ScanOutcome, Unchanged

log = get_logger(__name__)

DEFAULT_TIMEOUT_S = 10.0

# Internal browser pages and script/data/file URIs are never probed.
SPECIAL_SCHEMES = (
    "chrome:",
    "chrome-extension:",
    "moz-extension:",
    "javascript:",
    "data:",
    "file:",
    "about:",
    "blob:",
    "place:",
)


def is_special_url(url: str | None) -> bool:
    if not url:
        return True
    u = url.strip().lower()
    return any(u.startswith(s) for s in SPECIAL_SCHEMES)


async def probe(client: httpx.AsyncClient, url: str, *, timeout_s: float = DEFAULT_TIMEOUT_S) -> ProbeResult:
    """One health check of `url`.

    HEAD first (redirects followed). A 405 or any transport failure gets exactly
    one GET retry; the GET outcome is final.
    """
    try:
        r = await client.head(url, follow_redirects=True, timeout=timeout_s)
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        log.debug("HEAD failed for %s (%s); retrying with GET", url, e.__class__.__name__)
        return await _probe_get(client, url, timeout_s)

    if r.status_code == 405:
        return await _probe_get(client, url, timeout_s)
    return _result(url, r)


async def _probe_get(client: httpx.AsyncClient, url: str, timeout_s: float) -> ProbeResult:
    try:
        async with client.stream("GET", url, follow_redirects=True, timeout=timeout_s) as r:
            return _result(url, r)
    except httpx.TimeoutException:
        return ProbeResult(final_url=None, status_code=0, error="Timeout")
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        return ProbeResult(final_url=None, status_code=0, error=str(e) or e.__class__.__name__)


def _result(url: str, r: httpx.Response) -> ProbeResult:
    # Without a redirect the final URL is the original, byte for byte.
    final_url = str(r.url) if r.history else url
    return ProbeResult(final_url=final_url, status_code=r.status_code, error=None)


def classify(url: str, result: ProbeResult) -> ScanOutcome:
    if result.error or result.status_code == 0:
        return Broken(reason=result.error or "No response")
    if result.status_code >= 400:
        return Broken(reason=f"HTTP {result.status_code}")
    if result.final_url and result.final_url != url:
        return Fixed(new_url=result.final_url)
    return Unchanged()
