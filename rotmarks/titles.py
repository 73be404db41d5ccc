from __future__ import annotations

from typing import Callable, Iterable, List, Optional
from urllib.parse import urlparse

import httpx
from bs4 import BeautifulSoup  # type: ignore

from .batching import iter_chunks
from .errors import NetworkError, StoreError
from .log import get_logger
from .model import BadTitle, BookmarkRecord, TitleFixReport
from .probe import is_special_url
from .tree import BookmarkTree

log = get_logger(__name__)

GENERIC_TITLES = {
    "untitled",
    "new tab",
    "loading",
    "page",
    "document",
    "home",
    "index",
    "welcome",
    "404",
    "error",
}

MAX_TITLE_CHARS = 200
MAX_BODY_BYTES = 350_000
CHUNK_SIZE = 3
DEFAULT_TIMEOUT_S = 8.0
DEFAULT_DELAY_S = 0.5


def bad_title_reason(title: Optional[str], url: str) -> Optional[str]:
    """First matching reason, or None for an acceptable title."""
    if not title or not title.strip():
        return "Empty title"

    t = title.strip().lower()
    if t in GENERIC_TITLES:
        return "Generic title"

    try:
        host = (urlparse(url).hostname or "").lower()
    except ValueError:
        host = ""
    candidates = {url.lower()}
    if host:
        candidates.add(host)
        if host.startswith("www."):
            candidates.add(host[4:])
    if t in candidates:
        return "Title is just URL/domain"

    if len(t) < 3:
        return "Too short"
    return None


def find_bad_titles(records: Iterable[BookmarkRecord]) -> List[BadTitle]:
    out: List[BadTitle] = []
    for r in records:
        if is_special_url(r.url):
            continue
        reason = bad_title_reason(r.title, r.url)
        if reason:
            out.append(BadTitle(record=r, reason=reason))
    return out


def extract_title(content: bytes | str) -> Optional[str]:
    if not content:
        return None
    soup = BeautifulSoup(content, "lxml")
    if soup.title:
        t = soup.title.get_text(strip=True)
        if t:
            return t[:MAX_TITLE_CHARS]
    m = soup.find("meta", attrs={"property": "og:title"})
    if m and (m.get("content") or "").strip():
        return m.get("content").strip()[:MAX_TITLE_CHARS]
    return None


async def fetch_page_title(client: httpx.AsyncClient, url: str, *, timeout_s: float = DEFAULT_TIMEOUT_S) -> Optional[str]:
    """Page title of `url`, None for non-2xx pages or pages without one.

    Transport failures raise NetworkError.
    """
    try:
        r = await client.get(url, follow_redirects=True, timeout=timeout_s)
    except httpx.TimeoutException as e:
        raise NetworkError("Timeout") from e
    except (httpx.HTTPError, httpx.InvalidURL) as e:
        raise NetworkError(str(e) or e.__class__.__name__) from e
    if not r.is_success:
        return None
    return extract_title(r.content[:MAX_BODY_BYTES])


async def fetch_and_fix_titles(
    tree: BookmarkTree,
    records: List[BookmarkRecord],
    *,
    client: httpx.AsyncClient,
    on_progress: Optional[Callable[[int, int], None]] = None,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    delay_s: float = DEFAULT_DELAY_S,
) -> TitleFixReport:
    report = TitleFixReport()

    async def _one(record: BookmarkRecord) -> None:
        try:
            new_title = await fetch_page_title(client, record.url, timeout_s=timeout_s)
        except NetworkError as e:
            report.failed.append(_failed(record, str(e)))
            return
        except Exception as e:
            log.warning("Title fetch crashed for %s: %s", record.url, e)
            report.failed.append(_failed(record, str(e) or e.__class__.__name__))
            return
        if not new_title or new_title == record.title:
            report.failed.append(_failed(record, "Could not fetch title"))
            return
        try:
            tree.update(record.id, title=new_title)
        except StoreError as e:
            log.warning("Failed to retitle %s: %s", record.id, e)
            report.failed.append(_failed(record, str(e)))
            return
        report.fixed.append({"id": record.id, "oldTitle": record.title, "newTitle": new_title, "url": record.url})

    async for chunk in iter_chunks(records, size=CHUNK_SIZE, worker=_one, delay_s=delay_s):
        if on_progress is not None:
            on_progress(chunk.processed, chunk.total)

    log.info("Titles: %d fixed, %d failed.", len(report.fixed), len(report.failed))
    return report


def _failed(record: BookmarkRecord, reason: str) -> dict:
    return {"id": record.id, "title": record.title, "url": record.url, "reason": reason}
