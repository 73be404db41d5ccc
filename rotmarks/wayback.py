from __future__ import annotations

from typing import Callable, Dict, List, Optional

import httpx

from .batching import iter_chunks
from .log import get_logger
from .model import ArchivedVersion, BookmarkRecord
from .tree import BookmarkTree

log = get_logger(__name__)

WAYBACK_API = "https://archive.org/wayback/available"
DEFAULT_DELAY_S = 0.2
DEFAULT_TIMEOUT_S = 10.0


async def find_archived_version(
    client: httpx.AsyncClient,
    url: str,
    *,
    timeout_s: float = DEFAULT_TIMEOUT_S,
) -> ArchivedVersion:
    try:
        r = await client.get(WAYBACK_API, params={"url": url}, timeout=timeout_s)
        data = r.json()
    except (httpx.HTTPError, ValueError) as e:
        log.warning("Wayback API error for %s: %s", url, e)
        return ArchivedVersion(available=False, error=str(e) or e.__class__.__name__)

    closest = ((data or {}).get("archived_snapshots") or {}).get("closest") or {}
    if not closest.get("url"):
        return ArchivedVersion(available=False)
    ts = str(closest.get("timestamp") or "")
    return ArchivedVersion(
        available=True,
        url=closest["url"],
        timestamp=ts,
        date=format_wayback_date(ts),
    )


async def find_archived_versions(
    client: httpx.AsyncClient,
    records: List[BookmarkRecord],
    *,
    on_progress: Optional[Callable[[int, int], None]] = None,
    delay_s: float = DEFAULT_DELAY_S,
) -> List[Dict[str, object]]:
    """Archived copies for `records`, one lookup at a time."""

    async def _one(record: BookmarkRecord) -> Optional[Dict[str, object]]:
        archived = await find_archived_version(client, record.url)
        if not archived.available:
            return None
        return {"bookmark": record.to_dict(), "archived": archived.to_dict()}

    out: List[Dict[str, object]] = []
    async for chunk in iter_chunks(records, size=1, worker=_one, delay_s=delay_s):
        out.extend(x for x in chunk.results if x is not None)
        if on_progress is not None:
            on_progress(chunk.processed, chunk.total)
    return out


def replace_with_archived(tree: BookmarkTree, bookmark_id: str, archived_url: str) -> None:
    tree.update(bookmark_id, url=archived_url)


def format_wayback_date(timestamp: str) -> Optional[str]:
    # YYYYMMDDhhmmss
    if len(timestamp) < 8 or not timestamp[:8].isdigit():
        return None
    return f"{timestamp[0:4]}-{timestamp[4:6]}-{timestamp[6:8]}"


def wayback_browse_url(url: str) -> str:
    return f"https://web.archive.org/web/*/{url}"
