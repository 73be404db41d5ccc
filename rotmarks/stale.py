from __future__ import annotations

import time
from typing import Callable, List, Optional

from .batching import iter_chunks
from .log import get_logger
from .model import AtLeast, BookmarkRecord, StaleEntry
from .probe import is_special_url
from .tree import BookmarkTree

log = get_logger(__name__)

DAY_MS = 24 * 60 * 60 * 1000
CHUNK_SIZE = 10
DEFAULT_DELAY_S = 0.05
# Stores rank the exact URL first, so a handful of results is enough.
HISTORY_MAX_RESULTS = 10


async def find_stale(
    tree: BookmarkTree,
    history,
    days: int,
    *,
    on_progress: Optional[Callable[[int, int], None]] = None,
    now_ms: Optional[int] = None,
    delay_s: float = DEFAULT_DELAY_S,
) -> List[StaleEntry]:
    """Bookmarks whose exact URL was not visited within `days`.

    `history.search(text, start_time=, max_results=)` returns visits with
    `url` and `last_visit_time` (epoch millis). No recorded visit counts as
    stale for at least `days`. Most stale first, unknown visits first of all.
    """
    now = int(time.time() * 1000) if now_ms is None else int(now_ms)
    cutoff = now - days * DAY_MS
    records = [r for r in tree.list_all() if not is_special_url(r.url)]

    async def _one(record: BookmarkRecord) -> Optional[StaleEntry]:
        try:
            visits = history.search(record.url, start_time=0, max_results=HISTORY_MAX_RESULTS)
        except Exception as e:
            log.warning("History lookup failed for %s: %s", record.url, e)
            return None
        visit = next((v for v in visits if v.url == record.url), None)
        if visit is None or not visit.last_visit_time:
            return StaleEntry(record=record, days_since_access=AtLeast(days))
        if visit.last_visit_time < cutoff:
            return StaleEntry(record=record, days_since_access=(now - visit.last_visit_time) // DAY_MS)
        return None

    out: List[StaleEntry] = []
    async for chunk in iter_chunks(records, size=CHUNK_SIZE, worker=_one, delay_s=delay_s):
        out.extend(e for e in chunk.results if e is not None)
        if on_progress is not None:
            on_progress(chunk.processed, chunk.total)

    out.sort(key=lambda e: e.sort_days, reverse=True)
    log.info("Found %d stale bookmarks (threshold %d days).", len(out), days)
    return out
