from __future__ import annotations

from typing import AsyncIterator, Callable, Iterable, List, Optional, Tuple

import httpx

from .batching import ChunkProgress, iter_chunks
from .errors import StoreError
from .log import get_logger
from .model import BookmarkRecord, Broken, BrokenEntry, Fixed, FixedEntry, ScanOutcome, ScanReport
from .probe import DEFAULT_TIMEOUT_S, classify, is_special_url, probe
from .tree import BookmarkTree

log = get_logger(__name__)

ProgressFn = Callable[[int, int], None]

DEFAULT_CONCURRENCY = 5
DEFAULT_DELAY_S = 0.3


def eligible(records: Iterable[BookmarkRecord], *, skip_special: bool = True) -> List[BookmarkRecord]:
    out = []
    for r in records:
        if not r.url:
            continue
        if skip_special and is_special_url(r.url):
            continue
        out.append(r)
    return out


async def iter_scan(
    tree: BookmarkTree,
    records: List[BookmarkRecord],
    *,
    client: httpx.AsyncClient,
    concurrency: int = DEFAULT_CONCURRENCY,
    quarantine_id: Optional[str] = None,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    delay_s: float = DEFAULT_DELAY_S,
) -> AsyncIterator[ChunkProgress[Tuple[BookmarkRecord, ScanOutcome]]]:
    """Probe `records` chunk by chunk, applying repairs as each record is classified.

    Fixed records get their URL rewritten; Broken ones are moved into
    `quarantine_id` when given. Unchanged records are never written.
    """

    async def _one(record: BookmarkRecord) -> Tuple[BookmarkRecord, ScanOutcome]:
        try:
            result = await probe(client, record.url, timeout_s=timeout_s)
            outcome = classify(record.url, result)
        except Exception as e:
            log.warning("Probe crashed for %s: %s", record.url, e)
            outcome = Broken(reason=str(e) or e.__class__.__name__)

        if isinstance(outcome, Fixed):
            try:
                tree.update(record.id, url=outcome.new_url)
                log.debug("Redirect fixed: %s -> %s", record.url, outcome.new_url)
                return record, outcome
            except StoreError as e:
                log.warning("Failed to update %s (%s): %s", record.id, record.url, e)
                outcome = Broken(reason=f"Update failed: {e}")

        if isinstance(outcome, Broken) and quarantine_id is not None:
            try:
                tree.move(record.id, quarantine_id)
            except StoreError as e:
                log.warning("Failed to quarantine %s (%s): %s", record.id, record.url, e)
        return record, outcome

    async for chunk in iter_chunks(records, size=concurrency, worker=_one, delay_s=delay_s):
        yield chunk


async def scan(
    tree: BookmarkTree,
    records: List[BookmarkRecord],
    *,
    client: httpx.AsyncClient,
    concurrency: int = DEFAULT_CONCURRENCY,
    on_progress: Optional[ProgressFn] = None,
    quarantine_id: Optional[str] = None,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    delay_s: float = DEFAULT_DELAY_S,
) -> ScanReport:
    report = ScanReport()
    log.info("Scanning %d bookmarks (concurrency=%d)...", len(records), concurrency)
    async for chunk in iter_scan(
        tree,
        records,
        client=client,
        concurrency=concurrency,
        quarantine_id=quarantine_id,
        timeout_s=timeout_s,
        delay_s=delay_s,
    ):
        for record, outcome in chunk.results:
            if isinstance(outcome, Fixed):
                report.fixed.append(
                    FixedEntry(id=record.id, title=record.title, old_url=record.url, new_url=outcome.new_url)
                )
            elif isinstance(outcome, Broken):
                report.broken.append(BrokenEntry(id=record.id, title=record.title, url=record.url, error=outcome.reason))
            else:
                report.unchanged += 1
        if on_progress is not None:
            on_progress(chunk.processed, chunk.total)
    log.info(
        "Scan done: %d fixed, %d broken, %d unchanged.",
        len(report.fixed),
        len(report.broken),
        report.unchanged,
    )
    return report
