from __future__ import annotations

from typing import Callable, Optional

import httpx

from .backup import BackupManager
from .duplicates import delete_duplicates, duplicate_count, find_duplicates
from .folders import delete_empty_folders, find_empty_folders
from .log import get_logger
from .model import IssueSummary, QuickFixResult
from .probe import DEFAULT_TIMEOUT_S
from .scan import DEFAULT_CONCURRENCY, DEFAULT_DELAY_S, eligible, scan
from .tree import BookmarkTree

log = get_logger(__name__)

SAFETY_LABEL_QUICK_FIX = "Auto-backup before Quick Fix"
TOTAL_STEPS = 4

StepFn = Callable[[str, int, int], None]


async def quick_fix_all(
    tree: BookmarkTree,
    backups: BackupManager,
    *,
    client: httpx.AsyncClient,
    on_progress: Optional[StepFn] = None,
    concurrency: int = DEFAULT_CONCURRENCY,
    skip_special: bool = True,
    timeout_s: float = DEFAULT_TIMEOUT_S,
    delay_s: float = DEFAULT_DELAY_S,
) -> QuickFixResult:
    """Backup, scan-and-repair, dedupe, drop empty folders; in that order.

    The first failing step ends the run: its error is recorded and the counters
    gathered so far are returned. Nothing is rolled back; the backup from step 1
    is the way back.
    """
    result = QuickFixResult()

    def report(status: str, step: int) -> None:
        log.info("Quick fix [%d/%d] %s", step, TOTAL_STEPS, status)
        if on_progress is not None:
            on_progress(status, step, TOTAL_STEPS)

    try:
        report("Creating backup...", 0)
        backups.create_backup(SAFETY_LABEL_QUICK_FIX)
        result.backup_created = True

        report("Fixing redirects & broken links...", 1)
        records = eligible(tree.list_all(), skip_special=skip_special)
        quarantine_id = tree.quarantine_folder()
        scan_report = await scan(
            tree,
            records,
            client=client,
            concurrency=concurrency,
            quarantine_id=quarantine_id,
            timeout_s=timeout_s,
            delay_s=delay_s,
        )
        result.redirects_fixed = len(scan_report.fixed)
        result.broken_moved = len(scan_report.broken)

        report("Removing duplicates...", 2)
        groups = find_duplicates(tree.list_all())
        if groups:
            result.duplicates_deleted = delete_duplicates(tree, groups, keep_first=True)

        report("Cleaning empty folders...", 3)
        empty = find_empty_folders(tree.get_forest())
        if empty:
            result.empty_folders_deleted = delete_empty_folders(tree, [f.id for f in empty])

        report("Complete!", 4)
    except Exception as e:
        log.error("Quick fix aborted: %s", e)
        result.errors.append(str(e) or e.__class__.__name__)

    return result


def get_issue_summary(tree: BookmarkTree) -> IssueSummary:
    records = tree.list_all()
    groups = find_duplicates(records)
    empty = find_empty_folders(tree.get_forest())
    return IssueSummary(
        total_bookmarks=len(records),
        duplicates=duplicate_count(groups),
        duplicate_groups=len(groups),
        empty_folders=len(empty),
    )
