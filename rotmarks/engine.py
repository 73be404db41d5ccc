from __future__ import annotations

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from .backup import BackupManager
from .config import Settings
from .duplicates import delete_duplicates, find_duplicates
from .export import FileSink, render_export
from .folders import delete_empty_folders, find_empty_folders
from .log import get_logger
from .model import BookmarkRecord, DuplicateGroup
from .quickfix import get_issue_summary, quick_fix_all
from .scan import eligible, scan
from .scheduler import Scheduler
from .stale import find_stale
from .titles import fetch_and_fix_titles, find_bad_titles
from .tree import BookmarkTree
from .wayback import find_archived_versions, replace_with_archived

log = get_logger(__name__)

EventFn = Callable[[str, Dict[str, Any]], None]


class Command(str, Enum):
    START_SCAN = "START_SCAN"
    FIND_STALE = "FIND_STALE"
    DELETE_BOOKMARKS = "DELETE_BOOKMARKS"
    FIND_DUPLICATES = "FIND_DUPLICATES"
    DELETE_DUPLICATES = "DELETE_DUPLICATES"
    FIND_EMPTY_FOLDERS = "FIND_EMPTY_FOLDERS"
    DELETE_EMPTY_FOLDERS = "DELETE_EMPTY_FOLDERS"
    FIND_BAD_TITLES = "FIND_BAD_TITLES"
    FIX_TITLES = "FIX_TITLES"
    EXPORT = "EXPORT"
    GET_SCHEDULE = "GET_SCHEDULE"
    SET_SCHEDULE = "SET_SCHEDULE"
    CLEAR_BADGE = "CLEAR_BADGE"
    CREATE_BACKUP = "CREATE_BACKUP"
    GET_BACKUPS = "GET_BACKUPS"
    RESTORE_BACKUP = "RESTORE_BACKUP"
    DELETE_BACKUP = "DELETE_BACKUP"
    FIND_ARCHIVED = "FIND_ARCHIVED"
    REPLACE_WITH_ARCHIVED = "REPLACE_WITH_ARCHIVED"
    QUICK_FIX = "QUICK_FIX"
    GET_ISSUE_SUMMARY = "GET_ISSUE_SUMMARY"


@dataclass
class EngineState:
    """Everything the engine owns between commands; durable parts live in the kv store."""

    settings: Settings
    scheduler: Scheduler
    backups: BackupManager
    sink: Optional[FileSink] = None


def default_client_factory(settings: Settings) -> Callable[[], httpx.AsyncClient]:
    def _make() -> httpx.AsyncClient:
        return httpx.AsyncClient(
            follow_redirects=True,
            headers={"User-Agent": settings.user_agent},
            timeout=httpx.Timeout(settings.probe_timeout_s),
        )

    return _make


class Engine:
    """Command surface: every command resolves to a `{"success": ...}` envelope."""

    def __init__(
        self,
        settings: Settings,
        tree: BookmarkTree,
        history,
        kv,
        sink: Optional[FileSink] = None,
        *,
        client_factory: Optional[Callable[[], httpx.AsyncClient]] = None,
        on_event: Optional[EventFn] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.tree = tree
        self.history = history
        self.state = EngineState(
            settings=settings,
            scheduler=Scheduler(kv, clock=clock),
            backups=BackupManager(tree, kv, max_backups=settings.max_backups, clock=clock),
            sink=sink,
        )
        self.client_factory = client_factory or default_client_factory(settings)
        self.on_event = on_event
        self._handlers: Dict[Command, Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]] = {
            Command.START_SCAN: self._start_scan,
            Command.FIND_STALE: self._find_stale,
            Command.DELETE_BOOKMARKS: self._delete_bookmarks,
            Command.FIND_DUPLICATES: self._find_duplicates,
            Command.DELETE_DUPLICATES: self._delete_duplicates,
            Command.FIND_EMPTY_FOLDERS: self._find_empty_folders,
            Command.DELETE_EMPTY_FOLDERS: self._delete_empty_folders,
            Command.FIND_BAD_TITLES: self._find_bad_titles,
            Command.FIX_TITLES: self._fix_titles,
            Command.EXPORT: self._export,
            Command.GET_SCHEDULE: self._get_schedule,
            Command.SET_SCHEDULE: self._set_schedule,
            Command.CLEAR_BADGE: self._clear_badge,
            Command.CREATE_BACKUP: self._create_backup,
            Command.GET_BACKUPS: self._get_backups,
            Command.RESTORE_BACKUP: self._restore_backup,
            Command.DELETE_BACKUP: self._delete_backup,
            Command.FIND_ARCHIVED: self._find_archived,
            Command.REPLACE_WITH_ARCHIVED: self._replace_with_archived,
            Command.QUICK_FIX: self._quick_fix,
            Command.GET_ISSUE_SUMMARY: self._get_issue_summary,
        }
        missing = [c.value for c in Command if c not in self._handlers]
        if missing:
            raise RuntimeError(f"commands without a handler: {', '.join(missing)}")

    async def handle(self, command: Command | str, **payload: Any) -> Dict[str, Any]:
        try:
            cmd = Command(command)
        except ValueError:
            return {"success": False, "error": f"Unknown command: {command}"}
        try:
            out = await self._handlers[cmd](payload)
        except Exception as e:
            log.error("%s failed: %s", cmd.value, e)
            return {"success": False, "error": str(e) or e.__class__.__name__}
        return {"success": True, **out}

    async def run_scheduled_scan(self, *, force: bool = False) -> Dict[str, Any]:
        """Alarm entry point: full scan, no progress events, result recorded.

        Returns `{"ran": False}` when no schedule is set or the interval has not
        elapsed yet, unless `force`.
        """
        scheduler = self.state.scheduler
        if not force and not scheduler.is_due():
            return {"ran": False}
        records = eligible(self.tree.list_all(), skip_special=self.state.settings.skip_special_urls)
        log.info("Running scheduled bookmark scan (%d bookmarks)...", len(records))
        report = await self._scan_records(records, progress_kind=None)
        scheduler.record_scheduled_scan(report)
        return {"ran": True, "results": report.to_dict()}

    def _emit(self, kind: str, **payload: Any) -> None:
        if self.on_event is None:
            return
        try:
            self.on_event(kind, payload)
        except Exception as e:
            # Listeners going away must not abort the command that emits.
            log.debug("Progress listener failed for %s: %s", kind, e)

    def _progress(self, kind: str) -> Callable[[int, int], None]:
        return lambda current, total: self._emit(kind, current=current, total=total)

    async def _scan_records(self, records: List[BookmarkRecord], *, progress_kind: Optional[str]):
        s = self.state.settings
        quarantine_id = self.tree.quarantine_folder() if s.auto_create_broken_folder else None
        async with self.client_factory() as client:
            return await scan(
                self.tree,
                records,
                client=client,
                concurrency=s.concurrent_requests,
                on_progress=self._progress(progress_kind) if progress_kind else None,
                quarantine_id=quarantine_id,
                timeout_s=s.probe_timeout_s,
                delay_s=s.scan_delay_s,
            )

    # -- handlers -----------------------------------------------------------

    async def _start_scan(self, p: Dict[str, Any]) -> Dict[str, Any]:
        folder_id = p.get("folderId")
        records = self.tree.list_subtree(str(folder_id)) if folder_id else self.tree.list_all()
        records = eligible(records, skip_special=self.state.settings.skip_special_urls)
        report = await self._scan_records(records, progress_kind="SCAN_PROGRESS")
        return {"results": report.to_dict()}

    async def _find_stale(self, p: Dict[str, Any]) -> Dict[str, Any]:
        days = p.get("days")
        days = self.state.settings.stale_days if days is None else int(days)
        entries = await find_stale(
            self.tree,
            self.history,
            days,
            on_progress=self._progress("STALE_PROGRESS"),
            delay_s=self.state.settings.stale_delay_s,
        )
        return {"staleBookmarks": [e.to_dict() for e in entries]}

    async def _delete_bookmarks(self, p: Dict[str, Any]) -> Dict[str, Any]:
        deleted = 0
        for bid in p.get("ids") or []:
            try:
                self.tree.remove(str(bid))
                deleted += 1
            except Exception as e:
                log.warning("Failed to delete bookmark %s: %s", bid, e)
        return {"deleted": deleted}

    async def _find_duplicates(self, p: Dict[str, Any]) -> Dict[str, Any]:
        groups = find_duplicates(self.tree.list_all())
        self._emit("DUPLICATE_PROGRESS", current=len(groups), total=len(groups))
        return {"duplicates": [g.to_dict() for g in groups]}

    async def _delete_duplicates(self, p: Dict[str, Any]) -> Dict[str, Any]:
        groups = [_group_from_dict(g) for g in p.get("groups") or []]
        deleted = delete_duplicates(self.tree, groups, keep_first=bool(p.get("keepFirst", True)))
        return {"deleted": deleted}

    async def _find_empty_folders(self, p: Dict[str, Any]) -> Dict[str, Any]:
        return {"folders": [f.to_dict() for f in find_empty_folders(self.tree.get_forest())]}

    async def _delete_empty_folders(self, p: Dict[str, Any]) -> Dict[str, Any]:
        ids = [str(x) for x in p.get("ids") or []]
        return {"deleted": delete_empty_folders(self.tree, ids)}

    async def _find_bad_titles(self, p: Dict[str, Any]) -> Dict[str, Any]:
        records = self.tree.list_all()
        bad = find_bad_titles(records)
        self._emit("TITLE_PROGRESS", current=len(records), total=len(records))
        return {"badTitles": [b.to_dict() for b in bad]}

    async def _fix_titles(self, p: Dict[str, Any]) -> Dict[str, Any]:
        records = [_record_from_dict(d) for d in p.get("bookmarks") or []]
        s = self.state.settings
        async with self.client_factory() as client:
            report = await fetch_and_fix_titles(
                self.tree,
                records,
                client=client,
                on_progress=self._progress("TITLE_FIX_PROGRESS"),
                timeout_s=s.title_timeout_s,
                delay_s=s.title_delay_s,
            )
        return {"results": report.to_dict()}

    async def _export(self, p: Dict[str, Any]) -> Dict[str, Any]:
        if self.state.sink is None:
            raise RuntimeError("no export directory configured")
        content, filename, mime = render_export(p.get("data"), p.get("dataType") or "", p.get("format") or "json")
        path = self.state.sink.download(content, filename, mime)
        return {"path": str(path)}

    async def _get_schedule(self, p: Dict[str, Any]) -> Dict[str, Any]:
        return self.state.scheduler.get_schedule()

    async def _set_schedule(self, p: Dict[str, Any]) -> Dict[str, Any]:
        self.state.scheduler.set_schedule(int(p.get("days") or 0))
        return {}

    async def _clear_badge(self, p: Dict[str, Any]) -> Dict[str, Any]:
        self.state.scheduler.update_badge(0)
        return {}

    async def _create_backup(self, p: Dict[str, Any]) -> Dict[str, Any]:
        backup = self.state.backups.create_backup(p.get("label") or "Manual backup")
        return {"backup": backup.summary()}

    async def _get_backups(self, p: Dict[str, Any]) -> Dict[str, Any]:
        return {"backups": self.state.backups.get_backups()}

    async def _restore_backup(self, p: Dict[str, Any]) -> Dict[str, Any]:
        report = self.state.backups.restore_backup(str(p.get("backupId")))
        return report.to_dict()

    async def _delete_backup(self, p: Dict[str, Any]) -> Dict[str, Any]:
        self.state.backups.delete_backup(str(p.get("backupId")))
        return {}

    async def _find_archived(self, p: Dict[str, Any]) -> Dict[str, Any]:
        records = [_record_from_dict(d) for d in p.get("brokenBookmarks") or []]
        async with self.client_factory() as client:
            results = await find_archived_versions(
                client,
                records,
                on_progress=self._progress("WAYBACK_PROGRESS"),
                delay_s=self.state.settings.wayback_delay_s,
            )
        return {"results": results}

    async def _replace_with_archived(self, p: Dict[str, Any]) -> Dict[str, Any]:
        replace_with_archived(self.tree, str(p.get("bookmarkId")), str(p.get("archivedUrl")))
        return {}

    async def _quick_fix(self, p: Dict[str, Any]) -> Dict[str, Any]:
        s = self.state.settings
        async with self.client_factory() as client:
            result = await quick_fix_all(
                self.tree,
                self.state.backups,
                client=client,
                on_progress=lambda status, step, total: self._emit(
                    "QUICK_FIX_PROGRESS", status=status, step=step, total=total
                ),
                concurrency=s.concurrent_requests,
                skip_special=s.skip_special_urls,
                timeout_s=s.probe_timeout_s,
                delay_s=s.scan_delay_s,
            )
        return {"results": result.to_dict()}

    async def _get_issue_summary(self, p: Dict[str, Any]) -> Dict[str, Any]:
        return {"summary": get_issue_summary(self.tree).to_dict()}


def _record_from_dict(d: Dict[str, Any]) -> BookmarkRecord:
    return BookmarkRecord(
        id=str(d["id"]),
        title=d.get("title") or "",
        url=d.get("url"),
        parent_id=str(d.get("parentId") or ""),
    )


def _group_from_dict(d: Dict[str, Any]) -> DuplicateGroup:
    return DuplicateGroup(
        normalized_url=d.get("url") or "",
        members=[_record_from_dict(m) for m in d.get("bookmarks") or []],
    )
