from __future__ import annotations

import argparse
import asyncio
import json
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from . import __version__
from .config import Settings, load_settings
from .engine import Command, Engine
from .errors import RotmarksError
from .export import FileSink
from .kv_sqlite import KeyValueStore
from .log import LogConfig, get_logger, setup_logging
from .places_db import PlacesDB, resolve_places_path
from .tree import BookmarkTree

log = get_logger(__name__)

# Commands that only read the bookmark store unless --apply is given.
_READ_ONLY = {"stale", "duplicates", "empty-folders", "titles", "summary"}


def default_state_dir() -> Path:
    base = os.getenv("XDG_STATE_HOME") or str(Path.home() / ".local" / "state")
    return Path(base) / "rotmarks"


def _common_args() -> argparse.ArgumentParser:
    c = argparse.ArgumentParser(add_help=False)
    c.add_argument("--profile", default=os.getenv("ROT_PROFILE"), help="Firefox profile dir or places.sqlite path.")
    c.add_argument("--state-dir", default=None, help="State dir for backups, schedule and exports.")
    c.add_argument("--log-level", default=None, help="DEBUG/INFO/WARN/ERROR (overrides env/config).")
    c.add_argument("--no-color", action="store_true", help="Disable colored logging.")
    return c


def build_parser() -> argparse.ArgumentParser:
    common = _common_args()
    p = argparse.ArgumentParser(
        prog="rotmarks",
        description="Find and repair rotten bookmarks in a Firefox profile.",
    )
    p.add_argument("-V", "--version", action="version", version=f"rotmarks {__version__}")
    p.add_argument("--config", default=None, help="YAML config file (optional). Env vars override defaults.")
    sub = p.add_subparsers(dest="cmd", required=True)

    def export_opt(sp: argparse.ArgumentParser) -> None:
        sp.add_argument("--export", choices=["csv", "json"], default=None, help="Also write the report to the exports dir.")

    sc = sub.add_parser("scan", parents=[common], help="Probe bookmarks, fix redirects, quarantine broken links.")
    sc.add_argument("--folder", default=None, help="Only scan this folder id (default: everything).")
    export_opt(sc)

    st = sub.add_parser("stale", parents=[common], help="List bookmarks not visited for N days.")
    st.add_argument("--days", type=int, default=None, help="Staleness threshold in days (default from config).")
    st.add_argument("--apply", action="store_true", help="Delete the stale bookmarks found.")
    export_opt(st)

    du = sub.add_parser("duplicates", parents=[common], help="Group bookmarks sharing a normalized URL.")
    du.add_argument("--apply", action="store_true", help="Delete all but the first bookmark of each group.")
    export_opt(du)

    ef = sub.add_parser("empty-folders", parents=[common], help="List empty folders.")
    ef.add_argument("--apply", action="store_true", help="Delete the empty folders found.")

    ti = sub.add_parser("titles", parents=[common], help="List bookmarks with unhelpful titles.")
    ti.add_argument("--apply", action="store_true", help="Fetch page titles and rename the bookmarks.")
    export_opt(ti)

    bk = sub.add_parser("backup", help="Manage bookmark backups.")
    bsub = bk.add_subparsers(dest="backup_cmd", required=True)
    bc = bsub.add_parser("create", parents=[common], help="Snapshot the whole bookmark tree.")
    bc.add_argument("--label", default="Manual backup")
    bsub.add_parser("list", parents=[common], help="List stored backups, newest first.")
    br = bsub.add_parser("restore", parents=[common], help="Replace the live tree with a backup.")
    br.add_argument("backup_id")
    bd = bsub.add_parser("delete", parents=[common], help="Delete a stored backup.")
    bd.add_argument("backup_id")
    bx = bsub.add_parser("export", parents=[common], help="Write a backup as a JSON file.")
    bx.add_argument("backup_id")

    sub.add_parser("quick-fix", parents=[common], help="Backup, repair links, dedupe and drop empty folders.")
    sub.add_parser("summary", parents=[common], help="Count duplicates and empty folders without network access.")

    sh = sub.add_parser("schedule", help="Scheduled scan interval.")
    shsub = sh.add_subparsers(dest="schedule_cmd", required=True)
    shsub.add_parser("get", parents=[common])
    ss = shsub.add_parser("set", parents=[common])
    ss.add_argument("days", type=int, help="Interval in days; 0 disables.")

    sched = sub.add_parser("scheduled-scan", parents=[common], help="Run the scheduled scan if it is due (for cron).")
    sched.add_argument("--force", action="store_true", help="Scan even if the interval has not elapsed.")

    ar = sub.add_parser("archived", parents=[common], help="Look up Wayback Machine copies of broken bookmarks.")
    ar.add_argument("--folder", default=None, help="Folder holding the broken bookmarks (default: quarantine folder).")
    ar.add_argument("--apply", action="store_true", help="Point each bookmark at its archived copy.")

    return p


def main(argv: List[str] | None = None) -> int:
    p = build_parser()
    args = p.parse_args(argv)
    cfg = load_settings(args.config)
    if args.log_level:
        cfg.log_level = args.log_level
    if args.no_color:
        cfg.no_color = True
    setup_logging(LogConfig(level=cfg.log_level, no_color=cfg.no_color))

    state_dir = Path(args.state_dir) if args.state_dir else default_state_dir()
    kv = KeyValueStore(state_dir / "state.sqlite")
    sink = FileSink(state_dir / "exports")

    needs_profile = args.cmd != "schedule"
    if needs_profile and not args.profile:
        log.error("No Firefox profile given (--profile or ROT_PROFILE).")
        return 2

    places: Optional[PlacesDB] = None
    try:
        if needs_profile:
            try:
                db_path = resolve_places_path(Path(args.profile))
            except FileNotFoundError as e:
                log.error("%s", e)
                return 2
            places = PlacesDB(db_path, readonly=_is_read_only(args))
            places.open()
        tree = BookmarkTree(places, broken_folder_name=cfg.broken_folder_name)
        engine = Engine(cfg, tree, places, kv, sink, on_event=_log_event)
        out = _dispatch(args, engine, cfg)
        if places is not None and not places.readonly:
            _finish_writes(places)
    except RotmarksError as e:
        log.error("%s", e)
        return 2
    finally:
        if places is not None:
            places.close()

    print(json.dumps(out, indent=2, ensure_ascii=False))
    return 0 if out.get("success") else 1


def _finish_writes(places: PlacesDB) -> None:
    # Keep references consistent and fail fast if the file is not coherent.
    places.recompute_foreign_count()
    places.validate_integrity()


def _is_read_only(args) -> bool:
    if args.cmd == "backup":
        return args.backup_cmd in ("list", "export")
    return args.cmd in _READ_ONLY and not getattr(args, "apply", False)


def _log_event(kind: str, payload: Dict[str, Any]) -> None:
    if "status" in payload:
        log.info("[%d/%d] %s", payload.get("step", 0), payload.get("total", 0), payload["status"])
    else:
        log.debug("%s %d/%d", kind, payload.get("current", 0), payload.get("total", 0))


def _run(engine: Engine, command: Command, **payload: Any) -> Dict[str, Any]:
    return asyncio.run(engine.handle(command, **payload))


def _export(engine: Engine, args, data: Any, kind: str) -> Optional[str]:
    fmt = getattr(args, "export", None)
    if not fmt:
        return None
    env = _run(engine, Command.EXPORT, data=data, dataType=kind, format=fmt)
    if not env.get("success"):
        log.warning("Export failed: %s", env.get("error"))
        return None
    return env["path"]


def _dispatch(args, engine: Engine, cfg: Settings) -> Dict[str, Any]:
    cmd = args.cmd

    if cmd == "scan":
        out = _run(engine, Command.START_SCAN, folderId=args.folder)
        if out.get("success"):
            out["exported"] = _export(engine, args, out["results"], "scan")
        return out

    if cmd == "stale":
        out = _run(engine, Command.FIND_STALE, days=cfg.stale_days if args.days is None else args.days)
        if out.get("success"):
            out["exported"] = _export(engine, args, out["staleBookmarks"], "stale")
            if args.apply:
                ids = [b["id"] for b in out["staleBookmarks"]]
                out = _merge(out, _run(engine, Command.DELETE_BOOKMARKS, ids=ids))
        return out

    if cmd == "duplicates":
        out = _run(engine, Command.FIND_DUPLICATES)
        if out.get("success"):
            out["exported"] = _export(engine, args, out["duplicates"], "duplicates")
            if args.apply:
                out = _merge(out, _run(engine, Command.DELETE_DUPLICATES, groups=out["duplicates"], keepFirst=True))
        return out

    if cmd == "empty-folders":
        out = _run(engine, Command.FIND_EMPTY_FOLDERS)
        if out.get("success") and args.apply:
            ids = [f["id"] for f in out["folders"]]
            out = _merge(out, _run(engine, Command.DELETE_EMPTY_FOLDERS, ids=ids))
        return out

    if cmd == "titles":
        out = _run(engine, Command.FIND_BAD_TITLES)
        if out.get("success") and args.apply:
            out = _merge(out, _run(engine, Command.FIX_TITLES, bookmarks=out["badTitles"]))
            if out.get("success"):
                out["exported"] = _export(engine, args, out["results"], "titles")
        elif args.export:
            log.warning("Title reports are exported after --apply only.")
        return out

    if cmd == "backup":
        return _dispatch_backup(args, engine)

    if cmd == "quick-fix":
        return _run(engine, Command.QUICK_FIX)

    if cmd == "summary":
        return _run(engine, Command.GET_ISSUE_SUMMARY)

    if cmd == "schedule":
        if args.schedule_cmd == "set":
            return _run(engine, Command.SET_SCHEDULE, days=args.days)
        return _run(engine, Command.GET_SCHEDULE)

    if cmd == "scheduled-scan":
        try:
            return {"success": True, **asyncio.run(engine.run_scheduled_scan(force=args.force))}
        except Exception as e:
            log.error("Scheduled scan failed: %s", e)
            return {"success": False, "error": str(e)}

    if cmd == "archived":
        folder_id = args.folder or engine.tree.quarantine_folder()
        records = [r.to_dict() for r in engine.tree.list_subtree(folder_id)]
        out = _run(engine, Command.FIND_ARCHIVED, brokenBookmarks=records)
        if out.get("success") and args.apply:
            replaced = 0
            for item in out["results"]:
                env = _run(
                    engine,
                    Command.REPLACE_WITH_ARCHIVED,
                    bookmarkId=item["bookmark"]["id"],
                    archivedUrl=item["archived"]["url"],
                )
                if env.get("success"):
                    replaced += 1
            out["replaced"] = replaced
        return out

    return {"success": False, "error": f"Unknown command: {cmd}"}


def _dispatch_backup(args, engine: Engine) -> Dict[str, Any]:
    sub = args.backup_cmd
    if sub == "create":
        return _run(engine, Command.CREATE_BACKUP, label=args.label)
    if sub == "list":
        return _run(engine, Command.GET_BACKUPS)
    if sub == "restore":
        return _run(engine, Command.RESTORE_BACKUP, backupId=args.backup_id)
    if sub == "delete":
        return _run(engine, Command.DELETE_BACKUP, backupId=args.backup_id)
    if sub == "export":
        backups = engine.state.backups
        try:
            backup = backups.get_backup(args.backup_id)
        except RotmarksError as e:
            return {"success": False, "error": str(e)}
        content = backups.export_backup_as_file(backup)
        path = engine.state.sink.download(content, f"rotmarks-backup-{backup.id}.json", "application/json")
        return {"success": True, "path": str(path)}
    return {"success": False, "error": f"Unknown backup command: {sub}"}


def _merge(first: Dict[str, Any], second: Dict[str, Any]) -> Dict[str, Any]:
    merged = {**first, **second}
    merged["success"] = bool(first.get("success")) and bool(second.get("success"))
    return merged


if __name__ == "__main__":
    raise SystemExit(main())
