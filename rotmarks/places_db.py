from __future__ import annotations

import base64
import os
import sqlite3
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

from .errors import StoreError
from .log import get_logger
from .model import BookmarkRecord, FolderNode

log = get_logger(__name__)

TYPE_BOOKMARK = 1
TYPE_FOLDER = 2

_ROOT_LABELS = {
    "toolbar": "Bookmarks Toolbar",
    "menu": "Bookmarks Menu",
    "unfiled": "Other Bookmarks",
    "mobile": "Mobile Bookmarks",
    "tags": "Tags",
}

_ROOT_GUID_TO_NAME = {
    "root________": "places",
    "menu________": "menu",
    "toolbar_____": "toolbar",
    "tags________": "tags",
    "unfiled_____": "unfiled",
    "mobile______": "mobile",
}


@dataclass
class HistoryVisit:
    url: str
    last_visit_time: Optional[int]  # epoch millis


def resolve_places_path(profile_or_db_path: Path) -> Path:
    p = Path(profile_or_db_path)
    if p.is_file():
        return p
    db = p / "places.sqlite"
    if db.exists():
        return db
    raise FileNotFoundError(f"places.sqlite not found in {p}")


class PlacesDB:
    """Bookmark store and history store backed by a Firefox places.sqlite.

    Ids cross this boundary as strings; the forest is the set of top-level
    roots (menu, toolbar, unfiled, mobile) in position order. The tags root is
    a Firefox implementation detail and is never exposed.
    """

    def __init__(self, db_path: Path | str, *, readonly: bool = False, busy_timeout_ms: int = 5000):
        self.db_path = Path(db_path)
        self.readonly = readonly
        self.busy_timeout_ms = max(0, int(busy_timeout_ms))
        self.conn: sqlite3.Connection | None = None
        self._has_guid = False
        self._has_foreign_count = False
        self._has_visits = False
        self._has_last_visit_date = False
        self.root_ids: Dict[str, int] = {}

    def __enter__(self) -> "PlacesDB":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def open(self) -> None:
        mode = "ro" if self.readonly else "rw"
        uri = f"file:{self.db_path.as_posix()}?mode={mode}"
        timeout_s = max(0.1, self.busy_timeout_ms / 1000.0) if self.busy_timeout_ms > 0 else 0.1
        try:
            self.conn = sqlite3.connect(uri, uri=True, timeout=timeout_s)
        except sqlite3.Error as e:
            raise StoreError(f"cannot open {self.db_path}: {e}") from e
        self.conn.row_factory = sqlite3.Row
        if self.busy_timeout_ms > 0:
            self.conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
        self._has_guid = self._has_column("moz_bookmarks", "guid")
        self._has_foreign_count = self._has_column("moz_places", "foreign_count")
        self._has_visits = self._has_table("moz_historyvisits")
        self._has_last_visit_date = self._has_column("moz_places", "last_visit_date")
        self.root_ids = self._discover_root_ids()
        log.debug("Opened %s (%s), roots: %s", self.db_path, mode, sorted(self.root_ids))

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None

    # -- tree reads ---------------------------------------------------------

    def get_tree(self) -> List[FolderNode]:
        children_by_parent = self._children_by_parent()
        places_root = self.root_ids.get("places")
        if places_root is not None:
            top = [r for r in children_by_parent.get(places_root, []) if int(r["type"] or 0) == TYPE_FOLDER]
        else:
            wanted = [self.root_ids[n] for n in ("menu", "toolbar", "unfiled", "mobile") if n in self.root_ids]
            by_id = {int(r["id"]): r for rows in children_by_parent.values() for r in rows}
            top = [by_id[i] for i in wanted if i in by_id]
        tags_root = self.root_ids.get("tags")
        return [
            self._build_folder(row, children_by_parent)
            for row in top
            if int(row["id"]) != tags_root
        ]

    def get_subtree(self, folder_id: str) -> FolderNode:
        fid = _to_int(folder_id)
        self._require_folder(fid)
        children_by_parent = self._children_by_parent()
        row = self._cursor().execute("SELECT id, title FROM moz_bookmarks WHERE id = ?", (fid,)).fetchone()
        return self._build_folder(row, children_by_parent)

    def default_folder_id(self) -> Optional[str]:
        """Folder that receives tool-created folders (the toolbar, like the bookmarks bar)."""
        for name in ("toolbar", "menu", "unfiled"):
            if name in self.root_ids:
                return str(self.root_ids[name])
        return None

    # -- tree writes --------------------------------------------------------

    def create(self, parent_id: str, title: str, url: Optional[str] = None) -> str:
        self._assert_writable()
        pid = _to_int(parent_id)
        self._require_folder(pid)
        pos = self._resolve_position(pid, None)
        try:
            if url:
                place_id = self._ensure_place(url, title)
                new_id = self._insert_bookmark(btype=TYPE_BOOKMARK, fk=place_id, parent_id=pid, position=pos, title=title)
            else:
                new_id = self._insert_bookmark(btype=TYPE_FOLDER, fk=None, parent_id=pid, position=pos, title=title)
            self.conn.commit()
        except sqlite3.Error as e:
            raise _store_error(e) from e
        return str(new_id)

    def update(self, bookmark_id: str, *, url: Optional[str] = None, title: Optional[str] = None) -> None:
        self._assert_writable()
        bid = _to_int(bookmark_id)
        c = self._cursor()
        row = c.execute("SELECT type, fk FROM moz_bookmarks WHERE id = ?", (bid,)).fetchone()
        if not row:
            raise StoreError(f"bookmark id not found: {bookmark_id}")
        try:
            if url is not None:
                if int(row["type"] or 0) != TYPE_BOOKMARK:
                    raise StoreError(f"cannot set url on a folder: {bookmark_id}")
                place_id = self._ensure_place(url, title or "")
                old_fk = int(row["fk"] or 0)
                c.execute(
                    "UPDATE moz_bookmarks SET fk = ?, lastModified = ? WHERE id = ?",
                    (place_id, self._now_us(), bid),
                )
                if self._has_foreign_count:
                    c.execute("UPDATE moz_places SET foreign_count = foreign_count + 1 WHERE id = ?", (place_id,))
                    if old_fk:
                        c.execute(
                            "UPDATE moz_places SET foreign_count = MAX(foreign_count - 1, 0) WHERE id = ?",
                            (old_fk,),
                        )
            if title is not None:
                c.execute(
                    "UPDATE moz_bookmarks SET title = ?, lastModified = ? WHERE id = ?",
                    (title, self._now_us(), bid),
                )
            self.conn.commit()
        except sqlite3.Error as e:
            raise _store_error(e) from e

    def move(self, bookmark_id: str, parent_id: str) -> None:
        self._assert_writable()
        bid = _to_int(bookmark_id)
        pid = _to_int(parent_id)
        self._require_exists(bid)
        self._require_folder(pid)
        if bid in self.root_ids.values():
            raise StoreError("cannot move Firefox root folders")
        parent_map = self._parent_map()
        if self._descends_from(pid, bid, parent_map):
            raise StoreError("cannot move folder into itself/descendant")
        old_parent = int(parent_map.get(bid, 0))
        pos = self._resolve_position(pid, None)
        try:
            c = self._cursor()
            c.execute(
                "UPDATE moz_bookmarks SET parent = ?, position = ?, lastModified = ? WHERE id = ?",
                (pid, pos, self._now_us(), bid),
            )
            self._touch_folder(old_parent)
            self._touch_folder(pid)
            self.conn.commit()
        except sqlite3.Error as e:
            raise _store_error(e) from e

    def remove(self, bookmark_id: str) -> None:
        self._assert_writable()
        bid = _to_int(bookmark_id)
        self._require_exists(bid)
        if bid in self.root_ids.values():
            raise StoreError("cannot remove Firefox root folders")
        c = self._cursor()
        has_children = c.execute("SELECT 1 FROM moz_bookmarks WHERE parent = ? LIMIT 1", (bid,)).fetchone()
        if has_children:
            raise StoreError(f"folder is not empty: {bookmark_id}")
        try:
            self._delete_rows([bid])
            self.conn.commit()
        except sqlite3.Error as e:
            raise _store_error(e) from e

    def remove_tree(self, folder_id: str) -> None:
        self._assert_writable()
        fid = _to_int(folder_id)
        self._require_folder(fid)
        if fid in self.root_ids.values():
            raise StoreError("cannot remove Firefox root folders")
        parent_map = self._parent_map()
        doomed = [i for i in parent_map if self._descends_from(i, fid, parent_map)]
        try:
            self._delete_rows(doomed)
            self.conn.commit()
        except sqlite3.Error as e:
            raise _store_error(e) from e

    # -- history ------------------------------------------------------------

    def search(self, text: str, *, start_time: int = 0, max_results: int = 100) -> List[HistoryVisit]:
        """History lookup by URL substring (epoch millis).

        A place whose URL equals `text` ranks ahead of every other match; the
        rest follow newest visit first.
        """
        c = self._cursor()
        if self._has_visits:
            rows = c.execute(
                """
                SELECT p.url AS url, MAX(v.visit_date) AS last_visit
                FROM moz_places p
                JOIN moz_historyvisits v ON v.place_id = p.id
                WHERE instr(p.url, ?) > 0
                GROUP BY p.id
                HAVING MAX(v.visit_date) >= ?
                ORDER BY p.url = ? DESC, last_visit DESC
                LIMIT ?
                """,
                (text, int(start_time) * 1000, text, int(max_results)),
            ).fetchall()
        elif self._has_last_visit_date:
            rows = c.execute(
                """
                SELECT url, last_visit_date AS last_visit
                FROM moz_places
                WHERE instr(url, ?) > 0 AND last_visit_date IS NOT NULL AND last_visit_date >= ?
                ORDER BY url = ? DESC, last_visit_date DESC
                LIMIT ?
                """,
                (text, int(start_time) * 1000, text, int(max_results)),
            ).fetchall()
        else:
            return []
        return [
            HistoryVisit(url=r["url"], last_visit_time=_prtime_to_ms(r["last_visit"]))
            for r in rows
        ]

    # -- maintenance --------------------------------------------------------

    def recompute_foreign_count(self) -> None:
        self._assert_writable()
        if not self._has_foreign_count:
            return
        try:
            self._cursor().execute(
                """
                UPDATE moz_places
                SET foreign_count = (
                    SELECT COUNT(*)
                    FROM moz_bookmarks b
                    WHERE b.type = 1 AND b.fk = moz_places.id
                )
                """
            )
            self.conn.commit()
        except sqlite3.Error as e:
            raise _store_error(e) from e

    def validate_integrity(self) -> None:
        c = self._cursor()
        row = c.execute("PRAGMA integrity_check").fetchone()
        status = str(row[0]) if row is not None else ""
        if status.lower() != "ok":
            raise StoreError(f"sqlite integrity_check failed: {status or '<empty>'}")

    # -- internals ----------------------------------------------------------

    def _children_by_parent(self) -> Dict[int, List[sqlite3.Row]]:
        rows = self._cursor().execute(
            """
            SELECT b.id, b.parent, b.type, b.title, p.url
            FROM moz_bookmarks b
            LEFT JOIN moz_places p ON p.id = b.fk
            ORDER BY b.parent, b.position, b.id
            """
        ).fetchall()
        out: Dict[int, List[sqlite3.Row]] = {}
        for r in rows:
            out.setdefault(int(r["parent"] or 0), []).append(r)
        return out

    def _build_folder(self, row: sqlite3.Row, children_by_parent: Dict[int, List[sqlite3.Row]]) -> FolderNode:
        fid = int(row["id"])
        inv_roots = {v: k for k, v in self.root_ids.items()}
        title = (row["title"] or "").strip()
        if fid in inv_roots:
            title = _ROOT_LABELS.get(inv_roots[fid], title or inv_roots[fid].title())
        node = FolderNode(id=str(fid), title=title)
        for child in children_by_parent.get(fid, []):
            ctype = int(child["type"] or 0)
            if ctype == TYPE_FOLDER:
                node.children.append(self._build_folder(child, children_by_parent))
            elif ctype == TYPE_BOOKMARK:
                url = (child["url"] or "").strip()
                if not url:
                    continue
                node.children.append(
                    BookmarkRecord(
                        id=str(int(child["id"])),
                        title=(child["title"] or "").strip(),
                        url=url,
                        parent_id=str(fid),
                    )
                )
            # Separators (type 3) carry nothing worth scanning or snapshotting.
        return node

    def _delete_rows(self, ids: List[int]) -> None:
        c = self._cursor()
        parent_map = self._parent_map()
        for bid in ids:
            row = c.execute("SELECT fk FROM moz_bookmarks WHERE id = ?", (bid,)).fetchone()
            if row is None:
                continue
            fk = int(row["fk"] or 0)
            c.execute("DELETE FROM moz_bookmarks WHERE id = ?", (bid,))
            if fk and self._has_foreign_count:
                c.execute("UPDATE moz_places SET foreign_count = MAX(foreign_count - 1, 0) WHERE id = ?", (fk,))
            self._touch_folder(int(parent_map.get(bid, 0)))

    def _parent_map(self) -> Dict[int, int]:
        rows = self._cursor().execute("SELECT id, parent FROM moz_bookmarks").fetchall()
        return {int(r["id"]): int(r["parent"] or 0) for r in rows}

    def _descends_from(self, node_id: int, ancestor_id: int, parent_map: Dict[int, int]) -> bool:
        current = node_id
        seen = set()
        while current and current not in seen:
            if current == ancestor_id:
                return True
            seen.add(current)
            current = parent_map.get(current, 0)
        return False

    def _discover_root_ids(self) -> Dict[str, int]:
        c = self._cursor()
        out: Dict[str, int] = {}
        if self._has_table("moz_bookmarks_roots"):
            rows = c.execute("SELECT root_name, folder_id FROM moz_bookmarks_roots").fetchall()
            for r in rows:
                out[str(r["root_name"])] = int(r["folder_id"])
        if not out and self._has_guid:
            placeholders = ", ".join(["?"] * len(_ROOT_GUID_TO_NAME))
            rows = c.execute(
                f"SELECT id, guid FROM moz_bookmarks WHERE guid IN ({placeholders})",
                tuple(_ROOT_GUID_TO_NAME.keys()),
            ).fetchall()
            for r in rows:
                name = _ROOT_GUID_TO_NAME.get(str(r["guid"]))
                if name:
                    out[name] = int(r["id"])
        if "places" not in out:
            row = c.execute(
                "SELECT id FROM moz_bookmarks WHERE type = 2 AND (parent IS NULL OR parent = 0) ORDER BY id LIMIT 1"
            ).fetchone()
            if row:
                out["places"] = int(row["id"])
        return out

    def _ensure_place(self, url: str, title: str) -> int:
        c = self._cursor()
        row = c.execute("SELECT id, title FROM moz_places WHERE url = ? LIMIT 1", (url,)).fetchone()
        if row:
            pid = int(row["id"])
            if title and not (row["title"] or ""):
                c.execute("UPDATE moz_places SET title = ? WHERE id = ?", (title, pid))
            return pid
        cols = ["url", "title"]
        vals: List[object] = [url, title]
        if self._has_column("moz_places", "guid"):
            cols.append("guid")
            vals.append(self._new_guid())
        placeholders = ", ".join(["?"] * len(vals))
        c.execute(
            f"INSERT INTO moz_places ({', '.join(cols)}) VALUES ({placeholders})",
            vals,
        )
        return int(c.lastrowid)

    def _insert_bookmark(
        self,
        *,
        btype: int,
        fk: Optional[int],
        parent_id: int,
        position: int,
        title: Optional[str],
    ) -> int:
        c = self._cursor()
        now = self._now_us()
        cols = ["type", "fk", "parent", "position", "title", "dateAdded", "lastModified"]
        vals: List[object] = [btype, fk, parent_id, position, title, now, now]
        if self._has_guid:
            cols.append("guid")
            vals.append(self._new_guid())
        placeholders = ", ".join(["?"] * len(vals))
        c.execute(
            f"INSERT INTO moz_bookmarks ({', '.join(cols)}) VALUES ({placeholders})",
            vals,
        )
        row_id = int(c.lastrowid)
        if fk is not None and fk > 0 and self._has_foreign_count:
            c.execute("UPDATE moz_places SET foreign_count = foreign_count + 1 WHERE id = ?", (fk,))
        self._touch_folder(parent_id)
        return row_id

    def _resolve_position(self, parent_id: int, position: Optional[int]) -> int:
        if position is not None and position >= 0:
            return int(position)
        c = self._cursor()
        row = c.execute("SELECT COALESCE(MAX(position), -1) AS p FROM moz_bookmarks WHERE parent = ?", (parent_id,)).fetchone()
        return int(row["p"]) + 1

    def _touch_folder(self, folder_id: int) -> None:
        if not folder_id:
            return
        c = self._cursor()
        c.execute("UPDATE moz_bookmarks SET lastModified = ? WHERE id = ?", (self._now_us(), folder_id))

    def _require_exists(self, bookmark_id: int) -> None:
        row = self._cursor().execute("SELECT 1 FROM moz_bookmarks WHERE id = ?", (bookmark_id,)).fetchone()
        if not row:
            raise StoreError(f"bookmark id not found: {bookmark_id}")

    def _require_folder(self, folder_id: int) -> None:
        row = self._cursor().execute("SELECT type FROM moz_bookmarks WHERE id = ?", (folder_id,)).fetchone()
        if not row:
            raise StoreError(f"folder id not found: {folder_id}")
        if int(row["type"] or 0) != TYPE_FOLDER:
            raise StoreError(f"id is not a folder: {folder_id}")

    def _assert_writable(self) -> None:
        if self.readonly:
            raise StoreError("database opened in readonly mode")

    def _has_table(self, name: str) -> bool:
        row = self._cursor().execute(
            "SELECT 1 FROM sqlite_master WHERE type='table' AND name=? LIMIT 1",
            (name,),
        ).fetchone()
        return row is not None

    def _has_column(self, table_name: str, column_name: str) -> bool:
        rows = self._cursor().execute(f"PRAGMA table_info({table_name})").fetchall()
        return any(str(r[1]) == column_name for r in rows)

    def _cursor(self) -> sqlite3.Cursor:
        if self.conn is None:
            raise StoreError("database is not open")
        return self.conn.cursor()

    def _now_us(self) -> int:
        return int(time.time() * 1_000_000)

    def _new_guid(self) -> str:
        # Firefox GUIDs are 12-char URL-safe strings.
        return base64.urlsafe_b64encode(os.urandom(9)).decode("ascii").rstrip("=")


def _to_int(value: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise StoreError(f"invalid bookmark id: {value!r}") from e


def _prtime_to_ms(value) -> Optional[int]:
    if value is None:
        return None
    try:
        iv = int(value)
    except (TypeError, ValueError):
        return None
    # Firefox PRTime is microseconds since the Unix epoch.
    return iv // 1000


def _store_error(e: sqlite3.Error) -> StoreError:
    msg = str(e).strip()
    if "locked" in msg.lower() or "busy" in msg.lower():
        return StoreError("Firefox database is locked. Close Firefox and rerun.")
    return StoreError(msg)
