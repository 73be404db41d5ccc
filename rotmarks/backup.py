from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import NotFoundError, StoreError
from .log import get_logger
from .model import BookmarkRecord, FolderNode
from .tree import BookmarkTree

log = get_logger(__name__)

BACKUP_KEY = "bookmark_backups"
MAX_BACKUPS = 5
SAFETY_LABEL_RESTORE = "Auto-backup before restore"


class SnapshotNode(BaseModel):
    """One serialized tree node: a folder when `children` is set, else a bookmark."""

    id: str = ""
    title: str = ""
    url: Optional[str] = None
    children: Optional[List["SnapshotNode"]] = None

    def is_folder(self) -> bool:
        return self.children is not None


SnapshotNode.model_rebuild()


class Backup(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    timestamp: int = Field(..., description="Creation time, epoch millis.")
    date: str
    bookmark_count: int
    snapshot: List[SnapshotNode] = Field(default_factory=list)

    def summary(self) -> Dict[str, object]:
        return {"id": self.id, "label": self.label, "date": self.date, "bookmarkCount": self.bookmark_count}


@dataclass
class RestoreReport:
    restored: int = 0
    failed: int = 0
    unpaired: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        return {"restored": self.restored, "failed": self.failed, "unpaired": list(self.unpaired)}


def snapshot_forest(forest: Sequence[FolderNode]) -> List[SnapshotNode]:
    def conv(node: Union[BookmarkRecord, FolderNode]) -> SnapshotNode:
        if isinstance(node, FolderNode):
            return SnapshotNode(id=node.id, title=node.title, children=[conv(c) for c in node.children])
        return SnapshotNode(id=node.id, title=node.title, url=node.url)

    return [conv(root) for root in forest]


def count_snapshot_bookmarks(nodes: Sequence[SnapshotNode]) -> int:
    count = 0
    for n in nodes:
        if n.url:
            count += 1
        if n.children:
            count += count_snapshot_bookmarks(n.children)
    return count


def pair_roots(
    snapshot_roots: Sequence[SnapshotNode],
    live_roots: Sequence[FolderNode],
) -> Tuple[List[Tuple[SnapshotNode, FolderNode]], List[SnapshotNode]]:
    """Match snapshot top-level folders to live ones.

    Titles that are unique on both sides pair by title (case-insensitive);
    whatever is left pairs by index when the live folder at that index is still
    free. Anything else stays unpaired rather than being guessed.
    """
    def key(title: str) -> str:
        return (title or "").strip().casefold()

    snap_keys = [key(s.title) for s in snapshot_roots]
    live_keys = [key(r.title) for r in live_roots]

    pairs: Dict[int, int] = {}
    for si, k in enumerate(snap_keys):
        if k and snap_keys.count(k) == 1 and live_keys.count(k) == 1:
            pairs[si] = live_keys.index(k)

    taken = set(pairs.values())
    for si in range(len(snapshot_roots)):
        if si in pairs:
            continue
        if si < len(live_roots) and si not in taken:
            pairs[si] = si
            taken.add(si)

    paired = [(snapshot_roots[si], live_roots[li]) for si, li in sorted(pairs.items())]
    unpaired = [s for si, s in enumerate(snapshot_roots) if si not in pairs]
    return paired, unpaired


class BackupManager:
    def __init__(
        self,
        tree: BookmarkTree,
        kv,
        *,
        max_backups: int = MAX_BACKUPS,
        clock: Callable[[], float] = time.time,
    ):
        self.tree = tree
        self.kv = kv
        self.max_backups = max(1, int(max_backups))
        self.clock = clock

    def create_backup(self, label: str = "Manual backup") -> Backup:
        forest = self.tree.get_forest()
        snapshot = snapshot_forest(forest)
        backups = self._load()

        ts = int(self.clock() * 1000)
        existing_ids = {b.id for b in backups}
        backup_id = str(ts)
        n = 1
        while backup_id in existing_ids:
            backup_id = f"{ts}-{n}"
            n += 1

        backup = Backup(
            id=backup_id,
            label=label,
            timestamp=ts,
            date=datetime.fromtimestamp(ts / 1000, tz=timezone.utc).isoformat(),
            bookmark_count=count_snapshot_bookmarks(snapshot),
            snapshot=snapshot,
        )
        backups.insert(0, backup)
        evicted = backups[self.max_backups :]
        backups = backups[: self.max_backups]
        self._save(backups)
        for old in evicted:
            log.info("Evicted backup %s (%s)", old.id, old.label)
        log.info("Created backup %s (%s): %d bookmarks", backup.id, label, backup.bookmark_count)
        return backup

    def get_backups(self) -> List[Dict[str, object]]:
        return [b.summary() for b in self._load()]

    def get_backup(self, backup_id: str) -> Backup:
        for b in self._load():
            if b.id == backup_id:
                return b
        raise NotFoundError(f"Backup not found: {backup_id}")

    def delete_backup(self, backup_id: str) -> None:
        backups = self._load()
        kept = [b for b in backups if b.id != backup_id]
        if len(kept) == len(backups):
            raise NotFoundError(f"Backup not found: {backup_id}")
        self._save(kept)
        log.info("Deleted backup %s", backup_id)

    def restore_backup(self, backup_id: str) -> RestoreReport:
        backup = self.get_backup(backup_id)
        self.create_backup(SAFETY_LABEL_RESTORE)

        report = RestoreReport()
        live_roots = self.tree.get_forest()
        for root in live_roots:
            for child in list(root.children):
                try:
                    if isinstance(child, FolderNode):
                        self.tree.remove_subtree(child.id)
                    else:
                        self.tree.remove(child.id)
                except StoreError as e:
                    log.warning("Error removing %s during restore: %s", child.id, e)

        pairs, unpaired = pair_roots(backup.snapshot, live_roots)
        for snap_root in unpaired:
            log.warning("No live top-level folder for snapshot folder %r; skipped", snap_root.title)
            report.unpaired.append(snap_root.title)
            report.failed += count_snapshot_bookmarks(snap_root.children or [])

        for snap_root, live_root in pairs:
            self._restore_children(snap_root.children or [], live_root.id, report)

        log.info(
            "Restored backup %s: %d bookmarks restored, %d failed.",
            backup.id,
            report.restored,
            report.failed,
        )
        return report

    def export_backup_as_file(self, backup: Backup) -> str:
        return backup.model_dump_json(indent=2)

    def _restore_children(self, children: Sequence[SnapshotNode], parent_id: str, report: RestoreReport) -> None:
        for child in children:
            try:
                if child.is_folder():
                    folder_id = self.tree.create(parent_id, child.title)
                elif child.url:
                    self.tree.create(parent_id, child.title, child.url)
                    report.restored += 1
                    continue
                else:
                    continue
            except StoreError as e:
                log.warning("Error restoring %r: %s", child.title, e)
                report.failed += 1 if child.url else count_snapshot_bookmarks(child.children or [])
                continue
            self._restore_children(child.children or [], folder_id, report)

    def _load(self) -> List[Backup]:
        out: List[Backup] = []
        for raw in self.kv.get(BACKUP_KEY, []) or []:
            try:
                out.append(Backup.model_validate(raw))
            except ValidationError as e:
                log.warning("Skipping unreadable backup entry: %s", e)
        return out

    def _save(self, backups: List[Backup]) -> None:
        self.kv.set(BACKUP_KEY, [b.model_dump() for b in backups])
