from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union


@dataclass
class BookmarkRecord:
    id: str
    title: str
    url: Optional[str]
    parent_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "title": self.title, "url": self.url, "parentId": self.parent_id}


@dataclass
class FolderNode:
    id: str
    title: str
    children: List[Union[BookmarkRecord, "FolderNode"]] = field(default_factory=list)


@dataclass
class FolderInfo:
    id: str
    title: str
    depth: int


@dataclass
class ProbeResult:
    final_url: Optional[str]
    status_code: int
    error: Optional[str] = None


# Scan outcomes: exactly one per scanned record.
@dataclass(frozen=True)
class Unchanged:
    pass


@dataclass(frozen=True)
class Fixed:
    new_url: str


@dataclass(frozen=True)
class Broken:
    reason: str


ScanOutcome = Union[Unchanged, Fixed, Broken]


@dataclass
class FixedEntry:
    id: str
    title: str
    old_url: str
    new_url: str


@dataclass
class BrokenEntry:
    id: str
    title: str
    url: str
    error: str


@dataclass
class ScanReport:
    fixed: List[FixedEntry] = field(default_factory=list)
    broken: List[BrokenEntry] = field(default_factory=list)
    unchanged: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fixed": [{"id": f.id, "title": f.title, "oldUrl": f.old_url, "newUrl": f.new_url} for f in self.fixed],
            "broken": [{"id": b.id, "title": b.title, "url": b.url, "error": b.error} for b in self.broken],
            "unchanged": self.unchanged,
        }


@dataclass
class DuplicateGroup:
    normalized_url: str
    members: List[BookmarkRecord]

    @property
    def count(self) -> int:
        return len(self.members)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.normalized_url,
            "count": self.count,
            "bookmarks": [m.to_dict() for m in self.members],
        }


@dataclass(frozen=True)
class AtLeast:
    """Unknown last visit: stale for at least `days`."""

    days: int

    def __str__(self) -> str:
        return f"{self.days}+"


@dataclass
class StaleEntry:
    record: BookmarkRecord
    days_since_access: Union[int, AtLeast]

    @property
    def sort_days(self) -> float:
        if isinstance(self.days_since_access, AtLeast):
            return float("inf")
        return float(self.days_since_access)

    def to_dict(self) -> Dict[str, Any]:
        d = self.record.to_dict()
        d["daysSinceAccess"] = (
            str(self.days_since_access) if isinstance(self.days_since_access, AtLeast) else self.days_since_access
        )
        return d


@dataclass
class BadTitle:
    record: BookmarkRecord
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        d = self.record.to_dict()
        d["reason"] = self.reason
        return d


@dataclass
class TitleFixReport:
    fixed: List[Dict[str, Any]] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"fixed": list(self.fixed), "failed": list(self.failed)}


@dataclass
class EmptyFolder:
    id: str
    title: str
    path: str
    has_empty_subfolders: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "path": self.path,
            "hasEmptySubfolders": self.has_empty_subfolders,
        }


@dataclass
class QuickFixResult:
    backup_created: bool = False
    redirects_fixed: int = 0
    broken_moved: int = 0
    duplicates_deleted: int = 0
    empty_folders_deleted: int = 0
    errors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "backupCreated": self.backup_created,
            "redirectsFixed": self.redirects_fixed,
            "brokenMoved": self.broken_moved,
            "duplicatesDeleted": self.duplicates_deleted,
            "emptyFoldersDeleted": self.empty_folders_deleted,
            "errors": list(self.errors),
        }


@dataclass
class IssueSummary:
    total_bookmarks: int
    duplicates: int
    duplicate_groups: int
    empty_folders: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalBookmarks": self.total_bookmarks,
            "duplicates": self.duplicates,
            "duplicateGroups": self.duplicate_groups,
            "emptyFolders": self.empty_folders,
        }


@dataclass
class ArchivedVersion:
    available: bool
    url: Optional[str] = None
    timestamp: Optional[str] = None
    date: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"available": self.available}
        for k in ("url", "timestamp", "date", "error"):
            v = getattr(self, k)
            if v is not None:
                d[k] = v
        return d
