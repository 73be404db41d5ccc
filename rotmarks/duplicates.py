from __future__ import annotations

from typing import Dict, Iterable, List
from urllib.parse import urlsplit

from .errors import StoreError
from .log import get_logger
from .model import BookmarkRecord, DuplicateGroup
from .tree import BookmarkTree

log = get_logger(__name__)

DEFAULT_PORTS = {"http": 80, "https": 443}


def normalize_url(url: str) -> str:
    """Duplicate key: scheme://host[:port]/path?query, no fragment, no trailing slash, lowercased.

    Only the origin survives from the authority part: userinfo and default
    ports are dropped. `;params` stay with the path.
    """
    try:
        p = urlsplit(url)
        host = p.hostname
        port = p.port
    except ValueError:
        return url.lower()
    if not p.scheme or not host:
        return url.lower()

    if ":" in host:
        host = f"[{host}]"
    origin = f"{p.scheme}://{host}"
    if port is not None and port != DEFAULT_PORTS.get(p.scheme.lower()):
        origin += f":{port}"

    # Every trailing slash goes so the key is a fixed point of normalization.
    path = p.path.rstrip("/")
    out = f"{origin}{path}"
    if p.query:
        out += f"?{p.query}"
    return out.lower()


def find_duplicates(records: Iterable[BookmarkRecord]) -> List[DuplicateGroup]:
    by_url: Dict[str, List[BookmarkRecord]] = {}
    for r in records:
        if not r.url:
            continue
        by_url.setdefault(normalize_url(r.url), []).append(r)

    groups = [DuplicateGroup(normalized_url=k, members=v) for k, v in by_url.items() if len(v) > 1]
    # sort() is stable: equal-size groups keep first-seen order.
    groups.sort(key=lambda g: g.count, reverse=True)
    return groups


def duplicate_count(groups: Iterable[DuplicateGroup]) -> int:
    """Number of records that keep-first deletion would remove."""
    return sum(g.count - 1 for g in groups)


def delete_duplicates(tree: BookmarkTree, groups: Iterable[DuplicateGroup], *, keep_first: bool = True) -> int:
    deleted = 0
    for group in groups:
        doomed = group.members[1:] if keep_first else list(group.members)
        for member in doomed:
            try:
                tree.remove(member.id)
                deleted += 1
            except StoreError as e:
                log.warning("Failed to delete duplicate %s (%s): %s", member.id, group.normalized_url, e)
    if deleted:
        log.info("Deleted %d duplicate bookmarks.", deleted)
    return deleted
