from __future__ import annotations

from typing import List, Sequence

from .errors import StoreError
from .log import get_logger
from .model import EmptyFolder, FolderNode
from .tree import BookmarkTree

log = get_logger(__name__)


def _is_empty_folder(node) -> bool:
    return isinstance(node, FolderNode) and not node.children


def find_empty_folders(forest: Sequence[FolderNode]) -> List[EmptyFolder]:
    """Empty folders, plus folders whose children are all empty folders.

    Children are listed before their parent. Top-level folders belong to the
    host and are never reported.
    """
    out: List[EmptyFolder] = []

    def walk(node: FolderNode, path: List[str], top_level: bool) -> None:
        current = path + [node.title or "Untitled Folder"]
        if not node.children:
            if not top_level:
                out.append(EmptyFolder(id=node.id, title=node.title or "Untitled Folder", path=" / ".join(current)))
            return
        for child in node.children:
            if isinstance(child, FolderNode):
                walk(child, current, False)
        if not top_level and all(_is_empty_folder(c) for c in node.children):
            out.append(
                EmptyFolder(
                    id=node.id,
                    title=node.title or "Untitled Folder",
                    path=" / ".join(current),
                    has_empty_subfolders=True,
                )
            )

    for root in forest:
        walk(root, [], True)
    return out


def delete_empty_folders(tree: BookmarkTree, folder_ids: Sequence[str]) -> int:
    deleted = 0
    # Reverse of the supplied order; ids already gone with an ancestor just fail.
    for folder_id in reversed(list(folder_ids)):
        try:
            tree.remove_subtree(folder_id)
            deleted += 1
        except StoreError as e:
            log.warning("Failed to delete folder %s: %s", folder_id, e)
    if deleted:
        log.info("Deleted %d empty folders.", deleted)
    return deleted
