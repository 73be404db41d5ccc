from __future__ import annotations

from typing import Iterable, List, Optional, Union

from .errors import StoreError
from .log import get_logger
from .model import BookmarkRecord, FolderInfo, FolderNode

log = get_logger(__name__)


class BookmarkTree:
    """Flattened, record-level view over an external bookmark store.

    The store must provide ``get_tree()``, ``get_subtree(id)``, ``create``,
    ``update``, ``move``, ``remove``, ``remove_tree`` and
    ``default_folder_id()`` (see ``PlacesDB``). Store failures propagate as
    ``StoreError``; retry policy belongs to callers.
    """

    def __init__(self, store, *, broken_folder_name: str = "Broken Links"):
        self.store = store
        self.broken_folder_name = broken_folder_name

    def get_forest(self) -> List[FolderNode]:
        return self._call(self.store.get_tree)

    def list_all(self) -> List[BookmarkRecord]:
        return list(flatten(self.get_forest()))

    def list_subtree(self, folder_id: str) -> List[BookmarkRecord]:
        return list(flatten([self._call(self.store.get_subtree, folder_id)]))

    def list_folders(self) -> List[FolderInfo]:
        out: List[FolderInfo] = []

        def walk(nodes: Iterable[Union[BookmarkRecord, FolderNode]], depth: int) -> None:
            for node in nodes:
                if isinstance(node, FolderNode):
                    out.append(FolderInfo(id=node.id, title=node.title or "Root", depth=depth))
                    walk(node.children, depth + 1)

        walk(self.get_forest(), 0)
        return out

    def ensure_folder(self, parent_id: str, title: str) -> str:
        parent = self._call(self.store.get_subtree, parent_id)
        for child in parent.children:
            if isinstance(child, FolderNode) and child.title == title:
                return child.id
        folder_id = self.create(parent_id, title)
        log.info("Created folder %r under %s", title, parent_id)
        return folder_id

    def quarantine_folder(self) -> str:
        parent_id = self.store.default_folder_id()
        if parent_id is None:
            forest = self.get_forest()
            if not forest:
                raise StoreError("bookmark store has no top-level folders")
            parent_id = forest[0].id
        return self.ensure_folder(parent_id, self.broken_folder_name)

    def update(self, bookmark_id: str, url: Optional[str] = None, title: Optional[str] = None) -> None:
        self._call(self.store.update, bookmark_id, url=url, title=title)

    def move(self, bookmark_id: str, parent_id: str) -> None:
        self._call(self.store.move, bookmark_id, parent_id)

    def remove(self, bookmark_id: str) -> None:
        self._call(self.store.remove, bookmark_id)

    def remove_subtree(self, folder_id: str) -> None:
        self._call(self.store.remove_tree, folder_id)

    def create(self, parent_id: str, title: str, url: Optional[str] = None) -> str:
        return self._call(self.store.create, parent_id, title, url)

    def _call(self, fn, *args, **kwargs):
        try:
            return fn(*args, **kwargs)
        except StoreError:
            raise
        except Exception as e:
            raise StoreError(str(e) or e.__class__.__name__) from e


def flatten(nodes: Iterable[Union[BookmarkRecord, FolderNode]]):
    """Pre-order walk yielding bookmark records only."""
    for node in nodes:
        if isinstance(node, FolderNode):
            yield from flatten(node.children)
        elif node.url:
            yield node
