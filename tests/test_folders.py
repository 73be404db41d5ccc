from rotmarks.folders import delete_empty_folders, find_empty_folders
from rotmarks.model import BookmarkRecord, FolderNode
from rotmarks.places_db import PlacesDB
from rotmarks.tree import BookmarkTree


def test_parent_of_only_empty_folders_is_reported_after_children():
    forest = [
        FolderNode(
            id="3",
            title="Bookmarks Toolbar",
            children=[
                FolderNode(id="10", title="Old", children=[FolderNode(id="11", title="A"), FolderNode(id="12", title="")]),
                FolderNode(id="13", title="Keep", children=[BookmarkRecord(id="20", title="x", url="https://x.test/", parent_id="13")]),
            ],
        ),
        FolderNode(id="5", title="Other Bookmarks"),
    ]
    found = find_empty_folders(forest)
    assert [(f.id, f.path, f.has_empty_subfolders) for f in found] == [
        ("11", "Bookmarks Toolbar / Old / A", False),
        ("12", "Bookmarks Toolbar / Old / Untitled Folder", False),
        ("10", "Bookmarks Toolbar / Old", True),
    ]
    assert found[1].title == "Untitled Folder"
    assert found[2].to_dict()["hasEmptySubfolders"] is True


def test_mixed_folder_is_not_reported():
    forest = [
        FolderNode(
            id="3",
            title="Bookmarks Toolbar",
            children=[
                FolderNode(
                    id="10",
                    title="Mixed",
                    children=[
                        FolderNode(id="11", title="Empty"),
                        FolderNode(id="12", title="Deep", children=[FolderNode(id="14", title="Empty too")]),
                    ],
                ),
            ],
        )
    ]
    ids = [f.id for f in find_empty_folders(forest)]
    # 12 holds only an empty folder, 10 holds a non-empty one.
    assert ids == ["11", "14", "12"]


def test_delete_empty_folders_tolerates_ids_removed_with_an_ancestor(places_factory):
    db_path = places_factory(folders=[(10, 3, "Old"), (11, 10, "A"), (12, 10, "B")])
    with PlacesDB(db_path) as db:
        tree = BookmarkTree(db)
        found = find_empty_folders(tree.get_forest())
        assert [f.id for f in found] == ["11", "12", "10"]
        # Reverse order removes 10 first; 11 and 12 are already gone.
        assert delete_empty_folders(tree, [f.id for f in found]) == 1
        assert find_empty_folders(tree.get_forest()) == []
        assert tree.list_folders()[1].title == "Bookmarks Toolbar"
        assert [f.id for f in tree.list_folders()] == ["2", "3", "5", "6"]
