import sqlite3
import sys
from pathlib import Path

import httpx
import pytest

# Allow `import rotmarks` without installing the package.
ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT))

DAY_US = 24 * 60 * 60 * 1_000_000


def _mk_places_db(path: Path, *, folders=(), bookmarks=(), visits=()) -> None:
    """Minimal Firefox places.sqlite.

    folders: (id, parent, title); bookmarks: (id, parent, title, url);
    visits: (url, visit_date in PRTime microseconds). Positions follow
    insertion order per parent.
    """
    conn = sqlite3.connect(path)
    try:
        conn.executescript(
            """
            CREATE TABLE moz_places (
              id INTEGER PRIMARY KEY,
              url TEXT,
              title TEXT,
              hidden INTEGER DEFAULT 0,
              guid TEXT,
              foreign_count INTEGER DEFAULT 0,
              last_visit_date INTEGER
            );
            CREATE TABLE moz_bookmarks (
              id INTEGER PRIMARY KEY,
              type INTEGER,
              fk INTEGER DEFAULT NULL,
              parent INTEGER,
              position INTEGER,
              title TEXT,
              keyword_id INTEGER,
              folder_type TEXT,
              dateAdded INTEGER,
              lastModified INTEGER,
              guid TEXT,
              syncStatus INTEGER NOT NULL DEFAULT 0,
              syncChangeCounter INTEGER NOT NULL DEFAULT 1
            );
            CREATE TABLE moz_historyvisits (
              id INTEGER PRIMARY KEY,
              from_visit INTEGER,
              place_id INTEGER,
              visit_date INTEGER,
              visit_type INTEGER
            );
            """
        )
        conn.executemany(
            "INSERT INTO moz_bookmarks(id,type,fk,parent,position,title,dateAdded,lastModified,guid) VALUES(?,?,?,?,?,?,?,?,?)",
            [
                (1, 2, None, 0, 0, "", 0, 0, "root________"),
                (2, 2, None, 1, 0, "menu", 0, 0, "menu________"),
                (3, 2, None, 1, 1, "toolbar", 0, 0, "toolbar_____"),
                (4, 2, None, 1, 2, "tags", 0, 0, "tags________"),
                (5, 2, None, 1, 3, "unfiled", 0, 0, "unfiled_____"),
                (6, 2, None, 1, 4, "mobile", 0, 0, "mobile______"),
            ],
        )
        positions = {}

        def next_pos(parent):
            positions[parent] = positions.get(parent, -1) + 1
            return positions[parent]

        for fid, parent, title in folders:
            conn.execute(
                "INSERT INTO moz_bookmarks(id,type,fk,parent,position,title,dateAdded,lastModified,guid) VALUES(?,?,?,?,?,?,?,?,?)",
                (fid, 2, None, parent, next_pos(parent), title, 0, 0, f"f{fid}"),
            )

        place_ids = {}
        for bid, parent, title, url in bookmarks:
            if url not in place_ids:
                place_ids[url] = 1000 + len(place_ids)
                conn.execute(
                    "INSERT INTO moz_places(id,url,title,guid,foreign_count) VALUES(?,?,?,?,?)",
                    (place_ids[url], url, title, f"p{place_ids[url]}", 0),
                )
            conn.execute("UPDATE moz_places SET foreign_count = foreign_count + 1 WHERE id = ?", (place_ids[url],))
            conn.execute(
                "INSERT INTO moz_bookmarks(id,type,fk,parent,position,title,dateAdded,lastModified,guid) VALUES(?,?,?,?,?,?,?,?,?)",
                (bid, 1, place_ids[url], parent, next_pos(parent), title, 0, 0, f"b{bid}"),
            )

        for url, visit_date in visits:
            if url not in place_ids:
                place_ids[url] = 1000 + len(place_ids)
                conn.execute(
                    "INSERT INTO moz_places(id,url,title,guid,foreign_count) VALUES(?,?,?,?,?)",
                    (place_ids[url], url, "", f"p{place_ids[url]}", 0),
                )
            conn.execute(
                "INSERT INTO moz_historyvisits(place_id, visit_date, visit_type) VALUES(?,?,1)",
                (place_ids[url], visit_date),
            )
            conn.execute(
                "UPDATE moz_places SET last_visit_date = MAX(COALESCE(last_visit_date, 0), ?) WHERE id = ?",
                (visit_date, place_ids[url]),
            )
        conn.commit()
    finally:
        conn.close()


@pytest.fixture
def places_factory(tmp_path):
    """Build a places.sqlite under tmp_path and return its path."""

    def _make(**kwargs) -> Path:
        db = tmp_path / "places.sqlite"
        _mk_places_db(db, **kwargs)
        return db

    return _make


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler), follow_redirects=True)


@pytest.fixture
def client_for():
    return mock_client
