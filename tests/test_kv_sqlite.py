import sqlite3

from rotmarks.kv_sqlite import KeyValueStore


def test_set_get_remove_roundtrip(tmp_path):
    kv = KeyValueStore(tmp_path / "nested" / "state.sqlite")
    assert kv.get("missing") is None
    assert kv.get("missing", []) == []

    kv.set("badge", "3")
    kv.set("list", [{"a": 1}, {"b": "ü"}])
    assert kv.get("badge") == "3"
    assert kv.get("list") == [{"a": 1}, {"b": "ü"}]

    kv.set("badge", "")
    assert kv.get("badge") == ""

    kv.remove("badge")
    assert kv.get("badge", "gone") == "gone"


def test_values_survive_reopen_and_bad_json_falls_back(tmp_path):
    db = tmp_path / "state.sqlite"
    KeyValueStore(db).set("k", {"x": 1})
    assert KeyValueStore(db).get("k") == {"x": 1}

    conn = sqlite3.connect(db)
    conn.execute("UPDATE kv_store SET value_json = ? WHERE key = ?", ("{not json", "k"))
    conn.commit()
    conn.close()
    assert KeyValueStore(db).get("k", "default") == "default"
