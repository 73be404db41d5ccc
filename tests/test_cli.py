import json
import sqlite3

import httpx
import pytest

import rotmarks.engine as engine_mod
from conftest import mock_client
from rotmarks.cli import main


def _db(places_factory):
    return places_factory(
        folders=[(10, 3, "Work"), (11, 3, "Empty")],
        bookmarks=[
            (20, 3, "Site A", "https://a.test/"),
            (21, 10, "Site A again", "https://a.test"),
            (22, 10, "Moved", "https://b.test/old"),
        ],
    )


def _run(capsys, *argv):
    code = main(list(argv))
    out = capsys.readouterr().out
    return code, (json.loads(out) if out.strip() else None)


@pytest.fixture
def offline(monkeypatch):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/old":
            return httpx.Response(301, headers={"Location": "https://b.test/new"})
        return httpx.Response(200)

    monkeypatch.setattr(engine_mod, "default_client_factory", lambda settings: (lambda: mock_client(handler)))
    monkeypatch.setenv("ROT_SCAN_DELAY_S", "0")


def test_summary_and_duplicates_apply_with_export(places_factory, tmp_path, capsys):
    db = _db(places_factory)
    state = tmp_path / "state"
    code, out = _run(capsys, "summary", "--profile", str(db), "--state-dir", str(state))
    assert code == 0
    assert out["summary"] == {"totalBookmarks": 3, "duplicates": 1, "duplicateGroups": 1, "emptyFolders": 1}

    code, out = _run(capsys, "duplicates", "--apply", "--export", "csv", "--profile", str(db), "--state-dir", str(state))
    assert code == 0
    assert out["deleted"] == 1
    assert out["exported"].endswith(".csv")
    assert (state / "exports").is_dir()


def test_backup_lifecycle(places_factory, tmp_path, capsys):
    common = ["--profile", str(_db(places_factory)), "--state-dir", str(tmp_path / "state")]
    code, created = _run(capsys, "backup", "create", "--label", "cli", *common)
    assert code == 0
    backup_id = created["backup"]["id"]

    code, listed = _run(capsys, "backup", "list", *common)
    assert [b["id"] for b in listed["backups"]] == [backup_id]

    code, exported = _run(capsys, "backup", "export", backup_id, *common)
    assert code == 0
    assert json.loads(open(exported["path"], encoding="utf-8").read())["label"] == "cli"

    code, out = _run(capsys, "backup", "restore", "no-such-id", *common)
    assert code == 1
    assert out["success"] is False


def test_schedule_needs_no_profile(tmp_path, capsys, monkeypatch):
    monkeypatch.delenv("ROT_PROFILE", raising=False)
    state = ["--state-dir", str(tmp_path / "state")]
    code, _ = _run(capsys, "schedule", "set", "3", *state)
    assert code == 0
    code, out = _run(capsys, "schedule", "get", *state)
    assert out["intervalDays"] == 3


def test_scan_and_scheduled_scan(places_factory, tmp_path, capsys, offline):
    common = ["--profile", str(_db(places_factory)), "--state-dir", str(tmp_path / "state")]
    code, out = _run(capsys, "scan", *common)
    assert code == 0
    assert out["results"]["fixed"][0]["newUrl"] == "https://b.test/new"

    code, out = _run(capsys, "scheduled-scan", *common)
    assert out == {"success": True, "ran": False}
    code, out = _run(capsys, "scheduled-scan", "--force", *common)
    assert out["ran"] is True


def test_setup_errors_exit_2(tmp_path, capsys, monkeypatch):
    monkeypatch.delenv("ROT_PROFILE", raising=False)
    assert main(["summary", "--state-dir", str(tmp_path)]) == 2
    assert main(["summary", "--profile", str(tmp_path / "nowhere"), "--state-dir", str(tmp_path)]) == 2
    with pytest.raises(SystemExit) as e:
        main(["no-such-command"])
    assert e.value.code == 2


def _foreign_counts(db):
    conn = sqlite3.connect(db)
    try:
        return dict(conn.execute("SELECT url, foreign_count FROM moz_places").fetchall())
    finally:
        conn.close()


def _set_foreign_count(db, url, value):
    conn = sqlite3.connect(db)
    conn.execute("UPDATE moz_places SET foreign_count = ? WHERE url = ?", (value, url))
    conn.commit()
    conn.close()


def test_apply_runs_recompute_foreign_counts(places_factory, tmp_path, capsys):
    db = _db(places_factory)
    common = ["--profile", str(db), "--state-dir", str(tmp_path / "state")]
    _set_foreign_count(db, "https://b.test/old", 99)

    code, _ = _run(capsys, "summary", *common)
    assert code == 0
    assert _foreign_counts(db)["https://b.test/old"] == 99

    code, out = _run(capsys, "duplicates", "--apply", *common)
    assert code == 0 and out["deleted"] == 1
    counts = _foreign_counts(db)
    assert counts["https://b.test/old"] == 1
    assert counts["https://a.test/"] + counts["https://a.test"] == 1


def test_stale_days_zero_is_not_the_default(places_factory, tmp_path, capsys, monkeypatch):
    monkeypatch.setenv("ROT_STALE_DELAY_S", "0")
    common = ["--profile", str(_db(places_factory)), "--state-dir", str(tmp_path / "state")]
    code, out = _run(capsys, "stale", "--days", "0", *common)
    assert code == 0
    assert [b["daysSinceAccess"] for b in out["staleBookmarks"]] == ["0+", "0+", "0+"]
