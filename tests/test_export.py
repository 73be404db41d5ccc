import csv
import io
import json
from datetime import date, datetime, timezone

import pytest

from rotmarks.export import FileSink, export_to_csv, export_to_json, render_export


def _rows(text):
    return list(csv.reader(io.StringIO(text)))


def test_scan_csv_lists_fixed_then_broken():
    data = {
        "fixed": [{"id": "1", "title": "B", "oldUrl": "http://b.test/old", "newUrl": "https://b.test/new"}],
        "broken": [{"id": "2", "title": "C, with comma", "url": "https://c.test/", "error": "HTTP 404"}],
        "unchanged": 3,
    }
    rows = _rows(export_to_csv(data, "scan"))
    assert rows == [
        ["Status", "Title", "Original URL", "New URL", "Error"],
        ["Fixed", "B", "http://b.test/old", "https://b.test/new", ""],
        ["Broken", "C, with comma", "https://c.test/", "", "HTTP 404"],
    ]


def test_other_csv_headers():
    dupes = [{"url": "https://x.test", "count": 2, "bookmarks": [{"title": "a"}, {"title": "b"}]}]
    assert _rows(export_to_csv(dupes, "duplicates")) == [
        ["URL", "Count", "Bookmark Titles"],
        ["https://x.test", "2", "a | b"],
    ]
    stale = [{"title": "Old", "url": "https://old.test/", "daysSinceAccess": "90+"}]
    assert _rows(export_to_csv(stale, "stale"))[0] == ["Title", "URL", "Days Since Access"]
    assert _rows(export_to_csv(stale, "stale"))[1] == ["Old", "https://old.test/", "90+"]
    titles = {"fixed": [{"oldTitle": "Untitled", "newTitle": "Real", "url": "https://r.test/"}], "failed": []}
    assert _rows(export_to_csv(titles, "titles")) == [
        ["Status", "Old Title", "New Title", "URL"],
        ["Fixed", "Untitled", "Real", "https://r.test/"],
    ]


def test_unknown_kind_is_rejected():
    with pytest.raises(ValueError):
        export_to_csv([], "bogus")
    with pytest.raises(ValueError):
        render_export([], "stale", "xml")


def test_json_envelope():
    now = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    env = json.loads(export_to_json([{"a": 1}], "stale", now=now))
    assert env == {"type": "stale", "exportedAt": "2026-01-02T03:04:05+00:00", "data": [{"a": 1}]}


def test_render_export_names_files_by_kind_and_date():
    content, filename, mime = render_export([], "duplicates", "csv", today=date(2026, 3, 1))
    assert filename == "rotmarks-duplicates-2026-03-01.csv"
    assert mime == "text/csv"
    assert content.startswith("URL,Count,Bookmark Titles")
    _, filename, mime = render_export([], "stale", "json", today=date(2026, 3, 1))
    assert filename == "rotmarks-stale-2026-03-01.json"
    assert mime == "application/json"


def test_file_sink_never_overwrites(tmp_path):
    sink = FileSink(tmp_path / "out")
    first = sink.download("one", "report.csv", "text/csv")
    second = sink.download("two", "report.csv", "text/csv")
    assert first.name == "report.csv"
    assert second.name == "report-1.csv"
    assert first.read_text(encoding="utf-8") == "one"
    assert second.read_text(encoding="utf-8") == "two"
