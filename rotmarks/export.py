from __future__ import annotations

import csv
import io
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .log import get_logger

log = get_logger(__name__)

CSV_HEADERS = {
    "scan": ["Status", "Title", "Original URL", "New URL", "Error"],
    "duplicates": ["URL", "Count", "Bookmark Titles"],
    "stale": ["Title", "URL", "Days Since Access"],
    "titles": ["Status", "Old Title", "New Title", "URL"],
}


class ExportEnvelope(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: str
    exported_at: str = Field(..., alias="exportedAt")
    data: Any


def _rows(data: Any, kind: str) -> Iterable[list]:
    if kind == "scan":
        for item in data.get("fixed", []):
            yield ["Fixed", item.get("title") or "", item.get("oldUrl") or "", item.get("newUrl") or "", ""]
        for item in data.get("broken", []):
            yield ["Broken", item.get("title") or "", item.get("url") or "", "", item.get("error") or ""]
    elif kind == "duplicates":
        for group in data:
            titles = " | ".join((b.get("title") or "") for b in group.get("bookmarks", []))
            yield [group.get("url") or "", group.get("count", len(group.get("bookmarks", []))), titles]
    elif kind == "stale":
        for item in data:
            yield [item.get("title") or "", item.get("url") or "", item.get("daysSinceAccess")]
    elif kind == "titles":
        for item in data.get("fixed", []):
            yield ["Fixed", item.get("oldTitle") or "", item.get("newTitle") or "", item.get("url") or ""]
        for item in data.get("failed", []):
            yield ["Failed", item.get("title") or "", "", item.get("url") or ""]


def export_to_csv(data: Any, kind: str) -> str:
    if kind not in CSV_HEADERS:
        raise ValueError(f"unknown export kind: {kind}")
    buf = io.StringIO()
    w = csv.writer(buf, lineterminator="\n")
    w.writerow(CSV_HEADERS[kind])
    for row in _rows(data, kind):
        w.writerow(row)
    return buf.getvalue()


def export_to_json(data: Any, kind: str, *, now: Optional[datetime] = None) -> str:
    ts = (now or datetime.now(timezone.utc)).isoformat()
    env = ExportEnvelope(type=kind, exported_at=ts, data=data)
    return env.model_dump_json(by_alias=True, indent=2)


def render_export(data: Any, kind: str, fmt: str, *, today: Optional[date] = None) -> Tuple[str, str, str]:
    """(content, filename, mime_type) for one report."""
    stamp = (today or date.today()).isoformat()
    if fmt == "csv":
        return export_to_csv(data, kind), f"rotmarks-{kind}-{stamp}.csv", "text/csv"
    if fmt == "json":
        return export_to_json(data, kind), f"rotmarks-{kind}-{stamp}.json", "application/json"
    raise ValueError(f"unknown export format: {fmt}")


class FileSink:
    """Download sink writing exports into one directory, never overwriting."""

    def __init__(self, out_dir: Path | str):
        self.out_dir = Path(out_dir)

    def download(self, content: str, filename: str, mime_type: str) -> Path:
        self.out_dir.mkdir(parents=True, exist_ok=True)
        dest = self.out_dir / Path(filename).name
        stem, suffix = dest.stem, dest.suffix
        n = 1
        while dest.exists():
            dest = self.out_dir / f"{stem}-{n}{suffix}"
            n += 1
        dest.write_text(content, encoding="utf-8")
        log.info("Wrote %s (%s, %d chars)", dest, mime_type, len(content))
        return dest

