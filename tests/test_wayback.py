import asyncio

import httpx

from conftest import mock_client
from rotmarks.model import BookmarkRecord
from rotmarks.wayback import find_archived_version, find_archived_versions, format_wayback_date, wayback_browse_url


def _handler(request: httpx.Request) -> httpx.Response:
    assert request.url.host == "archive.org"
    target = request.url.params["url"]
    if target == "https://kept.test/":
        return httpx.Response(
            200,
            json={
                "archived_snapshots": {
                    "closest": {
                        "available": True,
                        "url": "http://web.archive.org/web/20200102030405/https://kept.test/",
                        "timestamp": "20200102030405",
                        "status": "200",
                    }
                }
            },
        )
    if target == "https://broken-api.test/":
        return httpx.Response(502, text="<html>bad gateway</html>")
    return httpx.Response(200, json={"archived_snapshots": {}})


def _rec(i, url):
    return BookmarkRecord(id=str(i), title=f"t{i}", url=url, parent_id="3")


def test_single_lookup_outcomes():
    async def run():
        async with mock_client(_handler) as client:
            hit = await find_archived_version(client, "https://kept.test/")
            miss = await find_archived_version(client, "https://lost.test/")
            err = await find_archived_version(client, "https://broken-api.test/")
        return hit, miss, err

    hit, miss, err = asyncio.run(run())
    assert hit.available is True
    assert hit.date == "2020-01-02"
    assert hit.to_dict()["url"].startswith("http://web.archive.org/web/2020")
    assert miss.to_dict() == {"available": False}
    assert err.available is False
    assert err.error


def test_batch_lookup_keeps_only_hits():
    progress = []

    async def run():
        async with mock_client(_handler) as client:
            return await find_archived_versions(
                client,
                [_rec(1, "https://kept.test/"), _rec(2, "https://lost.test/")],
                delay_s=0,
                on_progress=lambda done, total: progress.append(done),
            )

    results = asyncio.run(run())
    assert [r["bookmark"]["id"] for r in results] == ["1"]
    assert results[0]["archived"]["timestamp"] == "20200102030405"
    assert progress == [1, 2]


def test_date_helpers():
    assert format_wayback_date("20200102030405") == "2020-01-02"
    assert format_wayback_date("2020") is None
    assert wayback_browse_url("https://x.test/") == "https://web.archive.org/web/*/https://x.test/"
