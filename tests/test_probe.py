import asyncio

import httpx

from conftest import mock_client
from rotmarks.model import Broken, Fixed, ProbeResult, Unchanged
from rotmarks.probe import classify, is_special_url, probe


def _handler(request: httpx.Request) -> httpx.Response:
    host = request.url.host
    if host == "ok.test":
        return httpx.Response(200)
    if host == "moved.test":
        if request.url.path == "/old":
            return httpx.Response(301, headers={"Location": "https://moved.test/new"})
        return httpx.Response(200)
    if host == "nohead.test":
        if request.method == "HEAD":
            return httpx.Response(405)
        return httpx.Response(200, text="<html></html>")
    if host == "gone.test":
        return httpx.Response(404)
    if host == "refused.test":
        raise httpx.ConnectError("Connection refused", request=request)
    if host == "slow.test":
        raise httpx.ConnectTimeout("timed out", request=request)
    if host == "headfails.test":
        if request.method == "HEAD":
            raise httpx.RemoteProtocolError("server hung up", request=request)
        return httpx.Response(200)
    return httpx.Response(500)


def _probe(url):
    async def run():
        async with mock_client(_handler) as client:
            return await probe(client, url, timeout_s=1.0)

    return asyncio.run(run())


def test_plain_200_keeps_original_url():
    r = _probe("https://ok.test/page")
    assert r == ProbeResult(final_url="https://ok.test/page", status_code=200, error=None)
    assert classify("https://ok.test/page", r) == Unchanged()


def test_redirect_reports_final_url():
    r = _probe("https://moved.test/old")
    assert r.status_code == 200
    assert r.final_url == "https://moved.test/new"
    assert classify("https://moved.test/old", r) == Fixed(new_url="https://moved.test/new")


def test_405_on_head_retries_with_get():
    r = _probe("https://nohead.test/")
    assert r.status_code == 200
    assert r.error is None


def test_head_transport_failure_retries_with_get():
    r = _probe("https://headfails.test/")
    assert r.status_code == 200


def test_http_error_status_is_broken():
    r = _probe("https://gone.test/x")
    assert r.status_code == 404
    assert classify("https://gone.test/x", r) == Broken(reason="HTTP 404")


def test_connection_refused_is_broken_with_message():
    r = _probe("https://refused.test/")
    assert r.status_code == 0
    assert r.final_url is None
    assert "Connection refused" in r.error
    assert classify("https://refused.test/", r) == Broken(reason=r.error)


def test_timeout_reports_timeout():
    r = _probe("https://slow.test/")
    assert r.error == "Timeout"
    assert classify("https://slow.test/", r) == Broken(reason="Timeout")


def test_classify_without_status_or_error():
    assert classify("https://x.test/", ProbeResult(final_url=None, status_code=0)) == Broken(reason="No response")


def test_special_urls():
    assert is_special_url("about:config")
    assert is_special_url("javascript:alert(1)")
    assert is_special_url("place:sort=8")
    assert is_special_url("")
    assert is_special_url(None)
    assert not is_special_url("https://example.com/")
