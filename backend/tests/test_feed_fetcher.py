from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Callable

import httpx
import pytest

from spotter_ingest.core.checkpoint import Cursor
from spotter_ingest.core.errors import (
    AuthFailureError,
    MalformedResponseError,
    TransientFetchError,
)
from spotter_ingest.core.feed_fetcher import FeedFetcher, RequestPacer, parse_retry_after
from spotter_ingest.core.reports import JsonFeedReport, PlacefileReport
from spotter_ingest.core.retry import RetryPolicy

from conftest import BASE_TS, HAIL_LINE, WIND_LINE, RecordingSleep, report_dict


UTC = timezone.utc
FEED_URL = "https://feeds.example.test/reports"


def _fetcher(handler: Callable[[httpx.Request], httpx.Response], sleep: RecordingSleep, **kwargs) -> FeedFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    kwargs.setdefault("retry_policy", RetryPolicy(max_attempts=3, base_delay_seconds=1.0, jitter=0.0))
    return FeedFetcher(
        FEED_URL,
        client=client,
        min_request_interval_seconds=0.0,
        sleep=sleep,
        **kwargs,
    )


def _poll(fetcher: FeedFetcher, cursor=None):
    async def go():
        try:
            return await fetcher.poll(cursor)
        finally:
            await fetcher.close()

    return asyncio.run(go())


def _json(body: dict, status: int = 200, **headers) -> httpx.Response:
    return httpx.Response(status, content=json.dumps(body).encode(), headers={"Content-Type": "application/json", **headers})


def test_json_pages_are_followed_and_sorted() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        if "cursor" not in request.url.params:
            return _json({"reports": [report_dict("103", minutes=3), report_dict("101", minutes=1)], "next_cursor": "p2"})
        return _json({"reports": [report_dict("102", minutes=2)], "next_cursor": None})

    sleep = RecordingSleep()
    cursor = Cursor(report_ts=BASE_TS, report_id="100")
    reports = _poll(_fetcher(handler, sleep, page_size=2), cursor)

    assert [r.report_id for r in reports] == ["101", "102", "103"]
    assert all(isinstance(r, JsonFeedReport) for r in reports)
    first, second = requests
    assert first.url.params["after"] == BASE_TS.isoformat()
    assert first.url.params["after_id"] == "100"
    assert first.url.params["limit"] == "2"
    assert second.url.params["cursor"] == "p2"
    assert first.headers["User-Agent"].startswith("sn-loader/")


def test_placefile_body_is_parsed() -> None:
    body = "Refresh: 1\nTitle: Spotter Network Reports\n" + WIND_LINE + "\n" + HAIL_LINE + "\n"

    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text=body, headers={"Content-Type": "text/plain"})

    reports = _poll(_fetcher(handler, RecordingSleep()))

    assert len(reports) == 2
    assert all(isinstance(r, PlacefileReport) for r in reports)
    # Sorted by report time: the hail report is two minutes older.
    assert [r.hazard_code for r in reports] == ["4", "5"]


def test_link_header_pages_placefile() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/page2"):
            return httpx.Response(200, text=HAIL_LINE + "\n", headers={"Content-Type": "text/plain"})
        return httpx.Response(
            200,
            text=WIND_LINE + "\n",
            headers={"Content-Type": "text/plain", "Link": '<https://feeds.example.test/page2>; rel="next"'},
        )

    reports = _poll(_fetcher(handler, RecordingSleep()))

    assert len(reports) == 2


def test_page_limit_bounds_one_poll() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return _json({"reports": [report_dict(str(100 + calls["n"]), minutes=calls["n"])], "next_cursor": "more"})

    reports = _poll(_fetcher(handler, RecordingSleep(), max_pages=3))

    assert calls["n"] == 3
    assert len(reports) == 3


def test_server_errors_are_retried() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] <= 2:
            return httpx.Response(503, text="unavailable")
        return _json({"reports": [report_dict("101")], "next_cursor": None})

    sleep = RecordingSleep()
    reports = _poll(_fetcher(handler, sleep))

    assert [r.report_id for r in reports] == ["101"]
    assert calls["n"] == 3
    assert sleep.delays == [1.0, 2.0]


def test_network_errors_exhaust_retry_budget() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransientFetchError):
        _poll(_fetcher(handler, RecordingSleep()))

    assert calls["n"] == 3


@pytest.mark.parametrize("status", [401, 403])
def test_auth_failure_is_not_retried(status: int) -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return httpx.Response(status, text="denied")

    sleep = RecordingSleep()
    with pytest.raises(AuthFailureError):
        _poll(_fetcher(handler, sleep))

    assert calls["n"] == 1
    assert sleep.delays == []


def test_rate_limit_honors_retry_after() -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        if calls["n"] == 1:
            return httpx.Response(429, headers={"Retry-After": "7"})
        return _json({"reports": [], "next_cursor": None})

    sleep = RecordingSleep()
    assert _poll(_fetcher(handler, sleep)) == []
    assert sleep.delays == [7.0]


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, content=b'{"reports": [', headers={"Content-Type": "application/json"}),
        httpx.Response(200, text="<!DOCTYPE html><html><body>Just a moment</body></html>", headers={"Content-Type": "text/html"}),
        httpx.Response(404, text="not found"),
        httpx.Response(200, content=b'{"items": []}', headers={"Content-Type": "application/json"}),
    ],
)
def test_malformed_responses_fail_without_retry(response: httpx.Response) -> None:
    calls = {"n": 0}

    def handler(request: httpx.Request) -> httpx.Response:
        calls["n"] += 1
        return response

    with pytest.raises(MalformedResponseError):
        _poll(_fetcher(handler, RecordingSleep()))

    assert calls["n"] == 1


def _etag_handler(seen: list[httpx.Request]) -> Callable[[httpx.Request], httpx.Response]:
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.headers.get("If-None-Match") == '"v1"':
            return httpx.Response(304)
        return httpx.Response(200, text=WIND_LINE + "\n", headers={"Content-Type": "text/plain", "ETag": '"v1"'})

    return handler


def test_confirmed_poll_reuses_validators() -> None:
    seen: list[httpx.Request] = []
    fetcher = _fetcher(_etag_handler(seen), RecordingSleep())

    async def go():
        try:
            first = await fetcher.poll(None)
            fetcher.confirm_poll()
            return first, await fetcher.poll(None)
        finally:
            await fetcher.close()

    first, second = asyncio.run(go())

    assert len(first) == 1
    assert second == []
    assert "If-None-Match" not in seen[0].headers
    assert seen[1].headers["If-None-Match"] == '"v1"'


def test_unconfirmed_poll_sends_no_validators() -> None:
    seen: list[httpx.Request] = []
    fetcher = _fetcher(_etag_handler(seen), RecordingSleep())

    async def go():
        try:
            await fetcher.poll(None)
            return await fetcher.poll(None)
        finally:
            await fetcher.close()

    assert len(asyncio.run(go())) == 1
    assert "If-None-Match" not in seen[1].headers


def test_discarded_poll_forgets_confirmed_validators() -> None:
    seen: list[httpx.Request] = []
    fetcher = _fetcher(_etag_handler(seen), RecordingSleep())

    async def go():
        try:
            await fetcher.poll(None)
            fetcher.confirm_poll()
            await fetcher.poll(None)
            fetcher.discard_poll()
            return await fetcher.poll(None)
        finally:
            await fetcher.close()

    third = asyncio.run(go())

    assert len(third) == 1
    assert seen[1].headers["If-None-Match"] == '"v1"'
    assert "If-None-Match" not in seen[2].headers

def test_pacer_spaces_requests() -> None:
    now = {"t": 100.0}
    sleep = RecordingSleep()

    async def advancing_sleep(delay: float) -> None:
        await sleep(delay)
        now["t"] += delay

    pacer = RequestPacer(5.0, clock=lambda: now["t"], sleep=advancing_sleep)

    async def go() -> None:
        await pacer.wait_turn()
        now["t"] += 2.0
        await pacer.wait_turn()
        now["t"] += 10.0
        await pacer.wait_turn()

    asyncio.run(go())

    assert sleep.delays == [3.0]


def test_parse_retry_after() -> None:
    now = datetime(2024, 5, 20, 21, 0, 0, tzinfo=UTC)

    assert parse_retry_after("12", now=now) == 12.0
    assert parse_retry_after("Mon, 20 May 2024 21:00:30 GMT", now=now) == 30.0
    assert parse_retry_after("soon", now=now) is None
    assert parse_retry_after(None) is None
