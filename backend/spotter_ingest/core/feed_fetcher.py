"""
Feed fetcher for the Spotter Network report feed.

The ONLY gateway for requests to the upstream feed.

Responsibilities:
- Page through the feed starting strictly after the resume cursor.
- Enforce the configured request rate (RequestPacer).
- Classify failures: transient, rate limited, auth failure, malformed.
- Retry transient and rate-limited failures with bounded backoff + jitter.

Auth failures and malformed responses are not retried: the cycle fails and the
cursor stays where it is, so no progress is lost.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import random
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Optional

import httpx

from spotter_ingest.adapters.json_adapter import parse_json_page
from spotter_ingest.adapters.placefile_adapter import parse_placefile
from spotter_ingest.core.checkpoint import AnyReport, Cursor
from spotter_ingest.core.errors import (
    AuthFailureError,
    MalformedResponseError,
    RateLimitedError,
    TransientFetchError,
)
from spotter_ingest.core.logging_setup import log_event
from spotter_ingest.core.retry import RetryPolicy, retry_async

logger = logging.getLogger(__name__)

UTC = timezone.utc

DEFAULT_USER_AGENT = "sn-loader/1.0 (+https://sigtor.org)"
MIN_INTERVAL_SECONDS = 5.0
MAX_REMEMBERED_VALIDATORS = 32

_HTML_MARKERS = ("<!doctype html", "<html", "<head", "<body")


class RequestPacer:
    """Spaces consecutive requests at least `min_interval_seconds` apart."""

    def __init__(
        self,
        min_interval_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._interval = max(0.0, min_interval_seconds)
        self._clock = clock
        self._sleep = sleep
        self._last_request_at: Optional[float] = None

    async def wait_turn(self) -> None:
        if self._last_request_at is not None:
            wait = self._last_request_at + self._interval - self._clock()
            if wait > 0:
                await self._sleep(wait)
        self._last_request_at = self._clock()


@dataclass(frozen=True)
class _Page:
    reports: list[AnyReport]
    next_url: Optional[str] = None
    next_params: Optional[dict[str, Any]] = field(default=None)


def parse_retry_after(value: Optional[str], *, now: Optional[datetime] = None) -> Optional[float]:
    """Retry-After as seconds; accepts delta-seconds or an HTTP date."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    return max(0.0, (when - (now or datetime.now(UTC))).total_seconds())


def _feed_order(report: AnyReport) -> tuple[bool, datetime, str]:
    # Reports without a timestamp first, then by (time, id).
    ts = report.report_ts
    return (ts is not None, ts or datetime.min.replace(tzinfo=UTC), report.report_id)


class FeedFetcher:
    """Polls the upstream feed for reports after a cursor."""

    def __init__(
        self,
        feed_url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        user_agent: str = DEFAULT_USER_AGENT,
        request_timeout_seconds: float = 30.0,
        page_size: int = 500,
        max_pages: int = 20,
        min_request_interval_seconds: float = MIN_INTERVAL_SECONDS,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        pacer: Optional[RequestPacer] = None,
    ) -> None:
        self._feed_url = feed_url
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=request_timeout_seconds, follow_redirects=True)
        self._user_agent = user_agent
        self._page_size = page_size
        self._max_pages = max(1, max_pages)
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng
        self._pacer = pacer or RequestPacer(min_request_interval_seconds, sleep=sleep)
        # Conditional fetch validators per request URL: (etag, last_modified).
        # Validators seen by the current poll stay pending until the cycle commits.
        self._validators: dict[str, tuple[Optional[str], Optional[str]]] = {}
        self._pending_validators: dict[str, tuple[Optional[str], Optional[str]]] = {}
        self._polled_urls: set[str] = set()

    async def poll(self, cursor: Optional[Cursor]) -> list[AnyReport]:
        """Fetch every report the feed has after `cursor`, in feed order.

        Conditional-fetch validators seen by this poll take effect only after
        `confirm_poll`; `discard_poll` drops them after a failed cycle.

        Raises:
            TransientFetchError / RateLimitedError: retry budget exhausted.
            AuthFailureError: credentials or identity rejected.
            MalformedResponseError: a page could not be decoded.
        """
        self._pending_validators = {}
        self._polled_urls = set()
        reports: list[AnyReport] = []
        url: Optional[str] = self._feed_url
        params: Optional[dict[str, Any]] = self._initial_params(cursor)
        pages = 0

        while url is not None:
            pages += 1
            page = await retry_async(
                functools.partial(self._fetch_page, url, params),
                policy=self._retry_policy,
                retry_on=(TransientFetchError, RateLimitedError),
                description="feed_fetch",
                sleep=self._sleep,
                rng=self._rng,
                delay_hint=lambda e: getattr(e, "retry_after", None),
            )
            reports.extend(page.reports)
            url, params = page.next_url, page.next_params
            if url is not None and pages >= self._max_pages:
                log_event(
                    logger,
                    "feed_page_limit_reached",
                    level=logging.WARNING,
                    pages=pages,
                    reports=len(reports),
                )
                break

        log_event(logger, "feed_polled", pages=pages, reports=len(reports))
        return sorted(reports, key=_feed_order)

    def _initial_params(self, cursor: Optional[Cursor]) -> dict[str, Any]:
        params: dict[str, Any] = {"limit": self._page_size}
        if cursor is not None:
            params["after"] = cursor.report_ts.isoformat()
            params["after_id"] = cursor.report_id
        return params

    async def _fetch_page(self, url: str, params: Optional[dict[str, Any]]) -> _Page:
        await self._pacer.wait_turn()

        request = self._client.build_request("GET", url, params=params, headers=self._headers())
        validator_key = str(request.url)
        self._polled_urls.add(validator_key)
        etag, last_modified = self._validators.get(validator_key, (None, None))
        if etag:
            request.headers["If-None-Match"] = etag
        if last_modified:
            request.headers["If-Modified-Since"] = last_modified

        try:
            response = await self._client.send(request)
        except httpx.TimeoutException as e:
            raise TransientFetchError(f"Feed request timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientFetchError(f"Feed network error: {e}") from e

        self._raise_for_status(response)
        if response.status_code == 304:
            log_event(logger, "feed_not_modified", url=validator_key)
            return _Page(reports=[])

        page = self._decode(response)
        self._remember_validators(validator_key, response)
        return page

    def _headers(self) -> dict[str, str]:
        return {
            "User-Agent": self._user_agent,
            "Accept": "application/json, text/plain;q=0.9, */*;q=0.1",
        }

    def _raise_for_status(self, response: httpx.Response) -> None:
        status = response.status_code
        if status in (401, 403):
            raise AuthFailureError(f"Feed rejected request with HTTP {status}")
        if status == 429:
            raise RateLimitedError(
                "Feed rate limited the loader (HTTP 429)",
                retry_after=parse_retry_after(response.headers.get("Retry-After")),
            )
        if status == 408 or status >= 500:
            raise TransientFetchError(f"Feed unavailable (HTTP {status})")
        if status == 304:
            return
        if not 200 <= status < 300:
            raise MalformedResponseError(f"Unexpected feed status HTTP {status}")

    def _decode(self, response: httpx.Response) -> _Page:
        content_type = response.headers.get("Content-Type", "").lower()
        try:
            text = response.text
        except (UnicodeDecodeError, LookupError) as e:
            raise MalformedResponseError(f"Feed body could not be decoded: {e}") from e

        if "json" in content_type or text.lstrip().startswith("{"):
            try:
                document = response.json()
            except ValueError as e:
                raise MalformedResponseError(f"Feed returned invalid JSON: {e}") from e
            page = parse_json_page(document)
            next_params = None
            if page.next_cursor is not None:
                next_params = {"cursor": page.next_cursor, "limit": self._page_size}
            return _Page(
                reports=list(page.reports),
                next_url=self._feed_url if next_params else None,
                next_params=next_params,
            )

        head = text.lstrip()[:512].lower()
        if "html" in content_type or any(marker in head for marker in _HTML_MARKERS):
            # Challenge pages, captive portals, error pages.
            raise MalformedResponseError("Feed returned an HTML page instead of reports")

        next_link = response.links.get("next", {}).get("url")
        return _Page(
            reports=list(parse_placefile(text)),
            next_url=str(response.url.join(next_link)) if next_link else None,
            next_params=None,
        )

    def _remember_validators(self, key: str, response: httpx.Response) -> None:
        etag = response.headers.get("ETag")
        last_modified = response.headers.get("Last-Modified")
        if etag or last_modified:
            self._pending_validators[key] = (etag, last_modified)

    def confirm_poll(self) -> None:
        """Keep the last poll's validators; call once its reports are durably handled."""
        for key, validators in self._pending_validators.items():
            self._validators.pop(key, None)
            self._validators[key] = validators
        while len(self._validators) > MAX_REMEMBERED_VALIDATORS:
            self._validators.pop(next(iter(self._validators)))
        self._pending_validators = {}
        self._polled_urls = set()

    def discard_poll(self) -> None:
        """Forget validators of the last poll so its URLs are fetched in full again."""
        for key in self._polled_urls:
            self._validators.pop(key, None)
        self._pending_validators = {}
        self._polled_urls = set()

    async def close(self) -> None:
        """Cleanup resources."""
        if self._owns_client:
            await self._client.aclose()
