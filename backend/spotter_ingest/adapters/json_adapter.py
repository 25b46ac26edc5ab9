from __future__ import annotations

"""JSON page adapter for the paged Spotter Network feed.

Page shape:

    {"reports": [{...}, ...], "next_cursor": "opaque" | null}

Report objects carry `id`, `reported_at` (ISO-8601), `lat`/`lon`, an optional
`station` {`id`, `lat`, `lon`}, `type`, `reporter`, `notes`, `wind_mph`,
`hail_size_in` and `measured`. Anything else is kept in the payload echo.

Scope:
- Page-level shape errors raise MalformedResponseError (the whole response is
  unusable).
- Item-level problems never raise: the item becomes UnrecognizedReport or a
  JsonFeedReport with missing fields, and the normalizer quarantines it.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from spotter_ingest.core.errors import MalformedResponseError
from spotter_ingest.core.identity import compute_payload_fingerprint
from spotter_ingest.core.reports import GeoPoint, JsonFeedReport, UnrecognizedReport


UTC = timezone.utc


@dataclass(frozen=True, slots=True)
class JsonPage:
    reports: list[JsonFeedReport | UnrecognizedReport]
    next_cursor: Optional[str]


def _to_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None or dt.utcoffset() is None:
        # Treat naive as UTC; the feed documents UTC timestamps.
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        try:
            return datetime.fromtimestamp(value, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return _to_utc(datetime.fromisoformat(text))
    except ValueError:
        return None


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _point(lat: Any, lon: Any) -> Optional[GeoPoint]:
    lat_f = _to_float(lat)
    lon_f = _to_float(lon)
    if lat_f is None or lon_f is None:
        return None
    return GeoPoint(lat=lat_f, lon=lon_f)


_TRUE_STRINGS = frozenset({"true", "yes", "y", "1", "measured"})


def _is_measured(value: Any) -> bool:
    # Only an explicit yes counts as measured.
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return False


def _optional_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_report_object(item: Any) -> JsonFeedReport | UnrecognizedReport:
    if not isinstance(item, dict):
        return UnrecognizedReport(
            report_id=compute_payload_fingerprint(item),
            parse_error=f"report entry is a {type(item).__name__}, expected an object",
            payload=item,
        )

    raw_id = item.get("id")
    if raw_id is None or isinstance(raw_id, bool) or str(raw_id).strip() == "":
        return UnrecognizedReport(
            report_id=compute_payload_fingerprint(item),
            parse_error="report object has no id",
            payload=item,
        )

    station = item.get("station") if isinstance(item.get("station"), dict) else {}

    return JsonFeedReport(
        report_id=str(raw_id).strip(),
        report_ts=_parse_timestamp(item.get("reported_at")),
        location=_point(item.get("lat"), item.get("lon")),
        station_id=_optional_text(station.get("id")),
        station_location=_point(station.get("lat"), station.get("lon")),
        report_type=_optional_text(item.get("type")),
        reporter=_optional_text(item.get("reporter")),
        notes=_optional_text(item.get("notes")),
        wind_mph=_to_float(item.get("wind_mph")),
        hail_size_in=_to_float(item.get("hail_size_in")),
        measured=_is_measured(item.get("measured")),
        payload=item,
    )


def parse_json_page(document: Any) -> JsonPage:
    """Decode one already-parsed JSON page.

    Raises:
        MalformedResponseError: the document is not a report page.
    """
    if not isinstance(document, dict):
        raise MalformedResponseError(f"JSON page is a {type(document).__name__}, expected an object")
    items = document.get("reports")
    if not isinstance(items, list):
        raise MalformedResponseError("JSON page has no 'reports' list")
    next_cursor = document.get("next_cursor")
    if next_cursor is not None and not isinstance(next_cursor, str):
        raise MalformedResponseError("JSON page 'next_cursor' must be a string or null")
    return JsonPage(
        reports=[parse_report_object(item) for item in items],
        next_cursor=next_cursor or None,
    )
