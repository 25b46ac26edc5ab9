from __future__ import annotations

"""Placefile adapter for the classic Spotter Network report feed.

Wire format (one report per line, other lines are placefile headers):

    Icon: 43.112000,-94.639999,000,3,5,"Reported By: Jane Doe\\nHigh Wind\\nTime: 2018-09-20 22:52:00 UTC\\n60 mph [Measured]\\nNotes: ..."

Fields: lat, lon, icon angle, icon age, hazard code, then a quoted text block
whose sections are separated by the two characters backslash + n.

Scope:
- Split lines into PlacefileReport fields. No validation or mapping here; the
  normalizer decides what is acceptable.
- Lines that look like reports but cannot be split become UnrecognizedReport.
"""

import re
from datetime import datetime, timezone
from typing import Optional

from spotter_ingest.core.identity import compute_placefile_report_id
from spotter_ingest.core.reports import GeoPoint, PlacefileReport, UnrecognizedReport


UTC = timezone.utc

REPORT_PREFIX = "Icon:"
SECTION_SEPARATOR = "\\n"

_ICON_LINE = re.compile(
    r'^Icon:\s*(?P<lat>[^,]*),(?P<lon>[^,]*),(?P<angle>[^,]*),(?P<age>\d+),(?P<hazard_code>[^,]*),"(?P<body>.*)"\s*$'
)
_REPORTER = re.compile(r"Reported By:\s*(?P<reporter>.+?)\s*(?:\\n|$)")
_TIME = re.compile(r"Time:\s*(?P<ts>\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2})\s*UTC")
_SIZE = re.compile(r"Size:\s*(?P<size>\d+(?:\.\d+)?)")
_MPH = re.compile(r"(?:^|\\n)\s*(?P<mph>\d{1,3})\s*mph")
_MEASURED = re.compile(r"\[Measured\]")
_NOTES = re.compile(r"Notes:\s*(?P<notes>.*)$")

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def _to_float(value: Optional[str]) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value.strip())
    except ValueError:
        return None


def _parse_location(lat: str, lon: str) -> Optional[GeoPoint]:
    lat_f = _to_float(lat)
    lon_f = _to_float(lon)
    if lat_f is None or lon_f is None:
        return None
    return GeoPoint(lat=lat_f, lon=lon_f)


def _parse_time(body: str) -> Optional[datetime]:
    m = _TIME.search(body)
    if not m:
        return None
    try:
        return datetime.strptime(m.group("ts"), TIME_FORMAT).replace(tzinfo=UTC)
    except ValueError:
        return None


def _hazard_label(sections: list[str]) -> Optional[str]:
    # Second section, unless the reporter line is missing and it is already the Time line.
    if len(sections) < 2:
        return None
    label = sections[1].strip()
    if not label or label.startswith("Time:"):
        return None
    return label


def parse_icon_line(line: str) -> PlacefileReport | UnrecognizedReport:
    """Split one `Icon:` line into report fields."""
    stripped = line.strip()
    report_id = compute_placefile_report_id(stripped)

    m = _ICON_LINE.match(stripped)
    if not m:
        return UnrecognizedReport(
            report_id=report_id,
            parse_error="line does not match the placefile icon layout",
            payload=stripped,
        )

    body = m.group("body")
    sections = body.split(SECTION_SEPARATOR)

    reporter_m = _REPORTER.search(body)
    size_m = _SIZE.search(body)
    mph_m = _MPH.search(body)
    notes_m = _NOTES.search(body)

    return PlacefileReport(
        report_id=report_id,
        report_ts=_parse_time(body),
        location=_parse_location(m.group("lat"), m.group("lon")),
        hazard_code=m.group("hazard_code").strip(),
        hazard_label=_hazard_label(sections),
        reporter=reporter_m.group("reporter") if reporter_m else None,
        wind_mph=_to_float(mph_m.group("mph")) if mph_m else None,
        hail_size_in=_to_float(size_m.group("size")) if size_m else None,
        measured=bool(_MEASURED.search(body)),
        notes=notes_m.group("notes").strip() if notes_m else None,
        raw_line=stripped,
    )


def parse_placefile(text: str) -> list[PlacefileReport | UnrecognizedReport]:
    """Parse every report line of a placefile body; header lines are skipped."""
    reports: list[PlacefileReport | UnrecognizedReport] = []
    for line in text.splitlines():
        if not line.lstrip().startswith(REPORT_PREFIX):
            continue
        reports.append(parse_icon_line(line))
    return reports
