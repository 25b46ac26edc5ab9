from __future__ import annotations

from datetime import datetime, timezone

import pytest

from spotter_ingest.adapters.placefile_adapter import parse_icon_line, parse_placefile
from spotter_ingest.core.reports import PlacefileReport, UnrecognizedReport

from conftest import HAIL_LINE, OTHER_NONE_LINE, WIND_LINE


UTC = timezone.utc


def test_parses_measured_wind_report() -> None:
    report = parse_icon_line(WIND_LINE)

    assert isinstance(report, PlacefileReport)
    assert report.kind == "placefile"
    assert report.hazard_code == "5"
    assert report.hazard_label == "High Wind"
    assert report.reporter == "Test Human"
    assert report.report_ts == datetime(2018, 9, 20, 22, 52, 0, tzinfo=UTC)
    assert report.location is not None
    assert report.location.lat == pytest.approx(43.112)
    assert report.location.lon == pytest.approx(-94.639999)
    assert report.wind_mph == 60.0
    assert report.hail_size_in is None
    assert report.measured is True
    assert report.notes == "Strong winds measured at 60mph with anemometer"
    assert report.raw_line == WIND_LINE


def test_parses_hail_size_with_inner_quote() -> None:
    report = parse_icon_line(HAIL_LINE)

    assert isinstance(report, PlacefileReport)
    assert report.hazard_code == "4"
    assert report.hail_size_in == pytest.approx(0.75)
    assert report.wind_mph is None
    assert report.measured is False
    assert report.notes == "None"
    assert report.report_ts == datetime(2018, 9, 20, 22, 49, 29, tzinfo=UTC)


def test_missing_time_leaves_timestamp_empty() -> None:
    line = 'Icon: 35.0,-97.0,000,1,1,"Reported By: Test Human\\nTornado\\nNotes: None"'
    report = parse_icon_line(line)

    assert isinstance(report, PlacefileReport)
    assert report.report_ts is None
    assert report.hazard_label == "Tornado"


def test_garbled_icon_line_is_unrecognized() -> None:
    report = parse_icon_line("Icon: 35.0,-97.0,broken")

    assert isinstance(report, UnrecognizedReport)
    assert report.report_ts is None
    assert report.payload == "Icon: 35.0,-97.0,broken"
    assert "icon layout" in report.parse_error


def test_parse_placefile_skips_header_lines() -> None:
    text = "\n".join(
        [
            "Refresh: 1",
            "Threshold: 999",
            'Title: Spotter Network Reports',
            'IconFile: 1, 15, 15, 8, 8, "http://www.spotternetwork.org/icons/spotter.png"',
            WIND_LINE,
            "",
            HAIL_LINE,
            OTHER_NONE_LINE,
        ]
    )
    reports = parse_placefile(text)

    assert [r.hazard_code for r in reports if isinstance(r, PlacefileReport)] == ["5", "4", "8"]


def test_tolerates_undecodable_bytes() -> None:
    raw = WIND_LINE.encode("utf-8").replace(b"Test Human", b"Test \xff\xfeHuman")
    text = raw.decode("utf-8", errors="replace")

    reports = parse_placefile(text)

    assert len(reports) == 1
    assert isinstance(reports[0], PlacefileReport)
    assert reports[0].wind_mph == 60.0


def test_age_change_keeps_report_id() -> None:
    aged = parse_icon_line(WIND_LINE.replace(",000,3,5,", ",000,9,5,"))
    fresh = parse_icon_line(WIND_LINE)

    assert aged.report_id == fresh.report_id
