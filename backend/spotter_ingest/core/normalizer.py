"""
Normalizer: RawReport -> CanonicalEvent | QuarantineRecord.

Pure and deterministic: no I/O, no clock reads, no randomness. The same report
always yields the same event (including its id) or the same quarantine record.

Mapping tables are explicit and total over the source vocabulary; anything not
listed is an unknown type and is quarantined rather than guessed.
"""

from __future__ import annotations

from typing import Optional, Union

from spotter_ingest.core.errors import NormalizationError
from spotter_ingest.core.identity import compute_event_id
from spotter_ingest.core.reports import (
    CanonicalEvent,
    EventType,
    GeoPoint,
    JsonFeedReport,
    PlacefileReport,
    QuarantineReason,
    QuarantineRecord,
    UnrecognizedReport,
    Units,
)

NormalizedOutcome = Union[CanonicalEvent, QuarantineRecord]

# Placefile hazard code -> (canonical type, display label)
PLACEFILE_HAZARDS: dict[str, tuple[EventType, str]] = {
    "1": (EventType.TORNADO, "Tornado"),
    "2": (EventType.FUNNEL, "Funnel"),
    "3": (EventType.WALL_CLOUD, "Wall Cloud"),
    "4": (EventType.HAIL, "Hail"),
    "5": (EventType.WIND, "Wind"),
    "6": (EventType.FLOOD, "Flood"),
    "7": (EventType.FLOOD, "Flash Flood"),
    "8": (EventType.OTHER, "Other"),
    "9": (EventType.FREEZING_RAIN, "Freezing Rain"),
    "10": (EventType.SNOW, "Snow"),
}

# JSON feed type name -> (canonical type, display label)
JSON_REPORT_TYPES: dict[str, tuple[EventType, str]] = {
    "tornado": (EventType.TORNADO, "Tornado"),
    "funnel": (EventType.FUNNEL, "Funnel"),
    "funnel_cloud": (EventType.FUNNEL, "Funnel"),
    "wall_cloud": (EventType.WALL_CLOUD, "Wall Cloud"),
    "hail": (EventType.HAIL, "Hail"),
    "wind": (EventType.WIND, "Wind"),
    "high_wind": (EventType.WIND, "Wind"),
    "flood": (EventType.FLOOD, "Flood"),
    "flooding": (EventType.FLOOD, "Flood"),
    "flash_flood": (EventType.FLOOD, "Flash Flood"),
    "other": (EventType.OTHER, "Other"),
    "freezing_rain": (EventType.FREEZING_RAIN, "Freezing Rain"),
    "snow": (EventType.SNOW, "Snow"),
}

MAX_WIND_MPH = 300.0
MAX_HAIL_SIZE_INCHES = 10.0
EMPTY_NOTES = "None"


def _has_notes(notes: Optional[str]) -> bool:
    return bool(notes) and notes != EMPTY_NOTES


def _check_location(point: GeoPoint) -> GeoPoint:
    if not -90.0 <= point.lat <= 90.0:
        raise NormalizationError(QuarantineReason.OUT_OF_RANGE.value, f"latitude {point.lat} outside [-90, 90]")
    if not -180.0 <= point.lon <= 180.0:
        raise NormalizationError(QuarantineReason.OUT_OF_RANGE.value, f"longitude {point.lon} outside [-180, 180]")
    return point


def _magnitude(
    wind_mph: Optional[float],
    hail_size_in: Optional[float],
    max_wind_mph: float,
    max_hail_size_in: float,
) -> tuple[Optional[float], Optional[Units]]:
    # Wind speed wins when both are present.
    if wind_mph is not None:
        if not 0.0 <= wind_mph <= max_wind_mph:
            raise NormalizationError(QuarantineReason.OUT_OF_RANGE.value, f"wind speed {wind_mph} mph implausible")
        return wind_mph, Units.MPH
    if hail_size_in is not None:
        if not 0.0 < hail_size_in <= max_hail_size_in:
            raise NormalizationError(QuarantineReason.OUT_OF_RANGE.value, f"hail size {hail_size_in} in implausible")
        return hail_size_in, Units.INCHES
    return None, None


def _require(value, field: str):
    if value is None or (isinstance(value, str) and not value.strip()):
        raise NormalizationError(QuarantineReason.MISSING_FIELD.value, f"{field} is required")
    return value


def _describe(label: str, reporter: str, notes: Optional[str]) -> tuple[str, str]:
    title = f"Report: {label}"
    if _has_notes(notes):
        return title, f"{label} reported by {reporter}. {notes}"
    return title, f"{label} reported by {reporter}"


class Normalizer:
    """Maps source reports onto the canonical event schema."""

    def __init__(
        self,
        *,
        max_wind_mph: float = MAX_WIND_MPH,
        max_hail_size_in: float = MAX_HAIL_SIZE_INCHES,
    ) -> None:
        self._max_wind_mph = max_wind_mph
        self._max_hail_size_in = max_hail_size_in

    def normalize(self, report: PlacefileReport | JsonFeedReport | UnrecognizedReport) -> NormalizedOutcome:
        try:
            if isinstance(report, PlacefileReport):
                return self._from_placefile(report)
            if isinstance(report, JsonFeedReport):
                return self._from_json(report)
            if isinstance(report, UnrecognizedReport):
                raise NormalizationError(QuarantineReason.UNKNOWN_TYPE.value, report.parse_error)
            raise TypeError(f"unsupported report variant: {type(report).__name__}")
        except NormalizationError as error:
            return QuarantineRecord(
                report_id=report.report_id,
                report_kind=report.kind,
                reason=QuarantineReason(error.reason),
                detail=error.detail,
                raw_payload=report.audit_payload(),
            )

    def _from_placefile(self, report: PlacefileReport) -> CanonicalEvent:
        mapped = PLACEFILE_HAZARDS.get(report.hazard_code)
        if mapped is None:
            raise NormalizationError(QuarantineReason.UNKNOWN_TYPE.value, f"unknown hazard code {report.hazard_code!r}")
        event_type, label = mapped
        return self._build(
            report,
            event_type=event_type,
            label=label,
            location=report.location,
            reporter=report.reporter,
            notes=report.notes,
            wind_mph=report.wind_mph,
            hail_size_in=report.hail_size_in,
            measured=report.measured,
        )

    def _from_json(self, report: JsonFeedReport) -> CanonicalEvent:
        type_key = (report.report_type or "").strip().lower().replace(" ", "_").replace("-", "_")
        if not type_key:
            raise NormalizationError(QuarantineReason.MISSING_FIELD.value, "type is required")
        mapped = JSON_REPORT_TYPES.get(type_key)
        if mapped is None:
            raise NormalizationError(QuarantineReason.UNKNOWN_TYPE.value, f"unknown report type {report.report_type!r}")
        event_type, label = mapped
        return self._build(
            report,
            event_type=event_type,
            label=label,
            location=report.location or report.station_location,
            reporter=report.reporter,
            notes=report.notes,
            wind_mph=report.wind_mph,
            hail_size_in=report.hail_size_in,
            measured=report.measured,
        )

    def _build(
        self,
        report: PlacefileReport | JsonFeedReport,
        *,
        event_type: EventType,
        label: str,
        location: Optional[GeoPoint],
        reporter: Optional[str],
        notes: Optional[str],
        wind_mph: Optional[float],
        hail_size_in: Optional[float],
        measured: bool,
    ) -> CanonicalEvent:
        event_ts = _require(report.report_ts, "report time")
        point = _check_location(_require(location, "location"))
        reporter = _require(reporter, "reporter")
        # An "Other" report carries its meaning only in the notes.
        if event_type is EventType.OTHER and not _has_notes(notes):
            raise NormalizationError(QuarantineReason.MISSING_FIELD.value, "notes are required for Other reports")
        magnitude, units = _magnitude(wind_mph, hail_size_in, self._max_wind_mph, self._max_hail_size_in)
        title, text = _describe(label, reporter, notes)

        return CanonicalEvent(
            event_id=compute_event_id(report.fingerprint),
            event_type=event_type,
            event_ts=event_ts,
            location=point,
            title=title,
            text=text,
            reporter=reporter,
            magnitude=magnitude,
            units=units,
            was_measured=True if measured else None,
            report_id=report.report_id,
            raw_payload=report.audit_payload(),
        )
