"""
Report and event models for the Spotter Network loader.

RawReport is a tagged union over the shapes the feed can deliver:
- PlacefileReport: one `Icon:` line of the classic GR placefile feed.
- JsonFeedReport: one object of the paged JSON feed.
- UnrecognizedReport: anything an adapter could not decode, carried verbatim
  so the normalizer can quarantine it instead of losing it.

CanonicalEvent is the schema shared with sibling ingestion loaders.
QuarantineRecord is a report that failed normalization, kept for inspection.
"""
from __future__ import annotations

import uuid
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from spotter_ingest.core.identity import SOURCE_TAG, compute_payload_fingerprint


class EventType(str, Enum):
    """Canonical hazard classification shared across loaders."""
    TORNADO = "tornado"
    FUNNEL = "funnel"
    WALL_CLOUD = "wall_cloud"
    HAIL = "hail"
    WIND = "wind"
    FLOOD = "flood"
    FREEZING_RAIN = "freezing_rain"
    SNOW = "snow"
    OTHER = "other"


class Units(str, Enum):
    MPH = "mph"
    INCHES = "inches"


class QuarantineReason(str, Enum):
    """Why a report could not become a canonical event."""
    UNKNOWN_TYPE = "unknown_type"
    MISSING_FIELD = "missing_field"
    OUT_OF_RANGE = "out_of_range"


class GeoPoint(BaseModel):
    lat: float
    lon: float

    model_config = ConfigDict(frozen=True)


class PlacefileReport(BaseModel):
    """A single `Icon:` line, split into its fields but not yet validated."""
    kind: Literal["placefile"] = "placefile"
    report_id: str
    report_ts: Optional[datetime] = None
    location: Optional[GeoPoint] = None
    hazard_code: str
    hazard_label: Optional[str] = None
    reporter: Optional[str] = None
    wind_mph: Optional[float] = None
    hail_size_in: Optional[float] = None
    measured: bool = False
    notes: Optional[str] = None
    raw_line: str

    model_config = ConfigDict(frozen=True)

    @property
    def fingerprint(self) -> str:
        # report_id is already a hash of the normalized line.
        return self.report_id

    def audit_payload(self) -> dict[str, Any]:
        return {"format": "placefile", "line": self.raw_line}


class JsonFeedReport(BaseModel):
    """A single object from the paged JSON feed."""
    kind: Literal["json"] = "json"
    report_id: str
    report_ts: Optional[datetime] = None
    location: Optional[GeoPoint] = None
    station_id: Optional[str] = None
    station_location: Optional[GeoPoint] = None
    report_type: Optional[str] = None
    reporter: Optional[str] = None
    notes: Optional[str] = None
    wind_mph: Optional[float] = None
    hail_size_in: Optional[float] = None
    measured: bool = False
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(frozen=True)

    @property
    def fingerprint(self) -> str:
        return compute_payload_fingerprint(self.payload)

    def audit_payload(self) -> dict[str, Any]:
        return {"format": "json", "object": self.payload}


class UnrecognizedReport(BaseModel):
    """Source content that no adapter could decode."""
    kind: Literal["unrecognized"] = "unrecognized"
    report_id: str
    report_ts: Optional[datetime] = None
    parse_error: str
    payload: Any = None

    model_config = ConfigDict(frozen=True)

    @property
    def fingerprint(self) -> str:
        return self.report_id

    def audit_payload(self) -> dict[str, Any]:
        return {"format": "unrecognized", "payload": self.payload, "parse_error": self.parse_error}


RawReport = Annotated[
    Union[PlacefileReport, JsonFeedReport, UnrecognizedReport],
    Field(discriminator="kind"),
]


class CanonicalEvent(BaseModel):
    """Normalized weather-report representation shared across ingestion loaders."""
    event_id: uuid.UUID
    source: str = SOURCE_TAG
    event_type: EventType
    event_ts: datetime
    location: GeoPoint
    title: str
    text: Optional[str] = None
    reporter: Optional[str] = None
    magnitude: Optional[float] = None
    units: Optional[Units] = None
    was_measured: Optional[bool] = None
    report_id: str
    raw_payload: dict[str, Any]

    model_config = ConfigDict(frozen=True)


class QuarantineRecord(BaseModel):
    report_id: str
    source: str = SOURCE_TAG
    report_kind: str
    reason: QuarantineReason
    detail: str
    raw_payload: dict[str, Any]

    model_config = ConfigDict(frozen=True)
