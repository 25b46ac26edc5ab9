from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Generator, Optional

import pytest
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

import eventstore.models  # noqa: F401  (register all ORM models)
from eventstore.core.base import Base
from eventstore.core.db import create_db_engine, make_session_factory
from spotter_ingest.adapters.json_adapter import parse_report_object
from spotter_ingest.core.reports import JsonFeedReport


UTC = timezone.utc
BASE_TS = datetime(2024, 5, 20, 21, 0, 0, tzinfo=UTC)

WIND_LINE = r'Icon: 43.112000,-94.639999,000,3,5,"Reported By: Test Human\nHigh Wind\nTime: 2018-09-20 22:52:00 UTC\n60 mph [Measured]\nNotes: Strong winds measured at 60mph with anemometer"'
HAIL_LINE = r'Icon: 47.617706,-111.215248,000,4,4,"Reported By: Test Human\nHail\nTime: 2018-09-20 22:49:29 UTC\nSize: 0.75" (Penny)\nNotes: None"'
OTHER_NONE_LINE = r'Icon: 35.851399,-90.708198,000,0,8,"Reported By: Test Human\nOther - See Note\nTime: 2018-11-14 20:22:00 UTC\nNotes: None"'


@pytest.fixture()
def engine(tmp_path: Path) -> Generator[Engine, None, None]:
    eng = create_db_engine(f"sqlite:///{tmp_path / 'events.db'}")
    Base.metadata.create_all(eng)
    try:
        yield eng
    finally:
        eng.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return make_session_factory(engine)


def report_dict(
    report_id: str,
    *,
    minutes: int = 0,
    type: str = "hail",
    lat: Optional[float] = 35.2,
    lon: Optional[float] = -97.4,
    reporter: Optional[str] = "Test Human",
    notes: Optional[str] = None,
    hail_size_in: Optional[float] = 1.0,
    wind_mph: Optional[float] = None,
    station: Optional[dict[str, Any]] = None,
) -> dict[str, Any]:
    item: dict[str, Any] = {
        "id": report_id,
        "reported_at": (BASE_TS + timedelta(minutes=minutes)).isoformat(),
        "type": type,
        "reporter": reporter,
    }
    if lat is not None:
        item["lat"] = lat
    if lon is not None:
        item["lon"] = lon
    if notes is not None:
        item["notes"] = notes
    if hail_size_in is not None:
        item["hail_size_in"] = hail_size_in
    if wind_mph is not None:
        item["wind_mph"] = wind_mph
    if station is not None:
        item["station"] = station
    return item


def json_report(report_id: str, **kwargs: Any) -> JsonFeedReport:
    report = parse_report_object(report_dict(report_id, **kwargs))
    assert isinstance(report, JsonFeedReport)
    return report


class RecordingSleep:
    """Async stand-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await asyncio.sleep(0)
