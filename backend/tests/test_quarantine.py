from __future__ import annotations

import json
import logging

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from eventstore.models.quarantine_record import QuarantineRecordRow
from spotter_ingest.adapters.placefile_adapter import parse_icon_line
from spotter_ingest.core.errors import QuarantineSinkError
from spotter_ingest.core.normalizer import Normalizer
from spotter_ingest.core.quarantine import LoggingQuarantineSink, SqlQuarantineSink
from spotter_ingest.core.reports import QuarantineRecord

from conftest import OTHER_NONE_LINE, json_report


class _BrokenSession:
    def __enter__(self):
        raise OperationalError("INSERT", {}, Exception("database is locked"))

    def __exit__(self, *exc_info) -> bool:
        return False


def _records() -> list[QuarantineRecord]:
    normalizer = Normalizer()
    records = [
        normalizer.normalize(parse_icon_line(OTHER_NONE_LINE)),
        normalizer.normalize(json_report("104", type="meteor")),
    ]
    assert all(isinstance(r, QuarantineRecord) for r in records)
    return records


def test_sql_sink_keeps_one_row_per_report(session_factory) -> None:
    sink = SqlQuarantineSink(session_factory)

    sink.submit(_records())
    sink.submit(_records())

    with session_factory() as session:
        rows = session.execute(select(QuarantineRecordRow).order_by(QuarantineRecordRow.id)).scalars().all()
    assert [(r.report_kind, r.reason) for r in rows] == [("placefile", "missing_field"), ("json", "unknown_type")]
    assert rows[1].report_id == "104"
    assert rows[1].raw_payload["format"] == "json"
    assert rows[1].raw_payload["object"]["type"] == "meteor"


def test_sql_sink_failure_is_reported() -> None:
    with pytest.raises(QuarantineSinkError):
        SqlQuarantineSink(lambda: _BrokenSession()).submit(_records())


def test_logging_sink_emits_structured_warning(caplog) -> None:
    caplog.set_level(logging.WARNING, logger="spotter_ingest")

    LoggingQuarantineSink().submit(_records()[1:])

    payloads = [json.loads(r.getMessage()) for r in caplog.records]
    assert payloads == [
        {
            "event": "report_quarantined",
            "source": "spotter-network",
            "report_id": "104",
            "report_kind": "json",
            "reason": "unknown_type",
            "detail": "unknown report type 'meteor'",
        }
    ]
