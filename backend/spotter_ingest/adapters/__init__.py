"""Feed adapters: decode upstream response bodies into RawReport variants."""

from spotter_ingest.adapters.json_adapter import JsonPage, parse_json_page, parse_report_object
from spotter_ingest.adapters.placefile_adapter import parse_icon_line, parse_placefile

__all__ = [
    "JsonPage",
    "parse_json_page",
    "parse_report_object",
    "parse_icon_line",
    "parse_placefile",
]
