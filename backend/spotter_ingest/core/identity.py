from __future__ import annotations

"""Deterministic identity helpers.

Rules:
- report ids are SHA-256 over the normalized source content, so the same report
  seen on two polls hashes identically.
- canonical event ids are UUIDv5 over (source tag, report fingerprint): stable
  across retries, restarts and sibling loader processes.

No business logic here. Do not log raw content; hashes are safe for ops/audit.
"""

import hashlib
import json
import re
import uuid
from typing import Any

SOURCE_TAG = "spotter-network"

# Fixed namespace for canonical event ids emitted by this loader.
EVENT_ID_NAMESPACE = uuid.UUID("6f1c2d0e-3b4a-5c6d-8e7f-9a0b1c2d3e4f")

# Icon: lat,lon,angle,AGE,hazard,... The feed bumps AGE as a report gets older, so
# the same report shows up with a different line on later polls.
_ICON_AGE_DIGIT = re.compile(r"^(Icon:\s*[^,]*,[^,]*,[^,]*,)\d+(,)")


def normalize_placefile_line(line: str) -> str:
    """Zero the icon age field so repeated deliveries of one report compare equal."""
    return _ICON_AGE_DIGIT.sub(r"\g<1>0\g<2>", line.strip(), count=1)


def sha256_hex(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8", errors="surrogatepass")).hexdigest()


def compute_placefile_report_id(line: str) -> str:
    return sha256_hex(normalize_placefile_line(line))


def compute_payload_fingerprint(payload: Any) -> str:
    """Hash a JSON-compatible payload independently of key order."""
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return sha256_hex(encoded)


def compute_event_id(fingerprint: str, *, source: str = SOURCE_TAG) -> uuid.UUID:
    return uuid.uuid5(EVENT_ID_NAMESPACE, f"{source}\n{fingerprint}")
