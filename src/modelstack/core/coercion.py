"""
Type coercion for write payloads and filter values.

24-hex strings become ObjectIds and ``YYYY-MM-DDTHH:MM:SS(.fff)Z`` strings
become UTC datetimes.

Usage:
    doc = replace_object_ids({"authorId": "5f9f1b9b9c9d440000a1b2c3"})
    # {"authorId": ObjectId("5f9f1b9b9c9d440000a1b2c3")}
"""

from __future__ import annotations

import base64
import re
import uuid
from datetime import date, datetime, timezone
from typing import Any

from bson import ObjectId
from dateutil import parser as date_parser

OBJECT_ID_RE = re.compile(r"^[0-9a-fA-F]{24}$")
ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?Z$")


def replace_object_ids(value: Any) -> Any:
    """Recursively convert id-shaped and date-shaped strings."""
    if isinstance(value, dict):
        return {key: replace_object_ids(item) for key, item in value.items()}
    if isinstance(value, list):
        return [replace_object_ids(item) for item in value]
    if isinstance(value, str):
        if OBJECT_ID_RE.match(value):
            return ObjectId(value)
        if ISO_DATE_RE.match(value):
            return parse_iso_datetime(value)
    return value


def parse_iso_datetime(value: str) -> datetime:
    parsed = date_parser.isoparse(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def to_object_id(value: Any) -> Any:
    """Convert a 24-hex string id into an ObjectId; anything else passes through."""
    if isinstance(value, str) and OBJECT_ID_RE.match(value):
        return ObjectId(value)
    return value


def coerce_number(value: Any) -> Any:
    """Turn numeric strings into int/float; leave other values untouched."""
    if isinstance(value, str):
        try:
            return int(value)
        except ValueError:
            pass
        try:
            return float(value)
        except ValueError:
            return value
    return value


def format_datetime(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def json_default(value: Any) -> Any:
    """``default=`` hook for json.dumps over documents and filters."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        return format_datetime(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, bytes):
        return base64.b64encode(value).decode("ascii")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def to_jsonable(value: Any) -> Any:
    """Recursively convert BSON scalars into JSON-friendly values."""
    if isinstance(value, dict):
        return {key: to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    if isinstance(value, (ObjectId, datetime, date, uuid.UUID, bytes)):
        return json_default(value)
    return value
