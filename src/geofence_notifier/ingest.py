"""Decode raw transition records into typed :class:`TransitionEvent` objects.

Decoding pipeline::

    raw record (mapping, str or bytes)
      │
      ├─ JSON parse failure          → ValidationError(code="parse_error")
      ├─ not an object               → ValidationError(code="schema_mismatch")
      ├─ missing subject/family/type → ValidationError(code="missing_fields")
      ├─ unknown transition type     → ValidationError(code="invalid_transition_type")
      ├─ unparseable timestamp       → ValidationError(code="invalid_timestamp")
      ├─ malformed location          → ValidationError(code="invalid_location")
      └─ valid                       → TransitionEvent

Records written by the mobile clients use ``childId``/``geofenceName``/
``eventType``/``timestamp``; those names are accepted whenever the
canonical key is absent.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Mapping, Optional, Union

import orjson

from geofence_notifier.errors import ValidationError
from geofence_notifier.models import Location, TransitionEvent, TransitionType

# Maximum bytes of raw payload preserved in validation errors.
MAX_RAW_PAYLOAD_BYTES = 4096

# canonical key → legacy client key
_FIELD_ALIASES = {
    "subjectId": "childId",
    "subjectName": "childName",
    "regionId": "geofenceId",
    "regionName": "geofenceName",
    "transitionType": "eventType",
    "occurredAt": "timestamp",
}

_REQUIRED = ("subjectId", "familyId", "transitionType")


def parse_transition(
    event_id: str,
    record: Union[Mapping[str, Any], str, bytes],
) -> TransitionEvent:
    """Validate a single raw transition record.

    Parameters
    ----------
    event_id:
        Unique identifier of the record in the event log.
    record:
        The stored document data, or its JSON encoding.

    Returns
    -------
    TransitionEvent
        The strongly-typed event.

    Raises
    ------
    ValidationError
        When the record cannot be decoded.  This is terminal: a malformed
        record will not become valid on retry.
    """
    # Step 1: parse JSON
    if isinstance(record, (str, bytes)):
        try:
            data = orjson.loads(record)
        except orjson.JSONDecodeError as exc:
            raise _invalid("parse_error", str(exc), record) from exc
    else:
        data = record

    # Step 2: require an object
    if not isinstance(data, Mapping):
        raise _invalid("schema_mismatch", "Transition record is not an object", record)

    # Step 3: required fields
    missing = [name for name in _REQUIRED if not _text(_field(data, name))]
    if missing:
        raise _invalid(
            "missing_fields",
            f"Transition record missing required field(s): {', '.join(missing)}",
            record,
        )

    # Step 4: transition type
    raw_type = _text(_field(data, "transitionType")).lower()
    try:
        transition_type = TransitionType(raw_type)
    except ValueError:
        raise _invalid(
            "invalid_transition_type",
            f"Unrecognized transition type: {raw_type!r}",
            record,
        ) from None

    return TransitionEvent(
        event_id=event_id,
        subject_id=_text(_field(data, "subjectId")),
        family_id=_text(_field(data, "familyId")),
        transition_type=transition_type,
        subject_name=_text(_field(data, "subjectName")) or None,
        region_id=_text(_field(data, "regionId")) or None,
        region_name=_text(_field(data, "regionName")) or None,
        occurred_at=_parse_timestamp(_field(data, "occurredAt"), record),
        location=_parse_location(data.get("location"), record),
    )


# ── helpers ─────────────────────────────────────────────────────────


def _field(data: Mapping[str, Any], name: str) -> Any:
    """Read *name*, falling back to its legacy client alias."""
    value = data.get(name)
    if value is None and name in _FIELD_ALIASES:
        value = data.get(_FIELD_ALIASES[name])
    return value


def _text(value: Any) -> str:
    """Return *value* stripped when it is a string, else ``""``."""
    return value.strip() if isinstance(value, str) else ""


def _parse_timestamp(value: Any, record: Any) -> Optional[datetime]:
    """Accept datetimes, ISO-8601 strings, or epoch milliseconds."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        raise _invalid("invalid_timestamp", "Timestamp must not be a boolean", record)
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as exc:
            raise _invalid("invalid_timestamp", str(exc), record) from exc
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise _invalid("invalid_timestamp", str(exc), record) from exc
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    raise _invalid(
        "invalid_timestamp",
        f"Unsupported timestamp type: {type(value).__name__}",
        record,
    )


def _parse_location(value: Any, record: Any) -> Optional[Location]:
    if value is None:
        return None
    if not isinstance(value, Mapping):
        raise _invalid("invalid_location", "Location must be an object", record)

    latitude = _coordinate(value, ("latitude", "lat"), record)
    longitude = _coordinate(value, ("longitude", "lng", "lon"), record)
    address = value.get("address")
    if address is not None and not isinstance(address, str):
        raise _invalid("invalid_location", "Location address must be a string", record)

    return Location(latitude=latitude, longitude=longitude, address=address or None)


def _coordinate(value: Mapping[str, Any], keys: tuple[str, ...], record: Any) -> Optional[float]:
    for key in keys:
        coord = value.get(key)
        if coord is None:
            continue
        if isinstance(coord, bool) or not isinstance(coord, (int, float)):
            raise _invalid(
                "invalid_location",
                f"Location field {key!r} must be numeric",
                record,
            )
        return float(coord)
    return None


def _invalid(code: str, message: str, raw: Any) -> ValidationError:
    """Build a :class:`ValidationError` with truncation handling."""
    if isinstance(raw, bytes):
        raw_str = raw.decode("utf-8", errors="replace")
    elif isinstance(raw, str):
        raw_str = raw
    else:
        try:
            raw_str = orjson.dumps(raw, default=str).decode()
        except TypeError:
            raw_str = repr(raw)

    if len(raw_str.encode("utf-8")) > MAX_RAW_PAYLOAD_BYTES:
        raw_str = raw_str.encode("utf-8")[:MAX_RAW_PAYLOAD_BYTES].decode("utf-8", errors="ignore")

    return ValidationError(code=code, message=message, raw_payload=raw_str)
