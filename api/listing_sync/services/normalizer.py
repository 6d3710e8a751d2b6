from __future__ import annotations

import json
from typing import Any

from listing_sync.schemas.events import ChangeEvent
from listing_sync.services.ledger import compute_fingerprint

OPERATION_KINDS = {"INSERT", "UPDATE", "DELETE"}


class MalformedPayloadError(Exception):
    """Raised when a webhook body cannot be parsed into a change event."""


def normalize_event(raw_body: bytes | str) -> ChangeEvent:
    try:
        payload = json.loads(raw_body)
    except (TypeError, ValueError) as exc:
        raise MalformedPayloadError("body is not valid JSON") from exc

    if not isinstance(payload, dict):
        raise MalformedPayloadError("body must be a JSON object")

    table = _as_text(payload.get("table"))
    if table is None:
        raise MalformedPayloadError("missing table")

    raw_type = _as_text(payload.get("type"))
    operation = raw_type.upper() if raw_type else None
    if operation not in OPERATION_KINDS:
        raise MalformedPayloadError(f"unsupported event type: {payload.get('type')!r}")

    record = _as_row(payload.get("record"), field="record")
    old_record = _as_row(payload.get("old_record"), field="old_record")

    if operation == "INSERT":
        if record is None:
            raise MalformedPayloadError("INSERT event requires record")
        old_record = None
    elif operation == "DELETE":
        if old_record is None:
            raise MalformedPayloadError("DELETE event requires old_record")
        record = None
    elif record is None and old_record is None:
        raise MalformedPayloadError("UPDATE event requires record or old_record")

    return ChangeEvent(
        operation=operation,
        table=table,
        schema_name=_as_text(payload.get("schema")),
        record=record,
        old_record=old_record,
        fingerprint=compute_fingerprint(payload),
    )


def _as_row(value: Any, *, field: str) -> dict[str, Any] | None:
    if value is None:
        return None
    if not isinstance(value, dict):
        raise MalformedPayloadError(f"{field} must be an object or null")
    return value


def _as_text(value: Any) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None
