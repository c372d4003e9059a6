"""
Legacy document shapes.

Both backends build their outbound documents with these functions, so the
field set a caller sees is identical whichever backend served the request.
The relational backend additionally exposes the row primary key as ``id``.
"""

from __future__ import annotations

import copy
import re
from datetime import datetime, timedelta, timezone
from typing import Any

DEFAULT_TEMPLATE_ORDER = 10000
DEFAULT_CONVO_TITLE = "New Comparison"

# Fractional seconds; PostgreSQL trims trailing zeros
_FRACTION = re.compile(r"\.(\d+)")

CONVERSATION_DEFAULTS: dict[str, Any] = {
    "conversationId": None,
    "user": None,
    "title": None,
    "endpoint": None,
    "model": None,
    "models": [],
    "prompt": {},
    "winner": None,
    "scoringTemplateId": None,
    "scores": {},
    "files": [],
    "tags": [],
    "category": "general",
    "isPublic": False,
    "isArchived": False,
    "expiredAt": None,
    "createdAt": None,
    "updatedAt": None,
}

CONVERSATION_LIST_FIELDS = ("conversationId", "title", "endpoint", "model", "user", "createdAt", "updatedAt")

MESSAGE_DEFAULTS: dict[str, Any] = {
    "messageId": None,
    "conversationId": None,
    "user": None,
    "parentMessageId": None,
    "sender": None,
    "text": "",
    "isCreatedByUser": False,
    "model": None,
    "endpoint": None,
    "error": False,
    "unfinished": False,
    "tokenCount": None,
    "createdAt": None,
    "updatedAt": None,
}

FILE_DEFAULTS: dict[str, Any] = {
    "user": None,
    "file_id": None,
    "filename": None,
    "filepath": "",
    "type": None,
    "bytes": None,
    "width": None,
    "height": None,
    "source": "local",
    "embedded": None,
    "model": None,
    "context": None,
    "fileIdentifier": None,
    "temp_file_id": None,
    "usage": 0,
    "expiresAt": None,
    "createdAt": None,
    "updatedAt": None,
}

# Preset fields kept in the scoring template metadata bag
LEGACY_PRESET_FIELDS = (
    "endpoint",
    "model",
    "chatGptLabel",
    "promptPrefix",
    "temperature",
    "top_p",
    "top_k",
    "frequency_penalty",
    "presence_penalty",
    "resendFiles",
    "imageDetail",
    "iconURL",
    "greeting",
    "spec",
    "maxContextTokens",
    "max_tokens",
)

PRESET_DEFAULTS: dict[str, Any] = {
    "presetId": None,
    "user": None,
    "title": None,
    "description": None,
    "criteria": [],
    "category": "general",
    "isPublic": False,
    "defaultPreset": False,
    "order": None,
    "usageCount": 0,
    **{name: None for name in LEGACY_PRESET_FIELDS},
    "createdAt": None,
    "updatedAt": None,
}

USER_DEFAULTS: dict[str, Any] = {
    "name": None,
    "username": None,
    "email": None,
    "avatar": None,
    "role": "user",
    "provider": "email",
    "emailVerified": False,
    "plan": "free",
    "comparisonsCount": 0,
    "preferences": {},
    "lastActiveAt": None,
    "deletedAt": None,
    "createdAt": None,
    "updatedAt": None,
}

TRANSACTION_DEFAULTS: dict[str, Any] = {
    "user": None,
    "conversationId": None,
    "tokenType": None,
    "model": None,
    "context": None,
    "valueKey": None,
    "rate": None,
    "rawAmount": None,
    "tokenValue": None,
    "inputTokens": None,
    "writeTokens": None,
    "readTokens": None,
    "createdAt": None,
}


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def expiry_after(*, hours: float = 0, seconds: float = 0) -> datetime:
    return utc_now() + timedelta(hours=hours, seconds=seconds)


def to_iso(value: Any) -> Any:
    """Render timestamps as ISO-8601 UTC strings; other values pass through."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    return value


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO string (or pass a datetime through) as an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = _FRACTION.sub(lambda m: "." + m.group(1).ljust(6, "0")[:6], str(value), count=1)
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _shape(defaults: dict[str, Any], fields: dict[str, Any]) -> dict[str, Any]:
    doc = copy.deepcopy(defaults)
    for key, value in fields.items():
        doc[key] = to_iso(value) if key.endswith("At") else value
    return doc


def conversation_document(**fields: Any) -> dict[str, Any]:
    return _shape(CONVERSATION_DEFAULTS, fields)


def conversation_list_item(doc: dict[str, Any]) -> dict[str, Any]:
    return {key: doc.get(key) for key in CONVERSATION_LIST_FIELDS}


def message_document(**fields: Any) -> dict[str, Any]:
    return _shape(MESSAGE_DEFAULTS, fields)


def file_document(**fields: Any) -> dict[str, Any]:
    return _shape(FILE_DEFAULTS, fields)


def preset_document(**fields: Any) -> dict[str, Any]:
    return _shape(PRESET_DEFAULTS, fields)


def user_document(**fields: Any) -> dict[str, Any]:
    return _shape(USER_DEFAULTS, fields)


def transaction_document(**fields: Any) -> dict[str, Any]:
    return _shape(TRANSACTION_DEFAULTS, fields)


def select_fields(doc: dict[str, Any], fields: str | None) -> dict[str, Any]:
    """
    Apply a document-style field selection ("email username -password").

    Identifier fields are always kept; exclusions are ignored.
    """
    wanted = parse_field_list(fields)
    if not wanted:
        return doc
    keep = set(wanted) | {"_id", "id"}
    return {k: v for k, v in doc.items() if k in keep}


def parse_field_list(fields: str | None) -> list[str]:
    if not fields or fields.strip() == "*":
        return []
    tokens = fields.replace(",", " ").split()
    return [t for t in tokens if not t.startswith("-")]


def template_sort_key(doc: dict[str, Any]) -> tuple[float, float]:
    """Sort presets by order (missing last), then most recently updated first."""
    order = doc.get("order")
    order = DEFAULT_TEMPLATE_ORDER if order is None else order
    updated = parse_timestamp(doc.get("updatedAt"))
    return (order, -(updated.timestamp() if updated else 0.0))


def matches_tool_resources(doc: dict[str, Any], tool_resources: set[str] | None) -> bool:
    """
    Whether a file serves any of the requested tool resources.

    file_search needs an embedded file, execute_code needs a file uploaded to
    the code environment; any other resource matches the file's context.
    """
    if not tool_resources:
        return True
    for resource in tool_resources:
        if resource == "file_search" and doc.get("embedded"):
            return True
        if resource == "execute_code" and doc.get("fileIdentifier"):
            return True
        if doc.get("context") == resource:
            return True
    return False
