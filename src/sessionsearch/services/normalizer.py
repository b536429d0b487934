"""Normalizer service for turning raw transcripts into ParsedSession models.

Transcripts come from several agents that never agreed on a schema. Every
JSON value is run through an ordered chain of extraction strategies, one per
known envelope shape, and the first strategy that yields a message wins.
Missing fields degrade to None instead of failing, so a transcript producer
adding fields never breaks indexing of files that used to work.
"""

import json
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

import structlog

from sessionsearch.errors import ParseError
from sessionsearch.models.base import normalize_role
from sessionsearch.models.enums import TranscriptFormat
from sessionsearch.models.inspect import ToolCall
from sessionsearch.models.session import ParsedMessage, ParsedSession

MAX_SNIPPET_LEN = 240
ROLES = frozenset({"user", "assistant", "system", "developer", "tool"})
TOOL_CALL_TYPES = frozenset({"toolCall", "tool_use"})
TIMESTAMP_KEYS = ("created_at", "timestamp", "time", "ts")
CONTENT_KEYS = ("content", "text", "message")

Extractor = Callable[[dict[str, Any]], ParsedMessage | None]


class Normalizer:
    """Parses transcript bytes of a declared format into a ParsedSession."""

    def __init__(self, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._logger = logger or structlog.get_logger(__name__)

    def normalize(self, fmt: TranscriptFormat, raw: bytes) -> ParsedSession:
        """Normalize raw file bytes.

        Args:
            fmt: Declared transcript format.
            raw: File contents.

        Returns:
            The parsed session with its ordered messages.

        Raises:
            ParseError: If the bytes are not valid UTF-8 or not valid JSON
                for the JSON based formats.
        """
        try:
            text = raw.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise ParseError(f"invalid utf-8 at byte {e.start}: {e.reason}") from e

        if fmt is TranscriptFormat.JSONL:
            parsed = parse_jsonl(text)
        elif fmt is TranscriptFormat.JSON:
            parsed = parse_json(text)
        else:
            parsed = parse_markdown(text)

        self._logger.debug(
            "transcript_normalized",
            format=fmt.value,
            message_count=parsed.message_count,
        )
        return parsed


@dataclass
class _SessionMeta:
    created_at: str | None = None
    last_message_at: str | None = None
    agent: str | None = None
    workspace: str | None = None

    def update(self, value: Any) -> None:
        if not isinstance(value, dict):
            return

        if self.agent is None and isinstance(value.get("agent"), str):
            self.agent = value["agent"]
        if self.workspace is None and isinstance(value.get("workspace"), str):
            self.workspace = value["workspace"]
        if self.created_at is None:
            self.created_at = _string_field(value, "created_at")

        last_message_at = _string_field(value, "last_message_at")
        if last_message_at is not None:
            self.last_message_at = last_message_at


def parse_jsonl(text: str) -> ParsedSession:
    """Parse line-delimited JSON; any malformed line fails the whole file."""
    meta = _SessionMeta()
    messages: list[ParsedMessage] = []

    for line_no, raw_line in enumerate(text.split("\n"), start=1):
        line = raw_line.strip()
        if not line:
            continue
        try:
            value = json.loads(line)
        except json.JSONDecodeError as e:
            raise ParseError(f"invalid jsonl at line {line_no}: {e.msg} (column {e.colno})", line=line_no) from e

        meta.update(value)
        message = extract_message(value)
        if message is not None:
            messages.append(message)

    return _build_session(messages, meta)


def parse_json(text: str) -> ParsedSession:
    """Parse a single JSON document holding an array or an object of messages."""
    if not text.strip():
        return _build_session([], _SessionMeta())

    try:
        root = json.loads(text)
    except json.JSONDecodeError as e:
        raise ParseError(f"invalid json: {e}", line=e.lineno) from e

    meta = _SessionMeta()
    meta.update(root)

    entries: Iterable[Any]
    if isinstance(root, list):
        entries = root
    elif isinstance(root, dict):
        if isinstance(root.get("messages"), list):
            entries = root["messages"]
        elif isinstance(root.get("events"), list):
            entries = root["events"]
        else:
            entries = [root]
    else:
        entries = []

    messages: list[ParsedMessage] = []
    for entry in entries:
        meta.update(entry)
        message = extract_message(entry)
        if message is not None:
            messages.append(message)

    return _build_session(messages, meta)


def parse_markdown(text: str) -> ParsedSession:
    """Parse one message per non-blank line, with an optional ``role:`` prefix."""
    messages: list[ParsedMessage] = []

    for raw_line in text.split("\n"):
        line = raw_line.strip()
        if not line:
            continue

        role: str | None = None
        body = line
        prefixed = _split_role_prefix(line)
        if prefixed is not None:
            role, body = prefixed

        messages.append(ParsedMessage(role=role, text=body))

    return _build_session(messages, _SessionMeta())


def extract_message(value: Any) -> ParsedMessage | None:
    """Extract one message from a JSON value.

    Values with no text but an embedded tool call still produce a message
    with empty text, so they consume a turn index.
    """
    if not isinstance(value, dict):
        return None

    if value.get("type") != "session_meta":
        for extractor in _EXTRACTORS:
            message = extractor(value)
            if message is not None:
                return message

    if has_tool_call(value):
        return ParsedMessage(
            role=_extract_role(value),
            text="",
            timestamp=extract_timestamp(value),
        )

    return None


def extract_content_array(value: Any) -> list[Any] | None:
    """Locate the list of content parts of a message envelope, if any."""
    if not isinstance(value, dict):
        return None

    message = value.get("message")
    if isinstance(message, dict) and isinstance(message.get("content"), list):
        return message["content"]

    payload = _response_item_payload(value)
    if payload is not None and isinstance(payload.get("content"), list):
        return payload["content"]

    content = value.get("content")
    if isinstance(content, list):
        return content
    return None


def extract_tool_calls(value: Any) -> list[ToolCall]:
    """Return every tool invocation embedded in the value's content parts."""
    content = extract_content_array(value)
    if content is None:
        return []

    tools = []
    for item in content:
        if not isinstance(item, dict) or item.get("type") not in TOOL_CALL_TYPES:
            continue
        name = item.get("name")
        arguments = item["arguments"] if "arguments" in item else item.get("input")
        tools.append(ToolCall(name=name if isinstance(name, str) else "unknown", arguments=arguments))
    return tools


def has_tool_call(value: Any) -> bool:
    content = extract_content_array(value)
    if content is None:
        return False
    return any(isinstance(item, dict) and item.get("type") in TOOL_CALL_TYPES for item in content)


def extract_timestamp(value: dict[str, Any]) -> str | None:
    for key in TIMESTAMP_KEYS:
        timestamp = _string_field(value, key)
        if timestamp is not None:
            return timestamp
    return None


def coerce_content(value: Any) -> str | None:
    """Flatten a content node into text; blank results count as absent."""
    if isinstance(value, str):
        return value.strip() or None

    if isinstance(value, list):
        parts = [part for part in (coerce_content(item) for item in value) if part is not None]
        return "\n".join(parts) if parts else None

    if isinstance(value, dict):
        if value.get("type") == "input_text" and isinstance(value.get("text"), str):
            return value["text"].strip() or None
        if "content" in value:
            return coerce_content(value["content"])
        if "text" in value:
            return coerce_content(value["text"])

    return None


def _from_response_item(value: dict[str, Any]) -> ParsedMessage | None:
    payload = _response_item_payload(value)
    if payload is None:
        return None
    message = _message_from_object(payload)
    if message is None:
        return None
    return _fill_missing(message, value)


def _from_message_object(value: dict[str, Any]) -> ParsedMessage | None:
    nested = value.get("message")
    if not isinstance(nested, dict):
        return None
    message = _message_from_object(nested)
    if message is None:
        return None
    return _fill_missing(message, value)


def _from_message_content(value: dict[str, Any]) -> ParsedMessage | None:
    nested = value.get("message")
    if nested is None or isinstance(nested, dict):
        return None
    text = coerce_content(nested)
    if text is None:
        return None
    return ParsedMessage(role=_role_field(value), text=text, timestamp=extract_timestamp(value))


def _from_top_level(value: dict[str, Any]) -> ParsedMessage | None:
    return _message_from_object(value)


# Order matters: the first strategy that yields a message wins.
_EXTRACTORS: tuple[Extractor, ...] = (
    _from_response_item,
    _from_message_object,
    _from_message_content,
    _from_top_level,
)


def _message_from_object(value: dict[str, Any]) -> ParsedMessage | None:
    text = None
    for key in CONTENT_KEYS:
        if key in value:
            text = coerce_content(value[key])
            if text is not None:
                break
    if text is None:
        return None

    return ParsedMessage(role=_role_field(value), text=text, timestamp=extract_timestamp(value))


def _fill_missing(message: ParsedMessage, envelope: dict[str, Any]) -> ParsedMessage:
    updates: dict[str, Any] = {}
    if message.role is None:
        role = _role_field(envelope)
        if role is not None:
            updates["role"] = role
    if message.timestamp is None:
        timestamp = extract_timestamp(envelope)
        if timestamp is not None:
            updates["timestamp"] = timestamp
    return message.model_copy(update=updates) if updates else message


def _response_item_payload(value: dict[str, Any]) -> dict[str, Any] | None:
    if value.get("type") != "response_item":
        return None
    payload = value.get("payload")
    if isinstance(payload, dict) and payload.get("type") == "message":
        return payload
    return None


def _extract_role(value: dict[str, Any]) -> str | None:
    message = value.get("message")
    if isinstance(message, dict):
        role = _role_field(message)
        if role is not None:
            return role
    payload = value.get("payload")
    if isinstance(payload, dict):
        role = _role_field(payload)
        if role is not None:
            return role
    return _role_field(value)


def _role_field(value: dict[str, Any]) -> str | None:
    role = value.get("role")
    return normalize_role(role) if isinstance(role, str) else None


def _string_field(value: dict[str, Any], key: str) -> str | None:
    field = value.get(key)
    if isinstance(field, bool):
        return None
    if isinstance(field, str):
        return field.strip() or None
    if isinstance(field, int):
        return str(field)
    if isinstance(field, float):
        return str(int(field)) if field.is_integer() else repr(field)
    return None


def _split_role_prefix(line: str) -> tuple[str, str] | None:
    role, sep, text = line.partition(":")
    if not sep:
        return None
    role = role.strip()
    text = text.strip()
    if not text or role.lower() not in ROLES:
        return None
    return role.lower(), text


def _build_session(messages: list[ParsedMessage], meta: _SessionMeta) -> ParsedSession:
    if meta.created_at is None and messages:
        meta.created_at = messages[0].timestamp
    if meta.last_message_at is None and messages:
        meta.last_message_at = messages[-1].timestamp

    content = "\n".join(_format_message_line(message) for message in messages)

    return ParsedSession(
        created_at=meta.created_at,
        last_message_at=meta.last_message_at,
        agent=meta.agent,
        workspace=meta.workspace,
        title=_select_title(messages),
        message_count=len(messages),
        snippet=content.strip()[:MAX_SNIPPET_LEN],
        content=content,
        messages=messages,
    )


def _select_title(messages: list[ParsedMessage]) -> str | None:
    for message in messages:
        if message.role == "user" and message.text.strip():
            return message.text.strip()
    if messages:
        return messages[0].text.strip() or None
    return None


def _format_message_line(message: ParsedMessage) -> str:
    if message.role is None:
        return message.text
    return f"[{message.role}] {message.text}"
