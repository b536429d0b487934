"""Session inspector service for reading one transcript without the index.

Replays the normalizer's extraction line by line, so turn numbers reported
here match ``messages.turn_index`` in the index, including tool-call-only
turns. File reads run in a worker thread to keep the event loop free.
"""

import asyncio
import json
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import structlog

from sessionsearch.config import expand_home
from sessionsearch.errors import (
    AmbiguousSessionError,
    InvalidSessionLineError,
    LineOutOfRangeError,
    SessionNotFoundError,
    TurnOutOfRangeError,
    UnsupportedFormatError,
)
from sessionsearch.models.inspect import ReadExcerpt, SessionEntry, ToolCall, ToolCallMatch
from sessionsearch.models.session import ParsedMessage
from sessionsearch.services.normalizer import extract_message, extract_tool_calls

DEFAULT_READ_OFFSET = 1
DEFAULT_READ_LIMIT = 200


class SessionInspector:
    """Answers turn, line and tool-call lookups against a JSONL transcript."""

    def __init__(self, logger: structlog.stdlib.BoundLogger | None = None) -> None:
        self._logger = logger or structlog.get_logger(__name__)

    async def load_by_turn(self, path: Path, turn: int) -> SessionEntry:
        """Load the entry holding the ``turn``-th extracted message (0-based).

        Raises:
            TurnOutOfRangeError: If fewer than turn + 1 messages exist.
        """
        return await asyncio.to_thread(self._load_by_turn, path, turn)

    async def load_by_line(self, path: Path, line: int) -> SessionEntry:
        """Load the raw value of line ``line`` (1-based), message or not.

        Raises:
            LineOutOfRangeError: If the line is blank or past the end of file.
        """
        return await asyncio.to_thread(self._load_by_line, path, line)

    async def scan_tool_calls(
        self,
        path: Path,
        name_filter: str | None = None,
        limit: int | None = None,
    ) -> list[ToolCallMatch]:
        """Collect tool invocations from every line in a single pass.

        Args:
            path: Transcript file.
            name_filter: Keep only tools with this name, case-insensitively.
            limit: Stop after this many matches.
        """
        return await asyncio.to_thread(self._scan_tool_calls, path, name_filter, limit)

    async def resolve_by_prefix(self, input: str, root: Path) -> Path:
        """Resolve a literal path or a session-id filename prefix under root.

        Raises:
            SessionNotFoundError: If nothing matches.
            AmbiguousSessionError: If more than one transcript matches.
        """
        return await asyncio.to_thread(self._resolve_by_prefix, input, root)

    async def read_tool_excerpt(self, arguments: Any) -> ReadExcerpt | None:
        """Load the lines a ``read`` tool call asked for, or None if unreadable args."""
        parsed = parse_read_arguments(arguments)
        if parsed is None:
            return None
        path, offset, limit = parsed
        lines = await asyncio.to_thread(_read_lines, expand_home(path))
        start = max(offset - 1, 0)
        selected = lines[start : start + limit]
        return ReadExcerpt(
            path=path,
            offset=offset,
            limit=limit,
            lines=[(offset + idx, line) for idx, line in enumerate(selected)],
        )

    def _load_by_turn(self, path: Path, turn: int) -> SessionEntry:
        message_index = 0
        for line_no, value in _iter_values(path):
            message = extract_message(value)
            if message is None:
                continue
            if message_index == turn:
                return _build_entry(value, line_no, message_index, message)
            message_index += 1

        raise TurnOutOfRangeError(turn, message_index)

    def _load_by_line(self, path: Path, line: int) -> SessionEntry:
        for line_no, text in _iter_lines(path):
            if line_no != line:
                continue
            stripped = text.strip()
            if not stripped:
                raise LineOutOfRangeError(line)
            value = _decode_line(stripped, line_no)
            return _build_entry(value, line_no, None, extract_message(value))

        raise LineOutOfRangeError(line)

    def _scan_tool_calls(self, path: Path, name_filter: str | None, limit: int | None) -> list[ToolCallMatch]:
        wanted = name_filter.lower() if name_filter else None
        matches: list[ToolCallMatch] = []
        message_index = 0

        for line_no, value in _iter_values(path):
            has_message = extract_message(value) is not None
            for tool in extract_tool_calls(value):
                if wanted is not None and tool.name.lower() != wanted:
                    continue
                matches.append(
                    ToolCallMatch(
                        line=line_no,
                        message_index=message_index if has_message else None,
                        tool=tool,
                    )
                )
                if limit is not None and len(matches) >= limit:
                    return matches
            if has_message:
                message_index += 1

        self._logger.debug("tool_calls_scanned", path=str(path), match_count=len(matches))
        return matches

    def _resolve_by_prefix(self, input: str, root: Path) -> Path:
        expanded = expand_home(input)
        if expanded.exists():
            return expanded

        if len(expanded.parts) > 1:
            raise SessionNotFoundError(input)

        matches = sorted(
            candidate
            for candidate in root.rglob("*")
            if candidate.is_file() and _is_jsonl(candidate) and candidate.name.startswith(input)
        )
        if not matches:
            raise SessionNotFoundError(input)
        if len(matches) > 1:
            raise AmbiguousSessionError(input, matches)
        return matches[0]


def parse_read_arguments(arguments: Any) -> tuple[str, int, int] | None:
    """Extract (path, offset, limit) from ``read`` tool arguments.

    Arguments may be an object or a JSON-encoded string of one.
    """
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments)
        except json.JSONDecodeError:
            return None
    if not isinstance(arguments, dict) or not isinstance(arguments.get("path"), str):
        return None

    offset = arguments.get("offset")
    limit = arguments.get("limit")
    return (
        arguments["path"],
        offset if _is_count(offset) and offset > 0 else DEFAULT_READ_OFFSET,
        limit if _is_count(limit) else DEFAULT_READ_LIMIT,
    )


def filter_tools(tools: list[ToolCall], name_filter: str | None) -> list[ToolCall]:
    if not name_filter:
        return tools
    return [tool for tool in tools if tool.name.lower() == name_filter.lower()]


def _iter_values(path: Path) -> Iterator[tuple[int, Any]]:
    for line_no, text in _iter_lines(path):
        stripped = text.strip()
        if not stripped:
            continue
        yield line_no, _decode_line(stripped, line_no)


def _iter_lines(path: Path) -> Iterator[tuple[int, str]]:
    """Yield numbered lines split on ``\\n`` only, decoded the way the normalizer decodes them."""
    _ensure_jsonl(path)
    with path.open("rb") as handle:
        for line_no, raw_line in enumerate(handle, start=1):
            encoding = "utf-8-sig" if line_no == 1 else "utf-8"
            try:
                yield line_no, raw_line.decode(encoding)
            except UnicodeDecodeError as e:
                raise InvalidSessionLineError(line_no, f"invalid utf-8 at byte {e.start}: {e.reason}") from e


def _decode_line(line: str, line_no: int) -> Any:
    try:
        return json.loads(line)
    except json.JSONDecodeError as e:
        raise InvalidSessionLineError(line_no, f"invalid json: {e.msg}") from e


def _build_entry(value: Any, line: int, message_index: int | None, message: ParsedMessage | None) -> SessionEntry:
    return SessionEntry(
        line=line,
        message_index=message_index,
        role=message.role if message else None,
        timestamp=message.timestamp if message else None,
        value=value,
    )


def _read_lines(path: Path) -> list[str]:
    return path.read_text(encoding="utf-8", errors="replace").splitlines()


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _is_jsonl(path: Path) -> bool:
    return path.suffix.lower() == ".jsonl"


def _ensure_jsonl(path: Path) -> None:
    if not _is_jsonl(path):
        raise UnsupportedFormatError(path)
