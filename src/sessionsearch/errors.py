"""Exceptions raised by the indexing, query and inspection services.

Parse errors stay confined to a single file and are absorbed by the
synchronizer. Store errors abort the current operation. Query-input and
session-lookup errors are meant to be shown to the user as they are.
"""

from pathlib import Path
from typing import Any

MAX_LISTED_MATCHES = 5


class SessionSearchError(Exception):
    """Base exception for all sessionsearch errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ParseError(SessionSearchError):
    """Raised when a transcript is malformed for its declared format."""

    def __init__(self, message: str, line: int | None = None):
        details = {"line": line} if line is not None else {}
        super().__init__(message, details)
        self.line = line


class StoreError(SessionSearchError):
    """Wraps any failure of the underlying SQLite store."""

    def __init__(self, operation: str, cause: Exception):
        super().__init__(f"store error during {operation}: {cause}", {"operation": operation})
        self.operation = operation
        self.cause = cause


class QueryInputError(SessionSearchError):
    """Base class for rejected search input."""


class EmptyQueryError(QueryInputError):
    def __init__(self) -> None:
        super().__init__("query is empty")


class InvalidQuerySyntaxError(QueryInputError):
    def __init__(self, query: str, reason: str):
        super().__init__(
            f"invalid full-text query syntax in {query!r}: {reason}",
            {"query": query},
        )
        self.query = query
        self.reason = reason


class SessionLookupError(SessionSearchError):
    """Base class for failures locating a session or a position within it."""


class SessionNotFoundError(SessionLookupError):
    def __init__(self, input: str):
        super().__init__(f"session not found: {input}", {"input": input})
        self.input = input


class AmbiguousSessionError(SessionLookupError):
    def __init__(self, input: str, matches: list[Path]):
        listed = [str(path) for path in matches[:MAX_LISTED_MATCHES]]
        if len(matches) > MAX_LISTED_MATCHES:
            listed.append("...")
        super().__init__(
            f"multiple sessions match {input}: {', '.join(listed)}",
            {"input": input, "matches": listed},
        )
        self.input = input
        self.matches = matches


class TurnOutOfRangeError(SessionLookupError):
    def __init__(self, turn: int, available: int):
        super().__init__(
            f"turn {turn} out of range (messages: {available})",
            {"turn": turn, "available": available},
        )
        self.turn = turn
        self.available = available


class LineOutOfRangeError(SessionLookupError):
    def __init__(self, line: int):
        super().__init__(f"line {line} out of range", {"line": line})
        self.line = line


class UnsupportedFormatError(SessionLookupError):
    def __init__(self, path: Path):
        super().__init__(f"unsupported session format: {path} (expected .jsonl)", {"path": str(path)})
        self.path = path


class InvalidSessionLineError(SessionLookupError):
    def __init__(self, line: int, reason: str):
        super().__init__(f"invalid session line {line}: {reason}", {"line": line})
        self.line = line
        self.reason = reason
