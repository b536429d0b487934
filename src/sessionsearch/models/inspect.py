from typing import Any

from pydantic import Field

from sessionsearch.models.base import FrozenModel


class ToolCall(FrozenModel):
    name: str
    arguments: Any = None


class ToolCallMatch(FrozenModel):
    line: int = Field(ge=1)
    message_index: int | None = None
    tool: ToolCall


class SessionEntry(FrozenModel):
    """One raw transcript line together with what was extracted from it."""

    line: int = Field(ge=1)
    message_index: int | None = None
    role: str | None = None
    timestamp: str | None = None
    value: Any = None


class ReadExcerpt(FrozenModel):
    """Lines of a file referenced by a ``read`` tool call."""

    path: str
    offset: int = Field(ge=1)
    limit: int = Field(ge=0)
    lines: list[tuple[int, str]] = Field(default_factory=list)


__all__ = ["ToolCall", "ToolCallMatch", "SessionEntry", "ReadExcerpt"]
