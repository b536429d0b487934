from typing import Any

from pydantic import Field, ValidationInfo, field_validator

from sessionsearch.models.base import FrozenModel, RecordModel, ensure_non_empty_text, normalize_role


class ParsedMessage(FrozenModel):
    """One conversational turn extracted from a transcript."""

    role: str | None = None
    text: str = ""
    timestamp: str | None = None

    @field_validator("role", mode="before")
    @classmethod
    def _normalize_role(cls, value: Any) -> str | None:
        return normalize_role(value)


class MessageRecord(RecordModel):
    turn_index: int = Field(ge=0)
    role: str | None = None
    timestamp: str | None = None
    text: str = ""

    @field_validator("role", mode="before")
    @classmethod
    def _normalize_role(cls, value: Any) -> str | None:
        return normalize_role(value)


class SessionRecord(RecordModel):
    """Persisted summary of one transcript file, keyed by path."""

    path: str
    mtime: int
    size: int = Field(ge=0)
    hash: str | None = None
    created_at: str | None = None
    last_message_at: str | None = None
    agent: str | None = None
    workspace: str | None = None
    title: str | None = None
    message_count: int = Field(default=0, ge=0)
    snippet: str = ""
    content: str = ""
    repo_root: str | None = None
    repo_name: str | None = None
    branch: str | None = None

    @field_validator("path")
    @classmethod
    def _ensure_path(cls, value: str, info: ValidationInfo) -> str:
        return ensure_non_empty_text(value, info.field_name or "path")


class ParsedSession(FrozenModel):
    """Canonical result of normalizing one transcript file."""

    created_at: str | None = None
    last_message_at: str | None = None
    agent: str | None = None
    workspace: str | None = None
    title: str | None = None
    message_count: int = Field(default=0, ge=0)
    snippet: str = ""
    content: str = ""
    messages: list[ParsedMessage] = Field(default_factory=list)

    def to_records(
        self,
        path: str,
        mtime: int,
        size: int,
        content_hash: str | None = None,
    ) -> tuple[SessionRecord, list[MessageRecord]]:
        """Split into a session record and turn-indexed message records.

        Turn indices follow the order in which messages were discovered.
        """
        record = SessionRecord(
            path=path,
            mtime=mtime,
            size=size,
            hash=content_hash,
            created_at=self.created_at,
            last_message_at=self.last_message_at,
            agent=self.agent,
            workspace=self.workspace,
            title=self.title,
            message_count=self.message_count,
            snippet=self.snippet,
            content=self.content,
        )
        messages = [
            MessageRecord(
                turn_index=index,
                role=message.role,
                timestamp=message.timestamp,
                text=message.text,
            )
            for index, message in enumerate(self.messages)
        ]
        return record, messages


class IndexedSession(FrozenModel):
    """Staleness fields of an already indexed session."""

    path: str
    mtime: int
    size: int


__all__ = ["ParsedMessage", "ParsedSession", "SessionRecord", "MessageRecord", "IndexedSession"]
