"""SQLModel table definitions for the session index.

These map the persisted parts of SessionRecord and MessageRecord to SQLite
tables. They are kept apart from the frozen Pydantic domain models because
SQLModel tables are mutable ORM classes, while the domain models are
immutable value objects passed between services.

Only the regular tables live here. The FTS5 shadow tables (``sessions_fts``
and ``messages_fts``) are virtual tables that SQLModel cannot describe; the
IndexStore creates and maintains them with raw SQL next to these rows.

Field names match the domain models so rows convert with
``model_validate(row._mapping)``. The aggregated session content is not a
column: it is stored only in ``sessions_fts``.
"""

from sqlalchemy import Index
from sqlmodel import Field, SQLModel


class SessionRow(SQLModel, table=True):
    """One indexed transcript file, keyed by its path."""

    __tablename__ = "sessions"

    path: str = Field(primary_key=True)
    mtime: int
    size: int
    hash: str | None = None
    created_at: str | None = None
    last_message_at: str | None = Field(default=None, index=True)
    agent: str | None = Field(default=None, index=True)
    workspace: str | None = Field(default=None, index=True)
    title: str | None = None
    message_count: int | None = None
    snippet: str | None = None
    repo_root: str | None = None
    repo_name: str | None = Field(default=None, index=True)
    branch: str | None = Field(default=None, index=True)


class MessageRow(SQLModel, table=True):
    """One turn of an indexed transcript.

    ``session_path`` refers to ``sessions.path`` by value only; the IndexStore
    keeps the two in step inside its transactions.
    """

    __tablename__ = "messages"
    __table_args__ = (Index("ix_messages_session_turn", "session_path", "turn_index"),)

    id: int | None = Field(default=None, primary_key=True)
    session_path: str
    turn_index: int
    role: str | None = None
    timestamp: str | None = None
    text: str | None = None
