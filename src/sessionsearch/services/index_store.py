"""Index store service for persisting sessions and messages to SQLite.

Uses SQLAlchemy's native async support with aiosqlite. Session and message
rows are SQLModel tables; their FTS5 shadow tables are virtual tables kept
in lock-step with the rows by raw SQL inside the same transaction.

Every write operation takes an optional connection. Without one it opens
its own transaction; with one it joins the caller's, which is how the
synchronizer makes a whole scan commit or roll back as one unit.
"""

from collections.abc import AsyncIterator, Mapping, Sequence
from contextlib import asynccontextmanager
from typing import Any

import structlog
from sqlalchemy import Connection, delete, event, insert, select, text
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import Executable
from sqlmodel import SQLModel

from sessionsearch.errors import StoreError
from sessionsearch.models.session import IndexedSession, MessageRecord, SessionRecord
from sessionsearch.models.tables import MessageRow, SessionRow

BUSY_TIMEOUT_MS = 5000

FTS_SCHEMA = (
    """
    CREATE VIRTUAL TABLE IF NOT EXISTS sessions_fts USING fts5(
        content,
        path UNINDEXED
    )
    """,
    """
    CREATE VIRTUAL TABLE IF NOT EXISTS messages_fts USING fts5(
        text,
        message_id UNINDEXED,
        session_path UNINDEXED,
        role UNINDEXED
    )
    """,
)

# Columns added after the first release; older databases gain them in place.
ADDITIVE_COLUMNS = (
    ("sessions", "repo_root", "TEXT"),
    ("sessions", "repo_name", "TEXT"),
    ("sessions", "branch", "TEXT"),
)


class IndexStore:
    """Persists session records, message records and their FTS5 shadows.

    Accepts an AsyncEngine via dependency injection to support both
    persistent and in-memory databases for testing.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._engine = engine
        self._logger = logger or structlog.get_logger(__name__)

    async def initialize_schema(self) -> None:
        """Create tables if they don't exist and add any missing columns.

        Safe to call on every startup.
        """
        async with self.transaction() as conn:
            await self._run(
                conn,
                "initialize_schema",
                lambda: conn.run_sync(
                    SQLModel.metadata.create_all,
                    tables=[SessionRow.__table__, MessageRow.__table__],
                ),
            )
            for statement in FTS_SCHEMA:
                await self._execute(conn, "initialize_schema", text(statement))
            for table, column, column_type in ADDITIVE_COLUMNS:
                await self._ensure_column(conn, table, column, column_type)
            await self._run(conn, "initialize_schema", lambda: conn.run_sync(_create_missing_indexes))
        self._logger.info("index_store_initialized")

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncConnection]:
        """Open a transaction that commits on success and rolls back on error."""
        try:
            async with self._engine.begin() as conn:
                yield conn
        except SQLAlchemyError as e:
            raise StoreError("transaction", e) from e

    async def upsert_session(self, record: SessionRecord, conn: AsyncConnection | None = None) -> None:
        """Insert or replace a session row by path, then its FTS5 shadow entry.

        Args:
            record: The session to persist.
            conn: Optional connection of an enclosing transaction.
        """
        values = record.model_dump(exclude={"content"})
        statement = sqlite_insert(SessionRow).values(**values)
        statement = statement.on_conflict_do_update(
            index_elements=["path"],
            set_={key: statement.excluded[key] for key in values if key != "path"},
        )

        async with self._using(conn) as active:
            await self._execute(active, "upsert_session", statement)
            await self._execute(
                active,
                "upsert_session",
                text("DELETE FROM sessions_fts WHERE path = :path"),
                {"path": record.path},
            )
            await self._execute(
                active,
                "upsert_session",
                text("INSERT INTO sessions_fts (content, path) VALUES (:content, :path)"),
                {"content": record.content, "path": record.path},
            )

        self._logger.debug("session_upserted", path=record.path, message_count=record.message_count)

    async def replace_messages(
        self,
        session_path: str,
        messages: Sequence[MessageRecord],
        conn: AsyncConnection | None = None,
    ) -> None:
        """Replace the full message set of a session.

        Deletes every existing message row and shadow entry for the path, then
        inserts the new set, mirroring each fresh row id into its shadow entry.
        """
        async with self._using(conn) as active:
            await self._delete_messages(active, "replace_messages", session_path)

            for message in messages:
                result = await self._execute(
                    active,
                    "replace_messages",
                    insert(MessageRow).values(
                        session_path=session_path,
                        turn_index=message.turn_index,
                        role=message.role,
                        timestamp=message.timestamp,
                        text=message.text,
                    ),
                )
                await self._execute(
                    active,
                    "replace_messages",
                    text(
                        "INSERT INTO messages_fts (text, message_id, session_path, role) "
                        "VALUES (:text, :message_id, :session_path, :role)"
                    ),
                    {
                        "text": message.text,
                        "message_id": result.inserted_primary_key[0],
                        "session_path": session_path,
                        "role": message.role,
                    },
                )

        self._logger.debug("messages_replaced", session_path=session_path, message_count=len(messages))

    async def remove_session(self, path: str, conn: AsyncConnection | None = None) -> None:
        """Delete a session with its messages and both shadow tables."""
        async with self._using(conn) as active:
            await self._delete_messages(active, "remove_session", path)
            await self._execute(
                active,
                "remove_session",
                text("DELETE FROM sessions_fts WHERE path = :path"),
                {"path": path},
            )
            await self._execute(active, "remove_session", delete(SessionRow).where(SessionRow.path == path))

        self._logger.debug("session_removed", path=path)

    async def load_indexed_sessions(self, conn: AsyncConnection | None = None) -> list[IndexedSession]:
        """Return the (path, mtime, size) staleness fields of every indexed session."""
        statement = select(SessionRow.path, SessionRow.mtime, SessionRow.size)
        async with self._using(conn) as active:
            result = await self._execute(active, "load_indexed_sessions", statement)
            return [IndexedSession.model_validate(dict(row)) for row in result.mappings()]

    async def get_session(self, path: str) -> SessionRecord | None:
        """Retrieve a session record, including its shadowed content, by path."""
        statement = text(
            "SELECT s.*, f.content AS content FROM sessions s "
            "LEFT JOIN sessions_fts f ON f.path = s.path WHERE s.path = :path"
        )
        rows = await self.fetch_all("get_session", statement, {"path": path})
        if not rows:
            return None
        data = dict(rows[0])
        data["content"] = data["content"] or ""
        data["snippet"] = data["snippet"] or ""
        data["message_count"] = data["message_count"] or 0
        return SessionRecord.from_record(data)

    async def get_messages(self, session_path: str) -> list[MessageRecord]:
        """Retrieve all messages of a session ordered by turn index."""
        statement = (
            select(MessageRow.turn_index, MessageRow.role, MessageRow.timestamp, MessageRow.text)
            .where(MessageRow.session_path == session_path)
            .order_by(MessageRow.turn_index)
        )
        rows = await self.fetch_all("get_messages", statement)
        return [MessageRecord.from_record({**row, "text": row["text"] or ""}) for row in rows]

    async def fetch_all(
        self,
        operation: str,
        statement: Executable,
        params: Mapping[str, Any] | None = None,
    ) -> list[Mapping[str, Any]]:
        """Run a read-only statement on a fresh connection and return row mappings."""
        try:
            async with self._engine.connect() as conn:
                result = await conn.execute(statement, dict(params or {}))
                return [dict(row) for row in result.mappings()]
        except SQLAlchemyError as e:
            raise StoreError(operation, e) from e

    async def close(self) -> None:
        await self._engine.dispose()

    @asynccontextmanager
    async def _using(self, conn: AsyncConnection | None) -> AsyncIterator[AsyncConnection]:
        if conn is not None:
            yield conn
            return
        async with self.transaction() as own:
            yield own

    async def _delete_messages(self, conn: AsyncConnection, operation: str, session_path: str) -> None:
        await self._execute(
            conn,
            operation,
            text("DELETE FROM messages_fts WHERE session_path = :session_path"),
            {"session_path": session_path},
        )
        await self._execute(
            conn,
            operation,
            delete(MessageRow).where(MessageRow.session_path == session_path),
        )

    async def _ensure_column(self, conn: AsyncConnection, table: str, column: str, column_type: str) -> None:
        result = await self._execute(conn, "initialize_schema", text(f"PRAGMA table_info({table})"))
        if any(row["name"] == column for row in result.mappings()):
            return
        await self._execute(conn, "initialize_schema", text(f"ALTER TABLE {table} ADD COLUMN {column} {column_type}"))
        self._logger.info("index_store_column_added", table=table, column=column)

    async def _execute(
        self,
        conn: AsyncConnection,
        operation: str,
        statement: Executable,
        params: Mapping[str, Any] | None = None,
    ) -> Any:
        return await self._run(conn, operation, lambda: conn.execute(statement, dict(params or {})))

    async def _run(self, conn: AsyncConnection, operation: str, call: Any) -> Any:
        try:
            return await call()
        except SQLAlchemyError as e:
            raise StoreError(operation, e) from e


def create_async_engine_from_path(db_path: str) -> AsyncEngine:
    """Create an async SQLAlchemy engine for the given database path.

    Every new DBAPI connection gets WAL journaling, NORMAL synchronous mode
    and a busy timeout so a concurrent reader waits instead of failing.

    Args:
        db_path: Path to SQLite database file, or ":memory:" for in-memory.

    Returns:
        AsyncEngine instance configured for aiosqlite.
    """
    if db_path == ":memory:":
        # A single shared connection, otherwise each checkout sees an empty database
        engine = create_async_engine("sqlite+aiosqlite:///:memory:", poolclass=StaticPool)
    else:
        engine = create_async_engine(
            f"sqlite+aiosqlite:///{db_path}",
            connect_args={"timeout": BUSY_TIMEOUT_MS / 1000},
        )
    event.listen(engine.sync_engine, "connect", _configure_connection)
    return engine


def _create_missing_indexes(sync_conn: Connection) -> None:
    # create_all skips the declared indexes of tables that already existed
    for table in (SessionRow.__table__, MessageRow.__table__):
        for index in table.indexes:
            index.create(sync_conn, checkfirst=True)


def _configure_connection(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute(f"PRAGMA busy_timeout = {BUSY_TIMEOUT_MS}")
    cursor.execute("PRAGMA journal_mode = WAL")
    cursor.execute("PRAGMA synchronous = NORMAL")
    cursor.close()
