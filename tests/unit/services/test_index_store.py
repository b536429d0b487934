"""Unit tests for the IndexStore service."""

import pytest
from sqlalchemy import text

from sessionsearch.errors import StoreError
from sessionsearch.models.session import MessageRecord, SessionRecord
from sessionsearch.services.index_store import IndexStore, create_async_engine_from_path


def _make_session(path: str = "/sessions/a.jsonl", **overrides) -> SessionRecord:
    """Create a valid SessionRecord for testing."""
    values = {
        "path": path,
        "mtime": 1700000000,
        "size": 128,
        "created_at": "2025-01-01T00:00:00Z",
        "last_message_at": "2025-01-01T00:05:00Z",
        "agent": "marvin",
        "title": "hello",
        "message_count": 2,
        "snippet": "[user] hello",
        "content": "[user] hello\n[assistant] hi there",
    }
    values.update(overrides)
    return SessionRecord(**values)


def _make_messages(*texts: str) -> list[MessageRecord]:
    roles = ("user", "assistant")
    return [MessageRecord(turn_index=index, role=roles[index % 2], text=body) for index, body in enumerate(texts)]


async def _count(store: IndexStore, table: str) -> int:
    rows = await store.fetch_all("count", text(f"SELECT COUNT(*) AS n FROM {table}"))
    return rows[0]["n"]


@pytest.fixture
def async_engine():
    """Create an in-memory async SQLite engine for testing."""
    return create_async_engine_from_path(":memory:")


@pytest.fixture
async def store(async_engine) -> IndexStore:
    """Create an IndexStore with initialized schema."""
    store = IndexStore(engine=async_engine)
    await store.initialize_schema()
    return store


class TestIndexStoreSchema:
    """Tests for schema creation and migration."""

    async def test_initialize_schema_is_idempotent(self, store: IndexStore) -> None:
        await store.initialize_schema()
        await store.initialize_schema()

        assert await _count(store, "sessions") == 0
        assert await _count(store, "sessions_fts") == 0

    async def test_missing_columns_are_added_in_place(self, async_engine) -> None:
        async with async_engine.begin() as conn:
            await conn.execute(
                text(
                    "CREATE TABLE sessions (path TEXT PRIMARY KEY, mtime INTEGER NOT NULL, size INTEGER NOT NULL, "
                    "hash TEXT, created_at TEXT, last_message_at TEXT, agent TEXT, workspace TEXT, title TEXT, "
                    "message_count INTEGER NOT NULL, snippet TEXT NOT NULL)"
                )
            )
            await conn.execute(
                text(
                    "INSERT INTO sessions (path, mtime, size, message_count, snippet) "
                    "VALUES ('/old.jsonl', 1, 2, 0, '')"
                )
            )

        store = IndexStore(engine=async_engine)
        await store.initialize_schema()

        rows = await store.fetch_all("columns", text("PRAGMA table_info(sessions)"))
        columns = {row["name"] for row in rows}
        assert {"repo_root", "repo_name", "branch"} <= columns
        assert [entry.path for entry in await store.load_indexed_sessions()] == ["/old.jsonl"]

        rows = await store.fetch_all("indexes", text("PRAGMA index_list(sessions)"))
        indexes = {row["name"] for row in rows}
        assert {"ix_sessions_repo_name", "ix_sessions_branch", "ix_sessions_agent"} <= indexes


class TestIndexStoreSessions:
    """Tests for session upsert and retrieval."""

    async def test_upsert_and_get_session(self, store: IndexStore) -> None:
        record = _make_session(repo_name="sessionsearch", branch="main")

        await store.upsert_session(record)
        retrieved = await store.get_session(record.path)

        assert retrieved == record

    async def test_get_missing_session_returns_none(self, store: IndexStore) -> None:
        assert await store.get_session("/nope.jsonl") is None

    async def test_upsert_replaces_row_and_shadow(self, store: IndexStore) -> None:
        await store.upsert_session(_make_session(content="old words"))
        await store.upsert_session(_make_session(content="new words", title="updated", mtime=1700000100))

        retrieved = await store.get_session("/sessions/a.jsonl")

        assert retrieved is not None
        assert retrieved.title == "updated"
        assert retrieved.mtime == 1700000100
        assert retrieved.content == "new words"
        assert await _count(store, "sessions") == 1
        assert await _count(store, "sessions_fts") == 1

    async def test_load_indexed_sessions(self, store: IndexStore) -> None:
        await store.upsert_session(_make_session("/a.jsonl", mtime=10, size=1))
        await store.upsert_session(_make_session("/b.jsonl", mtime=20, size=2))

        indexed = sorted(await store.load_indexed_sessions(), key=lambda entry: entry.path)

        assert [(entry.path, entry.mtime, entry.size) for entry in indexed] == [
            ("/a.jsonl", 10, 1),
            ("/b.jsonl", 20, 2),
        ]


class TestIndexStoreMessages:
    """Tests for message replacement and removal."""

    async def test_replace_messages_inserts_rows_and_shadows(self, store: IndexStore) -> None:
        await store.upsert_session(_make_session())
        await store.replace_messages("/sessions/a.jsonl", _make_messages("hello", "hi there"))

        messages = await store.get_messages("/sessions/a.jsonl")

        assert [(message.turn_index, message.text) for message in messages] == [(0, "hello"), (1, "hi there")]
        assert await _count(store, "messages_fts") == 2

    async def test_replace_messages_is_a_full_replace(self, store: IndexStore) -> None:
        await store.upsert_session(_make_session())
        await store.replace_messages("/sessions/a.jsonl", _make_messages("one", "two", "three"))
        await store.replace_messages("/sessions/a.jsonl", _make_messages("only"))

        messages = await store.get_messages("/sessions/a.jsonl")

        assert [message.text for message in messages] == ["only"]
        assert await _count(store, "messages") == 1
        assert await _count(store, "messages_fts") == 1

    async def test_shadow_ids_follow_message_rows(self, store: IndexStore) -> None:
        await store.upsert_session(_make_session())
        await store.replace_messages("/sessions/a.jsonl", _make_messages("alpha", "beta"))

        rows = await store.fetch_all(
            "join",
            text(
                "SELECT m.text AS row_text, f.text AS shadow_text FROM messages m "
                "JOIN messages_fts f ON f.message_id = m.id ORDER BY m.turn_index"
            ),
        )

        assert [(row["row_text"], row["shadow_text"]) for row in rows] == [("alpha", "alpha"), ("beta", "beta")]

    async def test_remove_session_cascades(self, store: IndexStore) -> None:
        await store.upsert_session(_make_session())
        await store.replace_messages("/sessions/a.jsonl", _make_messages("hello", "hi there"))

        await store.remove_session("/sessions/a.jsonl")

        for table in ("sessions", "sessions_fts", "messages", "messages_fts"):
            assert await _count(store, table) == 0


class TestIndexStoreTransactions:
    """Tests for shared transactions and error wrapping."""

    async def test_failed_transaction_rolls_back_everything(self, store: IndexStore) -> None:
        with pytest.raises(RuntimeError):
            async with store.transaction() as conn:
                await store.upsert_session(_make_session(), conn)
                await store.replace_messages("/sessions/a.jsonl", _make_messages("hello"), conn)
                raise RuntimeError("crash mid-scan")

        assert await _count(store, "sessions") == 0
        assert await _count(store, "messages") == 0
        assert await _count(store, "sessions_fts") == 0

    async def test_sqlite_failures_become_store_errors(self, store: IndexStore) -> None:
        with pytest.raises(StoreError) as exc_info:
            await store.fetch_all("broken", text("SELECT * FROM no_such_table"))

        assert exc_info.value.operation == "broken"
        assert "no_such_table" in str(exc_info.value)
