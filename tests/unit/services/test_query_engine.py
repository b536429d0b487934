"""Unit tests for the QueryEngine service."""

import pytest

from sessionsearch.errors import EmptyQueryError, InvalidQuerySyntaxError
from sessionsearch.models.enums import QueryMode, SearchScope
from sessionsearch.models.hit import MessageHit, SessionHit
from sessionsearch.models.query import SearchFilters, SearchRequest
from sessionsearch.models.session import ParsedMessage, ParsedSession
from sessionsearch.services.index_store import IndexStore, create_async_engine_from_path
from sessionsearch.services.query_engine import QueryEngine, build_match_query


async def _index(
    store: IndexStore,
    path: str,
    messages: list[tuple[str, str, str | None]],
    **fields,
) -> None:
    """Index a session built from (role, text, timestamp) triples."""
    repo_fields = {key: fields.pop(key) for key in ("repo_root", "repo_name", "branch") if key in fields}
    parsed_messages = [ParsedMessage(role=role, text=body, timestamp=ts) for role, body, ts in messages]
    session = ParsedSession(
        title=parsed_messages[0].text if parsed_messages else None,
        message_count=len(parsed_messages),
        content="\n".join(f"[{m.role}] {m.text}" for m in parsed_messages),
        messages=parsed_messages,
        **fields,
    )
    record, records = session.to_records(path, mtime=1, size=1)
    record = record.model_copy(update=repo_fields)
    await store.upsert_session(record)
    await store.replace_messages(path, records)


@pytest.fixture
async def store() -> IndexStore:
    store = IndexStore(engine=create_async_engine_from_path(":memory:"))
    await store.initialize_schema()
    return store


@pytest.fixture
def engine(store: IndexStore) -> QueryEngine:
    return QueryEngine(index_store=store)


@pytest.fixture
async def corpus(store: IndexStore) -> None:
    await _index(
        store,
        "/s/gpt.jsonl",
        [("user", "alpha rollout plan", "2025-01-02T00:00:00Z"), ("assistant", "alpha looks fine", None)],
        agent="gpt-4",
        last_message_at="2025-01-02T00:10:00Z",
    )
    await _index(
        store,
        "/s/claude.jsonl",
        [("user", "alpha alpha alpha incident", "2025-03-01T00:00:00Z")],
        agent="claude",
        last_message_at="2025-03-01T00:00:00Z",
    )
    await _index(
        store,
        "/s/other.jsonl",
        [("user", "unrelated beta work", "2025-02-01T00:00:00Z")],
        agent="gpt-4",
        last_message_at="2025-02-01T00:00:00Z",
    )


class TestBuildMatchQuery:
    """Tests for query text translation."""

    def test_literal_quotes_each_token(self) -> None:
        assert build_match_query("fix 2025-01-02 bug", QueryMode.LITERAL) == '"fix" "2025-01-02" "bug"'

    def test_literal_escapes_quotes(self) -> None:
        assert build_match_query('say "hi"', QueryMode.LITERAL) == '"say" """hi"""'

    def test_fts_passes_through(self) -> None:
        assert build_match_query("  alpha OR beta ", QueryMode.FTS) == "alpha OR beta"

    @pytest.mark.parametrize("query", ["", "   ", "\n\t"])
    def test_blank_query_is_rejected(self, query: str) -> None:
        with pytest.raises(EmptyQueryError):
            build_match_query(query, QueryMode.LITERAL)


class TestSessionSearch:
    """Tests for session-scope search."""

    async def test_returns_ranked_session_hits(self, engine: QueryEngine, corpus: None) -> None:
        hits = await engine.search(SearchRequest(text="alpha", scope=SearchScope.SESSION))

        assert all(isinstance(hit, SessionHit) for hit in hits)
        assert {hit.path for hit in hits} == {"/s/gpt.jsonl", "/s/claude.jsonl"}
        assert [hit.score for hit in hits] == sorted(hit.score for hit in hits)

    async def test_agent_filter(self, engine: QueryEngine, corpus: None) -> None:
        request = SearchRequest(text="alpha", scope=SearchScope.SESSION, filters=SearchFilters(agent="gpt-4"))

        hits = await engine.search(request)

        assert [hit.path for hit in hits] == ["/s/gpt.jsonl"]
        assert hits[0].agent == "gpt-4"

    async def test_time_range_is_inclusive(self, engine: QueryEngine, corpus: None) -> None:
        request = SearchRequest(
            text="alpha",
            scope=SearchScope.SESSION,
            filters=SearchFilters(after="2025-03-01T00:00:00Z", before="2025-03-01T00:00:00Z"),
        )

        hits = await engine.search(request)

        assert [hit.path for hit in hits] == ["/s/claude.jsonl"]

    async def test_repo_filter_matches_name_or_root(self, store: IndexStore, engine: QueryEngine) -> None:
        await _index(
            store,
            "/s/repo.jsonl",
            [("user", "alpha in repo", None)],
            repo_root="/code/sessionsearch",
            repo_name="sessionsearch",
            branch="main",
        )
        await _index(store, "/s/norepo.jsonl", [("user", "alpha elsewhere", None)])

        by_name = await engine.search(
            SearchRequest(text="alpha", scope=SearchScope.SESSION, filters={"repo": "sessionsearch"})
        )
        by_root = await engine.search(
            SearchRequest(text="alpha", scope=SearchScope.SESSION, filters={"repo": "/code/sessionsearch"})
        )
        by_branch = await engine.search(
            SearchRequest(text="alpha", scope=SearchScope.SESSION, filters={"branch": "main"})
        )

        assert [hit.path for hit in by_name] == ["/s/repo.jsonl"]
        assert [hit.path for hit in by_root] == ["/s/repo.jsonl"]
        assert [hit.path for hit in by_branch] == ["/s/repo.jsonl"]
        assert by_name[0].repo_root == "/code/sessionsearch"

    async def test_limit(self, engine: QueryEngine, corpus: None) -> None:
        hits = await engine.search(SearchRequest(text="alpha", scope=SearchScope.SESSION, limit=1))

        assert len(hits) == 1


class TestMessageSearch:
    """Tests for message-scope search."""

    async def test_agent_filter(self, engine: QueryEngine, corpus: None) -> None:
        request = SearchRequest(text="alpha", filters=SearchFilters(agent="gpt-4"))

        hits = await engine.search(request)

        assert hits
        assert all(isinstance(hit, MessageHit) for hit in hits)
        assert {hit.path for hit in hits} == {"/s/gpt.jsonl"}

    async def test_role_filter(self, engine: QueryEngine, corpus: None) -> None:
        hits = await engine.search(SearchRequest(text="alpha", filters=SearchFilters(role="assistant")))

        assert [(hit.path, hit.turn_index, hit.role) for hit in hits] == [("/s/gpt.jsonl", 1, "assistant")]

    async def test_timestamp_falls_back_to_session(self, engine: QueryEngine, corpus: None) -> None:
        hits = await engine.search(SearchRequest(text="fine"))

        assert [hit.timestamp for hit in hits] == ["2025-01-02T00:10:00Z"]

    async def test_ties_break_by_recency(self, store: IndexStore, engine: QueryEngine) -> None:
        await _index(store, "/s/old.jsonl", [("user", "gamma", "2024-01-01T00:00:00Z")])
        await _index(store, "/s/new.jsonl", [("user", "gamma", "2024-06-01T00:00:00Z")])

        hits = await engine.search(SearchRequest(text="gamma"))

        assert [hit.path for hit in hits] == ["/s/new.jsonl", "/s/old.jsonl"]

    async def test_context_window(self, store: IndexStore, engine: QueryEngine) -> None:
        await _index(
            store,
            "/s/long.jsonl",
            [(("user", "assistant")[i % 2], f"turn {i} {'needle' if i == 3 else 'hay'}", None) for i in range(7)],
        )

        [hit] = await engine.search(SearchRequest(text="needle", around=2))

        assert hit.turn_index == 3
        assert hit.context is not None
        assert [context.turn_index for context in hit.context] == [1, 2, 3, 4, 5]

    async def test_context_window_clamps_at_start(self, store: IndexStore, engine: QueryEngine) -> None:
        await _index(store, "/s/short.jsonl", [("user", "needle first", None), ("assistant", "reply", None)])

        [hit] = await engine.search(SearchRequest(text="needle", around=3))

        assert [context.turn_index for context in hit.context or []] == [0, 1]

    async def test_no_context_without_window(self, engine: QueryEngine, corpus: None) -> None:
        hits = await engine.search(SearchRequest(text="incident"))

        assert hits[0].context is None

    async def test_literal_mode_matches_punctuation(self, store: IndexStore, engine: QueryEngine) -> None:
        await _index(store, "/s/p.jsonl", [("user", "deploy failed on 2025-01-02 (again)", None)])

        hits = await engine.search(SearchRequest(text="2025-01-02 (again)"))

        assert [hit.path for hit in hits] == ["/s/p.jsonl"]


class TestQueryErrors:
    """Tests for rejected queries."""

    async def test_empty_query(self, engine: QueryEngine) -> None:
        with pytest.raises(EmptyQueryError):
            await engine.search(SearchRequest(text="   "))

    async def test_invalid_fts_syntax(self, engine: QueryEngine, corpus: None) -> None:
        with pytest.raises(InvalidQuerySyntaxError):
            await engine.search(SearchRequest(text='alpha AND "unterminated', mode=QueryMode.FTS))

    async def test_fts_mode_supports_operators(self, engine: QueryEngine, corpus: None) -> None:
        hits = await engine.search(
            SearchRequest(text="incident OR beta", mode=QueryMode.FTS, scope=SearchScope.SESSION)
        )

        assert {hit.path for hit in hits} == {"/s/claude.jsonl", "/s/other.jsonl"}
