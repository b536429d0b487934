"""Query engine service for ranked full-text search over the index.

Relevance comes from SQLite FTS5's bm25(), where lower scores are more
relevant. Structured filters are applied in the same statement, and
message hits can be enriched with a window of neighboring turns.
"""

from typing import Any

import structlog
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from sessionsearch.errors import EmptyQueryError, InvalidQuerySyntaxError, StoreError
from sessionsearch.models.enums import QueryMode, SearchScope
from sessionsearch.models.hit import MessageContext, MessageHit, SessionHit
from sessionsearch.models.query import SearchRequest
from sessionsearch.services.index_store import IndexStore

FIND_SESSIONS_SQL = text(
    """
    SELECT s.path,
           s.title,
           s.agent,
           s.workspace,
           s.repo_root,
           s.repo_name,
           s.branch,
           s.last_message_at,
           s.snippet,
           bm25(sessions_fts) AS score
    FROM sessions_fts
    JOIN sessions s ON s.path = sessions_fts.path
    WHERE sessions_fts MATCH :query
      AND (:agent IS NULL OR s.agent = :agent)
      AND (:workspace IS NULL OR s.workspace = :workspace)
      AND (:repo IS NULL OR s.repo_name = :repo OR s.repo_root = :repo)
      AND (:branch IS NULL OR s.branch = :branch)
      AND (:after IS NULL OR s.last_message_at >= :after)
      AND (:before IS NULL OR s.last_message_at <= :before)
    ORDER BY score ASC, s.last_message_at DESC
    LIMIT :limit
    """
)

FIND_MESSAGES_SQL = text(
    """
    SELECT s.path,
           s.title,
           s.agent,
           s.workspace,
           s.repo_root,
           s.repo_name,
           s.branch,
           m.turn_index,
           m.role,
           COALESCE(m.timestamp, s.last_message_at) AS effective_timestamp,
           m.text,
           bm25(messages_fts) AS score
    FROM messages_fts
    JOIN messages m ON m.id = messages_fts.message_id
    JOIN sessions s ON s.path = m.session_path
    WHERE messages_fts MATCH :query
      AND (:agent IS NULL OR s.agent = :agent)
      AND (:workspace IS NULL OR s.workspace = :workspace)
      AND (:repo IS NULL OR s.repo_name = :repo OR s.repo_root = :repo)
      AND (:branch IS NULL OR s.branch = :branch)
      AND (:role IS NULL OR m.role = :role)
      AND (:after IS NULL OR COALESCE(m.timestamp, s.last_message_at) >= :after)
      AND (:before IS NULL OR COALESCE(m.timestamp, s.last_message_at) <= :before)
    ORDER BY score ASC, effective_timestamp DESC
    LIMIT :limit
    """
)

CONTEXT_SQL = text(
    """
    SELECT turn_index, role, timestamp, text
    FROM messages
    WHERE session_path = :path
      AND turn_index BETWEEN :start AND :end
    ORDER BY turn_index ASC
    """
)

# Fragments of SQLite errors caused by the query text rather than the store.
_SYNTAX_ERROR_MARKERS = (
    "fts5",
    "syntax error",
    "unterminated string",
    "no such column",
    "unknown special query",
)


class QueryEngine:
    """Translates search requests into ranked session or message hits."""

    def __init__(
        self,
        index_store: IndexStore,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._index_store = index_store
        self._logger = logger or structlog.get_logger(__name__)

    async def search(self, request: SearchRequest) -> list[SessionHit] | list[MessageHit]:
        """Run a search in the request's scope.

        Raises:
            EmptyQueryError: If the query text is blank.
            InvalidQuerySyntaxError: If a raw FTS query is rejected by the engine.
            StoreError: If the store fails for any other reason.
        """
        if request.scope is SearchScope.SESSION:
            return await self.search_sessions(request)
        return await self.search_messages(request)

    async def search_sessions(self, request: SearchRequest) -> list[SessionHit]:
        match_query = build_match_query(request.text, request.mode)
        filters = request.filters
        params = {
            "query": match_query,
            "agent": filters.agent,
            "workspace": filters.workspace,
            "repo": filters.repo,
            "branch": filters.branch,
            "after": filters.after,
            "before": filters.before,
            "limit": request.limit,
        }

        rows = await self._fetch("search_sessions", FIND_SESSIONS_SQL, params, request)
        hits = [SessionHit.model_validate(row) for row in rows]

        self._logger.info("search_completed", scope=SearchScope.SESSION.value, hit_count=len(hits))
        return hits

    async def search_messages(self, request: SearchRequest) -> list[MessageHit]:
        match_query = build_match_query(request.text, request.mode)
        filters = request.filters
        params = {
            "query": match_query,
            "agent": filters.agent,
            "workspace": filters.workspace,
            "repo": filters.repo,
            "branch": filters.branch,
            "role": filters.role,
            "after": filters.after,
            "before": filters.before,
            "limit": request.limit,
        }

        rows = await self._fetch("search_messages", FIND_MESSAGES_SQL, params, request)

        hits = []
        for row in rows:
            data = dict(row)
            data["timestamp"] = data.pop("effective_timestamp")
            data["text"] = data["text"] or ""
            if request.around > 0:
                data["context"] = await self.load_context(data["path"], data["turn_index"], request.around)
            hits.append(MessageHit.model_validate(data))

        self._logger.info("search_completed", scope=SearchScope.MESSAGE.value, hit_count=len(hits))
        return hits

    async def load_context(self, session_path: str, turn_index: int, around: int) -> list[MessageContext]:
        """Load the messages within ``around`` turns of a hit, in turn order."""
        rows = await self._index_store.fetch_all(
            "load_context",
            CONTEXT_SQL,
            {"path": session_path, "start": max(0, turn_index - around), "end": turn_index + around},
        )
        return [MessageContext.model_validate({**row, "text": row["text"] or ""}) for row in rows]

    async def _fetch(
        self,
        operation: str,
        statement: Any,
        params: dict[str, Any],
        request: SearchRequest,
    ) -> list[Any]:
        try:
            return await self._index_store.fetch_all(operation, statement, params)
        except StoreError as e:
            if request.mode is QueryMode.FTS and _is_syntax_error(e):
                raise InvalidQuerySyntaxError(request.text, str(e.cause.orig)) from e
            raise


def build_match_query(query: str, mode: QueryMode) -> str:
    """Turn user query text into an FTS5 MATCH expression.

    Literal mode quotes every whitespace-separated token as a phrase, so
    dates and punctuation match as written; tokens are implicitly ANDed.
    """
    query = query.strip()
    if not query:
        raise EmptyQueryError()
    if mode is QueryMode.FTS:
        return query
    return " ".join('"' + token.replace('"', '""') + '"' for token in query.split())


def _is_syntax_error(error: StoreError) -> bool:
    if not isinstance(error.cause, OperationalError):
        return False
    message = str(error.cause.orig).lower()
    return any(marker in message for marker in _SYNTAX_ERROR_MARKERS)
