from sessionsearch.models.enums import QueryMode, SearchScope, TranscriptFormat
from sessionsearch.models.hit import MessageContext, MessageHit, SessionHit
from sessionsearch.models.inspect import ReadExcerpt, SessionEntry, ToolCall, ToolCallMatch
from sessionsearch.models.query import SearchFilters, SearchRequest
from sessionsearch.models.report import AgentInfo, DoctorReport, StatsReport
from sessionsearch.models.session import (
    IndexedSession,
    MessageRecord,
    ParsedMessage,
    ParsedSession,
    SessionRecord,
)

__all__ = [
    "ParsedMessage",
    "ParsedSession",
    "SessionRecord",
    "MessageRecord",
    "IndexedSession",
    "SearchRequest",
    "SearchFilters",
    "SessionHit",
    "MessageHit",
    "MessageContext",
    "SessionEntry",
    "ToolCall",
    "ToolCallMatch",
    "ReadExcerpt",
    "StatsReport",
    "AgentInfo",
    "DoctorReport",
    "TranscriptFormat",
    "SearchScope",
    "QueryMode",
]
