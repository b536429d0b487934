from enum import StrEnum


class TranscriptFormat(StrEnum):
    JSONL = "jsonl"
    JSON = "json"
    MARKDOWN = "md"

    @classmethod
    def from_suffix(cls, suffix: str) -> "TranscriptFormat | None":
        try:
            return cls(suffix.lower().lstrip("."))
        except ValueError:
            return None


class SearchScope(StrEnum):
    SESSION = "session"
    MESSAGE = "message"


class QueryMode(StrEnum):
    LITERAL = "literal"
    FTS = "fts"
