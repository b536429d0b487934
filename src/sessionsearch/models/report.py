from pathlib import Path

from sessionsearch.models.base import FrozenModel


class StatsReport(FrozenModel):
    session_count: int
    oldest_message_at: str | None = None
    newest_message_at: str | None = None


class AgentInfo(FrozenModel):
    name: str
    session_count: int


class DoctorReport(FrozenModel):
    root: Path
    root_exists: bool
    db_path: Path
    db_exists: bool
    schema_ok: bool
    schema_error: str | None = None
    fts5_available: bool
    indexed_sessions: int = 0
    newest_message_at: str | None = None


__all__ = ["StatsReport", "AgentInfo", "DoctorReport"]
