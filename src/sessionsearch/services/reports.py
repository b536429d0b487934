"""Report service for aggregate statistics and health checks over the index."""

from pathlib import Path

import structlog
from sqlalchemy import text

from sessionsearch.errors import StoreError
from sessionsearch.models.report import AgentInfo, DoctorReport, StatsReport
from sessionsearch.services.index_store import IndexStore, create_async_engine_from_path

UNKNOWN_AGENT = "(unknown)"

STATS_SQL = text(
    """
    SELECT COUNT(*) AS session_count,
           MIN(last_message_at) AS oldest_message_at,
           MAX(last_message_at) AS newest_message_at
    FROM sessions
    """
)

AGENTS_SQL = text(
    """
    SELECT COALESCE(agent, :unknown) AS name, COUNT(*) AS session_count
    FROM sessions
    GROUP BY agent
    ORDER BY session_count DESC, name ASC
    """
)


class ReportService:
    """Read-only summaries of what the index holds."""

    def __init__(
        self,
        index_store: IndexStore,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._index_store = index_store
        self._logger = logger or structlog.get_logger(__name__)

    async def load_stats(self) -> StatsReport:
        """Count sessions and report the range of their last-message timestamps."""
        rows = await self._index_store.fetch_all("load_stats", STATS_SQL)
        return StatsReport.model_validate(rows[0])

    async def load_agents(self) -> list[AgentInfo]:
        """List agents by number of indexed sessions, most first."""
        rows = await self._index_store.fetch_all("load_agents", AGENTS_SQL, {"unknown": UNKNOWN_AGENT})
        return [AgentInfo.model_validate(row) for row in rows]


async def run_doctor(
    db_path: Path,
    root: Path,
    logger: structlog.stdlib.BoundLogger | None = None,
) -> DoctorReport:
    """Check the sessions root, the index file and FTS5 support.

    Store problems are reported in the result rather than raised. An index
    file that does not exist is left uncreated.
    """
    logger = logger or structlog.get_logger(__name__)

    schema_ok = False
    schema_error = None
    indexed_sessions = 0
    newest_message_at = None

    db_exists = db_path.exists()
    if db_exists:
        store = IndexStore(create_async_engine_from_path(str(db_path)), logger=logger)
        try:
            stats = await ReportService(store, logger=logger).load_stats()
        except StoreError as e:
            schema_error = str(e.cause)
        else:
            schema_ok = True
            indexed_sessions = stats.session_count
            newest_message_at = stats.newest_message_at
        finally:
            await store.close()

    report = DoctorReport(
        root=root,
        root_exists=root.is_dir(),
        db_path=db_path,
        db_exists=db_exists,
        schema_ok=schema_ok,
        schema_error=schema_error,
        fts5_available=await _fts5_available(logger),
        indexed_sessions=indexed_sessions,
        newest_message_at=newest_message_at,
    )
    logger.info("doctor_completed", schema_ok=report.schema_ok, fts5_available=report.fts5_available)
    return report


async def _fts5_available(logger: structlog.stdlib.BoundLogger) -> bool:
    """Create the full schema in a throwaway in-memory database."""
    store = IndexStore(create_async_engine_from_path(":memory:"), logger=logger)
    try:
        await store.initialize_schema()
    except StoreError as e:
        logger.warning("fts5_unavailable", error=str(e.cause))
        return False
    finally:
        await store.close()
    return True
