"""Factory functions for creating and wiring the session search services.

Provides a production factory backed by the SQLite file named in the
configuration and a test factory that uses an in-memory store for fast,
isolated testing.
"""

from types import TracebackType

import structlog

from sessionsearch.config import AppConfig
from sessionsearch.services.file_walker import FileWalker
from sessionsearch.services.index_store import IndexStore, create_async_engine_from_path
from sessionsearch.services.inspector import SessionInspector
from sessionsearch.services.normalizer import Normalizer
from sessionsearch.services.query_engine import QueryEngine
from sessionsearch.services.reports import ReportService
from sessionsearch.services.synchronizer import SyncService


class Services:
    """The wired service graph sharing one index store.

    Use as an async context manager: entering initializes the schema,
    leaving disposes of the engine.
    """

    def __init__(
        self,
        index_store: IndexStore,
        sync: SyncService,
        query: QueryEngine,
        inspector: SessionInspector,
        reports: ReportService,
    ) -> None:
        self.index_store = index_store
        self.sync = sync
        self.query = query
        self.inspector = inspector
        self.reports = reports

    async def __aenter__(self) -> "Services":
        await self.index_store.initialize_schema()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def close(self) -> None:
        await self.index_store.close()


def create_services(config: AppConfig, git_executable: str = "git") -> Services:
    """Create production services persisted to ``config.db_path``.

    The parent directory of the database file is created if missing.

    Args:
        config: Resolved application configuration.
        git_executable: Executable used for repository-context queries.

    Returns:
        Services ready to be entered with ``async with``.
    """
    config.db_path.parent.mkdir(parents=True, exist_ok=True)
    return _wire(str(config.db_path), git_executable)


def create_test_services(git_executable: str = "git") -> Services:
    """Create services with in-memory storage for testing.

    Each call creates an independent database, so tests don't interfere.
    """
    return _wire(":memory:", git_executable)


def _wire(db_path: str, git_executable: str) -> Services:
    logger = structlog.get_logger(__name__)

    engine = create_async_engine_from_path(db_path)
    index_store = IndexStore(engine=engine, logger=logger)
    normalizer = Normalizer(logger=logger)

    sync = SyncService(
        file_walker=FileWalker(logger=logger),
        normalizer=normalizer,
        index_store=index_store,
        git_executable=git_executable,
        logger=logger,
    )

    return Services(
        index_store=index_store,
        sync=sync,
        query=QueryEngine(index_store=index_store, logger=logger),
        inspector=SessionInspector(logger=logger),
        reports=ReportService(index_store=index_store, logger=logger),
    )
