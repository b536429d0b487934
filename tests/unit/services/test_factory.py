"""Tests for the service factory module."""

import json
from pathlib import Path

from sessionsearch.config import AppConfig
from sessionsearch.models.query import SearchRequest
from sessionsearch.services.factory import Services, create_services, create_test_services
from sessionsearch.services.index_store import IndexStore
from sessionsearch.services.inspector import SessionInspector
from sessionsearch.services.query_engine import QueryEngine
from sessionsearch.services.reports import ReportService
from sessionsearch.services.synchronizer import SyncService


class TestCreateServices:
    """Tests for create_services factory."""

    def test_creates_service_graph(self, tmp_path: Path) -> None:
        config = AppConfig(db_path=tmp_path / "index.sqlite", sessions_root=tmp_path)

        services = create_services(config)

        assert isinstance(services, Services)
        assert isinstance(services.index_store, IndexStore)
        assert isinstance(services.sync, SyncService)
        assert isinstance(services.query, QueryEngine)
        assert isinstance(services.inspector, SessionInspector)
        assert isinstance(services.reports, ReportService)

    def test_creates_database_directory(self, tmp_path: Path) -> None:
        db_dir = tmp_path / "nested" / "config"
        assert not db_dir.exists()

        create_services(AppConfig(db_path=db_dir / "index.sqlite", sessions_root=tmp_path))

        assert db_dir.exists()

    async def test_context_manager_initializes_schema(self, tmp_path: Path) -> None:
        db_path = tmp_path / "index.sqlite"

        async with create_services(AppConfig(db_path=db_path, sessions_root=tmp_path)) as services:
            stats = await services.reports.load_stats()

        assert stats.session_count == 0
        assert db_path.exists()


class TestCreateTestServices:
    """Tests for create_test_services factory."""

    async def test_index_and_search_end_to_end(self, tmp_path: Path) -> None:
        lines = [{"role": "user", "content": "hello"}, {"role": "assistant", "content": "hi there"}]
        (tmp_path / "a.jsonl").write_text("\n".join(json.dumps(line) for line in lines))

        async with create_test_services(git_executable="sessionsearch-test-missing-git") as services:
            result = await services.sync.sync(tmp_path)
            hits = await services.query.search(SearchRequest(text="hello"))

        assert result.indexed == 1
        assert [hit.turn_index for hit in hits] == [0]

    async def test_instances_are_isolated(self) -> None:
        async with create_test_services() as first, create_test_services() as second:
            assert first.index_store is not second.index_store
            assert (await first.reports.load_stats()).session_count == 0
            assert (await second.reports.load_stats()).session_count == 0
