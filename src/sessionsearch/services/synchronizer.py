"""Synchronizer service that keeps the index consistent with a transcript tree.

Walks a root directory, compares each transcript's (mtime, size) with what
was indexed, re-normalizes only files that changed, and removes sessions
whose files vanished or stopped parsing. The whole run is one transaction.
"""

import asyncio
from pathlib import Path

import structlog
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncConnection

from sessionsearch.errors import ParseError
from sessionsearch.models.enums import TranscriptFormat
from sessionsearch.models.session import SessionRecord
from sessionsearch.services.file_walker import FileWalker
from sessionsearch.services.index_store import IndexStore
from sessionsearch.services.normalizer import Normalizer
from sessionsearch.services.repo_context import (
    RepoContextResolver,
    decode_workspace_from_session_path,
    infer_agent_from_root,
    workspace_from_meta,
)


class SyncResult(BaseModel):
    """Counters of one synchronizer run."""

    scanned: int = Field(default=0, ge=0)
    indexed: int = Field(default=0, ge=0)
    skipped: int = Field(default=0, ge=0)
    removed: int = Field(default=0, ge=0)
    parse_errors: int = Field(default=0, ge=0)
    errors: list[str] = Field(default_factory=list)


class SyncService:
    """Orchestrates incremental indexing of a transcript directory.

    All dependencies are injected via constructor for testability. The
    repository context cache is created fresh for every run.
    """

    def __init__(
        self,
        file_walker: FileWalker,
        normalizer: Normalizer,
        index_store: IndexStore,
        git_executable: str = "git",
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._file_walker = file_walker
        self._normalizer = normalizer
        self._index_store = index_store
        self._git_executable = git_executable
        self._logger = logger or structlog.get_logger(__name__)

    async def sync(self, root: Path, force_full: bool = False) -> SyncResult:
        """Bring the index in line with the transcripts under root.

        Args:
            root: Root directory holding transcript files.
            force_full: Re-parse every file even when its (mtime, size) matches.

        Returns:
            SyncResult with the run's counters.

        Raises:
            FileNotFoundError: If root does not exist.
            NotADirectoryError: If root is not a directory.
            StoreError: If the store fails; nothing from this run is committed.
        """
        self._logger.info("sync_started", root=str(root), force_full=force_full)

        result = SyncResult()
        resolver = RepoContextResolver(git_executable=self._git_executable, logger=self._logger)
        seen: set[str] = set()

        async with self._index_store.transaction() as conn:
            existing = {
                entry.path: (entry.mtime, entry.size) for entry in await self._index_store.load_indexed_sessions(conn)
            }

            async for file_path, fmt in self._file_walker.walk(root):
                result.scanned += 1
                path_str = str(file_path)
                seen.add(path_str)
                await self._sync_file(conn, root, file_path, fmt, existing, force_full, resolver, result)

            for path_str in existing:
                if path_str not in seen:
                    await self._index_store.remove_session(path_str, conn)
                    result.removed += 1
                    self._logger.debug("missing_session_removed", path=path_str)

        self._logger.info(
            "sync_completed",
            root=str(root),
            scanned=result.scanned,
            indexed=result.indexed,
            skipped=result.skipped,
            removed=result.removed,
            parse_errors=result.parse_errors,
        )
        return result

    async def _sync_file(
        self,
        conn: AsyncConnection,
        root: Path,
        file_path: Path,
        fmt: TranscriptFormat,
        existing: dict[str, tuple[int, int]],
        force_full: bool,
        resolver: RepoContextResolver,
        result: SyncResult,
    ) -> None:
        path_str = str(file_path)

        try:
            stat = await asyncio.to_thread(file_path.stat)
        except OSError as e:
            self._record_failure(path_str, e, result)
            await self._remove_stale(conn, path_str, existing, result)
            return
        mtime = int(stat.st_mtime)
        size = stat.st_size

        if not force_full and existing.get(path_str) == (mtime, size):
            result.skipped += 1
            self._logger.debug("file_skipped_unchanged", file_path=path_str)
            return

        try:
            raw = await asyncio.to_thread(file_path.read_bytes)
            parsed = self._normalizer.normalize(fmt, raw)
        except (OSError, ParseError) as e:
            self._record_failure(path_str, e, result)
            await self._remove_stale(conn, path_str, existing, result)
            return

        record, messages = parsed.to_records(path_str, mtime, size)
        record = await self._with_context(record, root, file_path, resolver)

        await self._index_store.upsert_session(record, conn)
        await self._index_store.replace_messages(record.path, messages, conn)
        result.indexed += 1

        self._logger.debug(
            "session_indexed",
            file_path=path_str,
            message_count=record.message_count,
            repo_name=record.repo_name,
        )

    async def _with_context(
        self,
        record: SessionRecord,
        root: Path,
        file_path: Path,
        resolver: RepoContextResolver,
    ) -> SessionRecord:
        """Fill in agent and repository fields not found in the transcript."""
        workspace = workspace_from_meta(record.workspace) or decode_workspace_from_session_path(file_path)
        context = await resolver.resolve(workspace)
        return record.model_copy(
            update={
                "agent": record.agent or infer_agent_from_root(root),
                "repo_root": context.repo_root,
                "repo_name": context.repo_name,
                "branch": context.branch,
            }
        )

    async def _remove_stale(
        self,
        conn: AsyncConnection,
        path_str: str,
        existing: dict[str, tuple[int, int]],
        result: SyncResult,
    ) -> None:
        if path_str not in existing:
            return
        await self._index_store.remove_session(path_str, conn)
        result.removed += 1
        self._logger.info("stale_session_removed", file_path=path_str)

    def _record_failure(self, path_str: str, error: Exception, result: SyncResult) -> None:
        result.parse_errors += 1
        result.errors.append(f"{path_str}: {error}")
        self._logger.warning("file_parse_failed", file_path=path_str, error=str(error))
