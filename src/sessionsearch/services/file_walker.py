"""File walker service for discovering transcript files under a root."""

import asyncio
from collections.abc import AsyncIterator
from pathlib import Path

import structlog

from sessionsearch.models.enums import TranscriptFormat


class FileWalker:
    """Walks directories to discover transcripts of the supported formats.

    Matching is by file extension, case-insensitively. Uses asyncio.to_thread
    to avoid blocking the event loop during I/O.
    """

    def __init__(
        self,
        formats: list[TranscriptFormat] | None = None,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._formats = set(formats or TranscriptFormat)
        self._logger = logger or structlog.get_logger(__name__)

    async def walk(self, directory: Path) -> AsyncIterator[tuple[Path, TranscriptFormat]]:
        """Walk directory recursively and yield transcript files in path order.

        Args:
            directory: Root directory to walk.

        Yields:
            Tuples of file path and the format declared by its extension.

        Raises:
            FileNotFoundError: If directory does not exist.
            NotADirectoryError: If path is not a directory.
        """
        if not directory.exists():
            raise FileNotFoundError(f"Directory not found: {directory}")
        if not directory.is_dir():
            raise NotADirectoryError(f"Path is not a directory: {directory}")

        self._logger.info(
            "directory_walk_started",
            directory=str(directory),
            formats=sorted(fmt.value for fmt in self._formats),
        )

        files = await asyncio.to_thread(self._discover_files, directory)
        for file_path, fmt in files:
            yield file_path, fmt

        self._logger.info(
            "directory_walk_completed",
            directory=str(directory),
            file_count=len(files),
        )

    def _discover_files(self, directory: Path) -> list[tuple[Path, TranscriptFormat]]:
        """Synchronously collect matching files."""
        found = []
        for file_path in sorted(directory.rglob("*")):
            if not file_path.is_file():
                continue
            fmt = TranscriptFormat.from_suffix(file_path.suffix)
            if fmt is not None and fmt in self._formats:
                found.append((file_path, fmt))
        return found
