"""Repository context inference for indexed sessions.

Resolves a session's workspace directory to a git repository root, name and
current branch. Git is asked synchronously through subprocess; any failure
leaves the fields empty, since this is best-effort metadata.
"""

import asyncio
import subprocess
from pathlib import Path

import structlog
from pydantic import BaseModel, ConfigDict

from sessionsearch.config import expand_home

GIT_TIMEOUT_SECONDS = 5.0


class RepoContext(BaseModel):
    repo_root: str | None = None
    repo_name: str | None = None
    branch: str | None = None

    model_config = ConfigDict(frozen=True)


class RepoContextResolver:
    """Looks up repository context per workspace, memoized for its lifetime.

    Create one per synchronizer run so that a workspace queried twice in the
    same scan runs git only once.
    """

    def __init__(
        self,
        git_executable: str = "git",
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        self._git = git_executable
        self._cache: dict[Path, RepoContext] = {}
        self._logger = logger or structlog.get_logger(__name__)

    async def resolve(self, workspace: Path | None) -> RepoContext:
        if workspace is None:
            return RepoContext()

        cached = self._cache.get(workspace)
        if cached is not None:
            return cached

        context = await asyncio.to_thread(self._query, workspace)
        self._cache[workspace] = context
        return context

    def _query(self, workspace: Path) -> RepoContext:
        toplevel = self._git_output(workspace, "rev-parse", "--show-toplevel")
        if toplevel is None:
            self._logger.debug("repo_context_unavailable", workspace=str(workspace))
            return RepoContext()

        try:
            repo_root = Path(toplevel).resolve(strict=True)
        except OSError:
            return RepoContext()
        if not repo_root.is_dir():
            return RepoContext()

        branch = self._git_output(repo_root, "rev-parse", "--abbrev-ref", "HEAD")
        if branch == "HEAD":
            branch = None

        return RepoContext(repo_root=str(repo_root), repo_name=repo_root.name or None, branch=branch)

    def _git_output(self, directory: Path, *args: str) -> str | None:
        try:
            completed = subprocess.run(
                [self._git, *args],
                cwd=directory,
                capture_output=True,
                text=True,
                timeout=GIT_TIMEOUT_SECONDS,
                check=False,
            )
        except (OSError, subprocess.SubprocessError) as e:
            self._logger.debug("git_query_failed", directory=str(directory), error=str(e))
            return None

        if completed.returncode != 0:
            return None
        output = completed.stdout.strip()
        return output or None


def workspace_from_meta(workspace: str | None) -> Path | None:
    """Use a declared workspace only when it names an existing directory."""
    if not workspace:
        return None
    path = expand_home(workspace)
    return path if path.is_dir() else None


def decode_workspace_from_session_path(session_path: Path) -> Path | None:
    """Decode a workspace flattened into the parent directory name.

    ``--Users--alice--project--`` decodes to ``/Users/alice/project``.
    """
    component = session_path.parent.name
    if "--" not in component:
        return None

    decoded = component.replace("--", "/")
    while "//" in decoded:
        decoded = decoded.replace("//", "/")
    if not decoded.startswith("/"):
        decoded = "/" + decoded

    path = Path(decoded)
    return path if path.is_dir() else None


def infer_agent_from_root(root: Path) -> str | None:
    """Infer an agent name from the sessions root.

    ``~/.config/marvin/sessions`` gives ``marvin``; any other root gives its
    own directory name.
    """
    name = root.name
    if not name:
        return None
    if name == "sessions":
        return root.parent.name or None
    return name
