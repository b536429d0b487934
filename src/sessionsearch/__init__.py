"""sessionsearch - Full-text search over AI agent session transcripts."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("sessionsearch")
except PackageNotFoundError:
    __version__ = "unknown"

__all__ = ["__version__"]
