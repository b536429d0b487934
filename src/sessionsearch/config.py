"""Application configuration passed explicitly into the service factory."""

import os
from pathlib import Path

from pydantic import BaseModel, ConfigDict, field_validator

CONFIG_DIR = Path("~/.config/sessionsearch")
DEFAULT_DB_PATH = CONFIG_DIR / "index.sqlite"
DEFAULT_SESSIONS_ROOT = CONFIG_DIR / "sessions"


def expand_home(path: str | Path) -> Path:
    """Expand a leading ``~`` using ``$HOME``; other paths are returned unchanged."""
    text = str(path)
    home = os.environ.get("HOME")
    if home is None:
        return Path(text)
    if text == "~":
        return Path(home)
    if text.startswith("~/"):
        return Path(home) / text[2:]
    return Path(text)


class AppConfig(BaseModel):
    db_path: Path
    sessions_root: Path

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("db_path", "sessions_root", mode="before")
    @classmethod
    def _expand_home(cls, value: str | Path) -> Path:
        return expand_home(value)

    @classmethod
    def resolve(
        cls,
        db_path: str | Path | None = None,
        sessions_root: str | Path | None = None,
    ) -> "AppConfig":
        return cls(
            db_path=db_path or DEFAULT_DB_PATH,
            sessions_root=sessions_root or DEFAULT_SESSIONS_ROOT,
        )
