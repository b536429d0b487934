from pydantic import Field

from sessionsearch.models.base import FrozenModel


class MessageContext(FrozenModel):
    """A neighboring message returned alongside a message hit."""

    turn_index: int = Field(ge=0)
    role: str | None = None
    timestamp: str | None = None
    text: str = ""


class SessionHit(FrozenModel):
    path: str
    title: str | None = None
    agent: str | None = None
    workspace: str | None = None
    repo_root: str | None = None
    repo_name: str | None = None
    branch: str | None = None
    last_message_at: str | None = None
    snippet: str | None = None
    score: float


class MessageHit(FrozenModel):
    path: str
    title: str | None = None
    agent: str | None = None
    workspace: str | None = None
    repo_root: str | None = None
    repo_name: str | None = None
    branch: str | None = None
    turn_index: int = Field(ge=0)
    role: str | None = None
    timestamp: str | None = None
    text: str = ""
    score: float
    context: list[MessageContext] | None = None


__all__ = ["SessionHit", "MessageHit", "MessageContext"]
