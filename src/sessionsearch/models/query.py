from typing import Any

from pydantic import Field, field_validator

from sessionsearch.models.base import FrozenModel, blank_to_none, normalize_role
from sessionsearch.models.enums import QueryMode, SearchScope

DEFAULT_LIMIT = 10


class SearchFilters(FrozenModel):
    agent: str | None = None
    workspace: str | None = None
    repo: str | None = None
    branch: str | None = None
    role: str | None = None
    after: str | None = None
    before: str | None = None

    @field_validator("agent", "workspace", "repo", "branch", "after", "before", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        return blank_to_none(value)

    @field_validator("role", mode="before")
    @classmethod
    def _normalize_role(cls, value: Any) -> str | None:
        return normalize_role(value)


class SearchRequest(FrozenModel):
    text: str
    scope: SearchScope = SearchScope.MESSAGE
    mode: QueryMode = QueryMode.LITERAL
    filters: SearchFilters = Field(default_factory=SearchFilters)
    limit: int = DEFAULT_LIMIT
    around: int = Field(default=0, ge=0)

    @field_validator("limit", mode="before")
    @classmethod
    def _normalize_limit(cls, value: Any) -> int:
        if value is None or int(value) <= 0:
            return DEFAULT_LIMIT
        return int(value)

    @field_validator("filters", mode="before")
    @classmethod
    def _coerce_filters(cls, value: Any) -> SearchFilters:
        if isinstance(value, SearchFilters):
            return value
        if value is None:
            return SearchFilters()
        return SearchFilters.model_validate(value)


__all__ = ["SearchRequest", "SearchFilters", "DEFAULT_LIMIT"]
