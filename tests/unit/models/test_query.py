import pytest
from pydantic import ValidationError

from sessionsearch.models.enums import QueryMode, SearchScope
from sessionsearch.models.query import DEFAULT_LIMIT, SearchFilters, SearchRequest


def test_search_request_defaults() -> None:
    request = SearchRequest(text="find me")

    assert request.scope is SearchScope.MESSAGE
    assert request.mode is QueryMode.LITERAL
    assert request.limit == DEFAULT_LIMIT
    assert request.around == 0
    assert request.filters == SearchFilters()


@pytest.mark.parametrize("limit", [0, -3, None])
def test_non_positive_limit_falls_back_to_default(limit: int | None) -> None:
    request = SearchRequest(text="find me", limit=limit)

    assert request.limit == DEFAULT_LIMIT


def test_positive_limit_is_kept() -> None:
    assert SearchRequest(text="find me", limit=3).limit == 3


def test_negative_around_is_rejected() -> None:
    with pytest.raises(ValidationError):
        SearchRequest(text="find me", around=-1)


def test_filters_blank_strings_become_none() -> None:
    filters = SearchFilters(agent="  ", workspace="", repo="sessionsearch")

    assert filters.agent is None
    assert filters.workspace is None
    assert filters.repo == "sessionsearch"


def test_filters_normalize_role() -> None:
    assert SearchFilters(role=" Assistant ").role == "assistant"
    assert SearchFilters(role="   ").role is None


def test_request_accepts_filters_as_mapping() -> None:
    request = SearchRequest(text="alpha", filters={"agent": "gpt-4"})

    assert request.filters.agent == "gpt-4"


def test_filters_reject_unknown_fields() -> None:
    with pytest.raises(ValidationError):
        SearchFilters(project="x")


def test_request_is_frozen() -> None:
    request = SearchRequest(text="alpha")

    with pytest.raises(ValidationError):
        request.limit = 5
