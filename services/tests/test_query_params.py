"""
Tests for query-string building.
"""

from datetime import datetime, timezone

import pytest

from services.utils.query_params import QueryParams, ResourcePath


def test_multi_valued_keys_keep_order() -> None:
    params = QueryParams().add("state[]", "available").extend("include[]", ["term", "teachers"])

    assert params.encode() == "state[]=available&include[]=term&include[]=teachers"


def test_value_formatting() -> None:
    params = (
        QueryParams()
        .add("latest_only", False)
        .add("per_page", 50)
        .add("due_after", datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc))
        .add("due_before", None)
    )

    assert params.encode() == (
        "latest_only=false&per_page=50&due_after=2025-01-02T03%3A04%3A05%2B00%3A00"
    )
    assert len(params) == 3


def test_unknown_key_rejected() -> None:
    params = QueryParams({"per_page"})

    with pytest.raises(ValueError, match="Unsupported query parameter 'order'"):
        params.add("order", "due_at")


def test_resource_path_render() -> None:
    assert ResourcePath("/api/v1/users/self").render() == "/api/v1/users/self"
    path = ResourcePath("/api/v1/announcements", QueryParams().add("context_codes[]", "course_1"))
    assert str(path) == "/api/v1/announcements?context_codes[]=course_1"
