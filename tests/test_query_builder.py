"""Unit tests for LRSQueryBuilder."""

import json

import pytest

from lrs_analytics.errors import ParameterValidationError
from lrs_analytics.query_builder import LRSQueryBuilder


@pytest.mark.unit
class TestLRSQueryBuilder:
    """Test cases for the fluent query builder."""

    def test_chained_calls_build_string_params(self):
        """Test that every value is string-encoded."""
        params = (
            LRSQueryBuilder()
            .activity("https://lms.example/course/42")
            .related_activities(True)
            .ascending(False)
            .limit(500)
            .build()
        )
        assert params == {
            "activity": "https://lms.example/course/42",
            "related_activities": "true",
            "limit": "500",
            "ascending": "false",
        }

    def test_order_independent(self):
        """Test that call order does not change the output."""
        a = LRSQueryBuilder().since("2025-01-01T00:00:00Z").verb("v").build_string()
        b = LRSQueryBuilder().verb("v").since("2025-01-01T00:00:00Z").build_string()
        assert a == b

    def test_agent_serialized_as_json(self):
        """Test that the agent filter is compact JSON."""
        params = LRSQueryBuilder.for_actor("https://lms.example", "user-1").build()
        assert json.loads(params["agent"]) == {
            "objectType": "Agent",
            "account": {"homePage": "https://lms.example", "name": "user-1"},
        }

    @pytest.mark.parametrize("limit", [-1, 1001])
    def test_limit_out_of_range(self, limit):
        """Test that limits outside [0, 1000] are rejected."""
        with pytest.raises(ParameterValidationError):
            LRSQueryBuilder().limit(limit)

    def test_limit_bounds_accepted(self):
        """Test that 0 and 1000 are valid limits."""
        assert LRSQueryBuilder().limit(0).build() == {"limit": "0"}
        assert LRSQueryBuilder().limit(1000).build() == {"limit": "1000"}

    def test_unknown_format(self):
        """Test that an unknown format is rejected."""
        with pytest.raises(ParameterValidationError):
            LRSQueryBuilder().format("verbose")

    def test_build_string_is_url_encoded(self):
        """Test the query string encoding."""
        query = LRSQueryBuilder.for_course("https://lms.example/course/42").build_string()
        assert query == "activity=https%3A%2F%2Flms.example%2Fcourse%2F42&related_activities=true"

    def test_from_filters_skips_none(self):
        """Test that None filters are left out."""
        params = LRSQueryBuilder.from_filters({"activity": "a", "since": None, "until": "u"}).build()
        assert params == {"activity": "a", "until": "u"}

    def test_clear(self):
        """Test that clear() empties the builder."""
        builder = LRSQueryBuilder.for_verb("v")
        assert builder.clear().get_params() == {}

    def test_date_range(self):
        """Test the date range constructor."""
        params = LRSQueryBuilder.for_date_range("2025-01-01T00:00:00Z", "2025-02-01T00:00:00Z").build()
        assert params == {"since": "2025-01-01T00:00:00Z", "until": "2025-02-01T00:00:00Z"}
