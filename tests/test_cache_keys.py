"""Unit tests for cache key derivation."""

import pytest

from lrs_analytics.cache_keys import (
    build_cache_key,
    build_cache_key_pattern,
    parse_cache_key,
)
from lrs_analytics.models import DashboardLevel, MetricParams


@pytest.mark.unit
class TestBuildCacheKey:
    """Test cases for build_cache_key."""

    def test_exact_format_with_encoding(self):
        """Test the key layout and URL-encoding of values."""
        key = build_cache_key("course-completion", "default", DashboardLevel.COURSE, MetricParams(course_id="c:1"))
        assert key == "cache:course-completion:default:course:courseId=c%3A1:v1"

    def test_uri_component_safe_characters_kept(self):
        """Test that !~*'() stay literal while reserved characters are escaped."""
        key = build_cache_key("m", "default", "element", MetricParams(element_id="a(1)!~*'b/c d,e"))
        assert key == "cache:m:default:element:elementId=a(1)!~*'b%2Fc%20d%2Ce:v1"

    def test_fixed_param_order(self):
        """Test that params follow courseId, topicId, elementId, userId, since, until."""
        params = MetricParams(
            until="2025-12-31",
            user_id="u1",
            since="2025-01-01",
            topic_id="5",
            course_id="1",
        )
        key = build_cache_key("topic-time-spent", "hs-ke", "topic", params)
        assert key == "cache:topic-time-spent:hs-ke:topic:courseId=1,topicId=5,userId=u1,since=2025-01-01,until=2025-12-31:v1"

    def test_unscoped_params_excluded(self):
        """Test that groupId, instanceId and filters never enter the key."""
        base = build_cache_key("m", "default", "course", MetricParams(course_id="1"))
        other = build_cache_key(
            "m", "default", "course",
            MetricParams(course_id="1", group_id="g", instance_id="x", filters={"a": "b"}),
        )
        assert base == other

    def test_no_params_omits_segment(self):
        """Test that an empty filter segment is left out."""
        assert build_cache_key("m", "default", "element", MetricParams()) == "cache:m:default:element:v1"

    def test_deterministic(self):
        """Test that equal params give equal keys."""
        a = build_cache_key("m", "default", "course", MetricParams(course_id="1", user_id="u"))
        b = build_cache_key("m", "default", "course", MetricParams(user_id="u", course_id="1"))
        assert a == b


@pytest.mark.unit
class TestParseCacheKey:
    """Test cases for parse_cache_key and patterns."""

    def test_parse_decodes_params(self):
        """Test that a built key parses back to its parts."""
        key = build_cache_key("m", "default", "course", MetricParams(course_id="https://lms.example/course/1"))
        parsed = parse_cache_key(key)
        assert parsed.metric_id == "m"
        assert parsed.instance_id == "default"
        assert parsed.dashboard_level == "course"
        assert parsed.params == {"courseId": "https://lms.example/course/1"}
        assert parsed.version == "v1"

    @pytest.mark.parametrize("key", ["stale:cache:m:default:course:v1", "cache:m:v1", "cache:m:default:course:bogus=1:v1"])
    def test_foreign_keys_rejected(self, key):
        """Test that keys not produced by build_cache_key give None."""
        assert parse_cache_key(key) is None

    def test_patterns(self):
        """Test admin invalidation patterns."""
        assert build_cache_key_pattern() == "cache:*:*:*"
        assert build_cache_key_pattern("m") == "cache:m:*:*"
        assert build_cache_key_pattern(instance_id="hs-ke") == "cache:*:hs-ke:*"
