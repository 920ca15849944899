"""
Cache Keys
===========
Deterministic cache keys for metric results:

    cache:<metricId>:<instanceId>:<dashboardLevel>:<k1=v1,k2=v2,...>:v1

Scoping parameters appear in a fixed order with URL-encoded values, so the same
request always maps to the same key. With no scoping parameter the filter
segment is left out.
"""

from typing import Dict, NamedTuple, Optional
from urllib.parse import quote, unquote

from .models import MetricParams

KEY_PREFIX = "cache"
SCHEMA_VERSION = "v1"

# (wire name, MetricParams field) in key order
KEY_PARAMS = (
    ("courseId", "course_id"),
    ("topicId", "topic_id"),
    ("elementId", "element_id"),
    ("userId", "user_id"),
    ("since", "since"),
    ("until", "until"),
)


class ParsedCacheKey(NamedTuple):
    metric_id: str
    instance_id: str
    dashboard_level: str
    params: Dict[str, str]
    version: str


def _encode(value: str) -> str:
    return quote(str(value), safe="!~*'()")


def build_filter_segment(params: MetricParams) -> str:
    pairs = []
    for wire_name, field_name in KEY_PARAMS:
        value = getattr(params, field_name)
        if value:
            pairs.append(f"{wire_name}={_encode(value)}")
    return ",".join(pairs)


def build_cache_key(
    metric_id: str,
    instance_id: str,
    dashboard_level: str,
    params: MetricParams,
) -> str:
    level = getattr(dashboard_level, "value", dashboard_level)
    parts = [KEY_PREFIX, metric_id, instance_id, level]
    segment = build_filter_segment(params)
    if segment:
        parts.append(segment)
    parts.append(SCHEMA_VERSION)
    return ":".join(parts)


def build_cache_key_pattern(
    metric_id: Optional[str] = None,
    instance_id: Optional[str] = None,
) -> str:
    """Glob matching every key of a metric and/or instance."""
    return f"{KEY_PREFIX}:{metric_id or '*'}:{instance_id or '*'}:*"


def parse_cache_key(key: str) -> Optional[ParsedCacheKey]:
    """Split a key produced by build_cache_key(); None for anything else."""
    parts = key.split(":")
    if len(parts) not in (5, 6) or parts[0] != KEY_PREFIX or parts[-1] != SCHEMA_VERSION:
        return None
    params: Dict[str, str] = {}
    if len(parts) == 6:
        known = {wire_name for wire_name, _ in KEY_PARAMS}
        for pair in parts[4].split(","):
            name, sep, value = pair.partition("=")
            if not sep or name not in known:
                return None
            params[name] = unquote(value)
    return ParsedCacheKey(
        metric_id=parts[1],
        instance_id=parts[2],
        dashboard_level=parts[3],
        params=params,
        version=parts[-1],
    )
