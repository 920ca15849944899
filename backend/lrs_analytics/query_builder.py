"""
LRS Query Builder
==================
Fluent accumulator for xAPI GET /statements query parameters.

Usage:
    params = (
        LRSQueryBuilder()
        .activity("https://lms.example/course/42")
        .related_activities(True)
        .since("2025-01-01T00:00:00Z")
        .limit(500)
        .build()
    )

Calls are order-independent; every value is string-encoded the way the xAPI
statements API expects (agent as JSON, booleans as "true"/"false").
"""

import json
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlencode

from .errors import ParameterValidationError

MAX_LIMIT = 1000
FORMATS = ("ids", "exact", "canonical")

# Keys understood by from_filters(), in the order they are emitted.
FILTER_KEYS = (
    "agent",
    "verb",
    "activity",
    "registration",
    "related_activities",
    "related_agents",
    "since",
    "until",
    "limit",
    "format",
    "attachments",
    "ascending",
)


def _bool(value: bool) -> str:
    return "true" if value else "false"


class LRSQueryBuilder:
    def __init__(self):
        self._params: Dict[str, str] = {}

    # ── Setters ───────────────────────────────────────────────────

    def agent(self, agent: Mapping[str, Any]) -> "LRSQueryBuilder":
        self._params["agent"] = json.dumps(dict(agent), separators=(",", ":"))
        return self

    def verb(self, verb_id: str) -> "LRSQueryBuilder":
        self._params["verb"] = verb_id
        return self

    def activity(self, activity_id: str) -> "LRSQueryBuilder":
        self._params["activity"] = activity_id
        return self

    def registration(self, registration: str) -> "LRSQueryBuilder":
        self._params["registration"] = registration
        return self

    def related_activities(self, enabled: bool = True) -> "LRSQueryBuilder":
        self._params["related_activities"] = _bool(enabled)
        return self

    def related_agents(self, enabled: bool = True) -> "LRSQueryBuilder":
        self._params["related_agents"] = _bool(enabled)
        return self

    def since(self, timestamp: str) -> "LRSQueryBuilder":
        self._params["since"] = timestamp
        return self

    def until(self, timestamp: str) -> "LRSQueryBuilder":
        self._params["until"] = timestamp
        return self

    def limit(self, limit: int) -> "LRSQueryBuilder":
        if not isinstance(limit, int) or isinstance(limit, bool) or not 0 <= limit <= MAX_LIMIT:
            raise ParameterValidationError(f"Limit must be between 0 and {MAX_LIMIT}")
        self._params["limit"] = str(limit)
        return self

    def format(self, fmt: str) -> "LRSQueryBuilder":
        if fmt not in FORMATS:
            raise ParameterValidationError(
                f"Format must be one of: {', '.join(FORMATS)}"
            )
        self._params["format"] = fmt
        return self

    def attachments(self, enabled: bool = True) -> "LRSQueryBuilder":
        self._params["attachments"] = _bool(enabled)
        return self

    def ascending(self, enabled: bool = True) -> "LRSQueryBuilder":
        self._params["ascending"] = _bool(enabled)
        return self

    # ── Output ────────────────────────────────────────────────────

    def build(self) -> Dict[str, str]:
        """Structured parameter map, in a stable key order."""
        return {key: self._params[key] for key in FILTER_KEYS if key in self._params}

    def build_string(self) -> str:
        """URL-encoded query string (without the leading "?")."""
        return urlencode(self.build())

    def get_params(self) -> Dict[str, str]:
        return dict(self._params)

    def clear(self) -> "LRSQueryBuilder":
        self._params.clear()
        return self

    # ── Convenience constructors ──────────────────────────────────

    @classmethod
    def from_filters(cls, filters: Optional[Mapping[str, Any]]) -> "LRSQueryBuilder":
        """Build from a plain filter dict, skipping keys whose value is None."""
        builder = cls()
        for key in FILTER_KEYS:
            value = (filters or {}).get(key)
            if value is None:
                continue
            getattr(builder, key)(value)
        return builder

    @classmethod
    def for_actor(cls, home_page: str, user_id: str) -> "LRSQueryBuilder":
        return cls().agent({
            "objectType": "Agent",
            "account": {"homePage": home_page, "name": user_id},
        })

    @classmethod
    def for_course(cls, course_id: str) -> "LRSQueryBuilder":
        return cls().activity(course_id).related_activities(True)

    @classmethod
    def for_date_range(cls, since: str, until: Optional[str] = None) -> "LRSQueryBuilder":
        builder = cls().since(since)
        if until:
            builder.until(until)
        return builder

    @classmethod
    def for_verb(cls, verb_id: str) -> "LRSQueryBuilder":
        return cls().verb(verb_id)
