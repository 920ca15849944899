"""
Duration & Attempt Helpers
===========================
Pure functions shared by the metric providers. None of them raise on malformed
statements: missing fields read as absent.
"""

import re
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

from .models import Statement

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_HOURS_RE = re.compile(r"(\d+(?:\.\d+)?)H")
_MINUTES_RE = re.compile(r"(\d+(?:\.\d+)?)M")
_SECONDS_RE = re.compile(r"(\d+(?:\.\d+)?)S")


def parse_duration(duration: Optional[str]) -> float:
    """
    ISO-8601 time duration → seconds.

    PT1H30M45S → 5445, PT45M → 2700, PT1.5H → 5400.
    Empty input or a missing "PT" prefix gives 0.
    """
    if not duration or not isinstance(duration, str) or not duration.startswith("PT"):
        return 0
    rest = duration[2:]
    seconds = 0.0
    match = _HOURS_RE.search(rest)
    if match:
        seconds += float(match.group(1)) * 3600
    match = _MINUTES_RE.search(rest)
    if match:
        seconds += float(match.group(1)) * 60
    match = _SECONDS_RE.search(rest)
    if match:
        seconds += float(match.group(1))
    return int(seconds) if seconds.is_integer() else seconds


def parse_timestamp(value: Optional[str]) -> datetime:
    """ISO-8601 → aware datetime. Unparseable or missing values sort as the epoch."""
    if not value:
        return EPOCH
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, AttributeError):
        return EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ── Statement accessors ───────────────────────────────────────────

def _result(statement: Statement) -> dict:
    return statement.get("result") or {}


def _score(statement: Statement) -> dict:
    return _result(statement).get("score") or {}


def get_verb_id(statement: Statement) -> Optional[str]:
    return (statement.get("verb") or {}).get("id")


def get_object_id(statement: Statement) -> Optional[str]:
    return (statement.get("object") or {}).get("id")


def get_object_title(statement: Statement) -> Optional[str]:
    name = ((statement.get("object") or {}).get("definition") or {}).get("name") or {}
    return name.get("en-US") or name.get("en")


def get_duration(statement: Statement) -> Optional[str]:
    return _result(statement).get("duration")


def get_max_score(statement: Statement) -> Optional[float]:
    return _score(statement).get("max")


def get_raw_score(statement: Statement) -> Optional[float]:
    return _score(statement).get("raw")


def get_actor_key(statement: Statement) -> Optional[str]:
    """Learner identity: account name, else mbox."""
    actor = statement.get("actor") or {}
    account = actor.get("account") or {}
    return account.get("name") or actor.get("mbox")


def context_activities(statement: Statement, *kinds: str) -> List[dict]:
    """Parent/grouping context activities, in that order by default."""
    ctx = (statement.get("context") or {}).get("contextActivities") or {}
    activities: List[dict] = []
    for kind in kinds or ("parent", "grouping"):
        items = ctx.get(kind) or []
        if isinstance(items, dict):
            items = [items]
        activities.extend(a for a in items if isinstance(a, dict))
    return activities


# ── Attempts ──────────────────────────────────────────────────────

def extract_score(statement: Statement) -> Optional[float]:
    """raw if present, else scaled, else None."""
    score = _score(statement)
    if score.get("raw") is not None:
        return score["raw"]
    if score.get("scaled") is not None:
        return score["scaled"]
    return None


def is_completed(statement: Statement) -> bool:
    return _result(statement).get("completion") is True


def select_best_attempt(statements: Iterable[Statement]) -> Optional[Statement]:
    """Highest score wins (raw over scaled); ties go to the most recent timestamp."""
    statements = list(statements)
    if not statements:
        return None

    def sort_key(stmt: Statement) -> Any:
        score = extract_score(stmt)
        return (
            score if score is not None else float("-inf"),
            parse_timestamp(stmt.get("timestamp")),
        )

    return max(statements, key=sort_key)


def positive_duration(statement: Statement, max_seconds: Optional[float] = None) -> float:
    """Duration in seconds, or 0 when missing, unparseable or over `max_seconds`."""
    seconds = parse_duration(get_duration(statement))
    if seconds <= 0:
        return 0
    if max_seconds is not None and seconds > max_seconds:
        return 0
    return seconds


def time_range(params) -> Optional[dict]:
    """Metadata echo of since/until, only when since is set."""
    if not params.since:
        return None
    return {"since": params.since, "until": params.until}
