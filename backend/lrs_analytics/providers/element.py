"""
Element-level Metrics
======================
Single-element metrics work on the statements of one learning element (the
LRS activity filter is the element itself) and mostly look at the learner's
best attempt. The topic-elements-* metrics break a topic down per element.
"""

from typing import Any, Dict, List, Optional

from ..attempts import (
    extract_score,
    get_max_score,
    get_object_id,
    is_completed,
    parse_timestamp,
    positive_duration,
    select_best_attempt,
)
from ..models import DashboardLevel, MetricParams, MetricResult, OutputType, Statement
from ..scoping import belongs_to_topic
from .base import LAST_N, MAX_ACTIVITY_SECONDS, MetricProvider, for_user, group_by_element


class _BestAttemptProvider(MetricProvider):
    """Shared shape of the best-attempt metrics: value from the best attempt, or None."""

    dashboard_level = DashboardLevel.ELEMENT
    required_params = ("userId", "elementId")
    output_type = OutputType.SCALAR

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        attempts = for_user(statements, params.user_id)
        best = select_best_attempt(attempts)
        echo = self._echo(params, "userId", "elementId")
        if best is None:
            return self._result(None, {"status": "no_attempts", "attemptCount": 0, **echo})
        value, metadata = self._from_best(best)
        return self._result(value, {"attemptCount": len(attempts), **metadata, **echo})

    def _from_best(self, best: Statement):
        raise NotImplementedError


class ElementBestAttemptDateProvider(_BestAttemptProvider):
    id = "element-best-attempt-date"
    title = "Element Best Attempt Date"
    description = "Date of the best attempt of a student for each learning element"
    example = {
        "params": {"userId": "user-123", "elementId": "element-42"},
        "result": {"value": "2025-11-15T10:30:00Z", "metadata": {"attemptCount": 3, "bestScore": 92}},
    }

    def _from_best(self, best: Statement):
        return best.get("timestamp"), {"bestScore": extract_score(best)}


class ElementBestAttemptScoreProvider(_BestAttemptProvider):
    id = "element-best-attempt-score"
    title = "Element Best Attempt Score"
    description = "Score for the best attempt of a student at each learning element"
    example = {
        "params": {"userId": "user-123", "elementId": "element-42"},
        "result": {"value": 92, "metadata": {"attemptCount": 3, "bestAttemptDate": "2025-11-15T10:30:00Z"}},
    }

    def _from_best(self, best: Statement):
        return extract_score(best), {"bestAttemptDate": best.get("timestamp")}


class ElementCompletionStatusProvider(_BestAttemptProvider):
    id = "element-completion-status"
    title = "Element Completion Status"
    description = "Current completion status of the best attempt by a student for each learning element"
    example = {
        "params": {"userId": "user-123", "elementId": "element-42"},
        "result": {
            "value": True,
            "metadata": {"attemptCount": 3, "bestAttemptDate": "2025-11-15T10:30:00Z", "bestScore": 92},
        },
    }

    def _from_best(self, best: Statement):
        return is_completed(best), {
            "bestAttemptDate": best.get("timestamp"),
            "bestScore": extract_score(best),
        }


class ElementTimeSpentProvider(MetricProvider):
    id = "element-time-spent"
    dashboard_level = DashboardLevel.ELEMENT
    title = "Element Time Spent"
    description = "Total time spent by a student on each learning element in a given time period"
    required_params = ("userId", "elementId")
    optional_params = ("since", "until")
    output_type = OutputType.SCALAR
    example = {
        "params": {"userId": "user-123", "elementId": "element-42"},
        "result": {"value": 1800, "metadata": {"unit": "seconds", "attemptCount": 3}},
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        durations = [positive_duration(stmt) for stmt in for_user(statements, params.user_id)]
        durations = [d for d in durations if d > 0]
        return self._result(sum(durations), {
            "unit": "seconds",
            "attemptCount": len(durations),
            **self._echo(params, "userId", "elementId", with_time_range=True),
        })


def _completed_in_topic(params: MetricParams, statements: List[Statement]) -> List[Statement]:
    """The learner's completed statements in the topic, newest first."""
    completed = [
        stmt for stmt in for_user(statements, params.user_id)
        if is_completed(stmt) and belongs_to_topic(stmt, params.topic_id)
    ]
    return sorted(completed, key=lambda stmt: parse_timestamp(stmt.get("timestamp")), reverse=True)


class ElementCompletionDatesProvider(MetricProvider):
    id = "element-completion-dates"
    dashboard_level = DashboardLevel.ELEMENT
    title = "Element Completion Dates"
    description = "Completion date of the last three learning elements of a topic completed by a student"
    required_params = ("userId", "topicId")
    output_type = OutputType.ARRAY
    example = {
        "params": {"userId": "user-123", "topicId": "topic-5"},
        "result": {
            "value": ["2025-11-15T10:30:00Z", "2025-11-14T09:20:00Z", "2025-11-13T14:15:00Z"],
            "metadata": {"totalCompletions": 5},
        },
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        completed = _completed_in_topic(params, statements)
        dates = [stmt["timestamp"] for stmt in completed[:LAST_N] if stmt.get("timestamp")]
        return self._result(dates, {
            "totalCompletions": len(completed),
            **self._echo(params, "userId", "topicId"),
        })


class ElementLastCompletedProvider(MetricProvider):
    id = "element-last-completed"
    dashboard_level = DashboardLevel.ELEMENT
    title = "Element Last Completed"
    description = "Last three learning elements of a topic completed by a student"
    required_params = ("userId", "topicId")
    output_type = OutputType.ARRAY
    example = {
        "params": {"userId": "user-123", "topicId": "topic-5"},
        "result": {
            "value": [
                {"elementId": "element-1", "completedAt": "2025-11-15T10:30:00Z"},
                {"elementId": "element-2", "completedAt": "2025-11-14T09:20:00Z"},
                {"elementId": "element-3", "completedAt": "2025-11-13T14:15:00Z"},
            ],
            "metadata": {"totalCompletions": 5},
        },
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        completed = _completed_in_topic(params, statements)
        last = [
            {"elementId": get_object_id(stmt), "completedAt": stmt.get("timestamp")}
            for stmt in completed[:LAST_N]
        ]
        return self._result(last, {
            "totalCompletions": len(completed),
            **self._echo(params, "userId", "topicId"),
        })


# ── Per-element breakdowns of one topic ───────────────────────────

def _topic_elements(params: MetricParams, statements: List[Statement]) -> Dict[str, List[Statement]]:
    scoped = [
        stmt for stmt in for_user(statements, params.user_id)
        if belongs_to_topic(stmt, params.topic_id)
    ]
    return group_by_element(scoped)


def _first_completion(attempts: List[Statement]) -> Optional[str]:
    completions = sorted(
        (stmt for stmt in attempts if is_completed(stmt) and stmt.get("timestamp")),
        key=lambda stmt: parse_timestamp(stmt["timestamp"]),
    )
    return completions[0]["timestamp"] if completions else None


class TopicElementsBestAttemptsProvider(MetricProvider):
    id = "topic-elements-best-attempts"
    dashboard_level = DashboardLevel.ELEMENT
    title = "Topic Elements Best Attempts"
    description = (
        "For each learning element within a specified topic, selects the user's highest-scoring "
        "attempt and returns its score, completion status, and completion timestamp."
    )
    version = "3.0.0"
    required_params = ("userId", "topicId")
    output_type = OutputType.ARRAY
    example = {
        "params": {"userId": "user-123", "topicId": "topic-5"},
        "result": {
            "value": [
                {"elementId": "element-1", "score": 8, "completionStatus": True, "completedAt": "2025-11-15T10:30:00Z"},
                {"elementId": "element-2", "score": None, "completionStatus": False, "completedAt": None},
            ],
        },
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        elements = _topic_elements(params, statements)
        values: List[Dict[str, Any]] = []
        for element_id in sorted(elements):
            attempts = elements[element_id]
            best = select_best_attempt(attempts)
            values.append({
                "elementId": element_id,
                "score": extract_score(best),
                "completionStatus": is_completed(best),
                "completedAt": _first_completion(attempts),
            })
        return self._result(values, {
            "elementCount": len(values),
            **self._echo(params, "userId", "topicId"),
        })


class TopicElementsMaxScoresProvider(MetricProvider):
    id = "topic-elements-max-scores"
    dashboard_level = DashboardLevel.ELEMENT
    title = "Topic Elements Max Scores"
    description = "Returns for each learning element within a specified topic its defined maximum achievable score."
    version = "3.0.0"
    required_params = ("userId", "topicId")
    output_type = OutputType.ARRAY
    example = {
        "params": {"userId": "user-123", "topicId": "topic-5"},
        "result": {"value": [{"elementId": "element-1", "score": 10}, {"elementId": "element-2", "score": 20}]},
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        elements = _topic_elements(params, statements)
        values = []
        for element_id in sorted(elements):
            maxima = [get_max_score(s) for s in elements[element_id] if get_max_score(s) is not None]
            if maxima:
                values.append({"elementId": element_id, "score": max(maxima)})
        return self._result(values, {
            "elementCount": len(values),
            **self._echo(params, "userId", "topicId"),
        })


class TopicElementsTimeSpentProvider(MetricProvider):
    id = "topic-elements-time-spent"
    dashboard_level = DashboardLevel.ELEMENT
    title = "Topic Elements Time Spent"
    description = (
        "Calculates, for each learning element within a specified topic, the total time spent "
        "by the user across all attempts, optionally limited to a specified time range."
    )
    version = "3.0.0"
    required_params = ("userId", "topicId")
    optional_params = ("since", "until")
    output_type = OutputType.ARRAY
    example = {
        "params": {"userId": "user-123", "topicId": "topic-5"},
        "result": {"value": [{"elementId": "element-1", "timeSpent": 600}]},
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        elements = _topic_elements(params, statements)
        values = []
        for element_id in sorted(elements):
            seconds = sum(positive_duration(s, MAX_ACTIVITY_SECONDS) for s in elements[element_id])
            if seconds > 0:
                values.append({"elementId": element_id, "timeSpent": round(seconds)})
        return self._result(values, {
            "elementCount": len(values),
            "unit": "seconds",
            **self._echo(params, "userId", "topicId", with_time_range=True),
        })
