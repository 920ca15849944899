"""
Topic-level Metrics
====================
Topic membership is read from each statement's parent context activities, so
a statement under ".../topic/50" never counts toward topic "5". The per-topic
breakdowns (course-topics-*) group a course's statements by topic.
"""

from collections import defaultdict
from typing import Dict, List

from ..attempts import (
    extract_score,
    get_max_score,
    get_object_id,
    get_raw_score,
    get_verb_id,
    is_completed,
    positive_duration,
    select_best_attempt,
)
from ..models import DashboardLevel, MetricParams, MetricResult, OutputType, Statement
from ..scoping import belongs_to_topic, topics_in_course
from ..verbs import FINISHING_VERBS, MASTERY_VERBS
from .base import LAST_N, MAX_ACTIVITY_SECONDS, MetricProvider, for_user, latest_per_element, newest_first


def _in_topic(statements: List[Statement], topic_id: str) -> List[Statement]:
    return [stmt for stmt in statements if belongs_to_topic(stmt, topic_id)]


def _normalized_score(score: dict) -> float:
    """Score on a 0..100 scale: scaled, else raw within [min, max], else raw/max, else raw."""
    if score.get("scaled") is not None:
        return score["scaled"] * 100
    raw, low, high = score.get("raw"), score.get("min"), score.get("max")
    if raw is not None and low is not None and high is not None:
        span = high - low
        return (raw - low) / span * 100 if span > 0 else 0
    if raw is not None and high:
        return raw / high * 100
    return raw or 0


class TopicTotalScoreProvider(MetricProvider):
    id = "topic-total-score"
    dashboard_level = DashboardLevel.TOPIC
    title = "Topic Total Score"
    description = "Total score earned by a student on learning elements in each topic"
    required_params = ("userId", "courseId", "topicId")
    optional_params = ("since", "until")
    output_type = OutputType.SCALAR
    example = {
        "params": {"userId": "user-123", "courseId": "course-101", "topicId": "topic-5"},
        "result": {"value": 85, "metadata": {"unit": "points", "elementCount": 3}},
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        scoped = _in_topic(for_user(statements, params.user_id), params.topic_id)
        scores = [get_raw_score(stmt) for stmt in scoped if get_raw_score(stmt) is not None]
        total = sum(scores)
        return self._result(total, {
            "unit": "points",
            "elementCount": len(scores),
            "avgScore": round(total / len(scores), 2) if scores else 0,
            **self._echo(params, "userId", "courseId", "topicId", with_time_range=True),
        })


class TopicMaxScoreProvider(MetricProvider):
    id = "topic-max-score"
    dashboard_level = DashboardLevel.TOPIC
    title = "Topic Max Score"
    description = "Possible total score for all learning elements in each topic"
    required_params = ("courseId", "topicId")
    optional_params = ("since", "until")
    output_type = OutputType.SCALAR
    example = {
        "params": {"courseId": "course-101", "topicId": "topic-5"},
        "result": {"value": 100, "metadata": {"unit": "points", "elementCount": 4}},
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        per_element: Dict[str, float] = {}
        for stmt in _in_topic(statements, params.topic_id):
            element_id = get_object_id(stmt)
            max_score = get_max_score(stmt)
            if not element_id or max_score is None:
                continue
            per_element[element_id] = max(per_element.get(element_id, 0), max_score)

        total = sum(per_element.values())
        return self._result(total, {
            "unit": "points",
            "elementCount": len(per_element),
            "avgMaxScore": round(total / len(per_element), 2) if per_element else 0,
            **self._echo(params, "courseId", "topicId", with_time_range=True),
        })


class TopicTimeSpentProvider(MetricProvider):
    id = "topic-time-spent"
    dashboard_level = DashboardLevel.TOPIC
    title = "Topic Time Spent"
    description = "Total time spent by a student in each topic in a given time period"
    required_params = ("userId", "courseId", "topicId")
    optional_params = ("since", "until")
    output_type = OutputType.SCALAR
    example = {
        "params": {"userId": "user-123", "courseId": "course-101", "topicId": "topic-5"},
        "result": {"value": 3600, "metadata": {"unit": "seconds", "activityCount": 8, "avgDuration": 450}},
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        scoped = _in_topic(for_user(statements, params.user_id), params.topic_id)
        durations = [d for d in (positive_duration(stmt) for stmt in scoped) if d > 0]
        total = sum(durations)
        return self._result(total, {
            "unit": "seconds",
            "activityCount": len(durations),
            "avgDuration": round(total / len(durations), 2) if durations else 0,
            **self._echo(params, "userId", "courseId", "topicId", with_time_range=True),
        })


class TopicLastElementsProvider(MetricProvider):
    id = "topic-last-elements"
    dashboard_level = DashboardLevel.TOPIC
    title = "Topic Last Elements"
    description = (
        "Returns the three most recently completed learning elements by the user within a "
        "specified topic, ordered by completion time descending and optionally filtered by a "
        "specified time range."
    )
    version = "3.0.0"
    required_params = ("userId", "topicId")
    optional_params = ("since", "until")
    output_type = OutputType.ARRAY
    example = {
        "params": {"userId": "user-123", "topicId": "topic-5"},
        "result": {
            "value": [
                {"elementId": "element-3", "completedAt": "2026-02-04T12:00:00Z"},
                {"elementId": "element-2", "completedAt": "2026-02-03T15:30:00Z"},
                {"elementId": "element-1", "completedAt": "2026-02-02T09:00:00Z"},
            ],
            "metadata": {"returnedCount": 3},
        },
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        scoped = _in_topic(for_user(statements, params.user_id), params.topic_id)
        latest = latest_per_element(
            scoped, lambda stmt: get_verb_id(stmt) in FINISHING_VERBS or is_completed(stmt)
        )
        values = newest_first([
            {"elementId": element_id, "completedAt": completed_at}
            for element_id, completed_at in latest.items()
        ])[:LAST_N]
        return self._result(values, {
            "totalCompletedElements": len(latest),
            "returnedCount": len(values),
            **self._echo(params, "userId", "topicId", with_time_range=True),
        })


class TopicCompletionDatesProvider(MetricProvider):
    id = "topic-completion-dates"
    dashboard_level = DashboardLevel.TOPIC
    title = "Topic Completion Dates"
    description = "Completion date of the last three learning elements of any topic completed by a student"
    required_params = ("userId", "courseId", "topicId")
    output_type = OutputType.ARRAY
    example = {
        "params": {"userId": "user-123", "courseId": "course-101", "topicId": "topic-5"},
        "result": {
            "value": ["2025-11-15T10:00:00Z", "2025-11-14T09:30:00Z", "2025-11-13T14:20:00Z"],
            "metadata": {"count": 3},
        },
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        scoped = _in_topic(for_user(statements, params.user_id), params.topic_id)
        dates = [
            item["completedAt"] for item in newest_first([
                {"completedAt": stmt["timestamp"]} for stmt in scoped
                if get_verb_id(stmt) in FINISHING_VERBS and stmt.get("timestamp")
            ])
        ]
        last = dates[:LAST_N]
        return self._result(last, {
            "count": len(last),
            "totalCompletions": len(dates),
            **self._echo(params, "userId", "courseId", "topicId"),
        })


class TopicMasteryProvider(MetricProvider):
    """Average normalized assessment score in a topic."""

    id = "topic-mastery"
    dashboard_level = DashboardLevel.TOPIC
    title = "Topic Mastery Score"
    description = "Average score/performance on topic assessments and mastery level"
    required_params = ("courseId", "topicId")
    optional_params = ("since", "until")
    output_type = OutputType.SCALAR
    example = {
        "params": {"courseId": "course-123", "topicId": "topic-5"},
        "result": {
            "value": 78.5,
            "metadata": {"avgScore": 78.5, "attemptCount": 12, "successCount": 9, "successRate": 0.75, "unit": "score"},
        },
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        attempts = [
            stmt for stmt in _in_topic(statements, params.topic_id)
            if get_verb_id(stmt) in MASTERY_VERBS and (stmt.get("result") or {}).get("score")
        ]
        scores = [_normalized_score(stmt["result"]["score"]) for stmt in attempts]
        successes = sum(1 for stmt in attempts if stmt["result"].get("success") is True)
        avg = round(sum(scores) / len(scores), 2) if scores else 0

        return self._result(avg, {
            "avgScore": avg,
            "attemptCount": len(attempts),
            "successCount": successes,
            "successRate": round(successes / len(attempts), 4) if attempts else 0,
            "unit": "score",
            **self._echo(params, "courseId", "topicId"),
        })


# ── Per-topic breakdowns of one course ────────────────────────────

def _group_by_topic(statements: List[Statement], course_id: str) -> Dict[str, Dict[str, List[Statement]]]:
    """topic key → element id → statements."""
    topics: Dict[str, Dict[str, List[Statement]]] = defaultdict(lambda: defaultdict(list))
    for stmt in statements:
        element_id = get_object_id(stmt)
        if not element_id:
            continue
        for topic in topics_in_course(stmt, course_id):
            topics[topic][element_id].append(stmt)
    return topics


class CourseTopicsScoresProvider(MetricProvider):
    id = "course-topics-scores"
    dashboard_level = DashboardLevel.TOPIC
    title = "Course Topics Scores"
    description = (
        "Calculates, per topic within a given course, the sum of the highest score achieved by "
        "the user for each learning element in that topic, optionally limited to a specified "
        "time range."
    )
    version = "3.0.0"
    required_params = ("userId", "courseId")
    optional_params = ("since", "until")
    output_type = OutputType.ARRAY
    example = {
        "params": {"userId": "user-123", "courseId": "course-101"},
        "result": {"value": [{"topicId": "1", "score": 45}, {"topicId": "2", "score": 30}]},
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        topics = _group_by_topic(for_user(statements, params.user_id), params.course_id)
        values = []
        for topic_id in sorted(topics):
            score = 0
            for attempts in topics[topic_id].values():
                best = extract_score(select_best_attempt(attempts))
                if best is not None:
                    score += best
            values.append({"topicId": topic_id, "score": score})
        return self._result(values, {
            "topicCount": len(values),
            **self._echo(params, "userId", "courseId", with_time_range=True),
        })


class CourseTopicsMaxScoresProvider(MetricProvider):
    id = "course-topics-max-scores"
    dashboard_level = DashboardLevel.TOPIC
    title = "Course Topics Max Scores"
    description = (
        "Calculates, per topic within a given course, the maximum possible score, defined as the "
        "sum of the defined maximum scores configured for all learning elements in that topic."
    )
    version = "3.0.0"
    required_params = ("userId", "courseId")
    output_type = OutputType.ARRAY
    example = {
        "params": {"userId": "user-123", "courseId": "course-101"},
        "result": {"value": [{"topicId": "1", "maxScore": 60}, {"topicId": "2", "maxScore": 40}]},
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        topics = _group_by_topic(for_user(statements, params.user_id), params.course_id)
        values = []
        for topic_id in sorted(topics):
            max_score = 0
            for attempts in topics[topic_id].values():
                maxima = [get_max_score(s) for s in attempts if get_max_score(s) is not None]
                if maxima:
                    max_score += max(maxima)
            values.append({"topicId": topic_id, "maxScore": max_score})
        return self._result(values, {
            "topicCount": len(values),
            **self._echo(params, "userId", "courseId"),
        })


class CourseTopicsTimeSpentProvider(MetricProvider):
    id = "course-topics-time-spent"
    dashboard_level = DashboardLevel.TOPIC
    title = "Course Topics Time Spent"
    description = (
        "Calculates, per topic within a given course, the total time spent by the user across "
        "all attempts of all learning elements in that topic, optionally limited to a specified "
        "time range."
    )
    version = "3.0.0"
    required_params = ("userId", "courseId")
    optional_params = ("since", "until")
    output_type = OutputType.ARRAY
    example = {
        "params": {"userId": "user-123", "courseId": "course-101"},
        "result": {"value": [{"topicId": "1", "timeSpent": 1800}, {"topicId": "2", "timeSpent": 900}]},
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        topics = _group_by_topic(for_user(statements, params.user_id), params.course_id)
        values = []
        for topic_id in sorted(topics):
            seconds = sum(
                positive_duration(stmt, MAX_ACTIVITY_SECONDS)
                for attempts in topics[topic_id].values()
                for stmt in attempts
            )
            values.append({"topicId": topic_id, "timeSpent": round(seconds)})
        return self._result(values, {
            "topicCount": len(values),
            "unit": "seconds",
            **self._echo(params, "userId", "courseId", with_time_range=True),
        })
