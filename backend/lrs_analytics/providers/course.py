"""
Course-level Metrics
=====================
Statements arrive already scoped to the course: the LRS is queried with the
course activity and related_activities=true.
"""

from typing import List

from ..attempts import (
    get_actor_key,
    get_duration,
    get_max_score,
    get_object_id,
    get_object_title,
    get_raw_score,
    get_verb_id,
    parse_duration,
    positive_duration,
)
from ..models import DashboardLevel, MetricParams, MetricResult, OutputType, Statement
from ..verbs import ENGAGEMENT_VERBS, FINISHING_VERBS
from .base import LAST_N, MetricProvider, for_user, newest_first


def _is_finishing(stmt: Statement) -> bool:
    return get_verb_id(stmt) in FINISHING_VERBS


class CourseCompletionProvider(MetricProvider):
    id = "course-completion"
    dashboard_level = DashboardLevel.COURSE
    title = "Course Completion Rate"
    description = "Percentage of enrolled students who completed the course"
    required_params = ("courseId",)
    optional_params = ("since", "until")
    output_type = OutputType.SCALAR
    example = {
        "params": {"courseId": "course-123", "since": "2025-01-01T00:00:00Z", "until": "2025-12-31T23:59:59Z"},
        "result": {"value": 85.5, "metadata": {"totalLearners": 40, "completedLearners": 34, "unit": "percentage"}},
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        learners = set()
        completed = set()
        for stmt in statements:
            learner = get_actor_key(stmt)
            if not learner:
                continue
            learners.add(learner)
            if _is_finishing(stmt):
                completed.add(learner)

        percentage = len(completed) / len(learners) * 100 if learners else 0
        return self._result(round(percentage, 2), {
            "totalLearners": len(learners),
            "completedLearners": len(completed),
            "unit": "percentage",
            **self._echo(params, "courseId", with_time_range=True),
        })


class CourseTotalScoreProvider(MetricProvider):
    id = "course-total-score"
    dashboard_level = DashboardLevel.COURSE
    title = "Course Total Score"
    description = "Total score earned by a student on learning elements in each course"
    required_params = ("userId", "courseId")
    optional_params = ("since", "until")
    output_type = OutputType.SCALAR
    example = {
        "params": {"userId": "user-123", "courseId": "course-101"},
        "result": {"value": 450, "metadata": {"unit": "points", "elementCount": 12}},
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        scores = [
            get_raw_score(stmt) for stmt in for_user(statements, params.user_id)
            if get_raw_score(stmt) is not None
        ]
        total = sum(scores)
        return self._result(total, {
            "unit": "points",
            "elementCount": len(scores),
            "avgScore": round(total / len(scores), 2) if scores else 0,
            **self._echo(params, "userId", "courseId", with_time_range=True),
        })


class CourseMaxScoreProvider(MetricProvider):
    id = "course-max-score"
    dashboard_level = DashboardLevel.COURSE
    title = "Course Maximum Score"
    description = "Possible total score for all learning elements in each course"
    required_params = ("courseId",)
    optional_params = ("since", "until")
    output_type = OutputType.SCALAR
    example = {
        "params": {"courseId": "course-101"},
        "result": {"value": 600, "metadata": {"unit": "points", "elementCount": 12}},
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        # Repeated attempts on one element count once
        per_element = {}
        for stmt in statements:
            element_id = get_object_id(stmt)
            max_score = get_max_score(stmt)
            if not element_id or max_score is None:
                continue
            per_element[element_id] = max(per_element.get(element_id, 0), max_score)

        return self._result(sum(per_element.values()), {
            "unit": "points",
            "elementCount": len(per_element),
            **self._echo(params, "courseId", with_time_range=True),
        })


class CourseTimeSpentProvider(MetricProvider):
    id = "course-time-spent"
    dashboard_level = DashboardLevel.COURSE
    title = "Course Time Spent"
    description = "Total time spent by a student in each course in a given time period"
    required_params = ("userId", "courseId")
    optional_params = ("since", "until")
    output_type = OutputType.SCALAR
    example = {
        "params": {"userId": "user-123", "courseId": "course-101"},
        "result": {"value": 7200, "metadata": {"unit": "seconds", "activityCount": 15, "hours": 2}},
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        durations = [positive_duration(stmt) for stmt in for_user(statements, params.user_id)]
        durations = [d for d in durations if d > 0]
        total = sum(durations)
        return self._result(total, {
            "unit": "seconds",
            "activityCount": len(durations),
            "hours": round(total / 3600, 2),
            **self._echo(params, "userId", "courseId", with_time_range=True),
        })


class CourseLastElementsProvider(MetricProvider):
    id = "course-last-elements"
    dashboard_level = DashboardLevel.COURSE
    title = "Course Last Completed Elements"
    description = "Last three learning elements of any course completed by a student"
    required_params = ("userId", "courseId")
    optional_params = ("since", "until")
    output_type = OutputType.ARRAY
    example = {
        "params": {"userId": "user-123", "courseId": "course-101"},
        "result": {
            "value": [
                {"elementId": "element-3", "title": "Quiz 3", "completedAt": "2025-11-15T10:00:00Z"},
                {"elementId": "element-2", "title": "Quiz 2", "completedAt": "2025-11-14T09:30:00Z"},
            ],
            "metadata": {"count": 2, "totalCompletions": 2},
        },
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        completions = newest_first([
            {
                "elementId": get_object_id(stmt),
                "title": get_object_title(stmt),
                "completedAt": stmt["timestamp"],
            }
            for stmt in for_user(statements, params.user_id)
            if _is_finishing(stmt) and stmt.get("timestamp")
        ])
        last = completions[:LAST_N]
        return self._result(last, {
            "count": len(last),
            "totalCompletions": len(completions),
            **self._echo(params, "userId", "courseId", with_time_range=True),
        })


class CourseCompletionDatesProvider(MetricProvider):
    id = "course-completion-dates"
    dashboard_level = DashboardLevel.COURSE
    title = "Course Completion Dates"
    description = "Completion date of the last three learning elements of any course completed by a student"
    required_params = ("userId", "courseId")
    optional_params = ("since", "until")
    output_type = OutputType.ARRAY
    example = {
        "params": {"userId": "user-123", "courseId": "course-101"},
        "result": {
            "value": ["2025-11-15T10:00:00Z", "2025-11-14T09:30:00Z", "2025-11-13T14:20:00Z"],
            "metadata": {"count": 3},
        },
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        dates = [
            {"completedAt": stmt["timestamp"]}
            for stmt in for_user(statements, params.user_id)
            if _is_finishing(stmt) and stmt.get("timestamp")
        ]
        dates = [item["completedAt"] for item in newest_first(dates)]
        last = dates[:LAST_N]
        return self._result(last, {
            "count": len(last),
            "totalCompletions": len(dates),
            **self._echo(params, "userId", "courseId", with_time_range=True),
        })


class LearningEngagementProvider(MetricProvider):
    """Activity volume and dwell time folded into a 0..100 score."""

    id = "learning-engagement"
    dashboard_level = DashboardLevel.COURSE
    title = "Learning Engagement Score"
    description = "Average time spent on learning activities and engagement score"
    required_params = ("courseId",)
    optional_params = ("topicId", "since", "until")
    output_type = OutputType.SCALAR
    example = {
        "params": {"courseId": "course-123", "topicId": "topic-5"},
        "result": {
            "value": 72.5,
            "metadata": {"activityCount": 25, "totalDurationMinutes": 562.5, "avgTimeMinutes": 22.5, "unit": "score"},
        },
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        engaged = [stmt for stmt in statements if get_verb_id(stmt) in ENGAGEMENT_VERBS]
        count = len(engaged)
        total_minutes = sum(
            parse_duration(get_duration(stmt)) for stmt in engaged
        ) / 60
        avg_minutes = total_minutes / count if count else 0
        score = min(100, count * 2 + avg_minutes * 0.2)

        return self._result(round(score, 2), {
            "activityCount": count,
            "totalDurationMinutes": round(total_minutes, 2),
            "avgTimeMinutes": round(avg_minutes, 2),
            "unit": "score",
            **self._echo(params, "courseId", "topicId"),
        })
