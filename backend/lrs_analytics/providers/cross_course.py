"""
Cross-course Metrics
=====================
One learner's statements across every course, grouped by the course
activities found in each statement's context. Arrays are sorted by course id.
"""

from collections import defaultdict
from typing import Dict, List

from ..attempts import extract_score, get_max_score, get_object_id, is_completed, positive_duration, select_best_attempt
from ..models import DashboardLevel, MetricParams, MetricResult, OutputType, Statement
from ..scoping import course_key, extract_course_ids
from .base import LAST_N, MAX_ACTIVITY_SECONDS, MetricProvider, for_user, latest_per_element, newest_first


def _courses_of(stmt: Statement) -> List[str]:
    keys: List[str] = []
    for iri in extract_course_ids(stmt):
        key = course_key(iri)
        if key not in keys:
            keys.append(key)
    return keys


def _group_by_course(statements: List[Statement]) -> Dict[str, Dict[str, List[Statement]]]:
    """course key → element id → statements."""
    courses: Dict[str, Dict[str, List[Statement]]] = defaultdict(lambda: defaultdict(list))
    for stmt in statements:
        element_id = get_object_id(stmt)
        if not element_id:
            continue
        for course in _courses_of(stmt):
            courses[course][element_id].append(stmt)
    return courses


def _best_score_per_course(statements: List[Statement]) -> List[dict]:
    courses = _group_by_course(statements)
    values = []
    for course in sorted(courses):
        total = 0
        for attempts in courses[course].values():
            score = extract_score(select_best_attempt(attempts))
            if score is not None:
                total += score
        values.append({"courseId": course, "score": total})
    return values


class CoursesTotalScoresProvider(MetricProvider):
    id = "courses-total-scores"
    dashboard_level = DashboardLevel.COURSE
    title = "Courses Total Scores"
    description = "Total scores earned by a student in each course"
    version = "2.0.0"
    required_params = ("userId",)
    optional_params = ("since", "until")
    output_type = OutputType.ARRAY
    example = {
        "params": {"userId": "user-123"},
        "result": {"value": [{"courseId": "course-1", "totalScore": 180}, {"courseId": "course-2", "totalScore": 95}]},
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        values = [
            {"courseId": item["courseId"], "totalScore": item["score"]}
            for item in _best_score_per_course(for_user(statements, params.user_id))
        ]
        return self._result(values, {
            "courseCount": len(values),
            **self._echo(params, "userId", with_time_range=True),
        })


class CoursesScoresProvider(MetricProvider):
    id = "courses-scores"
    dashboard_level = DashboardLevel.COURSE
    title = "Courses Scores"
    description = (
        "Calculates, per course, the sum of the highest score achieved by the user for each "
        "learning element in that course, optionally limited to a specified time range."
    )
    version = "3.0.0"
    required_params = ("userId",)
    optional_params = ("since", "until")
    output_type = OutputType.ARRAY
    example = {
        "params": {"userId": "user-123"},
        "result": {"value": [{"courseId": "course-1", "score": 180}, {"courseId": "course-2", "score": 95}]},
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        values = _best_score_per_course(for_user(statements, params.user_id))
        return self._result(values, {
            "courseCount": len(values),
            **self._echo(params, "userId", with_time_range=True),
        })


class CoursesMaxScoresProvider(MetricProvider):
    id = "courses-max-scores"
    dashboard_level = DashboardLevel.COURSE
    title = "Courses Max Scores"
    description = (
        "Calculates, per course, the maximum possible score, defined as the sum of the defined "
        "maximum scores configured for all learning elements belonging to that course."
    )
    version = "3.0.0"
    required_params = ("userId",)
    output_type = OutputType.ARRAY
    example = {
        "params": {"userId": "user-123"},
        "result": {"value": [{"courseId": "course-1", "maxScore": 300}, {"courseId": "course-2", "maxScore": 200}]},
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        courses = _group_by_course(for_user(statements, params.user_id))
        values = []
        for course in sorted(courses):
            element_maxima = [
                max(maxima) for maxima in (
                    [get_max_score(s) for s in attempts if get_max_score(s) is not None]
                    for attempts in courses[course].values()
                ) if maxima
            ]
            # Courses without any defined maximum are left out
            if element_maxima:
                values.append({"courseId": course, "maxScore": sum(element_maxima)})
        return self._result(values, {
            "courseCount": len(values),
            **self._echo(params, "userId"),
        })


class CoursesTimeSpentProvider(MetricProvider):
    id = "courses-time-spent"
    dashboard_level = DashboardLevel.COURSE
    title = "Courses Time Spent"
    description = (
        "Calculates, per course, the total time spent by the user across all attempts of all "
        "learning elements in that course, optionally limited to a specified time range."
    )
    version = "3.0.0"
    required_params = ("userId",)
    optional_params = ("since", "until")
    output_type = OutputType.ARRAY
    example = {
        "params": {"userId": "user-123"},
        "result": {"value": [{"courseId": "course-1", "timeSpent": 3600}, {"courseId": "course-2", "timeSpent": 1800}]},
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        seconds_per_course: Dict[str, float] = defaultdict(float)
        for stmt in for_user(statements, params.user_id):
            seconds = positive_duration(stmt, MAX_ACTIVITY_SECONDS)
            if seconds <= 0:
                continue
            for course in _courses_of(stmt):
                seconds_per_course[course] += seconds

        values = [
            {"courseId": course, "timeSpent": round(seconds_per_course[course])}
            for course in sorted(seconds_per_course)
        ]
        return self._result(values, {
            "courseCount": len(values),
            "unit": "seconds",
            **self._echo(params, "userId", with_time_range=True),
        })


class UserLastElementsProvider(MetricProvider):
    id = "user-last-elements"
    dashboard_level = DashboardLevel.COURSE
    title = "User Last Elements"
    description = (
        "Returns the three most recently completed learning elements by the user across all "
        "courses, ordered by completion time descending and optionally filtered by a specified "
        "time range."
    )
    version = "3.0.0"
    required_params = ("userId",)
    optional_params = ("since", "until")
    output_type = OutputType.ARRAY
    example = {
        "params": {"userId": "user-123"},
        "result": {
            "value": [
                {"elementId": "element-9", "completedAt": "2026-02-04T12:00:00Z"},
                {"elementId": "element-4", "completedAt": "2026-02-03T15:30:00Z"},
            ],
            "metadata": {"returnedCount": 2},
        },
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        latest = latest_per_element(for_user(statements, params.user_id), is_completed)
        values = newest_first([
            {"elementId": element_id, "completedAt": completed_at}
            for element_id, completed_at in latest.items()
        ])[:LAST_N]
        return self._result(values, {
            "totalCompletedElements": len(latest),
            "returnedCount": len(values),
            **self._echo(params, "userId", with_time_range=True),
        })
