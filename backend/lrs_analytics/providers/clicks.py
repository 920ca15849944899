"""
Element-type Metrics
=====================
Per learning-element-type aggregates of one learner's activity.

element-clicks sequencing:
  CT (commentary)      → sequence 1, weight 1.5
  CO (content object)  → next sequence, weight 1.5
  other types          → following sequences in first-access order,
                         weight by rank 1.5, 1.5, 1.25, 1.1, then 1.0
  other types score    min(50, clicks * 5 * weight)
  CO / CT score        min(50, best other score + 3 / + 6)
"""

from datetime import datetime, timezone
from typing import Dict, List

from ..attempts import get_object_id, get_verb_id, parse_timestamp, positive_duration
from ..element_types import UNKNOWN, detect_element_type
from ..models import DashboardLevel, MetricParams, MetricResult, OutputType, Statement
from ..verbs import CLICK_VERBS
from .base import MetricProvider, for_user

FIXED_WEIGHT = 1.5
RANK_WEIGHTS = (1.5, 1.5, 1.25, 1.1)
BASE_CLICK_SCORE = 5
MAX_DIMENSION_SCORE = 50
CONTENT_OFFSET = 3
COMMENTARY_OFFSET = 6


def _access_time(stmt: Statement) -> str:
    return stmt.get("timestamp") or stmt.get("stored") or datetime.now(timezone.utc).isoformat()


def _rank_weight(rank: int) -> float:
    return RANK_WEIGHTS[rank] if rank < len(RANK_WEIGHTS) else 1.0


def _click_score(clicks: int, weight: float) -> float:
    return min(MAX_DIMENSION_SCORE, round(clicks * BASE_CLICK_SCORE * weight, 2))


class ElementClicksProvider(MetricProvider):
    id = "element-clicks"
    dashboard_level = DashboardLevel.ELEMENT
    title = "Learning Element Clicks"
    description = "Click counts per learning element type with sequence weighting"
    required_params = ("userId",)
    optional_params = ("courseId", "topicId", "elementId", "since", "until")
    output_type = OutputType.ARRAY
    example = {
        "params": {"userId": "user-123", "courseId": "course-42"},
        "result": {
            "value": [{
                "type": "CT",
                "clickCount": 1,
                "sequence": 1,
                "weight": 1.5,
                "dimensionScore": 19.5,
                "firstAccessAt": "2025-11-15T10:00:00Z",
                "avgClicksPerElement": 1,
            }],
            "metadata": {"totalClicks": 1, "typeCount": 1},
        },
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        clicks = [
            stmt for stmt in for_user(statements, params.user_id)
            if get_verb_id(stmt) in CLICK_VERBS
        ]
        echo = self._echo(params, "userId", "courseId", "topicId")
        if not clicks:
            return self._result([], {"totalClicks": 0, "typeCount": 0, **echo})

        aggregates = self._aggregate(clicks)
        commentary = aggregates.get("CT")
        content = aggregates.get("CO")

        next_sequence = 1
        for fixed in (commentary, content):
            if fixed is not None:
                fixed["sequence"] = next_sequence
                fixed["weight"] = FIXED_WEIGHT
                next_sequence += 1

        others = sorted(
            (agg for code, agg in aggregates.items() if code not in ("CT", "CO")),
            key=lambda agg: parse_timestamp(agg["firstAccessAt"]),
        )
        for rank, agg in enumerate(others):
            agg["sequence"] = next_sequence + rank
            agg["weight"] = _rank_weight(rank)
            agg["dimensionScore"] = _click_score(agg["clickCount"], agg["weight"])

        best_other = max((agg["dimensionScore"] for agg in others), default=0)
        if content is not None:
            content["dimensionScore"] = min(MAX_DIMENSION_SCORE, best_other + CONTENT_OFFSET)
        if commentary is not None:
            commentary["dimensionScore"] = min(MAX_DIMENSION_SCORE, best_other + COMMENTARY_OFFSET)

        summaries = [
            {
                "type": agg["type"],
                "clickCount": agg["clickCount"],
                "sequence": agg["sequence"],
                "weight": agg["weight"],
                "dimensionScore": agg["dimensionScore"],
                "firstAccessAt": agg["firstAccessAt"],
                "avgClicksPerElement": (
                    round(agg["clickCount"] / len(agg["elementIds"]), 2)
                    if agg["elementIds"] else agg["clickCount"]
                ),
            }
            for agg in aggregates.values()
        ]
        summaries.sort(key=lambda s: (-s["dimensionScore"], s["sequence"]))

        return self._result(summaries, {
            "totalClicks": len(clicks),
            "typeCount": len(summaries),
            **echo,
        })

    @staticmethod
    def _aggregate(clicks: List[Statement]) -> Dict[str, dict]:
        aggregates: Dict[str, dict] = {}
        for stmt in clicks:
            code = detect_element_type(stmt)
            if code == UNKNOWN:
                continue
            accessed = _access_time(stmt)
            agg = aggregates.setdefault(code, {
                "type": code,
                "clickCount": 0,
                "firstAccessAt": accessed,
                "elementIds": set(),
            })
            agg["clickCount"] += 1
            if parse_timestamp(accessed) < parse_timestamp(agg["firstAccessAt"]):
                agg["firstAccessAt"] = accessed
            element_id = get_object_id(stmt)
            if element_id:
                agg["elementIds"].add(element_id)
        return aggregates


class ElementTypeTimeSpentProvider(MetricProvider):
    id = "element-type-time-spent"
    dashboard_level = DashboardLevel.ELEMENT
    title = "Time Spent per Element Type"
    description = "Total and average time spent per learning element type"
    required_params = ("userId",)
    optional_params = ("courseId", "topicId", "since", "until")
    output_type = OutputType.ARRAY
    example = {
        "params": {"userId": "user-123"},
        "result": {
            "value": [{"type": "SE", "totalSeconds": 1200, "avgSecondsPerElement": 600, "elementCount": 2}],
            "metadata": {"totalSeconds": 1200, "typeCount": 1},
        },
    }

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        per_type: Dict[str, dict] = {}
        for stmt in for_user(statements, params.user_id):
            seconds = positive_duration(stmt)
            if seconds <= 0:
                continue
            code = detect_element_type(stmt)
            if code == UNKNOWN:
                continue
            agg = per_type.setdefault(code, {"totalSeconds": 0, "elementIds": set()})
            agg["totalSeconds"] += seconds
            element_id = get_object_id(stmt)
            if element_id:
                agg["elementIds"].add(element_id)

        summaries = sorted(
            (
                {
                    "type": code,
                    "totalSeconds": agg["totalSeconds"],
                    "elementCount": len(agg["elementIds"]),
                    "avgSecondsPerElement": (
                        round(agg["totalSeconds"] / len(agg["elementIds"])) if agg["elementIds"] else 0
                    ),
                }
                for code, agg in per_type.items()
            ),
            key=lambda s: s["totalSeconds"],
            reverse=True,
        )
        return self._result(summaries, {
            "totalSeconds": sum(s["totalSeconds"] for s in summaries),
            "typeCount": len(summaries),
            **self._echo(params, "userId", "courseId", "topicId"),
        })
