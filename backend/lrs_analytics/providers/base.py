"""
Metric Provider Base
=====================
Every metric is a stateless provider: catalog attributes plus

    validate_params(params)          → raises ParameterValidationError
    compute(params, statements)      → MetricResult

compute() never mutates its inputs, does no I/O and tolerates an empty
statement list. The helpers below are shared by the concrete providers.
"""

from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from ..attempts import get_actor_key, get_object_id, parse_timestamp, time_range
from ..errors import ParameterValidationError
from ..models import DashboardLevel, MetricCatalogItem, MetricParams, MetricResult, OutputType, Statement

# Durations above one day are treated as tracking noise by the aggregating metrics.
MAX_ACTIVITY_SECONDS = 86400
LAST_N = 3


class MetricProvider:
    """Base class for all metric providers."""

    id: str = ""
    dashboard_level: DashboardLevel = DashboardLevel.COURSE
    title: Optional[str] = None
    description: str = ""
    version: str = "1.0.0"
    required_params: Tuple[str, ...] = ()
    optional_params: Tuple[str, ...] = ()
    output_type: OutputType = OutputType.SCALAR
    example: Optional[Dict[str, Any]] = None

    def validate_params(self, params: MetricParams) -> None:
        for name in self.required_params:
            if not params.value_of(name):
                raise ParameterValidationError(
                    f"{name} is required for {self.id} metric computation"
                )
        if params.since and params.until:
            if parse_timestamp(params.since) > parse_timestamp(params.until):
                raise ParameterValidationError("since timestamp must be before until timestamp")

    def compute(self, params: MetricParams, statements: List[Statement]) -> MetricResult:
        raise NotImplementedError

    def catalog_item(self) -> MetricCatalogItem:
        return MetricCatalogItem(
            id=self.id,
            dashboard_level=self.dashboard_level,
            title=self.title,
            description=self.description,
            version=self.version,
            required_params=list(self.required_params),
            optional_params=list(self.optional_params),
            output_type=self.output_type,
            example=self.example,
        )

    # ── Helpers ───────────────────────────────────────────────────

    def _result(self, value: Any, metadata: Dict[str, Any]) -> MetricResult:
        return MetricResult(
            metric_id=self.id,
            value=value,
            computed=datetime.now(timezone.utc).isoformat(),
            metadata=metadata,
        )

    @staticmethod
    def _echo(params: MetricParams, *names: str, with_time_range: bool = False) -> Dict[str, Any]:
        """Copy the named request parameters into metadata, skipping unset ones."""
        echoed = {name: params.value_of(name) for name in names if params.value_of(name)}
        if with_time_range:
            window = time_range(params)
            if window:
                echoed["timeRange"] = window
        return echoed


# ── Shared aggregation helpers ────────────────────────────────────

def for_user(statements: Iterable[Statement], user_id: Optional[str]) -> List[Statement]:
    """Statements whose actor is `user_id` (account name, mbox or mailto:user)."""
    if not user_id:
        return list(statements)
    accepted = {user_id, f"mailto:{user_id}"}
    return [s for s in statements if get_actor_key(s) in accepted]


def group_by_element(statements: Iterable[Statement]) -> Dict[str, List[Statement]]:
    grouped: Dict[str, List[Statement]] = defaultdict(list)
    for stmt in statements:
        element_id = get_object_id(stmt)
        if element_id:
            grouped[element_id].append(stmt)
    return dict(grouped)


def latest_per_element(
    statements: Iterable[Statement],
    predicate: Callable[[Statement], bool],
) -> Dict[str, str]:
    """element id → latest timestamp among statements satisfying `predicate`."""
    latest: Dict[str, str] = {}
    for stmt in statements:
        if not predicate(stmt):
            continue
        element_id = get_object_id(stmt)
        timestamp = stmt.get("timestamp")
        if not element_id or not timestamp:
            continue
        current = latest.get(element_id)
        if current is None or parse_timestamp(timestamp) > parse_timestamp(current):
            latest[element_id] = timestamp
    return latest


def newest_first(items: List[Dict[str, Any]], key: str = "completedAt") -> List[Dict[str, Any]]:
    return sorted(items, key=lambda item: parse_timestamp(item[key]), reverse=True)
