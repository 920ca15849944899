"""
Analytics Models
=================
Pydantic models for API contracts and the computation pipeline.

xAPI statements themselves stay plain dicts (the JSON the LRS returns); they are
read-only inputs and never re-shaped. Everything that crosses the HTTP boundary is
camelCase on the wire and snake_case in Python.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# One xAPI statement as returned by the LRS, tagged with "instanceId".
Statement = Dict[str, Any]


class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


# ── Enums ─────────────────────────────────────────────────────────

class DashboardLevel(str, Enum):
    """Hierarchy scope a metric is computed and displayed at."""
    COURSE = "course"
    TOPIC = "topic"
    ELEMENT = "element"


class OutputType(str, Enum):
    SCALAR = "scalar"
    ARRAY = "array"
    OBJECT = "object"
    BOOLEAN = "boolean"
    STRING = "string"


class ResultStatus(str, Enum):
    """Availability of a metric response."""
    AVAILABLE = "available"
    DEGRADED = "degraded"       # Served stale from cache, LRS down
    UNAVAILABLE = "unavailable" # No data at all, default value returned


# ── Parameters ────────────────────────────────────────────────────

class MetricParams(_WireModel):
    """Flat set of optional filters. Each provider declares its own required subset."""
    course_id: Optional[str] = None
    topic_id: Optional[str] = None
    element_id: Optional[str] = None
    user_id: Optional[str] = None
    group_id: Optional[str] = None
    since: Optional[str] = None
    until: Optional[str] = None
    instance_id: Optional[str] = None
    filters: Dict[str, str] = Field(default_factory=dict)

    def value_of(self, name: str) -> Optional[str]:
        """Look a parameter up by its wire name (e.g. "courseId")."""
        field_name = _WIRE_TO_FIELD.get(name, name)
        return getattr(self, field_name, None)


_WIRE_TO_FIELD = {to_camel(name): name for name in MetricParams.model_fields}


# ── Results ───────────────────────────────────────────────────────

class MetricResult(_WireModel):
    """Output of a provider's compute()."""
    metric_id: str
    value: Any = None
    computed: str
    metadata: Dict[str, Any] = Field(default_factory=dict)


class MetricResponse(_WireModel):
    """
    A MetricResult wrapped with request-level annotations.
    `value` and `metadata` are identical whether served fresh or from cache.
    """
    metric_id: str
    value: Any = None
    timestamp: str
    metadata: Optional[Dict[str, Any]] = None
    computation_time: int = 0  # ms
    from_cache: bool = False
    instance_id: Optional[str] = None

    # Set only on degraded / unavailable responses
    status: Optional[ResultStatus] = None
    warning: Optional[str] = None
    error: Optional[str] = None
    cause: Optional[str] = None
    cached_at: Optional[str] = None
    age: Optional[int] = None
    data_available: Optional[bool] = None

    def to_wire(self) -> Dict[str, Any]:
        # value/metadata are kept even when None
        data = self.model_dump(by_alias=True, exclude_none=True, mode="json")
        data["value"] = self.value
        return data


class FallbackResult(_WireModel):
    value: Any = None
    status: ResultStatus
    from_cache: bool = False
    warning: Optional[str] = None
    error: Optional[str] = None
    cause: Optional[str] = None
    cached_at: Optional[str] = None
    age: Optional[int] = None
    data_available: bool = False


# ── Catalog ───────────────────────────────────────────────────────

class MetricCatalogItem(_WireModel):
    id: str
    dashboard_level: DashboardLevel
    title: Optional[str] = None
    description: str
    version: Optional[str] = None
    required_params: List[str] = Field(default_factory=list)
    optional_params: List[str] = Field(default_factory=list)
    output_type: Optional[OutputType] = None
    example: Optional[Dict[str, Any]] = None


class MetricsCatalogResponse(_WireModel):
    metrics: List[MetricCatalogItem]
    total: int


# ── Health ────────────────────────────────────────────────────────

class InstanceHealth(_WireModel):
    """Result of one LRS /about probe."""
    instance_id: str
    healthy: bool
    version: Optional[str] = None
    response_time_ms: Optional[float] = None
    error: Optional[str] = None
    checked_at: Optional[str] = None


class InstanceSummary(_WireModel):
    id: str
    name: str
    status: str = "unknown"  # healthy | unhealthy | unknown


class HealthResponse(_WireModel):
    status: str  # healthy | degraded | unhealthy
    cache: str
    instances: Dict[str, InstanceHealth] = Field(default_factory=dict)
    circuit_breakers: Dict[str, Any] = Field(default_factory=dict)
    uptime_seconds: float = 0.0
    metrics_summary: Dict[str, Any] = Field(default_factory=dict)


# ── Admin ─────────────────────────────────────────────────────────

class CacheInvalidateRequest(_WireModel):
    """Exactly one of key / metric_id+instance_id / all is expected."""
    key: Optional[str] = None
    metric_id: Optional[str] = None
    instance_id: Optional[str] = None
    all: bool = False


class CacheInvalidateResponse(_WireModel):
    invalidated: int
    pattern: Optional[str] = None
