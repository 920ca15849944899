"""
LRS Analytics Package
======================
Learning-analytics metrics computed from xAPI statements.

Architecture:
- config.py          → Service config + LRS instance definitions (env driven)
- models.py          → Pydantic models (API contracts, params, results)
- errors.py          → Error taxonomy
- attempts.py        → Statement accessors, durations, best-attempt selection
- scoping.py         → Course / topic membership from context activities
- element_types.py   → Learning-element type detection
- verbs.py           → xAPI verb IRI sets
- query_builder.py   → Fluent xAPI statement query builder
- lrs_client.py      → Paginating, retrying LRS HTTP client
- instances.py       → One LRS client per instance + background health monitor
- circuit_breaker.py → Per-instance circuit breaker pattern
- cache.py           → Redis / in-memory cache backends with stale copies
- cache_keys.py      → Deterministic cache key derivation
- fallback.py        → Graceful degradation when the LRS is down
- metrics.py         → In-memory metrics (counters, histograms)
- providers/         → The metric catalog, one provider per metric
- registry.py        → Immutable metric-id → provider mapping
- computation.py     → Cache-aside computation pipeline
- main.py            → FastAPI application (HTTP layer)
"""

from .config import AnalyticsConfig, LRSInstanceConfig, load_config
from .models import DashboardLevel, MetricParams, MetricResponse, MetricResult, OutputType
from .errors import (
    AnalyticsError,
    LRSTransportError,
    LRSUnavailableError,
    MetricNotFoundError,
    ParameterValidationError,
)
from .circuit_breaker import CircuitBreaker, CircuitBreakerRegistry
from .metrics import MetricsCollector
from .registry import ProviderRegistry
from .computation import ComputationService

__all__ = [
    "AnalyticsConfig",
    "LRSInstanceConfig",
    "load_config",
    "DashboardLevel",
    "MetricParams",
    "MetricResponse",
    "MetricResult",
    "OutputType",
    "AnalyticsError",
    "LRSTransportError",
    "LRSUnavailableError",
    "MetricNotFoundError",
    "ParameterValidationError",
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "MetricsCollector",
    "ProviderRegistry",
    "ComputationService",
]
