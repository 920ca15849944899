"""
Metric Computation Service
===========================
Cache-aside coordinator for one metric request:

  resolve provider → cache lookup ─ hit ──────────────────────────→ response (fromCache)
                                  └ miss → validate → LRS query → compute → cache write → response
                                                       │
                                                       └ failure → fallback (stale cache / default)

The provider is resolved first because its dashboard level is part of the cache key.
Concurrent identical requests are not coalesced; each may miss and query the LRS.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .cache import CacheBackend
from .cache_keys import build_cache_key
from .circuit_breaker import CircuitBreakerRegistry
from .config import AnalyticsConfig
from .errors import CircuitOpenError, LRSTransportError, LRSUnavailableError
from .fallback import FallbackHandler
from .instances import InstanceRegistry
from .metrics import MetricsCollector
from .models import MetricParams, MetricResponse, MetricResult, Statement
from .providers import MetricProvider
from .registry import ProviderRegistry

logger = logging.getLogger(__name__)

RESULTS_CATEGORY = "results"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _elapsed_ms(start: float) -> int:
    return int((time.monotonic() - start) * 1000)


def build_lrs_filters(params: MetricParams) -> Dict[str, Any]:
    """
    Translate metric parameters into LRS statement filters.

    The finest available scope becomes the `activity` filter: element, then topic,
    then course. Element scope is already a leaf, so related activities are only
    included for topic and course scope.
    """
    filters: Dict[str, Any] = {}
    if params.element_id:
        filters["activity"] = params.element_id
        filters["related_activities"] = False
    elif params.topic_id or params.course_id:
        filters["activity"] = params.topic_id or params.course_id
        filters["related_activities"] = True
    if params.since:
        filters["since"] = params.since
    if params.until:
        filters["until"] = params.until
    return filters


class ComputationService:
    """
    Usage:
        service = ComputationService(registry, instances, cache, breakers, fallback, telemetry, config)
        response = await service.compute_metric("course-completion", MetricParams(course_id="..."))
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        instances: InstanceRegistry,
        cache: CacheBackend,
        breakers: CircuitBreakerRegistry,
        fallback: FallbackHandler,
        telemetry: MetricsCollector,
        config: AnalyticsConfig,
    ):
        self.registry = registry
        self.instances = instances
        self.cache = cache
        self.breakers = breakers
        self.fallback = fallback
        self.telemetry = telemetry
        self.config = config

    async def compute_metric(self, metric_id: str, params: Optional[MetricParams] = None) -> MetricResponse:
        """
        Raises:
            MetricNotFoundError: Unknown metric id.
            ParameterValidationError: Missing or invalid parameters, or unknown instance.
            LRSUnavailableError: LRS unreachable and graceful degradation disabled.
        """
        params = params or MetricParams()
        start = time.monotonic()
        try:
            try:
                provider = self.registry.get(metric_id)
                instance_id = self.instances.resolve(params.instance_id)
            except Exception:
                self.telemetry.record_computation_error(metric_id)
                raise

            cache_key = build_cache_key(metric_id, instance_id, provider.dashboard_level, params)
            cached = await self.cache.get(cache_key)
            if cached is not None:
                self.telemetry.record_cache_hit(metric_id)
                logger.debug(f"Cache hit for {cache_key}")
                return self._from_cached(cached, start)

            self.telemetry.record_cache_miss(metric_id)
            logger.debug(f"Cache miss for {cache_key}")
            return await self._compute_fresh(provider, params, instance_id, cache_key, start)
        finally:
            self.telemetry.record_metric_computation(metric_id, time.monotonic() - start)

    # ── Pipeline steps ────────────────────────────────────────────

    async def _compute_fresh(
        self,
        provider: MetricProvider,
        params: MetricParams,
        instance_id: str,
        cache_key: str,
        start: float,
    ) -> MetricResponse:
        metric_id = provider.id
        try:
            provider.validate_params(params)
        except Exception:
            self.telemetry.record_computation_error(metric_id)
            raise

        try:
            statements = await self._query_statements(instance_id, params)
        except (CircuitOpenError, LRSTransportError) as e:
            logger.warning(f"⚠️ LRS query for {metric_id} on [{instance_id}] failed: {e}")
            self.telemetry.record_computation_error(metric_id)
            if not self.fallback.is_enabled():
                raise LRSUnavailableError() from e
            return await self._degraded(metric_id, instance_id, cache_key, start)

        try:
            result = provider.compute(params, statements)
        except Exception:
            self.telemetry.record_computation_error(metric_id)
            logger.exception(f"Provider {metric_id} failed")
            raise

        response = self._annotate(result, instance_id, start)
        await self._store(cache_key, response)
        return response

    async def _query_statements(self, instance_id: str, params: MetricParams) -> List[Statement]:
        client = self.instances.get_client(instance_id)
        breaker = self.breakers.get(f"lrs:{instance_id}")
        return await breaker.call(
            client.query_statements,
            build_lrs_filters(params),
            max_statements=self.config.lrs_max_statements,
        )

    async def _degraded(
        self,
        metric_id: str,
        instance_id: str,
        cache_key: str,
        start: float,
    ) -> MetricResponse:
        outcome = await self.fallback.execute_fallback(
            metric_id,
            cache_key,
            enable_cache_fallback=self.fallback.is_cache_fallback_enabled(),
            default_value=self.config.default_value_on_unavailable,
        )
        return MetricResponse(
            metric_id=metric_id,
            value=outcome.value,
            timestamp=outcome.cached_at or _now_iso(),
            computation_time=_elapsed_ms(start),
            from_cache=outcome.from_cache,
            instance_id=instance_id,
            status=outcome.status,
            warning=outcome.warning,
            error=outcome.error,
            cause=outcome.cause,
            cached_at=outcome.cached_at,
            age=outcome.age,
            data_available=outcome.data_available,
        )

    @staticmethod
    def _annotate(result: MetricResult, instance_id: str, start: float) -> MetricResponse:
        return MetricResponse(
            metric_id=result.metric_id,
            value=result.value,
            timestamp=result.computed,
            metadata=result.metadata,
            computation_time=_elapsed_ms(start),
            from_cache=False,
            instance_id=instance_id,
        )

    @staticmethod
    def _from_cached(cached: Dict[str, Any], start: float) -> MetricResponse:
        response = MetricResponse.model_validate(cached)
        return response.model_copy(update={
            "from_cache": True,
            "computation_time": _elapsed_ms(start),
        })

    async def _store(self, cache_key: str, response: MetricResponse):
        """Write-through. A failed write is logged and never fails the request."""
        try:
            stored = await self.cache.set(cache_key, response.to_wire(), category=RESULTS_CATEGORY)
        except Exception as e:
            logger.warning(f"⚠️ Failed to cache {cache_key}: {e}")
            return
        if not stored:
            logger.warning(f"⚠️ Failed to cache {cache_key}")
