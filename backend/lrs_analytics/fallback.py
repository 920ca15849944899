"""
Fallback Handler
=================
Graceful degradation when the LRS cannot be reached.

Strategies, in order:
  1. cache_fallback → serve the last cached result even if its TTL elapsed
                      (status "degraded", with cachedAt / age)
  2. default_value  → no data at all (status "unavailable", default value)
"""

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from .attempts import EPOCH, parse_timestamp
from .cache import CacheBackend
from .config import AnalyticsConfig
from .metrics import MetricsCollector
from .models import FallbackResult, ResultStatus

logger = logging.getLogger(__name__)

STALE_WARNING = "Data is stale; current service unavailable"
UNAVAILABLE_ERROR = "Data currently unavailable; please try again later"
UNAVAILABLE_CAUSE = "LRS_UNAVAILABLE"


class FallbackHandler:
    def __init__(
        self,
        cache: CacheBackend,
        config: AnalyticsConfig,
        telemetry: Optional[MetricsCollector] = None,
    ):
        self.cache = cache
        self.config = config
        self.telemetry = telemetry

    def is_enabled(self) -> bool:
        return self.config.graceful_degradation_enabled

    def is_cache_fallback_enabled(self) -> bool:
        return self.config.cache_fallback_enabled

    async def execute_fallback(
        self,
        metric_id: str,
        cache_key: str,
        enable_cache_fallback: Optional[bool] = None,
        default_value: Any = None,
    ) -> FallbackResult:
        logger.warning(f"⚠️ Executing fallback for {metric_id} (key={cache_key})")

        if enable_cache_fallback is not False:
            stale = await self._try_stale_cache(cache_key)
            if stale is not None:
                self._record(metric_id, "cache_fallback")
                logger.info(f"Returning stale cached result for {metric_id} (age={stale.age}s)")
                return stale

        logger.info(f"No cached result for {metric_id}, returning default value")
        self._record(metric_id, "default_value")
        return FallbackResult(
            value=default_value,
            status=ResultStatus.UNAVAILABLE,
            error=UNAVAILABLE_ERROR,
            cause=UNAVAILABLE_CAUSE,
            data_available=False,
        )

    async def _try_stale_cache(self, cache_key: str) -> Optional[FallbackResult]:
        cached = await self.cache.get_ignoring_expiry(cache_key)
        if cached is None:
            logger.debug(f"No stale cache found for {cache_key}")
            return None

        now = datetime.now(timezone.utc)
        cached_at = now
        value = cached
        if isinstance(cached, dict):
            stamp = parse_timestamp(cached.get("timestamp"))
            if stamp != EPOCH:
                cached_at = stamp
            value = cached.get("value")

        return FallbackResult(
            value=value,
            status=ResultStatus.DEGRADED,
            from_cache=True,
            warning=STALE_WARNING,
            cached_at=cached_at.isoformat(),
            age=max(0, int((now - cached_at).total_seconds())),
            data_available=True,
        )

    def _record(self, metric_id: str, strategy: str):
        if self.telemetry:
            self.telemetry.record_graceful_degradation(metric_id, strategy)
