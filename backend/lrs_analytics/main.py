"""
LRS Analytics Service
======================
Port: 8020

Learning-analytics metrics computed on demand from xAPI statements:

┌──────────────────────────────────────────────────────────────────────┐
│                         LRS Analytics                                │
│                                                                      │
│  ┌──────────┐  ┌─────────────┐  ┌────────────┐  ┌────────────────┐   │
│  │ API Layer│──► Computation │──► Providers  │  │ Circuit        │   │
│  │ (FastAPI)│  │ Service     │  │ (32 metrics│  │ Breakers       │   │
│  └──────────┘  └─────────────┘  └────────────┘  │ (per instance) │   │
│       │              │      │                    └────────────────┘   │
│       ▼              ▼      ▼                            │            │
│  ┌──────────┐  ┌──────────┐  ┌─────────────────────────────────────┐ │
│  │ Metrics  │  │ Cache    │  │ Instance Registry + Health Monitor  │ │
│  │ Collector│  │ (Redis)  │  │ (one LRS client per instance)       │ │
│  └──────────┘  └──────────┘  └─────────────────────────────────────┘ │
└──────────────────────────────────────────────────────────────────────┘

Run: python -m lrs_analytics.main   (from backend/)
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .cache import CacheBackend, InMemoryCache, RedisCache
from .cache_keys import KEY_PREFIX, build_cache_key_pattern
from .circuit_breaker import CircuitBreakerRegistry
from .computation import ComputationService
from .config import AnalyticsConfig, load_config
from .errors import (
    CacheError,
    CircuitOpenError,
    LRSUnavailableError,
    MetricNotFoundError,
    ParameterValidationError,
)
from .fallback import FallbackHandler
from .instances import InstanceRegistry
from .metrics import MetricsCollector
from .models import (
    CacheInvalidateRequest,
    CacheInvalidateResponse,
    HealthResponse,
    MetricParams,
    MetricsCatalogResponse,
)
from .registry import ProviderRegistry

# ── Environment ──────────────────────────────────────────────────
backend_root = Path(__file__).parent.parent
load_dotenv(dotenv_path=backend_root / ".env")

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger("lrs_analytics")

SERVICE_NAME = "LRS Analytics"
SERVICE_VERSION = "1.0.0"


# ══════════════════════════════════════════════════════════════════
#  LIFESPAN: Initialize all subsystems
# ══════════════════════════════════════════════════════════════════

async def _create_cache(config: AnalyticsConfig, metrics: MetricsCollector) -> CacheBackend:
    if config.redis_url:
        cache = RedisCache(
            config.redis_url,
            ttl_for_category=config.ttl_for_category,
            stale_ttl_s=config.stale_data_ttl_s,
            telemetry=metrics,
            max_connections=config.redis_max_connections,
        )
        try:
            await cache.connect()
            return cache
        except CacheError as e:
            logger.error(f"❌ Redis unavailable ({e}), using in-memory cache")
    else:
        logger.warning("⚠️  REDIS_URL not set, using in-memory cache")
    return InMemoryCache(
        ttl_for_category=config.ttl_for_category,
        stale_ttl_s=config.stale_data_ttl_s,
        telemetry=metrics,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: Config → Metrics → Cache → Circuit Breakers → Instances → Providers → Service
    Shutdown: Stop monitor → Close LRS clients → Close cache
    """
    config = load_config()
    logging.getLogger().setLevel(config.log_level)
    app.state.config = config

    # 1. Metrics collector
    app.state.metrics = MetricsCollector(buffer_size=config.metrics_buffer_size)

    # 2. Cache
    app.state.cache = await _create_cache(config, app.state.metrics)

    # 3. Circuit breakers
    app.state.circuit_breakers = CircuitBreakerRegistry(
        failure_threshold=config.cb_failure_threshold,
        recovery_timeout_s=config.cb_recovery_timeout_s,
        half_open_max_calls=config.cb_half_open_max_calls,
        telemetry=app.state.metrics,
    )
    logger.info(
        f"✅ Circuit breakers ready (threshold={config.cb_failure_threshold}, "
        f"recovery={config.cb_recovery_timeout_s}s)"
    )

    # 4. LRS instances + health monitor
    app.state.instances = InstanceRegistry(config, telemetry=app.state.metrics)
    await app.state.instances.start_monitoring()

    # 5. Providers + computation service
    app.state.providers = ProviderRegistry()
    app.state.service = ComputationService(
        registry=app.state.providers,
        instances=app.state.instances,
        cache=app.state.cache,
        breakers=app.state.circuit_breakers,
        fallback=FallbackHandler(app.state.cache, config, telemetry=app.state.metrics),
        telemetry=app.state.metrics,
        config=config,
    )

    logger.info("🚀 LRS Analytics ready on port 8020")

    yield

    # Shutdown
    await app.state.instances.close()
    await app.state.cache.close()
    logger.info("LRS Analytics shut down cleanly")


# ══════════════════════════════════════════════════════════════════
#  FastAPI App
# ══════════════════════════════════════════════════════════════════

app = FastAPI(
    title="LRS Analytics",
    version=SERVICE_VERSION,
    description="Learning-analytics metrics computed from xAPI statements",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ── Error mapping ─────────────────────────────────────────────────

@app.exception_handler(ParameterValidationError)
async def validation_error_handler(request: Request, exc: ParameterValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(MetricNotFoundError)
async def not_found_handler(request: Request, exc: MetricNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(LRSUnavailableError)
async def unavailable_handler(request: Request, exc: LRSUnavailableError):
    return JSONResponse(status_code=503, content={"detail": str(exc)})


@app.exception_handler(CircuitOpenError)
async def circuit_open_handler(request: Request, exc: CircuitOpenError):
    return JSONResponse(status_code=503, content={"detail": str(LRSUnavailableError())})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}")
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


# ══════════════════════════════════════════════════════════════════
#  ROUTES: Service
# ══════════════════════════════════════════════════════════════════

@app.get("/")
async def root():
    return {
        "service": SERVICE_NAME,
        "version": SERVICE_VERSION,
        "port": 8020,
        "features": [
            "metric-catalog",
            "cache-aside-computation",
            "multi-instance-lrs",
            "circuit-breakers",
            "graceful-degradation",
            "lrs-health-monitoring",
        ],
    }


@app.get("/health", response_model=HealthResponse)
async def health():
    """Overall status: LRS instances, cache and circuit breakers."""
    instances: InstanceRegistry = app.state.instances
    cache: CacheBackend = app.state.cache
    metrics: MetricsCollector = app.state.metrics

    cache_ok = await cache.is_healthy()
    status = instances.overall_status()
    if status == "healthy" and not cache_ok:
        status = "degraded"

    return HealthResponse(
        status=status,
        cache="connected" if cache_ok else "disconnected",
        instances=instances.health_snapshot(),
        circuit_breakers=app.state.circuit_breakers.all_status(),
        uptime_seconds=metrics.uptime_seconds,
        metrics_summary=metrics.health_summary(),
    )


@app.get("/health/lrs")
async def lrs_health():
    """Probe every LRS instance now."""
    instances: InstanceRegistry = app.state.instances
    snapshot = await instances.check_all()
    return {
        "status": instances.overall_status(),
        "instances": {instance_id: h.to_wire() for instance_id, h in snapshot.items()},
    }


# ══════════════════════════════════════════════════════════════════
#  ROUTES: Metrics API
# ══════════════════════════════════════════════════════════════════

@app.get("/api/v1/metrics")
async def list_metrics():
    providers: ProviderRegistry = app.state.providers
    items = [item.model_copy(update={"example": None}) for item in providers.catalog()]
    return MetricsCatalogResponse(metrics=items, total=len(items)).to_wire()


@app.get("/api/v1/metrics/{metric_id}")
async def get_metric(metric_id: str):
    providers: ProviderRegistry = app.state.providers
    return providers.get(metric_id).catalog_item().to_wire()


@app.get("/api/v1/metrics/{metric_id}/results")
async def get_metric_results(
    metric_id: str,
    course_id: Optional[str] = Query(None, alias="courseId"),
    topic_id: Optional[str] = Query(None, alias="topicId"),
    element_id: Optional[str] = Query(None, alias="elementId"),
    user_id: Optional[str] = Query(None, alias="userId"),
    group_id: Optional[str] = Query(None, alias="groupId"),
    since: Optional[str] = Query(None),
    until: Optional[str] = Query(None),
    instance_id: Optional[str] = Query(None, alias="instanceId"),
):
    """Compute (or serve from cache) one metric for the given scope."""
    service: ComputationService = app.state.service
    params = MetricParams(
        course_id=course_id,
        topic_id=topic_id,
        element_id=element_id,
        user_id=user_id,
        group_id=group_id,
        since=since,
        until=until,
        instance_id=instance_id,
    )
    response = await service.compute_metric(metric_id, params)
    return response.to_wire()


@app.get("/api/v1/instances")
async def list_instances():
    instances: InstanceRegistry = app.state.instances
    summaries = instances.list_instances()
    return {
        "instances": [s.to_wire() for s in summaries],
        "defaultInstanceId": instances.default_instance_id,
        "total": len(summaries),
    }


# ══════════════════════════════════════════════════════════════════
#  ROUTES: Admin
# ══════════════════════════════════════════════════════════════════

@app.post("/api/v1/admin/cache/invalidate")
async def invalidate_cache(request: CacheInvalidateRequest):
    cache: CacheBackend = app.state.cache

    if request.key:
        invalidated = 1 if await cache.invalidate_key(request.key) else 0
        return CacheInvalidateResponse(invalidated=invalidated).to_wire()

    if request.all:
        pattern = f"{KEY_PREFIX}:*"
    elif request.metric_id or request.instance_id:
        pattern = build_cache_key_pattern(request.metric_id, request.instance_id)
    else:
        raise HTTPException(400, "Provide key, metricId, instanceId or all")

    invalidated = await cache.invalidate_pattern(pattern)
    logger.info(f"🧹 Invalidated {invalidated} cache entries ({pattern})")
    return CacheInvalidateResponse(invalidated=invalidated, pattern=pattern).to_wire()


@app.get("/api/v1/admin/metrics")
async def admin_metrics():
    """Full telemetry summary plus circuit breaker state."""
    metrics: MetricsCollector = app.state.metrics
    return {
        **metrics.summary(),
        "circuit_breakers": app.state.circuit_breakers.all_status(),
    }


@app.post("/api/v1/admin/circuit-breakers/{name}/reset")
async def reset_circuit_breaker(name: str):
    registry: CircuitBreakerRegistry = app.state.circuit_breakers
    cb = registry.get(name)
    cb.reset()
    return cb.to_dict()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8020)
