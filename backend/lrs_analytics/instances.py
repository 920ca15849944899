"""
LRS Instance Registry & Health Monitor
========================================
Owns one LRSClient per configured Learning Record Store and tracks its health.
A background task probes every instance's /about endpoint concurrently on a
fixed interval and keeps the latest snapshot per instance.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from .config import AnalyticsConfig, LRSInstanceConfig
from .errors import LRSUnavailableError, ParameterValidationError
from .lrs_client import LRSClient
from .metrics import MetricsCollector
from .models import InstanceHealth, InstanceSummary

logger = logging.getLogger(__name__)


@dataclass
class InstanceStatus:
    """Health bookkeeping for one LRS instance."""
    instance: LRSInstanceConfig
    last_health: Optional[InstanceHealth] = None
    checks: int = 0
    healthy_checks: int = 0
    consecutive_failures: int = 0

    @property
    def status(self) -> str:
        if self.last_health is None:
            return "unknown"
        return "healthy" if self.last_health.healthy else "unhealthy"

    @property
    def availability_pct(self) -> float:
        if self.checks == 0:
            return 100.0
        return round((self.healthy_checks / self.checks) * 100, 1)

    def record(self, health: InstanceHealth):
        self.last_health = health
        self.checks += 1
        if health.healthy:
            self.healthy_checks += 1
            self.consecutive_failures = 0
        else:
            self.consecutive_failures += 1

    def to_dict(self) -> dict:
        return {
            "id": self.instance.id,
            "name": self.instance.name,
            "status": self.status,
            "availability_pct": self.availability_pct,
            "consecutive_failures": self.consecutive_failures,
            "last_health": self.last_health.to_wire() if self.last_health else None,
        }


class InstanceRegistry:
    """
    Usage:
        instances = InstanceRegistry(config, telemetry=metrics)
        client = instances.get_client(params.instance_id)
        await instances.start_monitoring()
    """

    def __init__(
        self,
        config: AnalyticsConfig,
        telemetry: Optional[MetricsCollector] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.config = config
        self._clients: Dict[str, LRSClient] = {}
        self._status: Dict[str, InstanceStatus] = {}
        for instance in config.lrs_instances:
            self._clients[instance.id] = LRSClient(
                instance,
                telemetry=telemetry,
                max_retries=config.lrs_max_retries,
                retry_base_delay_ms=config.lrs_retry_base_delay_ms,
                retry_max_delay_ms=config.lrs_retry_max_delay_ms,
                transport=transport,
                sleep=sleep,
            )
            self._status[instance.id] = InstanceStatus(instance=instance)
            logger.info(f"📋 Registered LRS instance: {instance.id} → {instance.endpoint}")

        self._monitor_task: Optional[asyncio.Task] = None
        self._running = False

    @property
    def default_instance_id(self) -> str:
        return self.config.default_instance_id

    def resolve(self, instance_id: Optional[str]) -> str:
        """Requested instance id, or the default one.

        Raises:
            LRSUnavailableError: If no instance is configured at all.
            ParameterValidationError: If the id is not configured.
        """
        if not self._clients:
            raise LRSUnavailableError()
        resolved = instance_id or self.default_instance_id
        if resolved not in self._clients:
            raise ParameterValidationError(f"Unknown LRS instance '{resolved}'")
        return resolved

    def get_client(self, instance_id: Optional[str] = None) -> LRSClient:
        return self._clients[self.resolve(instance_id)]

    def list_instances(self) -> List[InstanceSummary]:
        return [
            InstanceSummary(id=s.instance.id, name=s.instance.name, status=s.status)
            for s in self._status.values()
        ]

    def health_snapshot(self) -> Dict[str, InstanceHealth]:
        return {
            instance_id: status.last_health
            for instance_id, status in self._status.items()
            if status.last_health is not None
        }

    def overall_status(self) -> str:
        """healthy if every instance is, degraded if some are, unhealthy if none are."""
        healthy = sum(1 for s in self._status.values() if s.status == "healthy")
        if self._status and healthy == len(self._status):
            return "healthy"
        if healthy > 0:
            return "degraded"
        return "unhealthy"

    def all_status(self) -> Dict[str, dict]:
        return {instance_id: status.to_dict() for instance_id, status in self._status.items()}

    async def close(self):
        await self.stop_monitoring()
        await asyncio.gather(*(client.close() for client in self._clients.values()))

    # ── Health checks ─────────────────────────────────────────────

    async def check_all(self) -> Dict[str, InstanceHealth]:
        """Probe every instance concurrently."""
        results = await asyncio.gather(
            *(self._check_instance(instance_id) for instance_id in self._clients),
            return_exceptions=True,
        )
        for instance_id, result in zip(self._clients, results):
            if isinstance(result, Exception):
                logger.error(f"Health check for {instance_id} failed: {result}")
        return self.health_snapshot()

    async def _check_instance(self, instance_id: str) -> InstanceHealth:
        client = self._clients[instance_id]
        try:
            health = await asyncio.wait_for(
                client.get_instance_health(), timeout=self.config.health_check_timeout_s
            )
        except asyncio.TimeoutError:
            health = InstanceHealth(
                instance_id=instance_id,
                healthy=False,
                error=f"Health check timed out after {self.config.health_check_timeout_s}s",
            )
        self._status[instance_id].record(health)
        if not health.healthy:
            logger.warning(f"⚠️ LRS instance {instance_id} unhealthy: {health.error}")
        return health

    async def start_monitoring(self):
        if self._running:
            return
        self._running = True
        self._monitor_task = asyncio.create_task(self._health_check_loop())
        logger.info(f"🏥 LRS health monitor started (interval={self.config.health_check_interval_s}s)")

    async def stop_monitoring(self):
        self._running = False
        if self._monitor_task:
            self._monitor_task.cancel()
            try:
                await self._monitor_task
            except asyncio.CancelledError:
                pass
            self._monitor_task = None
            logger.info("🏥 LRS health monitor stopped")

    async def _health_check_loop(self):
        while self._running:
            started = time.monotonic()
            await self.check_all()
            elapsed = time.monotonic() - started
            await asyncio.sleep(max(0.0, self.config.health_check_interval_s - elapsed))
