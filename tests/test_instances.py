"""Unit tests for the LRS instance registry and health monitor."""

import asyncio

import httpx
import pytest

from lrs_analytics.config import AnalyticsConfig
from lrs_analytics.errors import LRSUnavailableError, ParameterValidationError
from lrs_analytics.instances import InstanceRegistry

from conftest import make_instance


def _about_handler(request: httpx.Request) -> httpx.Response:
    """/about is up on lrs-a and failing on lrs-b."""
    if request.url.host == "lrs-a.example":
        return httpx.Response(200, json={"version": ["1.0.3"]})
    return httpx.Response(500)


@pytest.fixture
def two_instances():
    return AnalyticsConfig(
        lrs_instances=(
            make_instance("hs-a", endpoint="https://lrs-a.example/xapi"),
            make_instance("hs-b", endpoint="https://lrs-b.example/xapi"),
        ),
        health_check_interval_s=30,
    )


@pytest.mark.unit
class TestResolve:
    """Test cases for InstanceRegistry.resolve."""

    def test_default_is_first_instance(self, two_instances):
        """Test that no instance id resolves to the first configured one."""
        registry = InstanceRegistry(two_instances)
        assert registry.resolve(None) == "hs-a"
        assert registry.resolve("hs-b") == "hs-b"
        assert registry.get_client("hs-b").instance_id == "hs-b"

    def test_unknown_instance(self, two_instances):
        """Test that an unconfigured id is a parameter error."""
        with pytest.raises(ParameterValidationError, match="hs-x"):
            InstanceRegistry(two_instances).resolve("hs-x")

    def test_no_instances_configured(self):
        """Test that an empty registry reports the LRS unavailable."""
        with pytest.raises(LRSUnavailableError):
            InstanceRegistry(AnalyticsConfig()).resolve(None)

    def test_listing_before_any_check(self, two_instances):
        """Test that instances start with unknown status."""
        summaries = InstanceRegistry(two_instances).list_instances()
        assert [(s.id, s.status) for s in summaries] == [("hs-a", "unknown"), ("hs-b", "unknown")]


@pytest.mark.unit
class TestHealthChecks:
    """Test cases for health probing."""

    @pytest.mark.asyncio
    async def test_check_all_mixed(self, two_instances):
        """Test that one healthy and one failing instance is degraded."""
        registry = InstanceRegistry(two_instances, transport=httpx.MockTransport(_about_handler))

        snapshot = await registry.check_all()
        await registry.close()

        assert snapshot["hs-a"].healthy is True
        assert snapshot["hs-a"].version == "1.0.3"
        assert snapshot["hs-b"].healthy is False
        assert registry.overall_status() == "degraded"
        assert registry.all_status()["hs-b"]["consecutive_failures"] == 1
        assert registry.all_status()["hs-a"]["availability_pct"] == 100.0

    @pytest.mark.asyncio
    async def test_all_healthy(self):
        """Test that every instance healthy gives healthy overall."""
        config = AnalyticsConfig(lrs_instances=(make_instance("hs-a", endpoint="https://lrs-a.example/xapi"),))
        registry = InstanceRegistry(config, transport=httpx.MockTransport(_about_handler))

        await registry.check_all()
        await registry.close()

        assert registry.overall_status() == "healthy"

    def test_empty_registry_unhealthy(self):
        """Test that no instances at all is unhealthy."""
        assert InstanceRegistry(AnalyticsConfig()).overall_status() == "unhealthy"

    @pytest.mark.asyncio
    async def test_monitor_start_stop(self, two_instances):
        """Test that the background monitor probes and stops cleanly."""
        registry = InstanceRegistry(two_instances, transport=httpx.MockTransport(_about_handler))

        await registry.start_monitoring()
        for _ in range(20):
            if len(registry.health_snapshot()) == 2:
                break
            await asyncio.sleep(0.01)
        await registry.stop_monitoring()
        await registry.close()

        assert set(registry.health_snapshot()) == {"hs-a", "hs-b"}
        assert registry._monitor_task is None
