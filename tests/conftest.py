"""Pytest configuration and shared fixtures.

Statement factories build xAPI statements the way the LRS returns them:
actor account, verb, object with definition, optional result and context.
"""

from typing import Any, Dict, Iterable, List, Optional

import pytest

from lrs_analytics.config import AnalyticsConfig, LRSAuth, LRSInstanceConfig
from lrs_analytics.metrics import MetricsCollector
from lrs_analytics.verbs import COMPLETED

LMS = "https://lms.example"
LRS_ENDPOINT = "https://lrs.example/xapi"


# =============================================================================
# Marker Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line("markers", "unit: mark test as a unit test")
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test (several components together)"
    )


# =============================================================================
# Statement Factories
# =============================================================================


def make_statement(
    actor: str = "user-1",
    verb: str = COMPLETED,
    object_id: str = f"{LMS}/element/1",
    timestamp: Optional[str] = "2025-11-15T10:00:00Z",
    name: Optional[str] = None,
    raw: Optional[float] = None,
    scaled: Optional[float] = None,
    max_score: Optional[float] = None,
    min_score: Optional[float] = None,
    completion: Optional[bool] = None,
    success: Optional[bool] = None,
    duration: Optional[str] = None,
    parents: Iterable[str] = (),
    groupings: Iterable[str] = (),
) -> Dict[str, Any]:
    """Build one xAPI statement. Only the given fields are set."""
    stmt: Dict[str, Any] = {
        "actor": {"objectType": "Agent", "account": {"homePage": LMS, "name": actor}},
        "verb": {"id": verb},
        "object": {"id": object_id, "objectType": "Activity"},
    }
    if timestamp:
        stmt["timestamp"] = timestamp
    if name:
        stmt["object"]["definition"] = {"name": {"en": name}}

    score = {
        key: value
        for key, value in (("raw", raw), ("scaled", scaled), ("max", max_score), ("min", min_score))
        if value is not None
    }
    result: Dict[str, Any] = {}
    if score:
        result["score"] = score
    if completion is not None:
        result["completion"] = completion
    if success is not None:
        result["success"] = success
    if duration is not None:
        result["duration"] = duration
    if result:
        stmt["result"] = result

    context: Dict[str, List[dict]] = {}
    if parents:
        context["parent"] = [{"id": iri} for iri in parents]
    if groupings:
        context["grouping"] = [{"id": iri} for iri in groupings]
    if context:
        stmt["context"] = {"contextActivities": context}
    return stmt


def topic_iri(topic_id: str, course_id: str = "1") -> str:
    return f"{LMS}/course/{course_id}/topic/{topic_id}"


def course_iri(course_id: str) -> str:
    return f"{LMS}/course/{course_id}"


# =============================================================================
# Config Fixtures
# =============================================================================


def make_instance(
    instance_id: str = "default",
    endpoint: str = LRS_ENDPOINT,
    auth: Optional[LRSAuth] = None,
) -> LRSInstanceConfig:
    return LRSInstanceConfig(
        id=instance_id,
        name=f"{instance_id} LRS",
        endpoint=endpoint,
        auth=auth or LRSAuth(type="basic", username="key", password="secret"),
        timeout_ms=5000,
    )


@pytest.fixture
def instance() -> LRSInstanceConfig:
    """A single basic-auth LRS instance."""
    return make_instance()


@pytest.fixture
def config(instance) -> AnalyticsConfig:
    """Analytics config with one LRS instance."""
    return AnalyticsConfig(lrs_instances=(instance,))


@pytest.fixture
def telemetry() -> MetricsCollector:
    """A fresh telemetry sink."""
    return MetricsCollector(buffer_size=100)
