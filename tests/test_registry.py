"""Unit tests for the provider registry."""

import pytest

from lrs_analytics.errors import ConfigurationError, MetricNotFoundError
from lrs_analytics.providers.course import CourseCompletionProvider
from lrs_analytics.registry import ProviderRegistry


@pytest.mark.unit
class TestProviderRegistry:
    """Test cases for ProviderRegistry."""

    def test_default_catalog(self):
        """Test that every built-in metric is registered once."""
        registry = ProviderRegistry()

        assert len(registry) == 32
        assert len(set(registry.ids())) == 32
        assert registry.has("course-completion")
        assert registry.has("element-clicks")
        assert registry.has("courses-time-spent")

    def test_get_unknown_metric(self):
        """Test that an unknown id raises MetricNotFoundError."""
        with pytest.raises(MetricNotFoundError):
            ProviderRegistry().get("no-such-metric")

    def test_duplicate_ids_rejected(self):
        """Test that two providers with one id fail at construction."""
        with pytest.raises(ConfigurationError, match="Duplicate"):
            ProviderRegistry([CourseCompletionProvider(), CourseCompletionProvider()])

    def test_catalog_items(self):
        """Test that catalog entries carry the wire attributes."""
        item = next(i for i in ProviderRegistry().catalog() if i.id == "course-completion")
        wire = item.to_wire()

        assert wire["dashboardLevel"] == "course"
        assert wire["requiredParams"] == ["courseId"]
        assert wire["outputType"] == "scalar"
        assert "example" in wire
