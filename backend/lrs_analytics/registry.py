"""
Provider Registry
==================
Immutable metric-id → provider mapping, built once at startup.
Lookups are plain dictionary reads.
"""

import logging
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional

from .errors import ConfigurationError, MetricNotFoundError
from .models import MetricCatalogItem
from .providers import MetricProvider, default_providers

logger = logging.getLogger(__name__)


class ProviderRegistry:
    def __init__(self, providers: Optional[Iterable[MetricProvider]] = None):
        by_id: Dict[str, MetricProvider] = {}
        for provider in default_providers() if providers is None else providers:
            if not provider.id:
                raise ConfigurationError(f"{type(provider).__name__} has no metric id")
            if provider.id in by_id:
                raise ConfigurationError(f"Duplicate metric id '{provider.id}'")
            by_id[provider.id] = provider
        self._providers: Mapping[str, MetricProvider] = MappingProxyType(by_id)
        logger.info(f"📋 Registered {len(by_id)} metric providers")

    def get(self, metric_id: str) -> MetricProvider:
        """
        Raises:
            MetricNotFoundError: If no provider has this id.
        """
        provider = self._providers.get(metric_id)
        if provider is None:
            raise MetricNotFoundError(metric_id)
        return provider

    def has(self, metric_id: str) -> bool:
        return metric_id in self._providers

    def ids(self) -> List[str]:
        return list(self._providers)

    def catalog(self) -> List[MetricCatalogItem]:
        return [provider.catalog_item() for provider in self._providers.values()]

    def __len__(self) -> int:
        return len(self._providers)
