"""
Source Adapters for Event Reconciliation.

Adapters provide a unified interface for fetching raw documents from the
different source types:
- iCalendar feeds
- server-rendered HTML listings
- paginated discovery APIs
- social-network event pages (with a headless browser)

Usage:
    from eventsync.ingestion.adapters import AdapterConfig, create_adapter

    config = AdapterConfig.from_source_config("majestic", source_cfg, settings)
    with create_adapter(config) as adapter:
        result = adapter.fetch()
"""

from typing import Dict, Optional, Type

from .base_adapter import (
    AdapterConfig,
    BaseSourceAdapter,
    DocumentGroup,
    FetchResult,
    PrunePolicy,
    SourceType,
)
from .calendar_adapter import IcsFeedAdapter
from .discovery_adapter import DiscoveryApiAdapter
from .html_adapter import HtmlListingAdapter
from .social_adapter import SocialEventAdapter

ADAPTER_REGISTRY: Dict[SourceType, Type[BaseSourceAdapter]] = {
    SourceType.ICS_FEED: IcsFeedAdapter,
    SourceType.HTML_LISTING: HtmlListingAdapter,
    SourceType.DISCOVERY_API: DiscoveryApiAdapter,
    SourceType.SOCIAL_EVENT: SocialEventAdapter,
}


def create_adapter(config: AdapterConfig, http_client=None) -> BaseSourceAdapter:
    """Instantiate the adapter registered for `config.source_type`."""
    adapter_cls: Optional[Type[BaseSourceAdapter]] = ADAPTER_REGISTRY.get(config.source_type)
    if adapter_cls is None:
        raise ValueError(f"No adapter registered for {config.source_type.value}")
    return adapter_cls(config, http_client=http_client)


__all__ = [
    "ADAPTER_REGISTRY",
    "AdapterConfig",
    "BaseSourceAdapter",
    "DocumentGroup",
    "DiscoveryApiAdapter",
    "FetchResult",
    "HtmlListingAdapter",
    "IcsFeedAdapter",
    "PrunePolicy",
    "SocialEventAdapter",
    "SourceType",
    "create_adapter",
]
