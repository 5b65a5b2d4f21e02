"""
Base Source Adapter.

Abstract base class defining the interface for all source adapters.
Adapters fetch raw documents and group them per logical event; extraction
and merging happen downstream in the pipeline.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from eventsync.runtime.http import HttpClient, HttpClientOptions
from eventsync.schemas.event import ExtractionStrategy, RawDocument


class SourceType(str, Enum):
    """Kind of source an adapter reads."""

    ICS_FEED = "ics_feed"
    HTML_LISTING = "html_listing"
    DISCOVERY_API = "discovery_api"
    SOCIAL_EVENT = "social_event"


class PrunePolicy(str, Enum):
    """What an empty or failed crawl means for stored rows."""

    TRUST = "trust"
    SKIP = "skip"


DocumentGroup = List[RawDocument]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class FetchResult:
    """
    Result of a fetch operation.

    `documents` holds one group of raw documents per logical event.
    `success=False` means the source could not be crawled at all.
    """

    success: bool
    source_type: SourceType
    documents: List[DocumentGroup] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    fetch_started_at: Optional[datetime] = None
    fetch_ended_at: Optional[datetime] = None

    @property
    def total_fetched(self) -> int:
        return len(self.documents)

    @property
    def duration_seconds(self) -> float:
        """Calculate fetch duration."""
        if self.fetch_started_at and self.fetch_ended_at:
            return (self.fetch_ended_at - self.fetch_started_at).total_seconds()
        return 0.0


@dataclass
class AdapterConfig:
    """
    Base configuration for source adapters.

    `custom_config` carries the adapter-specific keys from sources.yaml.
    """

    source_id: str
    source_type: SourceType
    request_timeout: float = 20.0
    max_retries: int = 4
    min_delay_s: float = 0.4
    jitter_s: float = 0.35
    default_city: Optional[str] = None
    default_timezone: Optional[str] = None
    skip_enrich: bool = False
    prune_on_empty: PrunePolicy = PrunePolicy.TRUST
    prune: bool = True
    custom_config: Dict[str, Any] = field(default_factory=dict)

    _RESERVED = (
        "adapter",
        "request_timeout",
        "max_retries",
        "default_city",
        "default_timezone",
        "skip_enrich",
        "prune_on_empty",
        "prune",
    )

    @classmethod
    def from_source_config(cls, name: str, cfg: Dict[str, Any], settings=None) -> "AdapterConfig":
        """Build a config from one `sources.yaml` entry, falling back to settings."""
        if "adapter" not in cfg:
            raise ValueError(f"Source '{name}' has no adapter type")
        defaults: Dict[str, Any] = {}
        if settings is not None:
            defaults = {
                "request_timeout": settings.REQUEST_TIMEOUT_S,
                "max_retries": settings.MAX_RETRIES,
                "min_delay_s": settings.POLITE_DELAY_S,
                "jitter_s": settings.POLITE_JITTER_S,
                "default_city": settings.DEFAULT_CITY,
                "default_timezone": settings.DEFAULT_TIMEZONE,
                "skip_enrich": settings.SCRAPER_SKIP_ENRICH,
            }
        return cls(
            source_id=name,
            source_type=SourceType(cfg["adapter"]),
            request_timeout=float(cfg.get("request_timeout", defaults.get("request_timeout", 20.0))),
            max_retries=int(cfg.get("max_retries", defaults.get("max_retries", 4))),
            min_delay_s=defaults.get("min_delay_s", 0.4),
            jitter_s=defaults.get("jitter_s", 0.35),
            default_city=cfg.get("default_city", defaults.get("default_city")),
            default_timezone=cfg.get("default_timezone", defaults.get("default_timezone")),
            skip_enrich=bool(cfg.get("skip_enrich", defaults.get("skip_enrich", False))),
            prune_on_empty=PrunePolicy(cfg.get("prune_on_empty", PrunePolicy.TRUST.value)),
            prune=bool(cfg.get("prune", True)),
            custom_config={k: v for k, v in cfg.items() if k not in cls._RESERVED},
        )


class BaseSourceAdapter(ABC):
    """
    Abstract base class for source adapters.

    Subclasses must implement:
        - collect(): fetch and group raw documents
        - _validate_config(): validate adapter-specific configuration

    Adapters whose groups are already in confidence order set
    `orders_partials = True`; otherwise the pipeline ranks partials by the
    default strategy confidence.
    """

    orders_partials: bool = False

    def __init__(self, config: AdapterConfig, http_client: Optional[HttpClient] = None):
        """
        Initialize the adapter.

        Args:
            config: AdapterConfig with source-specific settings
            http_client: shared client; one is created lazily when omitted
        """
        self.config = config
        self.logger = logging.getLogger(f"adapter.{config.source_id}")
        self._http = http_client
        self._owns_http = http_client is None
        self._validate_config()

    @property
    def source_type(self) -> SourceType:
        """Get the source type."""
        return self.config.source_type

    @property
    def source_id(self) -> str:
        """Get the source identifier."""
        return self.config.source_id

    @property
    def http(self) -> HttpClient:
        if self._http is None:
            self._http = HttpClient(
                options=HttpClientOptions(
                    timeout_s=self.config.request_timeout,
                    max_retries=self.config.max_retries,
                    min_delay_s=self.config.min_delay_s,
                    jitter_s=self.config.jitter_s,
                )
            )
        return self._http

    @property
    def default_tz(self):
        name = self.config.default_timezone
        if not name:
            return None
        try:
            return ZoneInfo(name)
        except ZoneInfoNotFoundError:
            self.logger.warning(f"Unknown timezone '{name}'; falling back to UTC")
            return None

    def option(self, key: str, default: Any = None) -> Any:
        return self.config.custom_config.get(key, default)

    def document(
        self,
        strategy: ExtractionStrategy,
        payload: Any,
        *,
        source_id: Optional[str] = None,
        url: Optional[str] = None,
        **context: Any,
    ) -> RawDocument:
        """Build a raw document carrying this source's defaults in its context."""
        ctx = {"default_city": self.config.default_city, "default_tz": self.default_tz}
        ctx.update(context)
        return RawDocument(
            source=self.source_id,
            strategy=strategy,
            payload=payload,
            source_id=source_id,
            url=url,
            context=ctx,
        )

    def fetch(self, **kwargs) -> FetchResult:
        """
        Fetch and group raw documents.

        Failures never escape: they produce `success=False` with the error
        recorded, so one broken source cannot abort a pass.
        """
        started = _utc_now()
        metadata: Dict[str, Any] = {}
        errors: List[str] = []
        try:
            documents = self.collect(metadata=metadata, errors=errors, **kwargs)
            success = True
        except Exception as e:
            self.logger.error(f"Fetch failed: {e}", exc_info=True)
            errors.append(str(e))
            documents = []
            success = False

        self.logger.info(f"Collected {len(documents)} event document groups")
        return FetchResult(
            success=success,
            source_type=self.source_type,
            documents=documents,
            errors=errors,
            metadata=metadata,
            fetch_started_at=started,
            fetch_ended_at=_utc_now(),
        )

    @abstractmethod
    def collect(self, *, metadata: Dict[str, Any], errors: List[str], **kwargs) -> List[DocumentGroup]:
        """
        Fetch the source and return one document group per logical event.

        Recoverable per-item problems are appended to `errors`; raising marks
        the whole fetch as failed.
        """

    @abstractmethod
    def _validate_config(self) -> None:
        """
        Validate adapter-specific configuration.

        Raises:
            ValueError: If configuration is invalid
        """

    def release_fetch_resources(self) -> None:
        """
        Release resources bound to the thread that ran `fetch()`.

        Called by the pipeline at the end of every execution, on the same
        worker thread.
        """

    def close(self) -> None:
        """Release the HTTP client if this adapter created it."""
        if self._http is not None and self._owns_http:
            self._http.close()
            self._http = None

    def __enter__(self) -> "BaseSourceAdapter":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
