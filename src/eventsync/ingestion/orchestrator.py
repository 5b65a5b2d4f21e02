"""
Reconciliation Orchestrator.

Coordinates one reconciliation pass over every configured source:

1. crawl all sources concurrently (one pipeline per source)
2. upsert every canonical event into the primary store in one transaction
3. prune stale rows per source, honoring the source's prune policy
4. project the catalog into the secondary store

A failing source never blocks the others; store failures stop the pass and
are reported with the phase they happened in.
"""

from __future__ import annotations

import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from eventsync.configs.config import Config
from eventsync.configs.settings import Settings, get_settings
from eventsync.ingestion.adapters import AdapterConfig, PrunePolicy, create_adapter
from eventsync.ingestion.pipeline import (
    PipelineExecutionResult,
    PipelineStatus,
    SourcePipeline,
)
from eventsync.monitoring.logging import with_context
from eventsync.schemas.event import CanonicalEvent
from eventsync.storage.primary import PrimaryStore, PrimaryStoreError, UpsertResult
from eventsync.storage.secondary import (
    SecondaryStoreNormalizer,
    SecondarySyncError,
    SecondarySyncResult,
)
from eventsync.storage.supabase_client import create_supabase_client


# Pipeline registry - maps source names to pipeline factory functions
PipelineFactory = Callable[[AdapterConfig], SourcePipeline]
PIPELINE_REGISTRY: Dict[str, PipelineFactory] = {}


def register_pipeline(source_name: str):
    """
    Decorator to register a pipeline factory for one source.

    Sources without a registered factory get a `SourcePipeline` around the
    adapter registered for their type.

    Usage:
        @register_pipeline("majestic")
        def create_majestic_pipeline(config: AdapterConfig) -> SourcePipeline:
            return SourcePipeline(MajesticAdapter(config))
    """

    def decorator(factory: PipelineFactory) -> PipelineFactory:
        PIPELINE_REGISTRY[source_name] = factory
        return factory

    return decorator


def build_pipeline(config: AdapterConfig) -> SourcePipeline:
    factory = PIPELINE_REGISTRY.get(config.source_id)
    if factory is not None:
        return factory(config)
    return SourcePipeline(create_adapter(config))


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Report
# =============================================================================


@dataclass
class PassError:
    """One failure of a pass, with the source and phase it happened in."""

    source: str
    phase: str
    message: str


@dataclass
class SourceReport:
    """Per-source outcome of a pass."""

    source: str
    status: PipelineStatus
    fetched: int = 0
    merged: int = 0
    dropped: int = 0
    pruned: int = 0
    prune_skipped: bool = False
    errors: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class ReconciliationReport:
    """Outcome of one reconciliation pass."""

    run_id: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    sources: Dict[str, SourceReport] = field(default_factory=dict)
    upsert: Optional[UpsertResult] = None
    secondary: Optional[SecondarySyncResult] = None
    errors: List[PassError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def total_events(self) -> int:
        return sum(s.merged for s in self.sources.values())

    def summary(self) -> str:
        parts = [f"{name}={s.merged}({s.status.value})" for name, s in sorted(self.sources.items())]
        return ", ".join(parts)


# =============================================================================
# Orchestrator
# =============================================================================


class ReconciliationOrchestrator:
    """
    Runs reconciliation passes over the registered pipelines.

    Responsibilities:
    - Register and manage one pipeline per source
    - Crawl sources concurrently and isolate their failures
    - Write the merged catalog to the primary store, then prune per source
    - Hand the batch to the secondary store normalizer
    """

    def __init__(
        self,
        primary: PrimaryStore,
        secondary: Optional[SecondaryStoreNormalizer] = None,
        max_workers: int = 4,
    ):
        """Initialize the orchestrator."""
        self.logger = logging.getLogger("orchestrator")
        self.primary = primary
        self.secondary = secondary or SecondaryStoreNormalizer()
        self.max_workers = max_workers
        self.pipelines: Dict[str, SourcePipeline] = {}
        self.execution_history: List[ReconciliationReport] = []

    @classmethod
    def from_config(
        cls,
        settings: Optional[Settings] = None,
        *,
        primary: Optional[PrimaryStore] = None,
        secondary: Optional[SecondaryStoreNormalizer] = None,
        sources_config: Optional[Dict[str, Any]] = None,
    ) -> "ReconciliationOrchestrator":
        """Build an orchestrator and its pipelines from settings and sources.yaml."""
        settings = settings or get_settings()
        if sources_config is None:
            sources_config = Config.load_sources_config(settings=settings)

        orchestrator = cls(
            primary=primary or PrimaryStore.from_settings(settings),
            secondary=secondary or SecondaryStoreNormalizer(create_supabase_client(settings)),
            max_workers=settings.MAX_WORKERS,
        )
        for name, cfg in (sources_config.get("sources") or {}).items():
            if not cfg.get("enabled", True):
                continue
            config = AdapterConfig.from_source_config(name, cfg, settings)
            orchestrator.register_pipeline(name, build_pipeline(config))
        return orchestrator

    # ========================================================================
    # PIPELINE MANAGEMENT
    # ========================================================================

    def register_pipeline(self, source_name: str, pipeline: SourcePipeline) -> None:
        """
        Register a pipeline instance.

        Args:
            source_name: Unique identifier for the source
            pipeline: Configured SourcePipeline instance
        """
        self.pipelines[source_name] = pipeline
        self.logger.info(
            f"Registered pipeline: {source_name} (type: {pipeline.source_type.value})"
        )

    def get_pipeline(self, source_name: str) -> Optional[SourcePipeline]:
        """Get a registered pipeline by name."""
        return self.pipelines.get(source_name)

    def list_pipelines(self) -> List[Dict[str, str]]:
        """List all registered pipelines with their types."""
        return [
            {"name": name, "type": p.source_type.value}
            for name, p in self.pipelines.items()
        ]

    def close(self) -> None:
        """Close every pipeline; one failing close does not skip the rest."""
        for name, pipeline in self.pipelines.items():
            try:
                pipeline.close()
            except Exception:
                self.logger.error(f"Failed to close pipeline: {name}", exc_info=True)

    # ========================================================================
    # EXECUTION
    # ========================================================================

    def run(self, only: Optional[Iterable[str]] = None, sync_secondary: bool = True) -> ReconciliationReport:
        """
        Execute one reconciliation pass.

        Args:
            only: restrict the pass to these sources
            sync_secondary: also project the batch into the secondary store

        Returns:
            ReconciliationReport; `ok` is False when any phase failed
        """
        names = list(only) if only is not None else list(self.pipelines)
        for name in names:
            if name not in self.pipelines:
                raise ValueError(f"Pipeline '{name}' not found")

        run_id = uuid.uuid4().hex[:12]
        report = ReconciliationReport(run_id=run_id, started_at=_utc_now())
        log = with_context(self.logger, run_id=run_id, stage="crawl")
        log.info(f"Starting reconciliation pass over {len(names)} sources")

        results = self.crawl(names)
        self._record_statuses(results)

        events: List[CanonicalEvent] = []
        for name in names:
            result = results[name]
            events.extend(result.events)
            report.sources[name] = SourceReport(
                source=name,
                status=result.status,
                fetched=result.total_events_processed,
                merged=result.successful_events,
                dropped=result.failed_events,
                errors=list(result.errors),
            )
            if result.status == PipelineStatus.FAILED:
                for err in result.errors:
                    report.errors.append(PassError(name, err.get("stage", "fetch"), str(err.get("error"))))

        try:
            report.upsert = self.primary.upsert(events)
            prune_sources, keep_sources = self._prune(names, results, report)
        except PrimaryStoreError as e:
            self.logger.error(f"Primary store failed during {e.phase}: {e}")
            report.errors.append(PassError(e.source or "*", e.phase, str(e)))
            return self._finish(report)

        if sync_secondary:
            report.secondary = self._sync_secondary(events, prune_sources, keep_sources, report)

        return self._finish(report)

    def run_one(self, source_name: str, sync_secondary: bool = True) -> ReconciliationReport:
        return self.run(only=[source_name], sync_secondary=sync_secondary)

    def crawl(self, names: List[str]) -> Dict[str, PipelineExecutionResult]:
        """Run the named pipelines concurrently and join them."""
        fetch_kwargs = {name: self._fetch_kwargs(name) for name in names}
        results: Dict[str, PipelineExecutionResult] = {}
        workers = max(1, min(self.max_workers, len(names)))
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = {
                name: pool.submit(self._execute_pipeline, name, fetch_kwargs[name])
                for name in names
            }
            for name, future in futures.items():
                results[name] = future.result()
        return results

    def sync_existing(self) -> SecondarySyncResult:
        """Project everything stored in the primary store into the secondary store."""
        events = self.primary.read_all()
        if not events:
            self.logger.info("Primary store has no events; nothing to sync.")
            return SecondarySyncResult(synced=False, reason="no_events")
        self.logger.info(f"Syncing {len(events)} existing events to the secondary store")
        return self.secondary.sync(events, keep_sources=self._sources_without_prune())

    # ========================================================================
    # STEPS
    # ========================================================================

    def _execute_pipeline(self, name: str, kwargs: Dict[str, Any]) -> PipelineExecutionResult:
        pipeline = self.pipelines[name]
        started = _utc_now()
        try:
            return pipeline.execute(**kwargs)
        except Exception as e:
            self.logger.error(f"Pipeline execution failed: {name}", exc_info=True)
            return PipelineExecutionResult(
                status=PipelineStatus.FAILED,
                source_name=name,
                source_type=pipeline.source_type,
                execution_id=pipeline.execution_id or name,
                started_at=started,
                ended_at=_utc_now(),
                errors=[{"error": str(e), "stage": "execution"}],
            )

    def _fetch_kwargs(self, name: str) -> Dict[str, Any]:
        """Feeds and links managed in the primary store, for sources that use them."""
        adapter = self.pipelines[name].adapter
        kwargs: Dict[str, Any] = {}
        if adapter.option("use_feed_table"):
            kwargs["feeds"] = self.primary.list_active_feeds()
        if adapter.option("use_link_table"):
            kwargs["links"] = [row["url"] for row in self.primary.list_links()]
        return kwargs

    def _record_statuses(self, results: Dict[str, PipelineExecutionResult]) -> None:
        for name, result in results.items():
            adapter = self.pipelines[name].adapter
            if adapter.option("use_feed_table"):
                for url, status in (result.metadata.get("feed_status") or {}).items():
                    self.primary.mark_feed(url, status)
            if adapter.option("use_link_table"):
                for url, status in (result.metadata.get("link_status") or {}).items():
                    self.primary.mark_link(url, status)

    def _prune(self, names: List[str], results: Dict[str, PipelineExecutionResult], report: ReconciliationReport):
        """
        Prune each source against its latest batch.

        Returns the sources the secondary store must prune despite having no
        events in the batch, and the sources it must not prune at all.
        """
        prune_sources: List[str] = []
        keep_sources: List[str] = []
        for name in names:
            result = results[name]
            config = self.pipelines[name].adapter.config
            source_report = report.sources[name]
            empty = not result.events

            if not config.prune or (empty and config.prune_on_empty == PrunePolicy.SKIP):
                reason = "disabled" if not config.prune else f"{result.status.value} crawl"
                self.logger.info(f"Skipping prune for '{name}' ({reason})")
                source_report.prune_skipped = True
                keep_sources.append(name)
                continue

            source_report.pruned = self.primary.prune(name, result.events)
            if empty:
                prune_sources.append(name)
        return prune_sources, keep_sources

    def _sync_secondary(
        self,
        events: List[CanonicalEvent],
        prune_sources: List[str],
        keep_sources: List[str],
        report: ReconciliationReport,
    ) -> Optional[SecondarySyncResult]:
        log = with_context(self.logger, run_id=report.run_id, stage="secondary")
        try:
            result = self.secondary.sync(
                events,
                prune_sources=prune_sources,
                keep_sources=set(keep_sources) | set(self._sources_without_prune()),
            )
        except SecondarySyncError as e:
            log.error(f"Secondary sync partially applied; completed steps: {e.completed_steps}")
            report.errors.append(PassError("*", f"secondary:{e.step}", str(e)))
            return SecondarySyncResult(synced=False, reason="error", completed_steps=e.completed_steps)

        if not result.synced:
            log.warning(f"Secondary sync skipped ({result.reason})")
        return result

    def _sources_without_prune(self) -> List[str]:
        return [name for name, p in self.pipelines.items() if not p.adapter.config.prune]

    def _finish(self, report: ReconciliationReport) -> ReconciliationReport:
        report.ended_at = _utc_now()
        self.execution_history.append(report)
        log = with_context(self.logger, run_id=report.run_id, stage="report")
        if report.ok:
            log.info(f"Reconciliation pass complete: {report.summary()}")
        else:
            log.warning(f"Reconciliation pass finished with {len(report.errors)} errors: {report.summary()}")
        return report
