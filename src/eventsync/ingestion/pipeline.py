"""
Source Pipeline.

Runs one source end to end up to (but not including) persistence:

    SourceAdapter.fetch() → FieldExtractor → rank → FallbackMerger → CanonicalEvent

Every record that cannot be merged is dropped and counted; a failed fetch is
reported in the result instead of raised, so the orchestrator can decide
what an empty batch means for that source.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from eventsync.extraction.strategies import FieldExtractor
from eventsync.ingestion.adapters import BaseSourceAdapter, DocumentGroup, SourceType
from eventsync.ingestion.merge import FallbackMerger, MergeError, rank_partials
from eventsync.schemas.event import CanonicalEvent


class PipelineStatus(str, Enum):
    """Status of a pipeline execution."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PipelineExecutionResult:
    """Result of a pipeline execution."""

    status: PipelineStatus
    source_name: str
    source_type: SourceType
    execution_id: str
    started_at: datetime
    ended_at: datetime
    total_events_processed: int = 0
    successful_events: int = 0
    failed_events: int = 0
    events: List[CanonicalEvent] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def fetch_succeeded(self) -> bool:
        return self.status != PipelineStatus.FAILED

    @property
    def duration_seconds(self) -> float:
        """Calculate execution duration."""
        return (self.ended_at - self.started_at).total_seconds()

    @property
    def success_rate(self) -> float:
        """Calculate success rate percentage."""
        if self.total_events_processed == 0:
            return 0.0
        return (self.successful_events / self.total_events_processed) * 100


class SourcePipeline:
    """
    Fetch, extract and merge the events of one source.

    The pipeline owns its adapter; `close()` releases it.
    """

    def __init__(
        self,
        adapter: BaseSourceAdapter,
        extractor: Optional[FieldExtractor] = None,
        merger: Optional[FallbackMerger] = None,
    ):
        self.adapter = adapter
        self.extractor = extractor or FieldExtractor()
        self.merger = merger or FallbackMerger(default_tz=adapter.default_tz)
        self.logger = logging.getLogger(f"pipeline.{adapter.source_id}")
        self.execution_id: Optional[str] = None

    @property
    def source_name(self) -> str:
        return self.adapter.source_id

    @property
    def source_type(self) -> SourceType:
        """Get the source type from adapter."""
        return self.adapter.source_type

    def execute(self, **kwargs) -> PipelineExecutionResult:
        """
        Execute the full pipeline workflow.

        Args:
            **kwargs: Parameters passed to the adapter's fetch method
                (`feeds=` for ICS sources, `links=` for social sources)

        Returns:
            PipelineExecutionResult with the canonical events of the source
        """
        try:
            return self._execute(**kwargs)
        finally:
            self.adapter.release_fetch_resources()

    def _execute(self, **kwargs) -> PipelineExecutionResult:
        self.execution_id = self._generate_execution_id()
        started_at = _utc_now()
        self.logger.info(f"Starting pipeline execution: {self.execution_id}")

        fetch_result = self.adapter.fetch(**kwargs)
        if not fetch_result.success:
            self.logger.error(f"Fetch failed: {fetch_result.errors}")
            return PipelineExecutionResult(
                status=PipelineStatus.FAILED,
                source_name=self.source_name,
                source_type=self.source_type,
                execution_id=self.execution_id,
                started_at=started_at,
                ended_at=_utc_now(),
                errors=[{"error": e, "stage": "fetch"} for e in fetch_result.errors],
                metadata=fetch_result.metadata,
            )

        events, dropped = self._process_groups(fetch_result.documents)
        errors = [{"error": e, "stage": "fetch"} for e in fetch_result.errors]
        errors.extend(dropped)

        status = PipelineStatus.SUCCESS
        if dropped or fetch_result.errors:
            status = PipelineStatus.PARTIAL_SUCCESS

        result = PipelineExecutionResult(
            status=status,
            source_name=self.source_name,
            source_type=self.source_type,
            execution_id=self.execution_id,
            started_at=started_at,
            ended_at=_utc_now(),
            total_events_processed=fetch_result.total_fetched,
            successful_events=len(events),
            failed_events=len(dropped),
            events=events,
            errors=errors,
            metadata={
                **fetch_result.metadata,
                "fetch_duration_s": fetch_result.duration_seconds,
            },
        )
        self.logger.info(
            f"Pipeline completed: {result.successful_events}/{result.total_events_processed} merged"
        )
        return result

    def merge_group(self, group: DocumentGroup) -> CanonicalEvent:
        """
        Extract every document of one group and merge the partials.

        Raises:
            MergeError: the group cannot produce a valid event
        """
        partials = self.extractor.extract_all(group)
        if not self.adapter.orders_partials:
            partials = rank_partials(partials)
        source_id = next((doc.source_id for doc in group if doc.source_id), None)
        return self.merger.merge(partials, source=self.source_name, source_id=source_id)

    def _process_groups(self, groups: List[DocumentGroup]):
        events: List[CanonicalEvent] = []
        dropped: List[Dict[str, Any]] = []
        seen = set()
        for idx, group in enumerate(groups):
            try:
                event = self.merge_group(group)
            except (MergeError, ValidationError) as e:
                source_id = getattr(e, "source_id", None)
                self.logger.warning(f"Dropping record {idx} ({source_id or 'no id'}): {e}")
                dropped.append({"error": str(e), "stage": "merge", "source_id": source_id})
                continue
            if event.key in seen:
                self.logger.debug(f"Duplicate record in batch: {event.source_id}")
                continue
            seen.add(event.key)
            events.append(event)
        return events, dropped

    def _generate_execution_id(self) -> str:
        """Generate unique execution identifier."""
        timestamp = _utc_now().strftime("%Y%m%d_%H%M%S")
        unique_id = str(uuid.uuid4())[:8]
        return f"{self.source_name}_{timestamp}_{unique_id}"

    def close(self) -> None:
        """Release adapter resources."""
        if self.adapter:
            self.adapter.close()
