"""ProgressAggregator — merges asynchronous progress callbacks into one status.

Callbacks arrive from provider threads (chunk uploads, model workers) in any
order. The aggregator keeps one overall status plus one per source, only
ever moves phases forward, and ignores anything that arrives for a source
after it has completed or failed. Every mutation goes through a single lock.
"""

import copy
import logging
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, Optional

from domain.models import (
    AudioSource,
    LocalModelPhase,
    LocalModelProgress,
    TranscriptionPhase,
    TranscriptionProgressInfo,
    TranscriptSource,
)

logger = logging.getLogger(__name__)

# Noisy concurrent chunk callbacks may jitter by less than this.
PROGRESS_EPSILON = 0.01

_PHASE_RANK = {
    TranscriptionPhase.PREPARING: 0,
    TranscriptionPhase.UPLOADING: 1,
    TranscriptionPhase.PROCESSING: 2,
    TranscriptionPhase.PARSING: 3,
    TranscriptionPhase.COMPLETED: 4,
    TranscriptionPhase.FAILED: 5,
}

_LOCAL_PHASE_RANK = {
    LocalModelPhase.LOADING_MODEL: 0,
    LocalModelPhase.DOWNLOADING_MODEL: 1,
    LocalModelPhase.PROCESSING: 2,
    LocalModelPhase.COMPLETED: 3,
    LocalModelPhase.FAILED: 4,
}


def phase_rank(phase: TranscriptionPhase) -> int:
    return _PHASE_RANK[phase]


def local_phase_rank(phase: LocalModelPhase) -> int:
    return _LOCAL_PHASE_RANK[phase]


def should_update_info(
    existing: Optional[TranscriptionProgressInfo],
    incoming: Optional[TranscriptionProgressInfo],
    epsilon: float = PROGRESS_EPSILON,
) -> bool:
    """Whether `incoming` may replace `existing` without regressing it."""
    if incoming is None:
        return False
    if existing is None:
        return True

    existing_rank = phase_rank(existing.phase)
    incoming_rank = phase_rank(incoming.phase)
    if incoming_rank < existing_rank:
        return False
    if incoming_rank == existing_rank:
        if incoming.upload_progress + epsilon < existing.upload_progress:
            return False
        if incoming.overall_upload_progress + epsilon < existing.overall_upload_progress:
            return False
        if incoming.completed_chunks < existing.completed_chunks:
            return False

    if existing.phase != incoming.phase:
        return True
    if existing.file_name != incoming.file_name or existing.file_size != incoming.file_size:
        return True
    if abs(existing.upload_progress - incoming.upload_progress) >= epsilon:
        return True
    if abs(existing.overall_upload_progress - incoming.overall_upload_progress) >= epsilon:
        return True
    if existing.completed_chunks != incoming.completed_chunks:
        return True
    if existing.total_chunks != incoming.total_chunks:
        return True
    if [c.phase for c in existing.chunk_progresses] != [c.phase for c in incoming.chunk_progresses]:
        return True
    return False


def should_update_local(
    existing: Optional[LocalModelProgress],
    incoming: Optional[LocalModelProgress],
    epsilon: float = PROGRESS_EPSILON,
) -> bool:
    if incoming is None:
        return False
    if existing is None:
        return True

    existing_rank = local_phase_rank(existing.phase)
    incoming_rank = local_phase_rank(incoming.phase)
    if incoming_rank < existing_rank:
        return False
    if existing.phase == incoming.phase and incoming.progress + epsilon < existing.progress:
        return False

    if existing.phase != incoming.phase:
        return True
    if existing.status != incoming.status:
        return True
    return abs(existing.progress - incoming.progress) >= epsilon


class SourceState(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SourceState.COMPLETED, SourceState.FAILED)


@dataclass
class SourceProgress:
    source: TranscriptSource
    file_name: str = ""
    file_size: int = 0
    state: SourceState = SourceState.PENDING
    info: Optional[TranscriptionProgressInfo] = None
    local: Optional[LocalModelProgress] = None
    result_segments: int = 0
    result_speakers: int = 0
    error_message: Optional[str] = None


class ProgressEventKind(str, Enum):
    STARTED = "started"
    PROGRESS = "progress"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class ProgressEvent:
    """Typed message from the job runner to whoever observes progress."""
    kind: ProgressEventKind
    source: TranscriptSource
    info: Optional[TranscriptionProgressInfo] = None
    local: Optional[LocalModelProgress] = None
    file_name: str = ""
    file_size: int = 0
    segments: int = 0
    speakers: int = 0
    error: Optional[str] = None


@dataclass(frozen=True)
class ProgressSnapshot:
    overall: Optional[TranscriptionProgressInfo]
    overall_local: Optional[LocalModelProgress]
    sources: tuple[SourceProgress, ...] = field(default_factory=tuple)

    def source(self, source: TranscriptSource) -> Optional[SourceProgress]:
        for entry in self.sources:
            if entry.source == source:
                return entry
        return None

    @property
    def finished(self) -> bool:
        return bool(self.sources) and all(s.state.is_terminal for s in self.sources)


class ProgressAggregator:
    """Single-writer progress state machine.

    Can be passed directly as the job runner's `on_progress` callback.
    """

    def __init__(self, listener=None, epsilon: float = PROGRESS_EPSILON):
        self._listener = listener
        self._epsilon = epsilon
        self._lock = threading.Lock()
        self._overall: Optional[TranscriptionProgressInfo] = None
        self._overall_local: Optional[LocalModelProgress] = None
        self._sources: dict[TranscriptSource, SourceProgress] = {}

    def reset(self, planned: Iterable[AudioSource] = (), file_sizes: Optional[dict] = None) -> None:
        """Fresh job: drop all state and register the planned sources as pending."""
        file_sizes = file_sizes or {}
        with self._lock:
            self._overall = None
            self._overall_local = None
            self._sources = {
                item.source: SourceProgress(
                    source=item.source,
                    file_name=item.file_name,
                    file_size=file_sizes.get(item.source, 0),
                )
                for item in planned
            }

    def start_source(self, source: TranscriptSource, file_name: str, file_size: int = 0) -> None:
        """Explicit restart for a new file.

        The overall status goes back to preparing only when no other source
        is still in progress; parallel sources never regress it.
        """
        preparing = TranscriptionProgressInfo(
            phase=TranscriptionPhase.PREPARING,
            file_name=file_name,
            file_size=file_size,
        )
        with self._lock:
            others_running = any(
                entry.state == SourceState.IN_PROGRESS
                for other, entry in self._sources.items()
                if other != source
            )
            if not others_running:
                self._overall = copy.deepcopy(preparing)
                self._overall_local = None
            entry = self._sources.get(source)
            if entry is None:
                entry = SourceProgress(source=source, file_name=file_name, file_size=file_size)
                self._sources[source] = entry
            entry.state = SourceState.IN_PROGRESS
            entry.error_message = None
            if entry.info is None:
                entry.info = copy.deepcopy(preparing)
        self._notify(source, preparing, None)

    def update(
        self,
        source: TranscriptSource,
        info: Optional[TranscriptionProgressInfo],
        local: Optional[LocalModelProgress] = None,
    ) -> bool:
        """Apply a progress callback. Returns False when nothing was accepted."""
        accepted_info = None
        accepted_local = None
        with self._lock:
            entry = self._sources.get(source)
            if entry is None:
                entry = SourceProgress(source=source)
                self._sources[source] = entry
            if entry.state.is_terminal:
                logger.debug(f"Ignoring late progress for {source.value} after {entry.state.value}")
                return False

            if should_update_info(self._overall, info, self._epsilon):
                self._overall = copy.deepcopy(info)
                accepted_info = info
            if should_update_local(self._overall_local, local, self._epsilon):
                self._overall_local = copy.deepcopy(local)
                accepted_local = local

            entry.state = SourceState.IN_PROGRESS
            if should_update_info(entry.info, info, self._epsilon):
                entry.info = copy.deepcopy(info)
                accepted_info = info
            if should_update_local(entry.local, local, self._epsilon):
                entry.local = copy.deepcopy(local)
                accepted_local = local

        if accepted_info is None and accepted_local is None:
            return False
        self._notify(source, accepted_info, accepted_local)
        return True

    def complete_source(self, source: TranscriptSource, segments: int, speakers: int) -> None:
        with self._lock:
            entry = self._sources.setdefault(source, SourceProgress(source=source))
            if entry.state.is_terminal:
                return
            entry.state = SourceState.COMPLETED
            entry.result_segments = segments
            entry.result_speakers = speakers
            entry.error_message = None
            info = entry.info or TranscriptionProgressInfo(file_name=entry.file_name, file_size=entry.file_size)
            info.phase = TranscriptionPhase.COMPLETED
            info.upload_progress = 1.0
            entry.info = info
            if entry.local is not None:
                entry.local.phase = LocalModelPhase.COMPLETED
                entry.local.progress = 1.0
            final = copy.deepcopy(info)
            self._finish_overall()
        self._notify(source, final, None)

    def fail_source(self, source: TranscriptSource, message: str) -> None:
        with self._lock:
            entry = self._sources.setdefault(source, SourceProgress(source=source))
            if entry.state.is_terminal:
                return
            entry.state = SourceState.FAILED
            entry.error_message = message
            info = entry.info or TranscriptionProgressInfo(file_name=entry.file_name, file_size=entry.file_size)
            info.phase = TranscriptionPhase.FAILED
            entry.info = info
            if entry.local is not None:
                entry.local.phase = LocalModelPhase.FAILED
            final = copy.deepcopy(info)
            self._finish_overall()
        logger.error(f"Source {source.value} failed: {message}")
        self._notify(source, final, None)

    def _finish_overall(self) -> None:
        """Once every source is terminal, settle the overall status. Caller holds the lock."""
        if not self._sources or not all(e.state.is_terminal for e in self._sources.values()):
            return
        any_completed = any(e.state == SourceState.COMPLETED for e in self._sources.values())
        overall = self._overall or TranscriptionProgressInfo()
        overall.phase = TranscriptionPhase.COMPLETED if any_completed else TranscriptionPhase.FAILED
        if any_completed:
            overall.upload_progress = 1.0
        self._overall = overall
        if self._overall_local is not None:
            self._overall_local.phase = LocalModelPhase.COMPLETED if any_completed else LocalModelPhase.FAILED

    def apply(self, event: ProgressEvent) -> None:
        if event.kind == ProgressEventKind.STARTED:
            self.start_source(event.source, event.file_name, event.file_size)
        elif event.kind == ProgressEventKind.PROGRESS:
            self.update(event.source, event.info, event.local)
        elif event.kind == ProgressEventKind.COMPLETED:
            self.complete_source(event.source, event.segments, event.speakers)
        elif event.kind == ProgressEventKind.FAILED:
            self.fail_source(event.source, event.error or "Unknown error")

    __call__ = apply

    def source_info(self, source: TranscriptSource) -> Optional[TranscriptionProgressInfo]:
        with self._lock:
            entry = self._sources.get(source)
            return copy.deepcopy(entry.info) if entry else None

    def snapshot(self) -> ProgressSnapshot:
        with self._lock:
            return ProgressSnapshot(
                overall=copy.deepcopy(self._overall),
                overall_local=copy.deepcopy(self._overall_local),
                sources=tuple(copy.deepcopy(entry) for entry in self._sources.values()),
            )

    def _notify(self, source, info, local) -> None:
        if self._listener is None:
            return
        try:
            self._listener.report(source, info, local)
        except Exception as e:
            logger.warning(f"Progress listener failed: {e}")
