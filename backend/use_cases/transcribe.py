"""TranscriptionJobRunner — drives one transcription job per audio source.

Accepts all ports via dependency injection. Each source is transcribed in
turn (or on a small pool when source_workers > 1); a failing source is
recorded with the phase it reached and the others carry on. Progress is
published as typed ProgressEvents, so a ProgressAggregator can be passed
directly as the on_progress callback.
"""

import copy
import dataclasses
import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Optional

from domain.cancellation import CancelToken
from domain.errors import AudioFileError, ConfigurationError, TranscriptionCoreError, describe_error
from domain.models import (
    AudioSource,
    ChunkPhase,
    LocalModelPhase,
    LocalModelProgress,
    SourceError,
    SourceResult,
    TranscriptionPhase,
    TranscriptionProgressInfo,
    TranscriptionResult,
    TranscriptSource,
)
from domain.progress import ProgressEvent, ProgressEventKind, phase_rank
from ports.audio import AudioProcessingPort
from ports.session_store import SessionStorePort
from ports.transcription import ChunkedTranscriptionPort, ProviderKind, ProviderProgress, TranscriptionPort
from post_processing import merge_source_results
from use_cases.identify import SpeakerIdentifier

logger = logging.getLogger(__name__)

ProgressListener = Callable[[ProgressEvent], None]


@dataclass
class TranscribeRequest:
    """All parameters for a transcription run."""
    sources: list[AudioSource]
    language: Optional[str] = None
    diarize: bool = True
    cancel: Optional[CancelToken] = None


def local_progress_to_info(
    local: LocalModelProgress, file_name: str = "", file_size: int = 0
) -> TranscriptionProgressInfo:
    """Express local-model progress in the cloud progress vocabulary."""
    if local.phase == LocalModelPhase.COMPLETED:
        phase = TranscriptionPhase.COMPLETED
    elif local.phase == LocalModelPhase.PROCESSING:
        phase = TranscriptionPhase.PROCESSING
    else:
        phase = TranscriptionPhase.PREPARING
    return TranscriptionProgressInfo(
        phase=phase,
        upload_progress=min(1.0, max(0.0, local.progress)),
        file_name=file_name,
        file_size=file_size,
    )


def progress_info_for_speaker_matching(info: TranscriptionProgressInfo) -> TranscriptionProgressInfo:
    """Parsing-phase copy of `info`: upload finished, every chunk shown completed."""
    parsing = copy.deepcopy(info)
    parsing.phase = TranscriptionPhase.PARSING
    parsing.upload_progress = 1.0
    for chunk in parsing.chunk_progresses:
        chunk.phase = ChunkPhase.COMPLETED
        chunk.progress = 1.0
    if parsing.total_chunks:
        parsing.completed_chunks = parsing.total_chunks
    return parsing


def sources_for_session(session_store: SessionStorePort, session_id: uuid.UUID) -> list[AudioSource]:
    """Plan sources: microphone then system for dual-audio sessions, else one unknown source."""
    session = session_store.session_audio(session_id)
    if session is None:
        raise AudioFileError(f"Unknown session {session_id}")

    sources: list[AudioSource] = []
    if session.is_dual_audio:
        if session.mic_path:
            sources.append(AudioSource(session.mic_path, TranscriptSource.MICROPHONE))
        if session.system_path:
            sources.append(AudioSource(session.system_path, TranscriptSource.SYSTEM))
    if not sources and session.primary_path:
        sources.append(AudioSource(session.primary_path, TranscriptSource.UNKNOWN))
    if not sources:
        raise AudioFileError(f"No audio available for session {session_id}")
    return sources


class _SourceJob:
    """Progress bookkeeping for one source; callbacks may come from pool threads."""

    def __init__(self, item: AudioSource, emit: ProgressListener):
        self.item = item
        self._emit = emit
        self._lock = threading.Lock()
        self.file_size = 0
        self.phase = TranscriptionPhase.PREPARING
        self.last_info = TranscriptionProgressInfo(file_name=item.file_name)

    def started(self, file_size: int) -> None:
        self.file_size = file_size
        self.last_info = TranscriptionProgressInfo(file_name=self.item.file_name, file_size=file_size)
        self._emit(ProgressEvent(
            kind=ProgressEventKind.STARTED,
            source=self.item.source,
            file_name=self.item.file_name,
            file_size=file_size,
        ))

    def progress(self, info: TranscriptionProgressInfo, local: Optional[LocalModelProgress] = None) -> None:
        with self._lock:
            if phase_rank(info.phase) >= phase_rank(self.phase):
                self.phase = info.phase
                self.last_info = copy.deepcopy(info)
        self._emit(ProgressEvent(kind=ProgressEventKind.PROGRESS, source=self.item.source, info=info, local=local))

    def on_provider_progress(self, progress: ProviderProgress) -> None:
        if isinstance(progress, LocalModelProgress):
            self.progress(local_progress_to_info(progress, self.item.file_name, self.file_size), progress)
        else:
            self.progress(progress)

    def on_chunk_progress(self, info: TranscriptionProgressInfo, index: int, total: int) -> None:
        logger.debug(f"[{self.item.source.value}] chunk {index + 1}/{total}: {info.phase.value} {info.overall_upload_progress:.0%}")
        self.progress(info)

    def completed(self, segments: int, speakers: int) -> None:
        self._emit(ProgressEvent(
            kind=ProgressEventKind.COMPLETED, source=self.item.source, segments=segments, speakers=speakers,
        ))

    def failed(self, message: str) -> SourceError:
        self._emit(ProgressEvent(kind=ProgressEventKind.FAILED, source=self.item.source, error=message))
        return SourceError(source=self.item.source, phase=self.phase, message=message)


class TranscriptionJobRunner:
    def __init__(
        self,
        transcription: TranscriptionPort,
        audio: AudioProcessingPort,
        identifier: Optional[SpeakerIdentifier] = None,
        source_workers: int = 1,
    ):
        self._transcription = transcription
        self._audio = audio
        self._identifier = identifier
        self._source_workers = max(1, source_workers)

    def _ensure_ready(self) -> None:
        if self._transcription.is_loaded():
            return
        if self._transcription.kind == ProviderKind.CLOUD:
            raise ConfigurationError("Cloud transcription is not configured: API key missing")
        raise ConfigurationError(f"Local model {self._transcription.model_name()} is not loaded")

    def run(
        self,
        sources: list[AudioSource],
        language: Optional[str] = None,
        diarize: bool = False,
        on_progress: Optional[ProgressListener] = None,
        cancel: Optional[CancelToken] = None,
    ) -> list[SourceResult]:
        """Transcribe every source. Returns one SourceResult per source, in input order.

        Raises ConfigurationError before any job starts if the provider is not ready.
        """
        self._ensure_ready()
        cancel = cancel or CancelToken()
        emit = on_progress or (lambda event: None)

        def _job(item: AudioSource) -> SourceResult:
            return self._run_source(item, language, diarize, emit, cancel)

        logger.info(f"Transcribing {len(sources)} source(s) with {self._transcription.model_name()}")
        if self._source_workers == 1 or len(sources) <= 1:
            return [_job(item) for item in sources]
        with ThreadPoolExecutor(max_workers=min(self._source_workers, len(sources))) as pool:
            return list(pool.map(_job, sources))

    def execute(self, req: TranscribeRequest, on_progress: Optional[ProgressListener] = None) -> TranscriptionResult:
        """Run every source job and merge the successful results."""
        results = self.run(req.sources, req.language, req.diarize, on_progress, req.cancel)
        segments, speakers = merge_source_results(results)
        errors = [r.error for r in results if r.error is not None]
        if errors:
            logger.warning(f"{len(errors)} of {len(results)} source(s) failed")
        return TranscriptionResult(segments=segments, speakers=speakers, source_results=results, errors=errors)

    def _run_source(
        self,
        item: AudioSource,
        language: Optional[str],
        diarize: bool,
        emit: ProgressListener,
        cancel: CancelToken,
    ) -> SourceResult:
        job = _SourceJob(item, emit)
        result = SourceResult(source=item.source, audio_path=item.path)
        try:
            cancel.raise_if_cancelled()
            job.started(self._audio.file_size(item.path))

            if isinstance(self._transcription, ChunkedTranscriptionPort):
                segments, speakers = self._transcription.transcribe_chunked(
                    item.path, language, diarize, job.on_chunk_progress, cancel,
                )
            else:
                segments, speakers = self._transcription.transcribe(
                    item.path, language, diarize, job.on_provider_progress, cancel,
                )

            segments = [dataclasses.replace(seg, source=item.source) for seg in segments]

            if (
                diarize
                and speakers
                and self._identifier is not None
                and self._transcription.kind == ProviderKind.CLOUD
            ):
                cancel.raise_if_cancelled()
                job.progress(progress_info_for_speaker_matching(job.last_info))
                try:
                    speakers, matches = self._identifier.match_provider_speakers(item.path, segments, speakers)
                    logger.info(f"[{item.source.value}] {len(matches)} speaker(s) matched to known voices")
                except Exception as e:
                    # Matching never fails a finished transcription
                    logger.warning(f"[{item.source.value}] speaker matching failed, keeping provider speakers: {e}")

            result.segments = segments
            result.speakers = speakers
            job.completed(len(segments), len(speakers))
            logger.info(f"[{item.source.value}] {len(segments)} segments, {len(speakers)} speakers")

        except Exception as e:
            message = describe_error(e)
            logger.error(f"[{item.source.value}] transcription failed: {message}", exc_info=not isinstance(e, TranscriptionCoreError))
            result.error = job.failed(message)

        return result
