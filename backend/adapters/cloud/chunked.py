"""ChunkedTranscriptionAdapter — drives a single-file cloud provider chunk by chunk.

The audio is normalised to 16kHz mono WAV, split into fixed-length chunks and
each chunk is handed to the wrapped provider on a small thread pool. Chunk
timestamps are shifted by `index * chunk_duration` so the merged result is on
the original file's timeline.

Speaker ids are taken as the provider numbers them within each chunk and
the speakers are unioned by id, first chunk wins. The provider numbers every
chunk independently, so speaker 0 of one chunk is only assumed to be speaker 0
of the next. Cross-chunk identity is resolved later by local diarization
matching, not here.

Progress is reported per chunk as (info, chunk_index, total_chunks). Every
emitted info is a fresh copy; callbacks fire from pool threads in any order,
which the progress aggregator tolerates.
"""

import copy
import dataclasses
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

from domain.cancellation import CancelToken
from domain.errors import ProviderError, TranscriptionCancelled, describe_error
from domain.models import (
    ChunkPhase,
    ChunkProgress,
    Speaker,
    TranscriptionPhase,
    TranscriptionProgressInfo,
    TranscriptSegment,
)
from ports.audio import AudioProcessingPort
from ports.transcription import (
    ChunkProgressCallback,
    ChunkedTranscriptionPort,
    ProviderProgress,
    TranscriptionPort,
)

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_DURATION = 500
DEFAULT_MAX_WORKERS = 3


class _ChunkTracker:
    """Shared per-file progress state, mutated from pool threads."""

    def __init__(self, file_name: str, file_size: int, total: int):
        self._lock = threading.Lock()
        self._info = TranscriptionProgressInfo(
            phase=TranscriptionPhase.UPLOADING,
            file_name=file_name,
            file_size=file_size,
            chunk_progresses=[ChunkProgress(index=i) for i in range(total)],
            total_chunks=total,
        )

    def set(self, index: int, phase: ChunkPhase, progress: Optional[float] = None) -> TranscriptionProgressInfo:
        with self._lock:
            chunk = self._info.chunk_progresses[index]
            chunk.phase = phase
            if progress is not None:
                chunk.progress = max(chunk.progress, min(1.0, progress))
            chunks = self._info.chunk_progresses
            self._info.completed_chunks = sum(1 for c in chunks if c.phase == ChunkPhase.COMPLETED)
            if all(c.phase == ChunkPhase.COMPLETED for c in chunks):
                self._info.phase = TranscriptionPhase.PROCESSING
            self._info.upload_progress = self._info.overall_upload_progress
            return copy.deepcopy(self._info)


class ChunkedTranscriptionAdapter(ChunkedTranscriptionPort):
    def __init__(
        self,
        provider: TranscriptionPort,
        audio: AudioProcessingPort,
        api_key: Optional[str] = None,
        chunk_duration: int = DEFAULT_CHUNK_DURATION,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        self._provider = provider
        self._audio = audio
        self._api_key = api_key
        self._chunk_duration = chunk_duration
        self._max_workers = max(1, max_workers)

    def model_name(self) -> str:
        return self._provider.model_name()

    def is_loaded(self) -> bool:
        return bool(self._api_key) and self._provider.is_loaded()

    def transcribe_chunked(
        self,
        audio_path: str,
        language: Optional[str] = None,
        diarize: bool = False,
        on_chunk_progress: Optional[ChunkProgressCallback] = None,
        cancel: Optional[CancelToken] = None,
    ) -> tuple[list[TranscriptSegment], list[Speaker]]:
        cancel = cancel or CancelToken()
        cancel.raise_if_cancelled()

        file_name = os.path.basename(audio_path)
        file_size = self._audio.file_size(audio_path)

        wav_file = self._audio.convert_to_wav(audio_path)
        chunk_paths: list[str] = []
        try:
            chunk_paths = self._audio.split_into_chunks(wav_file, chunk_duration=self._chunk_duration)
            total = len(chunk_paths)
            tracker = _ChunkTracker(file_name, file_size, total)
            logger.info(f"Uploading {file_name} in {total} chunk(s) with {self._max_workers} worker(s)")

            def _emit(info: TranscriptionProgressInfo, index: int) -> None:
                if on_chunk_progress:
                    on_chunk_progress(info, index, total)

            def _run_chunk(index: int, chunk_path: str) -> tuple[list[TranscriptSegment], list[Speaker]]:
                cancel.raise_if_cancelled()
                _emit(tracker.set(index, ChunkPhase.UPLOADING, 0.0), index)

                def _on_provider_progress(progress: ProviderProgress) -> None:
                    if not isinstance(progress, TranscriptionProgressInfo):
                        return
                    if progress.phase in (TranscriptionPhase.PREPARING, TranscriptionPhase.UPLOADING):
                        _emit(tracker.set(index, ChunkPhase.UPLOADING, progress.upload_progress), index)
                    else:
                        _emit(tracker.set(index, ChunkPhase.PROCESSING, 1.0), index)

                try:
                    segments, speakers = self._provider.transcribe(
                        chunk_path,
                        language=language,
                        diarize=diarize,
                        on_progress=_on_provider_progress,
                        cancel=cancel,
                    )
                except TranscriptionCancelled:
                    _emit(tracker.set(index, ChunkPhase.FAILED), index)
                    raise
                except Exception as e:
                    _emit(tracker.set(index, ChunkPhase.FAILED), index)
                    logger.error(f"Chunk {index + 1}/{total} of {file_name} failed: {e}")
                    raise ProviderError(
                        f"Chunk {index + 1}/{total} failed",
                        f"Chunk {index + 1}/{total} of {file_name} failed: {describe_error(e)}",
                    ) from e

                _emit(tracker.set(index, ChunkPhase.COMPLETED, 1.0), index)
                offset = float(index * self._chunk_duration)
                if offset:
                    segments = [
                        dataclasses.replace(
                            seg,
                            timestamp=seg.timestamp + offset,
                            end=seg.end + offset if seg.end is not None else None,
                        )
                        for seg in segments
                    ]
                return segments, speakers

            with ThreadPoolExecutor(max_workers=min(self._max_workers, total)) as pool:
                futures = [pool.submit(_run_chunk, i, path) for i, path in enumerate(chunk_paths)]
                try:
                    results = [future.result() for future in futures]
                except BaseException:
                    cancel_pending = [f.cancel() for f in futures]
                    logger.debug(f"Cancelled {sum(cancel_pending)} pending chunk(s)")
                    raise

            all_segments: list[TranscriptSegment] = []
            all_speakers: list[Speaker] = []
            seen: set[int] = set()
            for segments, speakers in results:
                all_segments.extend(segments)
                for speaker in speakers:
                    if speaker.id not in seen:
                        seen.add(speaker.id)
                        all_speakers.append(speaker)

            logger.info(f"Chunked transcription of {file_name}: {len(all_segments)} segments, {len(all_speakers)} speakers")
            return all_segments, all_speakers

        finally:
            self._cleanup(audio_path, wav_file, chunk_paths)

    def _cleanup(self, audio_path: str, wav_file: str, chunk_paths: list[str]) -> None:
        try:
            for chunk in chunk_paths:
                if chunk != wav_file and os.path.exists(chunk):
                    os.unlink(chunk)
            if wav_file != audio_path and os.path.exists(wav_file):
                os.unlink(wav_file)
        except OSError as e:
            logger.warning(f"Cleanup error: {e}")
