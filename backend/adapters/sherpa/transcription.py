"""SherpaTranscriptionAdapter — local batch ASR with token timestamps.

Splits audio into sub-chunks that fit the encoder's attention window (~100s max),
creates a stream per sub-chunk, then decodes the streams in small batches so
progress can be reported and cancellation honoured between batches. Token
timestamps from each sub-chunk are offset-corrected and merged, then grouped
into sentence-like segments based on silence gaps.

When a DiarizationPort is injected and diarization is requested, speaker turns
are assigned to segments by time overlap and each local speaker becomes a
numbered Speaker carrying its voice embedding.
"""

import logging
import os
from typing import Optional

import numpy as np
import soundfile

from domain.cancellation import CancelToken
from domain.errors import AudioFileError, ConfigurationError, MatchingError, ProviderError
from domain.models import (
    DiarizationResult,
    LocalModelPhase,
    LocalModelProgress,
    Speaker,
    TranscriptSegment,
)
from ports.diarization import DiarizationPort
from ports.transcription import ProgressCallback, ProviderKind, TranscriptionPort

logger = logging.getLogger(__name__)

# Expected model files (downloaded on container start)
REQUIRED_FILES = {
    "asr": ["encoder.int8.onnx", "decoder.int8.onnx", "joiner.int8.onnx", "tokens.txt"],
}

DEFAULT_MODEL_DIR = "/models/sherpa-onnx"

# Max duration per sub-chunk (seconds). Parakeet TDT's self-attention supports
# ~1250 frames at 12.5 fps = 100s. Use 80s for safety margin.
MAX_CHUNK_SECONDS = 80

# Streams decoded per call; progress and cancellation are checked between batches.
DECODE_BATCH_SIZE = 4

# Silence gap (seconds) between tokens that triggers a new segment.
SEGMENT_SILENCE_THRESHOLD = 0.25

# Cap segments so they stay within a single speaker's utterance.
MAX_SEGMENT_DURATION = 6.0


class SherpaTranscriptionAdapter(TranscriptionPort):
    kind = ProviderKind.LOCAL

    def __init__(self, diarization: Optional[DiarizationPort] = None):
        self._model_dir = DEFAULT_MODEL_DIR
        self._recognizer = None
        self._ready = False
        self._diarization = diarization

    def load(self, model_id: str = DEFAULT_MODEL_DIR, device: str = "cpu") -> None:
        """Load ASR model. Raises ConfigurationError when model files are missing."""
        import sherpa_onnx

        self._model_dir = model_id
        self._ensure_models()

        logger.info(f"Loading Sherpa-ONNX ASR model (provider={device})...")
        self._recognizer = sherpa_onnx.OfflineRecognizer.from_transducer(
            encoder=os.path.join(self._model_dir, "encoder.int8.onnx"),
            decoder=os.path.join(self._model_dir, "decoder.int8.onnx"),
            joiner=os.path.join(self._model_dir, "joiner.int8.onnx"),
            tokens=os.path.join(self._model_dir, "tokens.txt"),
            model_type="nemo_transducer",
            provider=device,
            num_threads=4,
        )
        self._ready = True
        logger.info(f"Sherpa transcription adapter ready: {self._model_dir}")

    def transcribe(
        self,
        audio_path: str,
        language: Optional[str] = None,
        diarize: bool = False,
        on_progress: Optional[ProgressCallback] = None,
        cancel: Optional[CancelToken] = None,
    ) -> tuple[list[TranscriptSegment], list[Speaker]]:
        """Sub-chunk audio → create streams → batch decode → merge tokens → assign speakers."""
        if not self._ready:
            raise ConfigurationError("Local model not loaded")
        cancel = cancel or CancelToken()

        def _report(phase: LocalModelPhase, progress: float, current: Optional[float] = None,
                    total: Optional[float] = None, status: Optional[str] = None) -> None:
            if on_progress:
                on_progress(LocalModelProgress(phase, progress, current, total, status))

        # Step 1: Load audio
        logger.info(f"Loading audio: {audio_path}")
        try:
            audio, sample_rate = soundfile.read(audio_path, dtype="float32")
        except (RuntimeError, OSError) as e:
            raise AudioFileError(f"Cannot read audio file {audio_path}: {e}") from e

        if len(audio.shape) > 1:
            audio = audio.mean(axis=1)

        if sample_rate != 16000:
            logger.warning(f"Audio is {sample_rate}Hz, expected 16000Hz")
            target_len = int(len(audio) * 16000 / sample_rate)
            indices = np.linspace(0, len(audio) - 1, target_len)
            audio = np.interp(indices, np.arange(len(audio)), audio).astype(np.float32)
            sample_rate = 16000

        duration = len(audio) / sample_rate
        logger.info(f"Audio loaded: {duration:.2f}s @ {sample_rate}Hz")
        _report(LocalModelPhase.PROCESSING, 0.0, 0.0, duration, "Transcribing")

        # Step 2: Split into sub-chunks that fit the encoder's attention window
        chunk_samples = MAX_CHUNK_SECONDS * sample_rate
        num_chunks = max(1, int(np.ceil(len(audio) / chunk_samples)))

        streams = []
        chunk_offsets = []
        for i in range(num_chunks):
            start_sample = i * chunk_samples
            end_sample = min((i + 1) * chunk_samples, len(audio))
            stream = self._recognizer.create_stream()
            stream.accept_waveform(sample_rate, audio[start_sample:end_sample])
            streams.append(stream)
            chunk_offsets.append(start_sample / sample_rate)

        # Step 3: Decode in batches
        try:
            for start in range(0, num_chunks, DECODE_BATCH_SIZE):
                cancel.raise_if_cancelled()
                batch = streams[start:start + DECODE_BATCH_SIZE]
                self._recognizer.decode_streams(batch)
                done = start + len(batch)
                decoded_until = min(duration, done * MAX_CHUNK_SECONDS)
                _report(LocalModelPhase.PROCESSING, done / num_chunks, decoded_until, duration,
                        f"Decoded {done}/{num_chunks} sub-chunks")
        except RuntimeError as e:
            logger.error(f"Sherpa transcription error: {e}", exc_info=True)
            raise ProviderError("Local transcription failed", f"Local model decode failed: {e}") from e

        # Step 4: Merge tokens + timestamps from all sub-chunks
        all_tokens = []
        all_timestamps = []
        for i, stream in enumerate(streams):
            result = stream.result
            if result.tokens:
                all_tokens.extend(result.tokens)
                all_timestamps.extend(t + chunk_offsets[i] for t in result.timestamps)

        if not all_tokens:
            logger.warning("No speech detected")
            _report(LocalModelPhase.COMPLETED, 1.0, duration, duration)
            return [], []

        # Step 5: Group tokens into segments based on silence gaps
        segments = self._group_tokens_into_segments(all_tokens, all_timestamps, duration)
        logger.info(f"Grouped {len(all_tokens)} tokens into {len(segments)} segments")

        speakers: list[Speaker] = []
        if diarize and self._diarization is not None and self._diarization.is_loaded():
            cancel.raise_if_cancelled()
            speakers = self._assign_speakers(audio_path, segments)

        _report(LocalModelPhase.COMPLETED, 1.0, duration, duration)
        return segments, speakers

    def _assign_speakers(self, audio_path: str, segments: list[TranscriptSegment]) -> list[Speaker]:
        """Assign each segment the local speaker it overlaps most. Degrades to no speakers."""
        try:
            diarization = self._diarization.process_audio_file(audio_path)
        except (MatchingError, AudioFileError) as e:
            logger.warning(f"Diarization skipped: {e}")
            return []
        return merge_diarization(diarization, segments)

    def _group_tokens_into_segments(
        self,
        tokens: list,
        timestamps: list,
        audio_duration: float,
    ) -> list[TranscriptSegment]:
        """Group tokens into segments, starting a new one on a silence gap or length cap."""
        if not tokens:
            return []

        segments: list[TranscriptSegment] = []
        current_tokens: list[str] = [tokens[0]]
        current_start: float = timestamps[0]
        prev_timestamp: float = timestamps[0]

        for i in range(1, len(tokens)):
            gap = timestamps[i] - prev_timestamp
            segment_duration = timestamps[i] - current_start
            if gap > SEGMENT_SILENCE_THRESHOLD or segment_duration > MAX_SEGMENT_DURATION:
                text = "".join(current_tokens).strip()
                if text:
                    segments.append(TranscriptSegment(
                        timestamp=current_start,
                        end=prev_timestamp + 0.1,
                        text=text,
                        confidence=1.0,
                    ))
                current_tokens = [tokens[i]]
                current_start = timestamps[i]
            else:
                current_tokens.append(tokens[i])
            prev_timestamp = timestamps[i]

        text = "".join(current_tokens).strip()
        if text:
            segments.append(TranscriptSegment(
                timestamp=current_start,
                end=min(prev_timestamp + 0.1, audio_duration),
                text=text,
                confidence=1.0,
            ))

        return segments

    def model_name(self) -> str:
        return "parakeet-tdt-0.6b-v2-int8"

    def is_loaded(self) -> bool:
        return self._ready

    def _ensure_models(self):
        """Verify all required models are present."""
        missing = []
        for group, files in REQUIRED_FILES.items():
            for f in files:
                path = os.path.join(self._model_dir, f)
                if os.path.exists(path):
                    size_mb = os.path.getsize(path) / (1024 * 1024)
                    logger.info(f"  {group}: {f} ({size_mb:.1f} MB)")
                else:
                    missing.append(f)
                    logger.error(f"  {group}: {f} MISSING")

        if missing:
            raise ConfigurationError(f"Missing model files in {self._model_dir}: {missing}")


def merge_diarization(
    diarization: DiarizationResult,
    segments: list[TranscriptSegment],
) -> list[Speaker]:
    """Set speaker_id on each segment by largest time overlap with a diarized turn.

    Local labels are numbered in order of first appearance. Returns the
    numbered speakers with their embeddings.
    """
    if not diarization.segments:
        return []

    label_ids: dict[str, int] = {}
    for segment in segments:
        seg_end = segment.end if segment.end is not None else segment.timestamp
        overlapping: list[tuple[str, float]] = []
        for turn in diarization.segments:
            overlap = min(seg_end, turn.end) - max(segment.timestamp, turn.start)
            if overlap > 0:
                overlapping.append((turn.speaker, overlap))

        if not overlapping:
            continue
        overlapping.sort(key=lambda x: x[1], reverse=True)
        label = overlapping[0][0]
        if label not in label_ids:
            label_ids[label] = len(label_ids)
        segment.speaker_id = label_ids[label]

    speakers = []
    for label, speaker_id in label_ids.items():
        profile = diarization.speaker_profiles.get(label)
        speakers.append(Speaker(id=speaker_id, embedding=profile.embedding if profile else None))
    return speakers
