"""Framework-agnostic domain models for the transcription core.

Persistence DTOs live in models.py (Pydantic) with mappers at the boundary;
everything in here is plain dataclasses and enums.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

EMBEDDING_DIM = 256

SPEAKER_COLORS = [
    "#3B82F6",  # Blue
    "#10B981",  # Green
    "#F59E0B",  # Yellow
    "#EF4444",  # Red
    "#8B5CF6",  # Purple
    "#EC4899",  # Pink
    "#06B6D4",  # Cyan
    "#F97316",  # Orange
]

LIBRARY_COLORS = SPEAKER_COLORS + [
    "#6366F1",  # Indigo
    "#84CC16",  # Lime
]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TranscriptSource(str, Enum):
    MICROPHONE = "mic"
    SYSTEM = "system"
    UNKNOWN = "unknown"

    @property
    def priority(self) -> int:
        """Merge order: microphone before system before unknown."""
        return _SOURCE_PRIORITY[self]


_SOURCE_PRIORITY = {
    TranscriptSource.MICROPHONE: 0,
    TranscriptSource.SYSTEM: 1,
    TranscriptSource.UNKNOWN: 2,
}


@dataclass
class TranscriptSegment:
    """A single transcribed utterance with timing and optional speaker."""
    timestamp: float
    text: str
    speaker_id: Optional[int] = None
    source: TranscriptSource = TranscriptSource.UNKNOWN
    end: Optional[float] = None
    confidence: float = 0.0
    id: str = field(default_factory=lambda: uuid.uuid4().hex)


@dataclass
class Speaker:
    """One distinct voice within a single source's job output."""
    id: int
    name: Optional[str] = None
    color: Optional[str] = None
    embedding: Optional[list[float]] = None

    def __post_init__(self):
        if self.color is None:
            self.color = SPEAKER_COLORS[self.id % len(SPEAKER_COLORS)]

    @property
    def display_name(self) -> str:
        if self.name:
            return self.name
        # Offset system-audio speakers keep their full id
        if self.id >= 1000:
            return f"Speaker {self.id}"
        return f"Speaker {self.id + 1}"


@dataclass
class KnownSpeaker:
    """A persisted speaker in the user's library, reusable across sessions."""
    name: str
    color: str = LIBRARY_COLORS[0]
    notes: Optional[str] = None
    voice_characteristics: Optional[str] = None
    usage_count: int = 0
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    created_at: datetime = field(default_factory=utcnow)
    last_used_at: Optional[datetime] = None

    def mark_used(self) -> None:
        self.last_used_at = utcnow()
        self.usage_count += 1


class QualityTier(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


def quality_tier(total_duration: float, sample_count: int) -> QualityTier:
    if total_duration >= 120 or sample_count >= 8:
        return QualityTier.HIGH
    if total_duration >= 45 or sample_count >= 4:
        return QualityTier.MEDIUM
    return QualityTier.LOW


@dataclass
class VoiceProfile:
    """Trained representation of a known speaker's voice."""
    speaker_id: uuid.UUID
    embedding: list[float]
    sample_count: int = 0
    total_duration: float = 0.0
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def has_embedding(self) -> bool:
        return self.embedding is not None and len(self.embedding) == EMBEDDING_DIM

    @property
    def quality(self) -> QualityTier:
        return quality_tier(self.total_duration, self.sample_count)


@dataclass(frozen=True)
class SegmentTimeRange:
    start: float
    end: float

    @property
    def duration(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class VoiceTrainingRecord:
    """Audit entry for one training event. Never mutated after creation."""
    speaker_id: uuid.UUID
    session_id: uuid.UUID
    segment_ranges: tuple[SegmentTimeRange, ...] = ()
    extracted_duration: float = 0.0
    features_extracted: bool = True
    session_title: Optional[str] = None
    trained_at: datetime = field(default_factory=utcnow)
    id: uuid.UUID = field(default_factory=uuid.uuid4)


class TranscriptionPhase(str, Enum):
    PREPARING = "preparing"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    PARSING = "parsing"
    COMPLETED = "completed"
    FAILED = "failed"


class ChunkPhase(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ChunkProgress:
    index: int
    phase: ChunkPhase = ChunkPhase.PENDING
    progress: float = 0.0


@dataclass
class TranscriptionProgressInfo:
    """Progress of one provider job (or of the overall run)."""
    phase: TranscriptionPhase = TranscriptionPhase.PREPARING
    upload_progress: float = 0.0
    file_name: str = ""
    file_size: int = 0
    chunk_progresses: list[ChunkProgress] = field(default_factory=list)
    total_chunks: int = 0
    completed_chunks: int = 0

    @property
    def overall_upload_progress(self) -> float:
        if not self.chunk_progresses:
            return self.upload_progress
        return sum(c.progress for c in self.chunk_progresses) / len(self.chunk_progresses)


class LocalModelPhase(str, Enum):
    LOADING_MODEL = "loading_model"
    DOWNLOADING_MODEL = "downloading_model"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class LocalModelProgress:
    """Progress reported by a local model provider."""
    phase: LocalModelPhase
    progress: float = 0.0
    current_time: Optional[float] = None
    total_duration: Optional[float] = None
    status: Optional[str] = None


@dataclass(frozen=True)
class SpeakerMatch:
    matched_profile_id: uuid.UUID
    confidence: float
    speaker_id: Optional[int] = None
    speaker_name: Optional[str] = None

    @property
    def is_low_confidence(self) -> bool:
        return self.confidence < 0.5


@dataclass
class DiarizationSegment:
    """A speaker turn from the local diarization pipeline."""
    start: float
    end: float
    speaker: str
    embedding: Optional[list[float]] = None


@dataclass
class DiarizationSpeakerProfile:
    speaker: str
    embedding: list[float]
    total_duration: float = 0.0


@dataclass
class DiarizationResult:
    """Complete local diarization output for an audio file."""
    segments: list[DiarizationSegment] = field(default_factory=list)
    speaker_profiles: dict[str, DiarizationSpeakerProfile] = field(default_factory=dict)

    @property
    def speaker_count(self) -> int:
        return len({seg.speaker for seg in self.segments})


@dataclass(frozen=True)
class SourceError:
    source: TranscriptSource
    phase: TranscriptionPhase
    message: str


@dataclass
class SourceResult:
    source: TranscriptSource
    audio_path: str
    segments: list[TranscriptSegment] = field(default_factory=list)
    speakers: list[Speaker] = field(default_factory=list)
    error: Optional[SourceError] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


@dataclass
class TranscriptionResult:
    segments: list[TranscriptSegment]
    speakers: list[Speaker]
    source_results: list[SourceResult]
    errors: list[SourceError] = field(default_factory=list)


@dataclass(frozen=True)
class AudioSource:
    path: str
    source: TranscriptSource

    @property
    def file_name(self) -> str:
        return Path(self.path).name


@dataclass
class SessionAudio:
    """Audio file locations the session store knows for one session."""
    session_id: uuid.UUID
    mic_path: Optional[str] = None
    system_path: Optional[str] = None
    primary_path: Optional[str] = None
    title: Optional[str] = None

    @property
    def is_dual_audio(self) -> bool:
        return self.mic_path is not None or self.system_path is not None
