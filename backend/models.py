from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class KnownSpeakerRecord(BaseModel):
    """A speaker in the persisted library."""
    id: UUID
    name: str
    color: str
    notes: Optional[str] = None
    voice_characteristics: Optional[str] = None
    usage_count: int = 0
    created_at: datetime
    last_used_at: Optional[datetime] = None


class SpeakerLibraryFile(BaseModel):
    """On-disk layout of the speaker library JSON file."""
    version: int = 1
    speakers: List[KnownSpeakerRecord] = []


class VoiceProfileRecord(BaseModel):
    """Persisted voice profile. Quality tier is derived, never stored."""
    speaker_id: UUID
    embedding: List[float]
    sample_count: int = 0
    total_duration: float = 0.0
    created_at: datetime
    updated_at: datetime


class TimeRangeRecord(BaseModel):
    start: float
    end: float


class TrainingRecordEntry(BaseModel):
    """Audit entry for one training event."""
    id: UUID
    speaker_id: UUID
    session_id: UUID
    trained_at: datetime
    segment_ranges: List[TimeRangeRecord] = []
    extracted_duration: float = 0.0
    features_extracted: bool = True
    session_title: Optional[str] = None


class VoiceProfileFile(BaseModel):
    """On-disk layout of the voice profile JSON file."""
    version: int = 1
    profiles: List[VoiceProfileRecord] = []
    training_records: List[TrainingRecordEntry] = []


class SessionRecord(BaseModel):
    """A recording session as listed in the session index.

    File names are relative to the store's audio directory.
    """
    id: UUID
    title: Optional[str] = None
    audio_file_name: Optional[str] = None
    mic_audio_file_name: Optional[str] = None
    system_audio_file_name: Optional[str] = None


class SessionIndexFile(BaseModel):
    sessions: List[SessionRecord] = Field(default_factory=list)
