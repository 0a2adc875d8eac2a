"""Domain <-> DTO mappers.

Converts between the dataclasses in domain.models and the Pydantic records
the JSON stores write to disk.
"""

from domain.models import (
    KnownSpeaker,
    SegmentTimeRange,
    VoiceProfile,
    VoiceTrainingRecord,
)
from models import (
    KnownSpeakerRecord,
    TimeRangeRecord,
    TrainingRecordEntry,
    VoiceProfileRecord,
)


def speaker_to_dto(speaker: KnownSpeaker) -> KnownSpeakerRecord:
    return KnownSpeakerRecord(
        id=speaker.id,
        name=speaker.name,
        color=speaker.color,
        notes=speaker.notes,
        voice_characteristics=speaker.voice_characteristics,
        usage_count=speaker.usage_count,
        created_at=speaker.created_at,
        last_used_at=speaker.last_used_at,
    )


def dto_to_speaker(dto: KnownSpeakerRecord) -> KnownSpeaker:
    return KnownSpeaker(
        id=dto.id,
        name=dto.name,
        color=dto.color,
        notes=dto.notes,
        voice_characteristics=dto.voice_characteristics,
        usage_count=dto.usage_count,
        created_at=dto.created_at,
        last_used_at=dto.last_used_at,
    )


def profile_to_dto(profile: VoiceProfile) -> VoiceProfileRecord:
    return VoiceProfileRecord(
        speaker_id=profile.speaker_id,
        embedding=list(profile.embedding),
        sample_count=profile.sample_count,
        total_duration=profile.total_duration,
        created_at=profile.created_at,
        updated_at=profile.updated_at,
    )


def dto_to_profile(dto: VoiceProfileRecord) -> VoiceProfile:
    return VoiceProfile(
        speaker_id=dto.speaker_id,
        embedding=list(dto.embedding),
        sample_count=dto.sample_count,
        total_duration=dto.total_duration,
        created_at=dto.created_at,
        updated_at=dto.updated_at,
    )


def record_to_dto(record: VoiceTrainingRecord) -> TrainingRecordEntry:
    return TrainingRecordEntry(
        id=record.id,
        speaker_id=record.speaker_id,
        session_id=record.session_id,
        trained_at=record.trained_at,
        segment_ranges=[TimeRangeRecord(start=r.start, end=r.end) for r in record.segment_ranges],
        extracted_duration=record.extracted_duration,
        features_extracted=record.features_extracted,
        session_title=record.session_title,
    )


def dto_to_record(dto: TrainingRecordEntry) -> VoiceTrainingRecord:
    """Convert a stored entry back to a frozen domain record, preserving range order."""
    return VoiceTrainingRecord(
        id=dto.id,
        speaker_id=dto.speaker_id,
        session_id=dto.session_id,
        trained_at=dto.trained_at,
        segment_ranges=tuple(SegmentTimeRange(start=r.start, end=r.end) for r in dto.segment_ranges),
        extracted_duration=dto.extracted_duration,
        features_extracted=dto.features_extracted,
        session_title=dto.session_title,
    )
