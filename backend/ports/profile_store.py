"""VoiceProfileStorePort — persisted voice profiles and their training audit trail."""

import uuid
from abc import ABC, abstractmethod
from typing import Optional

from domain.models import VoiceProfile, VoiceTrainingRecord


class VoiceProfileStorePort(ABC):
    @abstractmethod
    def get_profile(self, speaker_id: uuid.UUID) -> Optional[VoiceProfile]:
        """Return the profile for a known speaker, or None."""

    @abstractmethod
    def save_profile(self, profile: VoiceProfile) -> None:
        """Create or replace the profile keyed by profile.speaker_id."""

    @abstractmethod
    def delete_profile(self, speaker_id: uuid.UUID) -> None:
        """Remove the profile. No-op if absent."""

    @abstractmethod
    def list_profiles(self) -> list[VoiceProfile]:
        """All stored profiles."""

    @abstractmethod
    def append_training_record(self, record: VoiceTrainingRecord) -> None:
        """Append an immutable training record."""

    @abstractmethod
    def training_records(self, speaker_id: uuid.UUID) -> list[VoiceTrainingRecord]:
        """Training records for a speaker, oldest first."""

    @abstractmethod
    def delete_training_records(self, speaker_id: uuid.UUID) -> None:
        """Remove every training record of a speaker."""
