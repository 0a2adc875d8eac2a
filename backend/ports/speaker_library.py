"""SpeakerLibraryPort — the user's library of known speakers."""

import uuid
from abc import ABC, abstractmethod
from typing import Optional

from domain.models import KnownSpeaker


class SpeakerLibraryPort(ABC):
    @abstractmethod
    def get_speaker(self, speaker_id: uuid.UUID) -> Optional[KnownSpeaker]:
        """Return a known speaker by id, or None."""

    @abstractmethod
    def list_speakers(self) -> list[KnownSpeaker]:
        """All known speakers."""

    @abstractmethod
    def save_speaker(self, speaker: KnownSpeaker) -> None:
        """Create or replace a known speaker."""

    def find_by_name(self, name: str) -> Optional[KnownSpeaker]:
        """Case-insensitive lookup by name."""
        wanted = name.strip().lower()
        for speaker in self.list_speakers():
            if speaker.name.lower() == wanted:
                return speaker
        return None

    def mark_used(self, speaker_id: uuid.UUID) -> None:
        speaker = self.get_speaker(speaker_id)
        if speaker is not None:
            speaker.mark_used()
            self.save_speaker(speaker)
