"""In-memory stores for tests and embedded hosts that persist elsewhere."""

import copy
import threading
import uuid
from typing import Optional

from domain.models import KnownSpeaker, SessionAudio, VoiceProfile, VoiceTrainingRecord
from ports.profile_store import VoiceProfileStorePort
from ports.session_store import SessionStorePort
from ports.speaker_library import SpeakerLibraryPort


class InMemoryVoiceProfileStore(VoiceProfileStorePort):
    def __init__(self):
        self._lock = threading.Lock()
        self._profiles: dict[uuid.UUID, VoiceProfile] = {}
        self._records: list[VoiceTrainingRecord] = []

    def get_profile(self, speaker_id: uuid.UUID) -> Optional[VoiceProfile]:
        with self._lock:
            profile = self._profiles.get(speaker_id)
            return copy.deepcopy(profile) if profile else None

    def save_profile(self, profile: VoiceProfile) -> None:
        with self._lock:
            self._profiles[profile.speaker_id] = copy.deepcopy(profile)

    def delete_profile(self, speaker_id: uuid.UUID) -> None:
        with self._lock:
            self._profiles.pop(speaker_id, None)

    def list_profiles(self) -> list[VoiceProfile]:
        with self._lock:
            return [copy.deepcopy(p) for p in self._profiles.values()]

    def append_training_record(self, record: VoiceTrainingRecord) -> None:
        with self._lock:
            self._records.append(record)

    def training_records(self, speaker_id: uuid.UUID) -> list[VoiceTrainingRecord]:
        with self._lock:
            return [r for r in self._records if r.speaker_id == speaker_id]

    def delete_training_records(self, speaker_id: uuid.UUID) -> None:
        with self._lock:
            self._records = [r for r in self._records if r.speaker_id != speaker_id]


class InMemorySpeakerLibrary(SpeakerLibraryPort):
    def __init__(self, speakers: Optional[list[KnownSpeaker]] = None):
        self._lock = threading.Lock()
        self._speakers: dict[uuid.UUID, KnownSpeaker] = {s.id: s for s in speakers or []}

    def get_speaker(self, speaker_id: uuid.UUID) -> Optional[KnownSpeaker]:
        with self._lock:
            return self._speakers.get(speaker_id)

    def list_speakers(self) -> list[KnownSpeaker]:
        with self._lock:
            return list(self._speakers.values())

    def save_speaker(self, speaker: KnownSpeaker) -> None:
        with self._lock:
            self._speakers[speaker.id] = speaker


class InMemorySessionStore(SessionStorePort):
    def __init__(self, sessions: Optional[list[SessionAudio]] = None):
        self._sessions = {s.session_id: s for s in sessions or []}

    def session_audio(self, session_id: uuid.UUID) -> Optional[SessionAudio]:
        return self._sessions.get(session_id)
