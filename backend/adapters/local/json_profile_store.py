"""JsonFileVoiceProfileStore — voice profiles and training records in one JSON file."""

import logging
import os
import tempfile
import threading
import uuid
from typing import Optional

from pydantic import ValidationError

from domain.models import VoiceProfile, VoiceTrainingRecord
from mappers import dto_to_profile, dto_to_record, profile_to_dto, record_to_dto
from models import VoiceProfileFile
from ports.profile_store import VoiceProfileStorePort

logger = logging.getLogger(__name__)


class JsonFileVoiceProfileStore(VoiceProfileStorePort):
    def __init__(self, path: str = "/data/voice-profiles.json"):
        self._path = path
        self._lock = threading.RLock()

    def _load(self) -> VoiceProfileFile:
        try:
            with open(self._path) as f:
                return VoiceProfileFile.model_validate_json(f.read())
        except FileNotFoundError:
            return VoiceProfileFile()
        except (ValidationError, ValueError) as e:
            logger.warning(f"Could not load voice profiles file: {e}")
            return VoiceProfileFile()

    def _save(self, data: VoiceProfileFile) -> None:
        directory = os.path.dirname(self._path) or "."
        os.makedirs(directory, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(data.model_dump_json(indent=2))
            os.replace(tmp_path, self._path)
        except OSError:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise

    def get_profile(self, speaker_id: uuid.UUID) -> Optional[VoiceProfile]:
        with self._lock:
            for dto in self._load().profiles:
                if dto.speaker_id == speaker_id:
                    return dto_to_profile(dto)
        return None

    def save_profile(self, profile: VoiceProfile) -> None:
        with self._lock:
            data = self._load()
            data.profiles = [p for p in data.profiles if p.speaker_id != profile.speaker_id]
            data.profiles.append(profile_to_dto(profile))
            self._save(data)
        logger.debug(f"Saved voice profile {profile.speaker_id} ({profile.sample_count} samples)")

    def delete_profile(self, speaker_id: uuid.UUID) -> None:
        with self._lock:
            data = self._load()
            remaining = [p for p in data.profiles if p.speaker_id != speaker_id]
            if len(remaining) != len(data.profiles):
                data.profiles = remaining
                self._save(data)

    def list_profiles(self) -> list[VoiceProfile]:
        with self._lock:
            return [dto_to_profile(dto) for dto in self._load().profiles]

    def append_training_record(self, record: VoiceTrainingRecord) -> None:
        with self._lock:
            data = self._load()
            data.training_records.append(record_to_dto(record))
            self._save(data)

    def training_records(self, speaker_id: uuid.UUID) -> list[VoiceTrainingRecord]:
        with self._lock:
            records = [dto_to_record(r) for r in self._load().training_records if r.speaker_id == speaker_id]
        return sorted(records, key=lambda r: r.trained_at)

    def delete_training_records(self, speaker_id: uuid.UUID) -> None:
        with self._lock:
            data = self._load()
            data.training_records = [r for r in data.training_records if r.speaker_id != speaker_id]
            self._save(data)
