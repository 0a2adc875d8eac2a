"""JsonFileSpeakerLibrary — the known-speaker library as a JSON file."""

import json
import logging
import os
import threading
import uuid
from typing import Optional

from pydantic import ValidationError

from domain.models import KnownSpeaker
from mappers import dto_to_speaker, speaker_to_dto
from models import SpeakerLibraryFile
from ports.speaker_library import SpeakerLibraryPort

logger = logging.getLogger(__name__)


class JsonFileSpeakerLibrary(SpeakerLibraryPort):
    def __init__(self, path: str = "/data/speaker-library.json"):
        self._path = path
        self._lock = threading.RLock()

    def _load(self) -> SpeakerLibraryFile:
        try:
            with open(self._path) as f:
                return SpeakerLibraryFile.model_validate(json.load(f))
        except FileNotFoundError:
            return SpeakerLibraryFile()
        except (json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Could not load speaker library: {e}")
            return SpeakerLibraryFile()

    def _save(self, data: SpeakerLibraryFile) -> None:
        os.makedirs(os.path.dirname(self._path) or ".", exist_ok=True)
        tmp_path = f"{self._path}.tmp"
        with open(tmp_path, "w") as f:
            f.write(data.model_dump_json(indent=2))
        os.replace(tmp_path, self._path)

    def get_speaker(self, speaker_id: uuid.UUID) -> Optional[KnownSpeaker]:
        with self._lock:
            for dto in self._load().speakers:
                if dto.id == speaker_id:
                    return dto_to_speaker(dto)
        return None

    def list_speakers(self) -> list[KnownSpeaker]:
        with self._lock:
            return [dto_to_speaker(dto) for dto in self._load().speakers]

    def save_speaker(self, speaker: KnownSpeaker) -> None:
        with self._lock:
            data = self._load()
            for i, dto in enumerate(data.speakers):
                if dto.id == speaker.id:
                    data.speakers[i] = speaker_to_dto(speaker)
                    break
            else:
                data.speakers.append(speaker_to_dto(speaker))
            self._save(data)

    def mark_used(self, speaker_id: uuid.UUID) -> None:
        # Read-modify-write must not interleave with another save
        with self._lock:
            super().mark_used(speaker_id)
