"""JsonSessionStore — resolves session audio from a JSON session index."""

import json
import logging
import os
import uuid
from typing import Optional

from pydantic import ValidationError

from domain.models import SessionAudio
from models import SessionIndexFile
from ports.session_store import SessionStorePort

logger = logging.getLogger(__name__)


class JsonSessionStore(SessionStorePort):
    def __init__(self, index_path: str = "/data/sessions.json", audio_dir: str = "/data/audio"):
        self._index_path = index_path
        self._audio_dir = audio_dir

    def _load(self) -> SessionIndexFile:
        try:
            with open(self._index_path) as f:
                return SessionIndexFile.model_validate(json.load(f))
        except (FileNotFoundError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Could not load session index: {e}")
            return SessionIndexFile()

    def _existing(self, file_name: Optional[str]) -> Optional[str]:
        if not file_name:
            return None
        path = os.path.join(self._audio_dir, file_name)
        if not os.path.exists(path):
            logger.warning(f"Session audio missing on disk: {path}")
            return None
        return path

    def session_audio(self, session_id: uuid.UUID) -> Optional[SessionAudio]:
        for record in self._load().sessions:
            if record.id == session_id:
                return SessionAudio(
                    session_id=record.id,
                    mic_path=self._existing(record.mic_audio_file_name),
                    system_path=self._existing(record.system_audio_file_name),
                    primary_path=self._existing(record.audio_file_name),
                    title=record.title,
                )
        return None
