"""SessionStorePort — where a session's audio files live."""

import uuid
from abc import ABC, abstractmethod
from typing import Optional

from domain.models import SessionAudio


class SessionStorePort(ABC):
    @abstractmethod
    def session_audio(self, session_id: uuid.UUID) -> Optional[SessionAudio]:
        """Audio file locations for a session, or None if the session is unknown."""
