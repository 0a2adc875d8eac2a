import os
import logging
from typing import Dict, Optional, Any
from pathlib import Path

from dotenv import load_dotenv

from domain.errors import ConfigurationError

logger = logging.getLogger(__name__)

load_dotenv()

DEFAULT_MODEL_ID_SHERPA = "/models/sherpa-onnx"
DEFAULT_CHUNK_DURATION = 500
DEFAULT_MATCH_THRESHOLD = 0.45
VALID_ENGINES = ("sherpa", "cloud")


class Config:
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super(Config, cls).__new__(cls)
            cls._instance._initialize()
        return cls._instance

    def _initialize(self):
        self.debug = os.environ.get("DEBUG", "0") == "1"
        self.engine = os.environ.get("ENGINE", "sherpa").lower()
        self.model_id = os.environ.get("MODEL_ID", "").strip() or DEFAULT_MODEL_ID_SHERPA
        self.device = os.environ.get("DEVICE", "cpu").lower()
        self.api_key = os.environ.get("API_KEY", "").strip() or None
        self.language = os.environ.get("LANGUAGE", "").strip() or None
        self.enable_diarization = os.environ.get("ENABLE_DIARIZATION", "true").lower() == "true"
        self.match_threshold = float(os.environ.get("MATCH_THRESHOLD", DEFAULT_MATCH_THRESHOLD))
        self.chunk_duration = int(os.environ.get("CHUNK_DURATION", DEFAULT_CHUNK_DURATION))
        self.chunk_workers = int(os.environ.get("CHUNK_WORKERS", "3"))
        self.source_workers = int(os.environ.get("SOURCE_WORKERS", "1"))
        self.hf_token = os.environ.get("HF_TOKEN") or os.environ.get("HUGGINGFACE_ACCESS_TOKEN")
        self.data_dir = os.environ.get("DATA_DIR", "/data")
        self.temp_dir = os.environ.get("TEMP_DIR", "/tmp/voice-core")
        Path(self.temp_dir).mkdir(parents=True, exist_ok=True)

    def get_hf_token(self) -> Optional[str]:
        return self.hf_token

    def data_path(self, name: str) -> str:
        return os.path.join(self.data_dir, name)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "debug": self.debug,
            "engine": self.engine,
            "model_id": self.model_id,
            "device": self.device,
            "has_api_key": self.api_key is not None,
            "language": self.language,
            "enable_diarization": self.enable_diarization,
            "match_threshold": self.match_threshold,
            "chunk_duration": self.chunk_duration,
            "chunk_workers": self.chunk_workers,
            "source_workers": self.source_workers,
            "has_hf_token": self.hf_token is not None,
            "data_dir": self.data_dir,
        }


def get_config() -> Config:
    return Config()


def create_ml_adapters(cfg: Config, cloud_provider=None):
    """Create transcription and diarization adapters based on ENGINE env var.

    Uses lazy imports so unused frameworks are never loaded. For ENGINE=cloud
    the host injects its single-file provider, which gets wrapped in the
    chunked uploader.
    """
    engine = cfg.engine

    diarization = None
    if cfg.enable_diarization:
        from adapters.pyannote.diarization import PyannoteDiarizationAdapter
        diarization = PyannoteDiarizationAdapter()

    if engine == "sherpa":
        from adapters.sherpa.transcription import SherpaTranscriptionAdapter
        transcription = SherpaTranscriptionAdapter(diarization=diarization)
    elif engine == "cloud":
        if cloud_provider is None:
            raise ConfigurationError("ENGINE=cloud requires a cloud transcription provider")
        from adapters.cloud.chunked import ChunkedTranscriptionAdapter
        transcription = ChunkedTranscriptionAdapter(
            cloud_provider,
            create_audio_adapter(cfg),
            api_key=cfg.api_key,
            chunk_duration=cfg.chunk_duration,
            max_workers=cfg.chunk_workers,
        )
    else:
        raise ConfigurationError(f"Unknown ENGINE: {engine!r}. Valid options: {', '.join(VALID_ENGINES)}")

    diar_name = type(diarization).__name__ if diarization else "disabled"
    logger.info(f"ML adapters: engine={engine}, transcription={type(transcription).__name__}, diarization={diar_name}")
    return transcription, diarization


def create_audio_adapter(cfg: Optional[Config] = None):
    """Create the audio processing adapter (always FFmpeg)."""
    from adapters.ffmpeg.audio import FFmpegAudioAdapter
    return FFmpegAudioAdapter(temp_dir=cfg.temp_dir if cfg else None)


def create_store_adapters(cfg: Config) -> dict:
    """Create the JSON-file stores under DATA_DIR."""
    from adapters.local.json_profile_store import JsonFileVoiceProfileStore
    from adapters.local.json_speaker_library import JsonFileSpeakerLibrary
    from adapters.local.json_session_store import JsonSessionStore
    from adapters.local.log_progress import LogProgressAdapter

    adapters = {
        "profiles": JsonFileVoiceProfileStore(cfg.data_path("voice-profiles.json")),
        "library": JsonFileSpeakerLibrary(cfg.data_path("speaker-library.json")),
        "sessions": JsonSessionStore(cfg.data_path("sessions.json"), cfg.data_path("audio")),
        "progress": LogProgressAdapter(),
    }
    logger.info(f"Store adapters: {', '.join(type(v).__name__ for v in adapters.values())}")
    return adapters
