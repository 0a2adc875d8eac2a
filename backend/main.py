"""Composition root: logging setup and wiring of the transcription engine."""

import os
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger(__name__)

if os.environ.get("DEBUG", "0") == "1":
    logging.getLogger().setLevel(logging.DEBUG)

from config import Config, create_ml_adapters, create_audio_adapter, create_store_adapters, get_config
from domain.cancellation import CancelToken
from domain.models import TranscriptionResult
from domain.progress import ProgressAggregator
from ports.profile_store import VoiceProfileStorePort
from ports.session_store import SessionStorePort
from ports.speaker_library import SpeakerLibraryPort
from use_cases.identify import SpeakerIdentifier
from use_cases.train import VoiceProfileTrainer
from use_cases.transcribe import TranscribeRequest, TranscriptionJobRunner, sources_for_session


@dataclass
class Engine:
    """Everything a host needs to transcribe sessions and manage voice profiles."""
    runner: TranscriptionJobRunner
    identifier: SpeakerIdentifier
    trainer: VoiceProfileTrainer
    progress: ProgressAggregator
    sessions: SessionStorePort
    profiles: VoiceProfileStorePort
    library: SpeakerLibraryPort
    config: Config

    def transcribe_session(self, session_id: uuid.UUID, cancel: Optional[CancelToken] = None) -> TranscriptionResult:
        sources = sources_for_session(self.sessions, session_id)
        self.progress.reset(sources)
        req = TranscribeRequest(
            sources=sources,
            language=self.config.language,
            diarize=self.config.enable_diarization,
            cancel=cancel,
        )
        return self.runner.execute(req, on_progress=self.progress)


def create_engine(cfg: Optional[Config] = None, cloud_provider=None, load_models: bool = True) -> Engine:
    cfg = cfg or get_config()
    transcription, diarization = create_ml_adapters(cfg, cloud_provider)
    audio = create_audio_adapter(cfg)
    stores = create_store_adapters(cfg)

    if load_models:
        if diarization is not None:
            diarization.load(access_token=cfg.get_hf_token(), device=cfg.device)
        if cfg.engine == "sherpa":
            transcription.load(model_id=cfg.model_id, device=cfg.device)

    identifier = SpeakerIdentifier(stores["profiles"], stores["library"], diarization, cfg.match_threshold)
    trainer = VoiceProfileTrainer(stores["profiles"], stores["library"], diarization)
    runner = TranscriptionJobRunner(transcription, audio, identifier, source_workers=cfg.source_workers)

    logger.info(f"Engine ready: {cfg.as_dict()}")
    return Engine(
        runner=runner,
        identifier=identifier,
        trainer=trainer,
        progress=ProgressAggregator(listener=stores["progress"]),
        sessions=stores["sessions"],
        profiles=stores["profiles"],
        library=stores["library"],
        config=cfg,
    )
