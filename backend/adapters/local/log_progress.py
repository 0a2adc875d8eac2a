"""LogProgressAdapter — reports accepted progress updates via logging."""

import logging
from typing import Optional

from domain.models import LocalModelProgress, TranscriptionProgressInfo, TranscriptSource
from ports.progress import ProgressPort

logger = logging.getLogger(__name__)


class LogProgressAdapter(ProgressPort):
    def report(
        self,
        source: TranscriptSource,
        info: Optional[TranscriptionProgressInfo],
        local: Optional[LocalModelProgress] = None,
    ) -> None:
        msg = f"[{source.value}]"
        if info is not None:
            msg += f" {info.phase.value}"
            if info.overall_upload_progress > 0:
                msg += f" {info.overall_upload_progress:.0%}"
            if info.total_chunks:
                msg += f" ({info.completed_chunks}/{info.total_chunks} chunks)"
        if local is not None:
            msg += f" model={local.phase.value} {local.progress:.0%}"
            if local.status:
                msg += f": {local.status}"
        logger.info(msg)
