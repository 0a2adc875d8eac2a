"""Cooperative cancellation shared between the caller and provider calls."""

import threading

from domain.errors import TranscriptionCancelled


class CancelToken:
    """Set once by the caller; checked by the runner and providers at chunk
    and source boundaries. An in-flight request or decode is not aborted."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise TranscriptionCancelled()
