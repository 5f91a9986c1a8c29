# cardscan/core/cancel.py
from __future__ import annotations
import threading
from typing import Optional


class DetectionCancelled(Exception):
    """Raised inside a detector once its cancel token has been set."""


class CancelToken:
    """
    Cooperative cancellation flag shared between the orchestrator and its detectors.
    Detectors poll it between grid rows / scan lines.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise DetectionCancelled()


def check(token: Optional[CancelToken]) -> None:
    if token is not None:
        token.raise_if_cancelled()
