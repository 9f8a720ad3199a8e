from __future__ import annotations

import threading
from enum import Enum


class BridgeState(str, Enum):
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"


class CompletionBridge:
    """One-shot hand-off between the engine's notification thread and the driver.

    A fresh bridge is created per submitted job and dropped once the driver has
    waited on it. Signals arriving after that land on an object nobody reads.
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    @classmethod
    def create(cls) -> CompletionBridge:
        return cls()

    @property
    def signaled(self) -> bool:
        return self._event.is_set()

    def signal(self) -> None:
        self._event.set()

    def await_with_timeout(self, timeout_seconds: float) -> BridgeState:
        if self._event.wait(timeout_seconds):
            return BridgeState.COMPLETED
        return BridgeState.TIMED_OUT
