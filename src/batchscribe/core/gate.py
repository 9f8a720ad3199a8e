from __future__ import annotations

import logging
import os
import threading
from pathlib import Path
from typing import Protocol

from batchscribe.infra.storage import is_writable_directory

logger = logging.getLogger(__name__)


class PreconditionGate(Protocol):
    def wait(self, timeout_seconds: float | None = None) -> bool:
        """Block until the batch may start; False when denied or not resolved in time."""
        ...


class OpenGate:
    def wait(self, timeout_seconds: float | None = None) -> bool:
        return True


class ReadinessGate:
    """Opens once the engine is marked ready and storage is accessible."""

    def __init__(self, *, input_root: Path, report_dir: Path) -> None:
        self.input_root = input_root
        self.report_dir = report_dir
        self.denied_reason: str | None = None
        self._engine_ready = threading.Event()

    def mark_engine_ready(self) -> None:
        self._engine_ready.set()

    def check_access(self) -> str | None:
        # A missing root is reported by the scanner, not here.
        if self.input_root.exists() and not os.access(self.input_root, os.R_OK | os.X_OK):
            return f"Input directory is not readable: {self.input_root}"
        if not is_writable_directory(self.report_dir):
            return f"Report directory is not writable: {self.report_dir}"
        return None

    def wait(self, timeout_seconds: float | None = None) -> bool:
        if not self._engine_ready.wait(timeout_seconds):
            self.denied_reason = "Engine did not become ready in time."
            logger.error(self.denied_reason)
            return False
        self.denied_reason = self.check_access()
        if self.denied_reason is not None:
            logger.error(self.denied_reason)
            return False
        return True
