from __future__ import annotations


class BatchscribeError(RuntimeError):
    """Base class for process-level failures."""


class InputRootNotFoundError(BatchscribeError):
    """Raised when the input root directory does not exist."""


class EngineLoadError(BatchscribeError):
    """Raised when the speech-recognition engine cannot be loaded."""


class EngineBusyError(BatchscribeError):
    """Raised when a job is submitted while another one is still in flight."""


class ReportWriteError(BatchscribeError):
    """Raised when the JSON report cannot be written."""


class PreconditionDeniedError(BatchscribeError):
    """Raised when the batch may not start (engine not ready or storage inaccessible)."""
