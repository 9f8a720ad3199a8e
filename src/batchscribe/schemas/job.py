from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class AudioJob:
    path: Path
    language: str

    @property
    def filename(self) -> str:
        return self.path.name


@dataclass(frozen=True)
class TranscriptionOutcome:
    filename: str
    language: str
    transcript: str
    elapsed_ms: int
    failed: bool = False
    failure_reason: str | None = None
