from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator, Sequence
from pathlib import Path
from typing import Any

from batchscribe.errors import ReportWriteError
from batchscribe.infra.storage import render_json, write_json
from batchscribe.schemas.job import TranscriptionOutcome

logger = logging.getLogger(__name__)

REPORT_FILENAME = "transcriptions.json"


class ResultAggregator:
    """Append-only record of outcomes in completion order."""

    def __init__(self) -> None:
        self._outcomes: list[TranscriptionOutcome] = []

    def append(self, outcome: TranscriptionOutcome) -> None:
        self._outcomes.append(outcome)

    @property
    def outcomes(self) -> tuple[TranscriptionOutcome, ...]:
        return tuple(self._outcomes)

    @property
    def failed_count(self) -> int:
        return sum(1 for outcome in self._outcomes if outcome.failed)

    def __len__(self) -> int:
        return len(self._outcomes)

    def __iter__(self) -> Iterator[TranscriptionOutcome]:
        return iter(self.outcomes)


def outcome_to_entry(outcome: TranscriptionOutcome) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "filename": outcome.filename,
        "language": outcome.language,
        "transcription": outcome.transcript,
        "timeMs": outcome.elapsed_ms,
    }
    if outcome.failed:
        entry["failed"] = True
    return entry


def build_report(outcomes: Iterable[TranscriptionOutcome]) -> list[dict[str, Any]]:
    return [outcome_to_entry(outcome) for outcome in outcomes]


def render_report(outcomes: Iterable[TranscriptionOutcome]) -> str:
    return render_json(build_report(outcomes))


def write_report(outcomes: Sequence[TranscriptionOutcome], path: Path) -> Path:
    try:
        write_json(path, build_report(outcomes))
    except OSError as exc:
        raise ReportWriteError(f"Failed to write report to {path}: {exc}") from exc
    logger.info("Report saved to %s (%d entries)", path, len(outcomes))
    return path
