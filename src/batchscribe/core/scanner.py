from __future__ import annotations

import logging
from collections.abc import Sequence
from pathlib import Path

from batchscribe.core.queue import JobQueue
from batchscribe.errors import InputRootNotFoundError
from batchscribe.schemas.job import AudioJob

logger = logging.getLogger(__name__)

AUDIO_EXTENSIONS: frozenset[str] = frozenset({".wav", ".mp3", ".m4a", ".flac", ".ogg"})


def is_audio_file(path: Path) -> bool:
    return path.suffix.lower() in AUDIO_EXTENSIONS


def find_audio_files(directory: Path, *, sort_entries: bool = True) -> list[Path]:
    """Recursively collect audio files under ``directory``.

    With ``sort_entries`` disabled the order is whatever the filesystem lists.
    """
    try:
        entries = list(directory.iterdir())
    except OSError as exc:
        logger.warning("Cannot list directory %s: %s", directory, exc)
        return []
    if sort_entries:
        entries.sort(key=lambda entry: entry.name)
    found: list[Path] = []
    for entry in entries:
        if entry.is_file():
            if is_audio_file(entry):
                found.append(entry)
        elif entry.is_dir():
            found.extend(find_audio_files(entry, sort_entries=sort_entries))
    return found


def scan_language_dirs(
    root: Path,
    language_dirs: Sequence[str],
    *,
    sort_entries: bool = True,
) -> JobQueue:
    if not root.exists() or not root.is_dir():
        raise InputRootNotFoundError(f"Audio directory not found: {root}")

    queue = JobQueue()
    for language in language_dirs:
        language_path = root / language
        if not language_path.is_dir():
            logger.warning("Language directory not found: %s", language_path)
            continue
        logger.debug("Scanning directory: %s", language_path)
        for audio_path in find_audio_files(language_path, sort_entries=sort_entries):
            queue.push(AudioJob(path=audio_path, language=language))
            logger.debug("Queued %s (language: %s)", audio_path.name, language)

    if queue:
        logger.info("Found %d audio files to process", len(queue))
    else:
        logger.warning("No audio files found under %s", root)
    return queue.seal()
