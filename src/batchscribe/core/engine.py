from __future__ import annotations

import io
import logging
import re
import shutil
import subprocess
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Protocol

import numpy as np
import soundfile as sf

from batchscribe.errors import EngineBusyError, EngineLoadError
from batchscribe.infra.device import resolve_torch_device
from batchscribe.infra.model_store import default_model_id, provision_model
from batchscribe.schemas.events import EngineEvent

logger = logging.getLogger(__name__)

WHISPER_SAMPLE_RATE = 16_000
WHISPER_MAX_NEW_TOKENS = 224
# Whisper timestamp tokens advance in 20 ms steps.
TIMESTAMP_STEP_SECONDS = 0.02

_SPECIAL_TOKEN_PATTERN = re.compile(r"^<\|.*\|>$")
_TIMESTAMP_TOKEN_PATTERN = re.compile(r"^<\|(\d+\.\d+)\|>$")
_NAMED_MARKERS = {
    "<|startoftranscript|>": "[_SOT_]",
    "<|endoftext|>": "[_EOT_]",
    "<|startofprev|>": "[_PREV_]",
    "<|notimestamps|>": "[_NOT_]",
}
EOT_TOKEN = "<|endoftext|>"

EngineEventCallback = Callable[[EngineEvent], None]
TranscribeFn = Callable[[Path], str]


class EngineAdapter(Protocol):
    def submit(self, path: Path, on_event: EngineEventCallback) -> None:
        """Start one job; events for it are delivered to ``on_event``."""
        ...

    def wait_idle(self, timeout_seconds: float) -> bool:
        """Block until no job is in flight; False if still busy after the timeout."""
        ...


class Tokenizer(Protocol):
    def convert_ids_to_tokens(self, ids: list[int]) -> list[str]:
        ...

    def convert_tokens_to_string(self, tokens: list[str]) -> str:
        ...


def _render_special(token: str, token_id: int) -> str:
    named = _NAMED_MARKERS.get(token)
    if named is not None:
        return named
    timestamp = _TIMESTAMP_TOKEN_PATTERN.match(token)
    if timestamp:
        step = int(round(float(timestamp.group(1)) / TIMESTAMP_STEP_SECONDS))
        return "[_BEG_]" if step == 0 else f"[_TT_{step}]"
    return f"[_extra_token_{token_id}]"


def render_tokens(token_ids: Sequence[int], tokenizer: Tokenizer) -> str:
    """Render generated ids as text, keeping control tokens as bracketed markers.

    Output stops after the first end-of-transcript token.
    """
    ids = [int(token_id) for token_id in token_ids]
    tokens = tokenizer.convert_ids_to_tokens(ids)
    parts: list[str] = []
    pending: list[str] = []
    for token_id, token in zip(ids, tokens):
        if token is None:
            continue
        if not _SPECIAL_TOKEN_PATTERN.match(token):
            pending.append(token)
            continue
        if pending:
            parts.append(tokenizer.convert_tokens_to_string(pending))
            pending = []
        parts.append(_render_special(token, token_id))
        if token == EOT_TOKEN:
            break
    if pending:
        parts.append(tokenizer.convert_tokens_to_string(pending))
    return "".join(parts)


class WhisperEngine:
    """Asynchronous job runner around a blocking ``transcribe`` function.

    Each submission runs on its own worker thread and reports its lifecycle
    through the callback given to ``submit``. Only one job may be in flight.
    """

    def __init__(self, transcribe: TranscribeFn) -> None:
        self._transcribe = transcribe
        self._lock = threading.Lock()
        self._idle = threading.Event()
        self._idle.set()

    @property
    def busy(self) -> bool:
        return not self._idle.is_set()

    def wait_idle(self, timeout_seconds: float) -> bool:
        return self._idle.wait(timeout_seconds)

    def submit(self, path: Path, on_event: EngineEventCallback) -> None:
        with self._lock:
            if not self._idle.is_set():
                raise EngineBusyError(f"Engine is still processing a job; cannot start {path}.")
            self._idle.clear()
        worker = threading.Thread(
            target=self._run,
            args=(Path(path), on_event),
            name="whisper-engine",
            daemon=True,
        )
        worker.start()

    def _run(self, path: Path, on_event: EngineEventCallback) -> None:
        if not path.is_file():
            logger.debug("File not found: %s", path)
            self._idle.set()
            _deliver(on_event, EngineEvent.not_found())
            return

        _deliver(on_event, EngineEvent.started())
        text: str | None = None
        try:
            text = self._transcribe(path)
        except Exception:
            logger.exception("Transcription failed for %s", path)
        if text is not None:
            _deliver(on_event, EngineEvent.result(text))
        # Idle before the terminal event so the next submit is accepted.
        self._idle.set()
        _deliver(on_event, EngineEvent.done())


def _deliver(on_event: EngineEventCallback, event: EngineEvent) -> None:
    logger.debug("Engine event: %s", event.kind.value)
    try:
        on_event(event)
    except Exception:
        logger.exception("Engine event listener raised on %s", event.kind.value)


@dataclass(frozen=True)
class _WhisperRuntime:
    model: Any
    processor: Any
    device: str


@lru_cache(maxsize=2)
def _load_runtime(model_dir: str, vocab_dir: str, device: str) -> _WhisperRuntime:
    from transformers import WhisperForConditionalGeneration, WhisperProcessor

    model = WhisperForConditionalGeneration.from_pretrained(model_dir)
    model.eval()
    if device != "cpu":
        model.to(device)
    processor = WhisperProcessor.from_pretrained(vocab_dir)
    return _WhisperRuntime(model=model, processor=processor, device=device)


def _ffmpeg_command(path: Path) -> list[str]:
    ffmpeg = shutil.which("ffmpeg")
    if ffmpeg is None:
        raise RuntimeError("ffmpeg not found in PATH.")
    # Mono float32 PCM at the model rate, streamed on stdout.
    return [
        ffmpeg,
        "-nostdin",
        "-hide_banner",
        "-loglevel",
        "error",
        "-i",
        str(path),
        "-vn",
        "-ac",
        "1",
        "-ar",
        str(WHISPER_SAMPLE_RATE),
        "-f",
        "f32le",
        "pipe:1",
    ]


def load_samples(path: Path) -> np.ndarray:
    """Decode any ffmpeg-readable file to 16 kHz mono float32 samples."""
    proc = subprocess.run(_ffmpeg_command(path), capture_output=True, check=False)
    if proc.returncode != 0:
        detail = proc.stderr.decode("utf-8", errors="replace").strip() or "unknown ffmpeg error"
        raise RuntimeError(f"Failed to decode {path}: {detail}")
    if not proc.stdout:
        return np.zeros(0, dtype=np.float32)
    samples, _ = sf.read(
        io.BytesIO(proc.stdout),
        format="RAW",
        subtype="FLOAT",
        samplerate=WHISPER_SAMPLE_RATE,
        channels=1,
        endian="LITTLE",
        dtype="float32",
    )
    return np.asarray(samples, dtype=np.float32)


def transcribe_with_runtime(runtime: _WhisperRuntime, path: Path) -> str:
    import torch

    samples = load_samples(path)
    # The feature extractor pads or truncates to Whisper's 30 s window.
    features = runtime.processor(
        samples,
        sampling_rate=WHISPER_SAMPLE_RATE,
        return_tensors="pt",
    ).input_features
    features = features.to(runtime.model.device, dtype=runtime.model.dtype)
    with torch.no_grad():
        generated = runtime.model.generate(
            features,
            max_new_tokens=WHISPER_MAX_NEW_TOKENS,
        )
    return render_tokens(generated[0].tolist(), runtime.processor.tokenizer)


def load_engine(
    model_path: str | Path | None,
    vocab_path: str | Path | None,
    multilingual: bool,
    *,
    cache_dir: Path,
    device: str = "auto",
) -> WhisperEngine:
    """Load a Whisper checkpoint and wrap it as an asynchronous engine.

    ``model_path`` may be a local directory or a Hugging Face repo id; when
    omitted, ``multilingual`` picks the default checkpoint. ``vocab_path``
    points at a separate tokenizer/processor directory and defaults to the
    model directory.
    """
    model = model_path or default_model_id(multilingual)
    try:
        model_dir = provision_model(model, cache_dir)
        vocab_dir = provision_model(vocab_path, cache_dir) if vocab_path else model_dir
        runtime = _load_runtime(str(model_dir), str(vocab_dir), resolve_torch_device(device))
    except Exception as exc:
        raise EngineLoadError(f"Failed to load engine from {model}: {exc}") from exc

    is_multilingual = getattr(runtime.model.config, "vocab_size", 0) >= 51865
    if is_multilingual != multilingual:
        logger.warning(
            "Model %s is %s but %s mode was requested",
            model,
            "multilingual" if is_multilingual else "English-only",
            "multilingual" if multilingual else "English-only",
        )
    logger.info("Engine loaded: model=%s device=%s", model, runtime.device)
    return WhisperEngine(lambda path: transcribe_with_runtime(runtime, path))
