from __future__ import annotations

import os
import sys
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from batchscribe.core.driver import (
    DEFAULT_COOLDOWN_SECONDS,
    DEFAULT_IDLE_GRACE_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
    BatchPolicy,
)
from batchscribe.core.report import REPORT_FILENAME

PYTHON_POLICY_CHAIN: tuple[tuple[int, int], ...] = ((3, 13), (3, 12), (3, 11), (3, 10))
SUPPORTED_DEVICES = {"auto", "cpu", "cuda", "mps"}
DEFAULT_LANGUAGE_DIRS: tuple[str, ...] = ("english", "french", "arabic", "farsi")
DEFAULT_DATA_DIR = Path.home() / ".local" / "share" / "batchscribe"


@dataclass(frozen=True)
class PythonPolicyEvaluation:
    current: tuple[int, int]
    status: str
    message: str


@dataclass(frozen=True)
class AppConfig:
    device: str
    hf_cache: Path
    data_dir: Path
    model_id: str | None
    vocab_path: Path | None
    multilingual: bool
    language_dirs: tuple[str, ...]
    timeout_seconds: float
    cooldown_seconds: float
    startup_delay_seconds: float
    idle_grace_seconds: float
    sort_entries: bool
    python_policy: PythonPolicyEvaluation

    @property
    def report_path(self) -> Path:
        return self.data_dir / REPORT_FILENAME

    def batch_policy(self) -> BatchPolicy:
        return BatchPolicy(
            timeout_seconds=self.timeout_seconds,
            cooldown_seconds=self.cooldown_seconds,
            startup_delay_seconds=self.startup_delay_seconds,
            idle_grace_seconds=self.idle_grace_seconds,
        )


def evaluate_python_policy(version: tuple[int, int] | None = None) -> PythonPolicyEvaluation:
    current = version or (sys.version_info.major, sys.version_info.minor)
    label = f"{current[0]}.{current[1]}"
    highest = PYTHON_POLICY_CHAIN[0]
    lowest = PYTHON_POLICY_CHAIN[-1]
    if current >= highest:
        return PythonPolicyEvaluation(
            current=current,
            status="preferred",
            message=f"Python {label} is on or above preferred target {highest[0]}.{highest[1]}.",
        )
    if current < lowest:
        return PythonPolicyEvaluation(
            current=current,
            status="unsupported",
            message=f"Python {label} is below minimum {lowest[0]}.{lowest[1]}. Upgrade to 3.10+.",
        )
    return PythonPolicyEvaluation(
        current=current,
        status="fallback",
        message=f"Python {label} is supported (preferred: {highest[0]}.{highest[1]}).",
    )


def resolve_hf_cache_dir(custom_path: Path | None = None) -> Path:
    if custom_path is not None:
        return custom_path.expanduser().resolve()
    env_path = os.getenv("HF_HOME") or os.getenv("TRANSFORMERS_CACHE")
    if env_path:
        return Path(env_path).expanduser().resolve()
    return (Path.home() / ".cache" / "huggingface").resolve()


def resolve_data_dir(custom_path: Path | None = None) -> Path:
    if custom_path is not None:
        return custom_path.expanduser().resolve()
    env_path = os.getenv("BATCHSCRIBE_DATA_DIR")
    if env_path:
        return Path(env_path).expanduser().resolve()
    return DEFAULT_DATA_DIR.resolve()


def resolve_model_id(value: str | None = None) -> str | None:
    model = value or os.getenv("BATCHSCRIBE_MODEL")
    return model.strip() if model and model.strip() else None


def normalize_device(value: str) -> str:
    device = value.strip().lower()
    if device not in SUPPORTED_DEVICES:
        raise ValueError(
            f"Unsupported device '{value}'. Allowed: {', '.join(sorted(SUPPORTED_DEVICES))}"
        )
    return device


def normalize_language_dirs(values: Sequence[str]) -> tuple[str, ...]:
    labels: list[str] = []
    for value in values:
        label = value.strip()
        if not label:
            raise ValueError("Language directory names must not be empty.")
        if "/" in label or "\\" in label or label in {".", ".."}:
            raise ValueError(f"Language directory must be a plain directory name, got '{value}'.")
        if label not in labels:
            labels.append(label)
    if not labels:
        raise ValueError("At least one language directory is required.")
    return tuple(labels)


def normalize_seconds(value: float, *, name: str, allow_zero: bool) -> float:
    seconds = float(value)
    if seconds < 0 or (seconds == 0 and not allow_zero):
        bound = ">= 0" if allow_zero else "> 0"
        raise ValueError(f"{name} must be {bound}, got {value}")
    return seconds


def build_app_config(
    *,
    device: str = "auto",
    hf_cache: Path | None = None,
    data_dir: Path | None = None,
    model_id: str | None = None,
    vocab_path: Path | None = None,
    multilingual: bool = True,
    language_dirs: Sequence[str] = DEFAULT_LANGUAGE_DIRS,
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
    startup_delay_seconds: float = 0.0,
    idle_grace_seconds: float = DEFAULT_IDLE_GRACE_SECONDS,
    sort_entries: bool = True,
) -> AppConfig:
    return AppConfig(
        device=normalize_device(device),
        hf_cache=resolve_hf_cache_dir(hf_cache),
        data_dir=resolve_data_dir(data_dir),
        model_id=resolve_model_id(model_id),
        vocab_path=vocab_path.expanduser().resolve() if vocab_path else None,
        multilingual=multilingual,
        language_dirs=normalize_language_dirs(language_dirs),
        timeout_seconds=normalize_seconds(timeout_seconds, name="timeout", allow_zero=False),
        cooldown_seconds=normalize_seconds(cooldown_seconds, name="cooldown", allow_zero=True),
        startup_delay_seconds=normalize_seconds(
            startup_delay_seconds, name="startup_delay", allow_zero=True
        ),
        idle_grace_seconds=normalize_seconds(
            idle_grace_seconds, name="idle_grace", allow_zero=True
        ),
        sort_entries=sort_entries,
        python_policy=evaluate_python_policy(),
    )
