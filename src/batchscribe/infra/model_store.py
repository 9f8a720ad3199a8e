from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_MULTILINGUAL_MODEL = "openai/whisper-tiny"
DEFAULT_ENGLISH_MODEL = "openai/whisper-tiny.en"
MODEL_REQUIRED_FILES = ("config.json",)
MODEL_ALLOW_PATTERNS = ["*.json", "*.safetensors", "*.txt", "*.model"]


def default_model_id(multilingual: bool) -> str:
    return DEFAULT_MULTILINGUAL_MODEL if multilingual else DEFAULT_ENGLISH_MODEL


def is_model_dir_ready(model_dir: Path) -> bool:
    return all((model_dir / filename).exists() for filename in MODEL_REQUIRED_FILES)


def provision_model(model: str | Path, cache_dir: Path) -> Path:
    """Return a local directory holding ``model``.

    Local paths are used as-is. Anything else is treated as a Hugging Face
    repo id and fetched into ``cache_dir`` once; later runs hit the cache.
    """
    candidate = Path(model).expanduser()
    if candidate.exists():
        model_dir = candidate.resolve()
        if not is_model_dir_ready(model_dir):
            raise RuntimeError(f"Model files not found under {model_dir}.")
        return model_dir

    from huggingface_hub import snapshot_download

    logger.info("Provisioning model %s into %s", model, cache_dir)
    snapshot_dir = Path(
        snapshot_download(
            repo_id=str(model),
            cache_dir=str(cache_dir),
            allow_patterns=MODEL_ALLOW_PATTERNS,
        )
    )
    if not is_model_dir_ready(snapshot_dir):
        raise RuntimeError(f"Model files not found in snapshot of {model} at {snapshot_dir}.")
    return snapshot_dir
