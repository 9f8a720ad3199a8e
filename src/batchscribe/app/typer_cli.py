from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)

from batchscribe.core.driver import (
    DEFAULT_COOLDOWN_SECONDS,
    DEFAULT_IDLE_GRACE_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
    BatchDriver,
    run_in_background,
)
from batchscribe.core.engine import load_engine
from batchscribe.core.gate import ReadinessGate
from batchscribe.core.sanitize import sanitize
from batchscribe.core.scanner import scan_language_dirs
from batchscribe.errors import (
    EngineLoadError,
    InputRootNotFoundError,
    PreconditionDeniedError,
)
from batchscribe.infra.config import AppConfig, DEFAULT_LANGUAGE_DIRS, build_app_config
from batchscribe.infra.doctor import collect_doctor_report, render_doctor_report
from batchscribe.infra.log import configure_logging
from batchscribe.schemas.job import TranscriptionOutcome

EXIT_SETUP_FAILED = 3

app = typer.Typer(
    name="batchscribe",
    add_completion=False,
    help="Batch speech-to-text over language-labelled audio directories.",
)

LANGUAGE_DIR_HELP = (
    "Language subdirectory to scan; repeat for several "
    f"(default: {', '.join(DEFAULT_LANGUAGE_DIRS)})."
)


def _build_config(**kwargs: object) -> AppConfig:
    language_dirs = kwargs.pop("language_dirs", None) or DEFAULT_LANGUAGE_DIRS
    try:
        return build_app_config(language_dirs=language_dirs, **kwargs)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


def _require_root(root: Path) -> None:
    if not root.exists() or not root.is_dir():
        raise typer.BadParameter(f"Input directory not found: {root}", param_hint="ROOT")


@app.command("run")
def run_command(
    root: Path = typer.Argument(
        ..., help="Root directory holding one subdirectory per language."
    ),
    language_dirs: list[str] | None = typer.Option(
        None, "--language-dir", "-l", help=LANGUAGE_DIR_HELP
    ),
    report: Path | None = typer.Option(
        None,
        "--report",
        "-o",
        help="Report path (default: <data dir>/transcriptions.json).",
    ),
    model: str | None = typer.Option(
        None,
        "--model",
        help="Whisper model directory or Hugging Face id (default: openai/whisper-tiny).",
    ),
    vocab: Path | None = typer.Option(
        None, "--vocab", help="Separate tokenizer/processor directory."
    ),
    multilingual: bool = typer.Option(
        True, "--multilingual/--english-only", help="Use the multilingual checkpoint."
    ),
    timeout: float = typer.Option(
        DEFAULT_TIMEOUT_SECONDS, "--timeout", help="Seconds to wait for each file."
    ),
    cooldown: float = typer.Option(
        DEFAULT_COOLDOWN_SECONDS, "--cooldown", help="Pause between files in seconds."
    ),
    startup_delay: float = typer.Option(
        0.0, "--startup-delay", help="Settle time after the engine loads, in seconds."
    ),
    idle_grace: float = typer.Option(
        DEFAULT_IDLE_GRACE_SECONDS,
        "--idle-grace",
        help="How long to wait for an engine still busy after a timeout.",
    ),
    sort_entries: bool = typer.Option(
        True, "--sort/--no-sort", help="Sort directory entries by name while scanning."
    ),
    device: str = typer.Option("auto", "--device", help="auto|cpu|cuda|mps"),
    hf_cache: Path | None = typer.Option(
        None, "--hf-cache", help="Custom Hugging Face cache path."
    ),
    data_dir: Path | None = typer.Option(
        None, "--data-dir", help="Private storage directory for reports."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log engine events."),
    log_file: Path | None = typer.Option(
        None, "--log-file", help="Also write a plain-text run log here."
    ),
) -> None:
    """Transcribe every audio file under ROOT and write a JSON report."""
    config = _build_config(
        language_dirs=language_dirs,
        device=device,
        hf_cache=hf_cache,
        data_dir=data_dir,
        model_id=model,
        vocab_path=vocab,
        multilingual=multilingual,
        timeout_seconds=timeout,
        cooldown_seconds=cooldown,
        startup_delay_seconds=startup_delay,
        idle_grace_seconds=idle_grace,
        sort_entries=sort_entries,
    )
    console = Console(stderr=True)
    configure_logging(verbose=verbose, log_file=log_file, console=console)
    _require_root(root)

    report_path = report or config.report_path
    gate = ReadinessGate(input_root=root, report_dir=report_path.parent)
    try:
        with console.status("Loading speech-recognition engine..."):
            engine = load_engine(
                config.model_id,
                config.vocab_path,
                config.multilingual,
                cache_dir=config.hf_cache,
                device=config.device,
            )
    except EngineLoadError as exc:
        typer.echo(f"[failed] {exc}")
        raise typer.Exit(code=EXIT_SETUP_FAILED) from exc
    gate.mark_engine_ready()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TimeElapsedColumn(),
        console=console,
        transient=False,
    ) as progress:
        task_id = progress.add_task(description="Scanning...", total=None)

        def _on_queued(total: int) -> None:
            progress.update(task_id, total=total, description="Transcribing...")

        def _on_outcome(outcome: TranscriptionOutcome) -> None:
            progress.update(task_id, advance=1)

        driver = BatchDriver(
            engine,
            root=root,
            language_dirs=config.language_dirs,
            report_path=report_path,
            policy=config.batch_policy(),
            gate=gate,
            sort_entries=config.sort_entries,
            on_queued=_on_queued,
            on_outcome=_on_outcome,
        )
        try:
            result = run_in_background(driver).result()
        except InputRootNotFoundError as exc:
            raise typer.BadParameter(str(exc), param_hint="ROOT") from exc
        except PreconditionDeniedError as exc:
            typer.echo(f"[failed] {exc}")
            raise typer.Exit(code=EXIT_SETUP_FAILED) from exc

    typer.echo(
        f"[{result.status}] {result.message}\n"
        f"- files: {result.total}\n"
        f"- succeeded: {result.succeeded}\n"
        f"- failed: {result.failed}\n"
        f"- report: {result.report_path}"
    )
    if result.exit_code:
        raise typer.Exit(code=result.exit_code)


@app.command("scan")
def scan_command(
    root: Path = typer.Argument(
        ..., help="Root directory holding one subdirectory per language."
    ),
    language_dirs: list[str] | None = typer.Option(
        None, "--language-dir", "-l", help=LANGUAGE_DIR_HELP
    ),
    sort_entries: bool = typer.Option(
        True, "--sort/--no-sort", help="Sort directory entries by name while scanning."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log scanned directories."),
) -> None:
    """List the jobs a run would queue, without loading the engine."""
    config = _build_config(language_dirs=language_dirs, sort_entries=sort_entries)
    configure_logging(verbose=verbose)
    try:
        queue = scan_language_dirs(
            root, config.language_dirs, sort_entries=config.sort_entries
        )
    except InputRootNotFoundError as exc:
        raise typer.BadParameter(str(exc), param_hint="ROOT") from exc
    for job in queue:
        typer.echo(f"{job.language}\t{job.path}")
    typer.echo(f"[done] {len(queue)} files queued.")


@app.command("clean")
def clean_command(
    text: str = typer.Argument(..., help="Raw engine output to sanitize."),
) -> None:
    """Strip engine control markers from a transcript."""
    typer.echo(sanitize(text) or "")


@app.command("doctor")
def doctor_command(
    device: str = typer.Option("auto", "--device", help="auto|cpu|cuda|mps"),
    hf_cache: Path | None = typer.Option(
        None, "--hf-cache", help="Custom Hugging Face cache path."
    ),
    data_dir: Path | None = typer.Option(
        None, "--data-dir", help="Private storage directory for reports."
    ),
) -> None:
    """Check runtime readiness (Python/ffmpeg/cache/storage/device)."""
    config = _build_config(device=device, hf_cache=hf_cache, data_dir=data_dir)
    report = collect_doctor_report(config)
    typer.echo(render_doctor_report(report))
    if not report.ok:
        raise typer.Exit(code=1)


def run() -> None:
    """Console-script entrypoint."""
    app()
