from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from batchscribe.core.bridge import BridgeState, CompletionBridge
from batchscribe.core.engine import EngineAdapter
from batchscribe.core.gate import OpenGate, PreconditionGate
from batchscribe.core.queue import JobQueue
from batchscribe.core.report import ResultAggregator, write_report
from batchscribe.core.sanitize import sanitize
from batchscribe.core.scanner import scan_language_dirs
from batchscribe.errors import EngineBusyError, PreconditionDeniedError, ReportWriteError
from batchscribe.schemas.events import EngineEvent, EngineEventKind
from batchscribe.schemas.job import AudioJob, TranscriptionOutcome

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 300.0
DEFAULT_COOLDOWN_SECONDS = 0.5
DEFAULT_IDLE_GRACE_SECONDS = 1.0

FAILURE_TIMEOUT = "timeout"
FAILURE_NOT_FOUND = "not_found"
FAILURE_ENGINE_BUSY = "engine_busy"

EXIT_OK = 0
EXIT_REPORT_FAILED = 2


class DriverState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    DRAINING = "draining"
    FINALIZING = "finalizing"
    TERMINATED = "terminated"


@dataclass(frozen=True)
class BatchPolicy:
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS
    startup_delay_seconds: float = 0.0
    idle_grace_seconds: float = DEFAULT_IDLE_GRACE_SECONDS
    gate_timeout_seconds: float | None = None

    def __post_init__(self) -> None:
        if self.timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be > 0, got {self.timeout_seconds}")
        if self.cooldown_seconds < 0:
            raise ValueError(f"cooldown_seconds must be >= 0, got {self.cooldown_seconds}")
        if self.startup_delay_seconds < 0:
            raise ValueError(
                f"startup_delay_seconds must be >= 0, got {self.startup_delay_seconds}"
            )
        if self.idle_grace_seconds < 0:
            raise ValueError(
                f"idle_grace_seconds must be >= 0, got {self.idle_grace_seconds}"
            )


@dataclass(frozen=True)
class BatchResult:
    outcomes: tuple[TranscriptionOutcome, ...]
    report_path: Path | None
    status: str
    message: str

    @property
    def total(self) -> int:
        return len(self.outcomes)

    @property
    def failed(self) -> int:
        return sum(1 for outcome in self.outcomes if outcome.failed)

    @property
    def succeeded(self) -> int:
        return self.total - self.failed

    @property
    def exit_code(self) -> int:
        return EXIT_REPORT_FAILED if self.report_path is None else EXIT_OK


class _JobExecution:
    """State for one submitted job, written from the engine's notification thread.

    ``latest_text`` and ``not_found`` are written before the bridge is
    signalled and read by the driver only after the bridge completes.
    """

    def __init__(self, job: AudioJob) -> None:
        self.job = job
        self.bridge = CompletionBridge.create()
        self.latest_text: str | None = None
        self.not_found = False

    def on_event(self, event: EngineEvent) -> None:
        if event.kind is EngineEventKind.STARTED:
            logger.debug("Engine started %s", self.job.filename)
        elif event.kind is EngineEventKind.RESULT_AVAILABLE:
            self.latest_text = event.text
        elif event.kind is EngineEventKind.NOT_FOUND:
            self.not_found = True
            self.bridge.signal()
        elif event.kind is EngineEventKind.DONE:
            self.bridge.signal()


class BatchDriver:
    """Scan, then transcribe one job at a time, then write the report."""

    def __init__(
        self,
        engine: EngineAdapter,
        *,
        root: Path,
        language_dirs: Sequence[str],
        report_path: Path,
        policy: BatchPolicy | None = None,
        gate: PreconditionGate | None = None,
        sort_entries: bool = True,
        on_queued: Callable[[int], None] | None = None,
        on_outcome: Callable[[TranscriptionOutcome], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.engine = engine
        self.root = root
        self.language_dirs = tuple(language_dirs)
        self.report_path = report_path
        self.policy = policy or BatchPolicy()
        self.gate = gate or OpenGate()
        self.sort_entries = sort_entries
        self._on_queued = on_queued
        self._on_outcome = on_outcome
        self._clock = clock
        self._sleep = sleep
        self._state = DriverState.IDLE
        self._engine_wedged = False

    @property
    def state(self) -> DriverState:
        return self._state

    def _transition(self, state: DriverState) -> None:
        logger.debug("Batch driver: %s -> %s", self._state.value, state.value)
        self._state = state

    def run(self) -> BatchResult:
        if self._state is not DriverState.IDLE:
            raise RuntimeError(f"Batch driver already ran (state={self._state.value}).")
        if not self.gate.wait(self.policy.gate_timeout_seconds):
            reason = getattr(self.gate, "denied_reason", None) or "Preconditions not granted."
            raise PreconditionDeniedError(reason)
        if self.policy.startup_delay_seconds:
            self._sleep(self.policy.startup_delay_seconds)

        self._transition(DriverState.SCANNING)
        try:
            queue = scan_language_dirs(
                self.root,
                self.language_dirs,
                sort_entries=self.sort_entries,
            )
        except Exception:
            self._transition(DriverState.TERMINATED)
            raise
        if self._on_queued is not None:
            self._on_queued(len(queue))

        aggregator = ResultAggregator()
        if queue:
            self._transition(DriverState.DRAINING)
            self._drain(queue, aggregator)

        self._transition(DriverState.FINALIZING)
        result = self._finalize(aggregator)
        self._transition(DriverState.TERMINATED)
        return result

    def _drain(self, queue: JobQueue, aggregator: ResultAggregator) -> None:
        while queue:
            job = queue.pop()
            outcome = self._process(job)
            aggregator.append(outcome)
            if self._on_outcome is not None:
                self._on_outcome(outcome)
            if queue and self.policy.cooldown_seconds:
                self._sleep(self.policy.cooldown_seconds)

    def _process(self, job: AudioJob) -> TranscriptionOutcome:
        logger.info("Processing %s (language: %s)", job.filename, job.language)
        started = self._clock()

        # A timed-out job may still be decoding; never overlap submissions.
        # Once the engine is known to be stuck, later jobs only poll it.
        grace = 0.0 if self._engine_wedged else self.policy.idle_grace_seconds
        if not self.engine.wait_idle(grace):
            if not self._engine_wedged:
                logger.error(
                    "Engine still busy %.1fs after a timeout; failing jobs until it frees",
                    grace,
                )
                self._engine_wedged = True
            logger.warning("Engine busy, skipping %s", job.filename)
            return self._failed(job, started, FAILURE_ENGINE_BUSY)
        self._engine_wedged = False

        started = self._clock()
        execution = _JobExecution(job)
        try:
            self.engine.submit(job.path, execution.on_event)
        except EngineBusyError as exc:
            logger.error("%s", exc)
            return self._failed(job, started, FAILURE_ENGINE_BUSY)

        state = execution.bridge.await_with_timeout(self.policy.timeout_seconds)
        if state is BridgeState.TIMED_OUT:
            logger.warning(
                "Transcription timed out after %.0fs: %s",
                self.policy.timeout_seconds,
                job.filename,
            )
            return self._failed(job, started, FAILURE_TIMEOUT)
        if execution.not_found:
            logger.warning("Engine reported file not found: %s", job.path)
            return self._failed(job, started, FAILURE_NOT_FOUND)

        elapsed_ms = self._elapsed_ms(started)
        transcript = sanitize(execution.latest_text) or ""
        logger.info("Transcription completed for %s in %dms", job.filename, elapsed_ms)
        return TranscriptionOutcome(
            filename=job.filename,
            language=job.language,
            transcript=transcript,
            elapsed_ms=elapsed_ms,
        )

    def _failed(self, job: AudioJob, started: float, reason: str) -> TranscriptionOutcome:
        return TranscriptionOutcome(
            filename=job.filename,
            language=job.language,
            transcript="",
            elapsed_ms=self._elapsed_ms(started),
            failed=True,
            failure_reason=reason,
        )

    def _elapsed_ms(self, started: float) -> int:
        return max(0, int((self._clock() - started) * 1000))

    def _finalize(self, aggregator: ResultAggregator) -> BatchResult:
        outcomes = aggregator.outcomes
        try:
            report_path = write_report(outcomes, self.report_path)
        except ReportWriteError as exc:
            logger.error("%s", exc)
            return BatchResult(
                outcomes=outcomes,
                report_path=None,
                status="failed",
                message=str(exc),
            )
        failed = aggregator.failed_count
        if not outcomes:
            status = "empty"
        elif failed:
            status = "partial"
        else:
            status = "done"
        return BatchResult(
            outcomes=outcomes,
            report_path=report_path,
            status=status,
            message=(
                f"Batch complete: total={len(outcomes)} "
                f"succeeded={len(outcomes) - failed} failed={failed}."
            ),
        )


def run_in_background(driver: BatchDriver) -> Future[BatchResult]:
    """Start ``driver`` on a dedicated worker thread."""
    executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="batch-driver")
    future = executor.submit(driver.run)
    executor.shutdown(wait=False)
    return future
