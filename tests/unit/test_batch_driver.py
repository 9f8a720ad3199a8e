from __future__ import annotations

import json
import threading
import time
from pathlib import Path

import pytest

from batchscribe.core.driver import (
    BatchDriver,
    BatchPolicy,
    DriverState,
    run_in_background,
)
from batchscribe.core.engine import EngineEventCallback, WhisperEngine
from batchscribe.errors import InputRootNotFoundError, PreconditionDeniedError
from batchscribe.schemas.events import EngineEvent


class _ScriptedEngine:
    """Answers with canned transcripts; files without one are never answered."""

    def __init__(self, transcripts: dict[str, str]) -> None:
        self.transcripts = transcripts
        self.submitted: list[str] = []

    def wait_idle(self, timeout_seconds: float) -> bool:
        return True

    def submit(self, path: Path, on_event: EngineEventCallback) -> None:
        self.submitted.append(path.name)
        text = self.transcripts.get(path.name)
        if text is None:
            return

        def _emit() -> None:
            on_event(EngineEvent.started())
            on_event(EngineEvent.result(text))
            on_event(EngineEvent.done())

        threading.Thread(target=_emit, daemon=True).start()


class _DeniedGate:
    denied_reason = "Input directory is not readable: /nowhere"

    def wait(self, timeout_seconds: float | None = None) -> bool:
        return False


def _touch(path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"RIFF0000WAVE")
    return path


def _driver(engine, root: Path, report_path: Path, **kwargs) -> BatchDriver:
    policy = kwargs.pop("policy", BatchPolicy(timeout_seconds=5.0, cooldown_seconds=0.0))
    return BatchDriver(
        engine,
        root=root,
        language_dirs=kwargs.pop("language_dirs", ("langA", "langB")),
        report_path=report_path,
        policy=policy,
        **kwargs,
    )


def test_batch_writes_report_in_submission_order(tmp_path: Path) -> None:
    root = tmp_path / "audio"
    _touch(root / "langA" / "a.wav")
    _touch(root / "langB" / "b.wav")
    transcripts = {"a.wav": "[_SOT_]hello[_EOT_]", "b.wav": "world"}
    engine = WhisperEngine(lambda path: transcripts[path.name])
    report_path = tmp_path / "private" / "transcriptions.json"

    result = _driver(engine, root, report_path).run()

    assert result.status == "done"
    assert result.exit_code == 0
    payload = json.loads(report_path.read_text(encoding="utf-8"))
    assert [
        {key: entry[key] for key in ("filename", "language", "transcription")}
        for entry in payload
    ] == [
        {"filename": "a.wav", "language": "langA", "transcription": "hello"},
        {"filename": "b.wav", "language": "langB", "transcription": "world"},
    ]
    for entry in payload:
        assert list(entry) == ["filename", "language", "transcription", "timeMs"]
        assert isinstance(entry["timeMs"], int)
        assert entry["timeMs"] >= 0


def test_report_has_one_entry_per_queued_job(tmp_path: Path) -> None:
    root = tmp_path / "audio"
    names = [f"clip{index}.wav" for index in range(5)]
    for name in names:
        _touch(root / "langA" / name)
    engine = _ScriptedEngine({name: name for name in names})
    queued: list[int] = []
    report_path = tmp_path / "out.json"

    result = _driver(engine, root, report_path, on_queued=queued.append).run()

    payload = json.loads(report_path.read_text(encoding="utf-8"))
    assert queued == [5]
    assert result.total == 5
    assert [entry["filename"] for entry in payload] == names
    assert engine.submitted == names


def test_timed_out_job_is_recorded_and_batch_continues(tmp_path: Path) -> None:
    root = tmp_path / "audio"
    _touch(root / "langA" / "a.wav")
    _touch(root / "langB" / "b.wav")
    engine = _ScriptedEngine({"b.wav": "[_SOT_]world[_EOT_]"})
    report_path = tmp_path / "out.json"
    policy = BatchPolicy(timeout_seconds=0.1, cooldown_seconds=0.0)

    started = time.monotonic()
    result = _driver(engine, root, report_path, policy=policy).run()
    elapsed = time.monotonic() - started

    assert elapsed < policy.timeout_seconds + 1.0
    assert result.status == "partial"
    assert result.exit_code == 0
    assert result.outcomes[0].failure_reason == "timeout"
    payload = json.loads(report_path.read_text(encoding="utf-8"))
    assert payload[0]["filename"] == "a.wav"
    assert payload[0]["transcription"] == ""
    assert payload[0]["failed"] is True
    assert payload[1]["transcription"] == "world"
    assert "failed" not in payload[1]


def test_not_found_yields_empty_failed_outcome(tmp_path: Path) -> None:
    root = tmp_path / "audio"
    gone = _touch(root / "langA" / "gone.wav")
    _touch(root / "langA" / "kept.wav")
    engine = WhisperEngine(lambda path: "kept text")
    # Remove the file after discovery so the engine cannot find it.
    driver = _driver(
        engine,
        root,
        tmp_path / "out.json",
        on_queued=lambda _: gone.unlink(),
    )

    result = driver.run()

    by_name = {outcome.filename: outcome for outcome in result.outcomes}
    assert by_name["gone.wav"].failed
    assert by_name["gone.wav"].failure_reason == "not_found"
    assert by_name["gone.wav"].transcript == ""
    assert by_name["kept.wav"].transcript == "kept text"
    assert not by_name["kept.wav"].failed


def test_late_events_from_timed_out_job_are_ignored(tmp_path: Path) -> None:
    root = tmp_path / "audio"
    _touch(root / "langA" / "a_slow.wav")
    _touch(root / "langA" / "b_next.wav")
    late_delivered = threading.Event()

    class _LateEngine:
        def wait_idle(self, timeout_seconds: float) -> bool:
            return True

        def submit(self, path: Path, on_event: EngineEventCallback) -> None:
            if path.name == "a_slow.wav":
                def _late() -> None:
                    on_event(EngineEvent.result("stale text"))
                    on_event(EngineEvent.done())
                    late_delivered.set()

                timer = threading.Timer(0.4, _late)
                timer.daemon = True
                timer.start()
                return

            def _answer() -> None:
                late_delivered.wait(2.0)
                on_event(EngineEvent.result("fresh text"))
                on_event(EngineEvent.done())

            threading.Thread(target=_answer, daemon=True).start()

    policy = BatchPolicy(timeout_seconds=0.3, cooldown_seconds=0.0)
    result = _driver(
        _LateEngine(),
        root,
        tmp_path / "out.json",
        policy=policy,
        language_dirs=("langA",),
    ).run()

    assert [outcome.filename for outcome in result.outcomes] == ["a_slow.wav", "b_next.wav"]
    by_name = {outcome.filename: outcome for outcome in result.outcomes}
    assert by_name["a_slow.wav"].failed
    assert by_name["a_slow.wav"].transcript == ""
    assert by_name["b_next.wav"].transcript == "fresh text"


def test_missing_root_never_drains_or_writes_report(tmp_path: Path) -> None:
    engine = _ScriptedEngine({})
    report_path = tmp_path / "out.json"
    driver = _driver(engine, tmp_path / "missing", report_path)

    with pytest.raises(InputRootNotFoundError):
        driver.run()

    assert driver.state is DriverState.TERMINATED
    assert engine.submitted == []
    assert not report_path.exists()


def test_empty_queue_writes_empty_report(tmp_path: Path) -> None:
    root = tmp_path / "audio"
    root.mkdir()
    report_path = tmp_path / "out.json"

    result = _driver(_ScriptedEngine({}), root, report_path).run()

    assert result.status == "empty"
    assert result.exit_code == 0
    assert json.loads(report_path.read_text(encoding="utf-8")) == []


def test_report_write_failure_returns_nonzero_exit(tmp_path: Path) -> None:
    root = tmp_path / "audio"
    _touch(root / "langA" / "a.wav")
    blocker = tmp_path / "blocker"
    blocker.write_text("file", encoding="utf-8")

    result = _driver(
        _ScriptedEngine({"a.wav": "hi"}), root, blocker / "out.json"
    ).run()

    assert result.status == "failed"
    assert result.report_path is None
    assert result.exit_code != 0
    assert result.total == 1


def test_cooldown_is_observed_between_jobs_only(tmp_path: Path) -> None:
    root = tmp_path / "audio"
    for name in ("a.wav", "b.wav", "c.wav"):
        _touch(root / "langA" / name)
    sleeps: list[float] = []

    _driver(
        _ScriptedEngine({"a.wav": "a", "b.wav": "b", "c.wav": "c"}),
        root,
        tmp_path / "out.json",
        policy=BatchPolicy(timeout_seconds=5.0, cooldown_seconds=0.25),
        sleep=sleeps.append,
    ).run()

    assert sleeps == [0.25, 0.25]


def test_denied_gate_prevents_scanning(tmp_path: Path) -> None:
    root = tmp_path / "audio"
    _touch(root / "langA" / "a.wav")
    engine = _ScriptedEngine({"a.wav": "a"})
    driver = _driver(engine, root, tmp_path / "out.json", gate=_DeniedGate())

    with pytest.raises(PreconditionDeniedError, match="not readable"):
        driver.run()

    assert driver.state is DriverState.IDLE
    assert engine.submitted == []


def test_driver_runs_on_background_thread(tmp_path: Path) -> None:
    root = tmp_path / "audio"
    _touch(root / "langA" / "a.wav")
    seen_threads: list[str] = []
    engine = _ScriptedEngine({"a.wav": "a"})
    driver = _driver(
        engine,
        root,
        tmp_path / "out.json",
        on_outcome=lambda _: seen_threads.append(threading.current_thread().name),
    )

    result = run_in_background(driver).result(timeout=5.0)

    assert result.status == "done"
    assert seen_threads and seen_threads[0].startswith("batch-driver")
    assert seen_threads[0] != threading.current_thread().name


def test_driver_runs_only_once(tmp_path: Path) -> None:
    root = tmp_path / "audio"
    root.mkdir()
    driver = _driver(_ScriptedEngine({}), root, tmp_path / "out.json")
    driver.run()

    with pytest.raises(RuntimeError, match="already ran"):
        driver.run()


def test_batch_policy_rejects_non_positive_timeout() -> None:
    with pytest.raises(ValueError, match="timeout_seconds"):
        BatchPolicy(timeout_seconds=0)


def test_stuck_engine_fails_remaining_jobs_without_waiting_each_timeout(
    tmp_path: Path,
) -> None:
    root = tmp_path / "audio"
    for name in ("a.wav", "b.wav", "c.wav"):
        _touch(root / "langA" / name)
    release = threading.Event()

    def _transcribe(path: Path) -> str:
        release.wait(10.0)
        return "late"

    engine = WhisperEngine(_transcribe)
    policy = BatchPolicy(timeout_seconds=0.3, cooldown_seconds=0.0, idle_grace_seconds=0.1)

    started = time.monotonic()
    try:
        result = _driver(
            engine, root, tmp_path / "out.json", policy=policy, language_dirs=("langA",)
        ).run()
    finally:
        release.set()
    elapsed = time.monotonic() - started

    assert elapsed < policy.timeout_seconds + policy.idle_grace_seconds + 1.0
    assert [outcome.failure_reason for outcome in result.outcomes] == [
        "timeout",
        "engine_busy",
        "engine_busy",
    ]
    payload = json.loads((tmp_path / "out.json").read_text(encoding="utf-8"))
    assert [entry["filename"] for entry in payload] == ["a.wav", "b.wav", "c.wav"]


def test_engine_that_frees_within_grace_accepts_next_job(tmp_path: Path) -> None:
    root = tmp_path / "audio"
    _touch(root / "langA" / "a.wav")
    _touch(root / "langA" / "b.wav")

    def _transcribe(path: Path) -> str:
        if path.name == "a.wav":
            time.sleep(0.4)
        return path.stem

    policy = BatchPolicy(timeout_seconds=0.2, cooldown_seconds=0.0, idle_grace_seconds=2.0)
    result = _driver(
        WhisperEngine(_transcribe),
        root,
        tmp_path / "out.json",
        policy=policy,
        language_dirs=("langA",),
    ).run()

    by_name = {outcome.filename: outcome for outcome in result.outcomes}
    assert by_name["a.wav"].failure_reason == "timeout"
    assert by_name["b.wav"].transcript == "b"
    assert not by_name["b.wav"].failed


def test_batch_policy_rejects_negative_idle_grace() -> None:
    with pytest.raises(ValueError, match="idle_grace_seconds"):
        BatchPolicy(idle_grace_seconds=-1)
