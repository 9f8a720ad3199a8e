from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path

from batchscribe.infra.config import AppConfig
from batchscribe.infra.device import detect_device_report
from batchscribe.infra.storage import is_writable_directory


@dataclass(frozen=True)
class DoctorCheck:
    name: str
    ok: bool
    detail: str


@dataclass(frozen=True)
class DoctorReport:
    checks: tuple[DoctorCheck, ...]

    @property
    def ok(self) -> bool:
        return all(check.ok for check in self.checks)


def _directory_check(name: str, path: Path) -> DoctorCheck:
    return DoctorCheck(
        name=name,
        ok=is_writable_directory(path),
        detail=f"path={path}",
    )


def _ffmpeg_check() -> DoctorCheck:
    ffmpeg = shutil.which("ffmpeg")
    if ffmpeg is None:
        return DoctorCheck(name="ffmpeg", ok=False, detail="not found in PATH")
    proc = subprocess.run([ffmpeg, "-version"], capture_output=True, text=True, check=False)
    lines = proc.stdout.splitlines() if proc.returncode == 0 else []
    version = lines[0].strip() if lines else "unknown"
    return DoctorCheck(name="ffmpeg", ok=True, detail=f"path={ffmpeg} version={version}")


def collect_doctor_report(config: AppConfig) -> DoctorReport:
    python_check = DoctorCheck(
        name="Python policy",
        ok=config.python_policy.status != "unsupported",
        detail=config.python_policy.message,
    )

    device_report = detect_device_report(config.device)
    device_check = DoctorCheck(
        name="Device",
        ok=device_report.request_satisfied,
        detail=(
            f"requested={device_report.requested} selected={device_report.selected} "
            f"available={','.join(device_report.available)}"
        ),
    )

    return DoctorReport(
        checks=(
            python_check,
            _ffmpeg_check(),
            _directory_check("HuggingFace cache", config.hf_cache),
            _directory_check("Data directory", config.data_dir),
            device_check,
        ),
    )


def render_doctor_report(report: DoctorReport) -> str:
    header = "batchscribe doctor: OK" if report.ok else "batchscribe doctor: FAIL"
    lines = [header]
    for check in report.checks:
        status = "PASS" if check.ok else "FAIL"
        lines.append(f"- [{status}] {check.name}: {check.detail}")
    return "\n".join(lines)
