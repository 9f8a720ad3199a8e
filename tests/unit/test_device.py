from __future__ import annotations

from batchscribe.infra.device import detect_device_report, resolve_torch_device, select_device


def test_auto_prefers_cuda_then_mps() -> None:
    assert select_device("auto", ("cpu", "mps", "cuda")) == "cuda"
    assert select_device("auto", ("cpu", "mps")) == "mps"
    assert select_device("auto", ("cpu",)) == "cpu"


def test_unavailable_request_falls_back_to_cpu(monkeypatch) -> None:
    monkeypatch.setattr("batchscribe.infra.device.torch_devices", lambda: ("cpu",))

    report = detect_device_report("cuda")

    assert report.selected == "cpu"
    assert not report.request_satisfied
    assert resolve_torch_device("cuda") == "cpu"


def test_available_request_is_honoured(monkeypatch) -> None:
    monkeypatch.setattr("batchscribe.infra.device.torch_devices", lambda: ("cpu", "mps"))

    report = detect_device_report("mps")

    assert report.selected == "mps"
    assert report.request_satisfied
