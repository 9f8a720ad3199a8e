from __future__ import annotations

from dataclasses import dataclass

ACCELERATOR_PREFERENCE: tuple[str, ...] = ("cuda", "mps")


@dataclass(frozen=True)
class DeviceReport:
    requested: str
    available: tuple[str, ...]
    selected: str

    @property
    def request_satisfied(self) -> bool:
        return self.requested == "auto" or self.requested == self.selected


def torch_devices() -> tuple[str, ...]:
    """Devices the installed torch build can actually run the model on."""
    import torch

    devices = ["cpu"]
    if torch.cuda.is_available():
        devices.append("cuda")
    mps = getattr(torch.backends, "mps", None)
    if mps is not None and mps.is_available():
        devices.append("mps")
    return tuple(devices)


def select_device(requested: str, available: tuple[str, ...]) -> str:
    if requested == "auto":
        return next((name for name in ACCELERATOR_PREFERENCE if name in available), "cpu")
    return requested if requested in available else "cpu"


def detect_device_report(requested: str) -> DeviceReport:
    available = torch_devices()
    return DeviceReport(
        requested=requested,
        available=available,
        selected=select_device(requested, available),
    )


def resolve_torch_device(requested: str) -> str:
    return detect_device_report(requested).selected
