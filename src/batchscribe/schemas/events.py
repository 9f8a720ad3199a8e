from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class EngineEventKind(str, Enum):
    STARTED = "started"
    RESULT_AVAILABLE = "result_available"
    DONE = "done"
    NOT_FOUND = "not_found"


TERMINAL_EVENT_KINDS = frozenset({EngineEventKind.DONE, EngineEventKind.NOT_FOUND})


@dataclass(frozen=True)
class EngineEvent:
    kind: EngineEventKind
    text: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.kind in TERMINAL_EVENT_KINDS

    @classmethod
    def started(cls) -> EngineEvent:
        return cls(EngineEventKind.STARTED)

    @classmethod
    def result(cls, text: str) -> EngineEvent:
        return cls(EngineEventKind.RESULT_AVAILABLE, text)

    @classmethod
    def done(cls) -> EngineEvent:
        return cls(EngineEventKind.DONE)

    @classmethod
    def not_found(cls) -> EngineEvent:
        return cls(EngineEventKind.NOT_FOUND)
