from __future__ import annotations

from collections import deque
from collections.abc import Iterable, Iterator

from batchscribe.schemas.job import AudioJob


class JobQueue:
    """FIFO of discovered jobs.

    Pushes are only accepted during discovery; ``seal()`` ends that phase and
    from then on the queue is drained by the batch driver alone.
    """

    def __init__(self, jobs: Iterable[AudioJob] = ()) -> None:
        self._jobs: deque[AudioJob] = deque(jobs)
        self._sealed = False

    @property
    def sealed(self) -> bool:
        return self._sealed

    def push(self, job: AudioJob) -> None:
        if self._sealed:
            raise RuntimeError("Job queue is sealed; discovery phase is over.")
        self._jobs.append(job)

    def seal(self) -> JobQueue:
        self._sealed = True
        return self

    def pop(self) -> AudioJob:
        if not self._jobs:
            raise IndexError("pop from an empty job queue")
        return self._jobs.popleft()

    def snapshot(self) -> tuple[AudioJob, ...]:
        return tuple(self._jobs)

    def __len__(self) -> int:
        return len(self._jobs)

    def __bool__(self) -> bool:
        return bool(self._jobs)

    def __iter__(self) -> Iterator[AudioJob]:
        return iter(tuple(self._jobs))
