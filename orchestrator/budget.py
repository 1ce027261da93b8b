import time
from typing import Callable, Optional

from .errors import DeadlineExceeded


Clock = Callable[[], float]


class DeadlineBudget:
    """Wall-clock allowance for one request.

    The start timestamp and horizon are fixed at construction. Phases consult
    ``remaining()`` before committing to new work; nothing here blocks.
    """

    def __init__(self, horizon_sec: float, clock: Optional[Clock] = None, start: Optional[float] = None) -> None:
        self._clock: Clock = clock or time.monotonic
        self._start: float = self._clock() if start is None else start
        self._horizon: float = max(0.0, float(horizon_sec))

    @property
    def horizon(self) -> float:
        return self._horizon

    def elapsed(self) -> float:
        return max(0.0, self._clock() - self._start)

    def remaining(self) -> float:
        return max(0.0, self._horizon - self.elapsed())

    def expired(self) -> bool:
        return self.remaining() <= 0.0

    def require(self, floor_sec: float, phase: str, message: Optional[str] = None) -> None:
        """Fail fast when less than ``floor_sec`` is left before ``phase`` starts."""
        if self.remaining() < floor_sec:
            if message:
                raise DeadlineExceeded(phase, message)
            raise DeadlineExceeded(phase)

    def child(self, seconds: float) -> "DeadlineBudget":
        # A sub-deadline starts now and never outlives its parent.
        return DeadlineBudget(min(max(0.0, seconds), self.remaining()), clock=self._clock)

    def elapsed_ms(self) -> float:
        return self.elapsed() * 1000
