# Rolling window of AI response validity; trips when too many replies fail to parse
from __future__ import annotations

from collections import deque


class InvalidJSONCircuitBreaker:
    def __init__(self, window: int = 50, threshold: float = 0.5, min_samples: int = 5) -> None:
        self.window = window
        self.threshold = threshold
        self.min_samples = min_samples
        self._events: deque[bool] = deque(maxlen=window)

    def record(self, success: bool) -> None:
        self._events.append(success)

    def invalid_rate(self) -> float:
        if not self._events:
            return 0.0
        return self._events.count(False) / len(self._events)

    def is_tripped(self) -> bool:
        if len(self._events) < self.min_samples:
            return False
        return self.invalid_rate() >= self.threshold

    def reset(self) -> None:
        """Reset circuit breaker state.

        Side Effects:
            Clears all recorded events from the circuit breaker.
        """
        self._events.clear()
