"""
Usage monitor for the language-model gateway.

Observational only: nothing in the control path reads it. Counters are
guarded by a lock so concurrent units (and threads) can record safely, and
readers only ever get an immutable snapshot.
"""

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, Optional, Tuple

MAX_STORED_ERRORS = 10
REPORTED_ERRORS = 5


@dataclass(frozen=True)
class UsageSnapshot:
    request_count: int = 0
    success_count: int = 0
    total_duration_seconds: float = 0.0
    total_tokens: int = 0
    total_cost: float = 0.0
    recent_errors: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def failure_count(self) -> int:
        return self.request_count - self.success_count

    @property
    def success_rate(self) -> float:
        return self.success_count / self.request_count if self.request_count else 0.0

    @property
    def average_latency_seconds(self) -> float:
        return self.total_duration_seconds / self.request_count if self.request_count else 0.0

    def to_dict(self) -> dict:
        return {
            "request_count": self.request_count,
            "success_count": self.success_count,
            "success_rate": round(self.success_rate, 4),
            "average_latency_seconds": round(self.average_latency_seconds, 4),
            "total_tokens": self.total_tokens,
            "total_cost": round(self.total_cost, 6),
            "recent_errors": list(self.recent_errors),
        }


class UsageMonitor:
    """Lock-protected request counters."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._request_count = 0
        self._success_count = 0
        self._total_duration = 0.0
        self._total_tokens = 0
        self._total_cost = 0.0
        self._errors: Deque[str] = deque(maxlen=MAX_STORED_ERRORS)

    def record(
        self,
        *,
        success: bool,
        duration_seconds: float,
        tokens: int = 0,
        cost: float = 0.0,
        error: Optional[str] = None,
    ) -> None:
        with self._lock:
            self._request_count += 1
            self._total_duration += max(0.0, duration_seconds)
            if success:
                self._success_count += 1
                self._total_tokens += tokens
                self._total_cost += cost
            elif error:
                self._errors.append(error)

    def snapshot(self) -> UsageSnapshot:
        with self._lock:
            return UsageSnapshot(
                request_count=self._request_count,
                success_count=self._success_count,
                total_duration_seconds=self._total_duration,
                total_tokens=self._total_tokens,
                total_cost=self._total_cost,
                recent_errors=tuple(list(self._errors)[-REPORTED_ERRORS:]),
            )

    def reset(self) -> None:
        with self._lock:
            self._request_count = 0
            self._success_count = 0
            self._total_duration = 0.0
            self._total_tokens = 0
            self._total_cost = 0.0
            self._errors.clear()
