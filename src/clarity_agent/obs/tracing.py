"""Timing helpers and in-memory analytics counters."""

from __future__ import annotations

import time
from dataclasses import dataclass


@dataclass(slots=True)
class AnalyticsSnapshot:
    analysis_count: int
    completed_count: int
    failed_count: int
    accepted_count: int
    rejected_count: int
    acceptance_rate: float
    average_processing_time_ms: float

    def to_view(self) -> dict[str, float | int]:
        return {
            "analysisCount": self.analysis_count,
            "acceptanceRate": self.acceptance_rate,
            "averageProcessingTimeMs": self.average_processing_time_ms,
        }


class AnalyticsTracker:
    """Counts analyses and user decisions; nothing is persisted.

    The acceptance rate is accepted decisions over all recorded decisions, and the
    average processing time is taken over completed analyses only.
    """

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self._requests = 0
        self._completed = 0
        self._failed = 0
        self._accepted = 0
        self._rejected = 0
        self._total_processing_ms = 0.0

    def record_request(self) -> None:
        self._requests += 1

    def record_completion(self, processing_time_ms: float) -> None:
        self._completed += 1
        self._total_processing_ms += processing_time_ms

    def record_failure(self) -> None:
        self._failed += 1

    def record_decision(self, accepted: bool) -> None:
        if accepted:
            self._accepted += 1
        else:
            self._rejected += 1

    def summary(self) -> AnalyticsSnapshot:
        decisions = self._accepted + self._rejected
        return AnalyticsSnapshot(
            analysis_count=self._requests,
            completed_count=self._completed,
            failed_count=self._failed,
            accepted_count=self._accepted,
            rejected_count=self._rejected,
            acceptance_rate=(self._accepted / decisions) if decisions else 0.0,
            average_processing_time_ms=(
                self._total_processing_ms / self._completed if self._completed else 0.0
            ),
        )


class Timer:
    """Context timer; ``lap_ms`` reads the running duration before exit."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0

    def lap_ms(self) -> float:
        return (time.perf_counter() - self._start) * 1000.0
