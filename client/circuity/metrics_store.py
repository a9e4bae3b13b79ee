from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime


@dataclass
class CollaboratorStats:
    call_count: int = 0
    failure_count: int = 0
    total_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    last_reason_code: str | None = None


class MetricsStore:
    """Per-collaborator call statistics for the current session.

    Everything runs on one event loop, so no lock is needed around updates.
    """

    def __init__(self) -> None:
        self._created_at = datetime.now(UTC).isoformat()
        self._collaborators: dict[str, CollaboratorStats] = {}

    def record(
        self,
        collaborator: str,
        *,
        duration_ms: float,
        reason_code: str | None = None,
    ) -> None:
        name = collaborator.strip() or "unknown"
        d_ms = max(float(duration_ms), 0.0)

        stats = self._collaborators.setdefault(name, CollaboratorStats())
        stats.call_count += 1
        if reason_code is not None:
            stats.failure_count += 1
            stats.last_reason_code = reason_code
        stats.total_duration_ms += d_ms
        stats.max_duration_ms = max(stats.max_duration_ms, d_ms)

    def snapshot(self) -> dict[str, object]:
        collaborators: dict[str, dict[str, float | int | str | None]] = {}
        total_calls = 0
        total_failures = 0

        for name in sorted(self._collaborators):
            stats = self._collaborators[name]
            total_calls += stats.call_count
            total_failures += stats.failure_count
            avg_duration_ms = stats.total_duration_ms / stats.call_count if stats.call_count else 0.0
            collaborators[name] = {
                "call_count": stats.call_count,
                "failure_count": stats.failure_count,
                "avg_duration_ms": round(avg_duration_ms, 3),
                "max_duration_ms": round(stats.max_duration_ms, 3),
                "last_reason_code": stats.last_reason_code,
            }

        return {
            "created_at": self._created_at,
            "total_calls": total_calls,
            "total_failures": total_failures,
            "collaborators": collaborators,
        }

    def reset(self) -> None:
        self._created_at = datetime.now(UTC).isoformat()
        self._collaborators.clear()


METRICS = MetricsStore()


def record_call(collaborator: str, *, duration_ms: float, reason_code: str | None = None) -> None:
    METRICS.record(collaborator, duration_ms=duration_ms, reason_code=reason_code)


def metrics_snapshot() -> dict[str, object]:
    return METRICS.snapshot()


def reset_metrics() -> None:
    METRICS.reset()
