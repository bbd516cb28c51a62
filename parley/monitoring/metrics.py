"""
Prometheus Metrics

Chat turn outcomes and provider latency, exported at `/metrics`.
"""

from __future__ import annotations

from enum import Enum

from prometheus_client import Counter, Histogram

# Singleton metrics instance
_metrics: "Metrics | None" = None


class TurnOutcome(str, Enum):
    COMPLETED = "completed"
    PROVIDER_ERROR = "provider_error"
    PERSISTENCE_ERROR = "persistence_error"
    CANCELLED = "cancelled"
    FAILED = "failed"


class Metrics:
    """Prometheus metrics for the chat pipeline."""

    def __init__(self) -> None:
        self.chat_turns_total = Counter(
            "parley_chat_turns_total",
            "Chat turns by outcome",
            ["outcome"],
        )
        self.chat_first_fragment_seconds = Histogram(
            "parley_chat_first_fragment_seconds",
            "Time from provider call to first streamed fragment",
            buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0],
        )
        self.chat_turn_duration_seconds = Histogram(
            "parley_chat_turn_duration_seconds",
            "Full chat turn duration including persistence",
            buckets=[0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
        )
        self.provider_errors_total = Counter(
            "parley_provider_errors_total",
            "Completion provider failures by kind",
            ["kind"],
        )

    def record_turn(self, outcome: TurnOutcome, duration_seconds: float | None = None) -> None:
        self.chat_turns_total.labels(outcome=outcome.value).inc()
        if duration_seconds is not None:
            self.chat_turn_duration_seconds.observe(duration_seconds)

    def record_first_fragment(self, seconds: float) -> None:
        self.chat_first_fragment_seconds.observe(seconds)

    def record_provider_error(self, kind: str) -> None:
        self.provider_errors_total.labels(kind=kind).inc()


def get_metrics() -> Metrics:
    """Get the process-wide metrics instance."""
    global _metrics
    if _metrics is None:
        _metrics = Metrics()
    return _metrics
