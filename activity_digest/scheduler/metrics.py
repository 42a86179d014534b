"""Metrics collection for the digest scheduler."""

from collections import Counter
from dataclasses import dataclass, field
from threading import Lock


_metrics_instance: "SchedulerMetrics | None" = None
_metrics_lock: Lock = Lock()


@dataclass
class SchedulerMetrics:
    """Thread-safe metrics for scheduler runs.

    Use get_instance() for singleton access.
    """

    _lock: Lock = field(default_factory=Lock, repr=False, compare=False)

    # User counts by outcome
    outcomes: Counter[str] = field(default_factory=Counter)

    # Not-due counts by gate reason
    not_due_reasons: Counter[str] = field(default_factory=Counter)

    topics_selected: int = 0
    topics_dropped: int = 0
    runs_started: int = 0
    runs_skipped: int = 0
    runs_failed: int = 0
    delivery_failures: int = 0

    @classmethod
    def get_instance(cls) -> "SchedulerMetrics":
        """Get the singleton instance (thread-safe)."""
        global _metrics_instance  # noqa: PLW0603
        if _metrics_instance is None:
            with _metrics_lock:
                if _metrics_instance is None:
                    _metrics_instance = cls()
        return _metrics_instance

    @classmethod
    def reset(cls) -> None:
        """Reset the singleton instance (for testing)."""
        global _metrics_instance  # noqa: PLW0603
        with _metrics_lock:
            _metrics_instance = None

    def record_outcome(self, outcome: str, reason: str | None = None) -> None:
        """Record the outcome of one user evaluation."""
        with self._lock:
            self.outcomes[outcome] += 1
            if reason is not None:
                self.not_due_reasons[reason] += 1

    def record_selection(self, selected: int, dropped: int) -> None:
        """Record topic counts of a produced summary."""
        with self._lock:
            self.topics_selected += selected
            self.topics_dropped += dropped

    def record_run_started(self) -> None:
        """Record a batch run that got the guard."""
        with self._lock:
            self.runs_started += 1

    def record_run_skipped(self) -> None:
        """Record a batch run that found the guard taken."""
        with self._lock:
            self.runs_skipped += 1

    def record_run_failed(self) -> None:
        """Record a batch run that aborted."""
        with self._lock:
            self.runs_failed += 1

    def record_delivery_failure(self) -> None:
        """Record a summary the mailer rejected."""
        with self._lock:
            self.delivery_failures += 1

    def to_dict(self) -> dict[str, object]:
        """Convert metrics to a dictionary."""
        with self._lock:
            return {
                "outcomes": dict(self.outcomes),
                "not_due_reasons": dict(self.not_due_reasons),
                "topics_selected": self.topics_selected,
                "topics_dropped": self.topics_dropped,
                "runs_started": self.runs_started,
                "runs_skipped": self.runs_skipped,
                "runs_failed": self.runs_failed,
                "delivery_failures": self.delivery_failures,
            }
