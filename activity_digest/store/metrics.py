"""Metrics collection for the digest store."""

import threading
from dataclasses import dataclass, field
from typing import ClassVar


@dataclass
class StoreMetrics:
    """Metrics for digest store operations.

    Attributes:
        db_tx_count: Number of committed transactions.
        db_tx_failed: Number of rolled back transactions.
        db_tx_duration_ms: Cumulative committed transaction duration.
        stats_saved_total: User stats rows written.
        digests_recorded_total: Digest marker rows written.
    """

    db_tx_count: int = 0
    db_tx_failed: int = 0
    db_tx_duration_ms: float = 0.0
    stats_saved_total: int = 0
    digests_recorded_total: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    _instance: ClassVar["StoreMetrics | None"] = None

    @classmethod
    def get_instance(cls) -> "StoreMetrics":
        """Get singleton metrics instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        """Reset metrics (primarily for testing)."""
        cls._instance = None

    def record_tx_duration(self, duration_ms: float) -> None:
        """Record a committed transaction."""
        with self._lock:
            self.db_tx_count += 1
            self.db_tx_duration_ms += duration_ms

    def record_tx_failed(self) -> None:
        """Record a rolled back transaction."""
        with self._lock:
            self.db_tx_failed += 1

    def record_stats_saved(self) -> None:
        """Record a user stats write."""
        with self._lock:
            self.stats_saved_total += 1

    def record_digest(self) -> None:
        """Record a digest marker write."""
        with self._lock:
            self.digests_recorded_total += 1

    def to_dict(self) -> dict[str, float | int]:
        """Convert metrics to a dictionary."""
        return {
            "db_tx_count": self.db_tx_count,
            "db_tx_failed": self.db_tx_failed,
            "db_tx_duration_ms": round(self.db_tx_duration_ms, 2),
            "stats_saved_total": self.stats_saved_total,
            "digests_recorded_total": self.digests_recorded_total,
        }


@dataclass
class TransactionContext:
    """Context for a single transaction with timing.

    Attributes:
        tx_id: Unique transaction identifier.
        start_time_ns: Start time in nanoseconds.
        operation: The operation being performed.
    """

    tx_id: str
    start_time_ns: int
    operation: str
    affected_rows: int = field(default=0)

    def add_affected_rows(self, rows: int) -> None:
        """Add to the affected row count.

        Args:
            rows: Number of rows affected.
        """
        self.affected_rows += rows
