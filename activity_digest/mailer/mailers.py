"""Summary sinks.

Mail transport is outside this project. Summaries are either queued as
JSON files in an outbox directory for an external sender, or kept in
memory.
"""

import json
import threading
from pathlib import Path

import structlog

from activity_digest.mailer.io import AtomicWriter, WrittenFile
from activity_digest.scheduler.models import ActivitySummary


logger = structlog.get_logger()


class OutboxMailer:
    """Writes each summary to ``<outbox>/<user_id>-<timestamp>.json``."""

    def __init__(self, outbox_dir: Path) -> None:
        """Initialize the mailer.

        Args:
            outbox_dir: Directory receiving summary files.
        """
        self._outbox_dir = outbox_dir
        self._writer = AtomicWriter(outbox_dir)
        self._log = logger.bind(component="mailer", outbox=str(outbox_dir))

    @property
    def outbox_dir(self) -> Path:
        """Directory receiving summary files."""
        return self._outbox_dir

    def path_for(self, summary: ActivitySummary) -> Path:
        """File name of a summary; unique per user and generation time."""
        stamp = summary.generated_at.strftime("%Y%m%dT%H%M%S%fZ")
        return self._outbox_dir / f"{summary.user_id}-{stamp}.json"

    def send(self, summary: ActivitySummary) -> WrittenFile:
        """Queue a summary.

        Args:
            summary: Summary to queue.

        Returns:
            Information about the written file.
        """
        content = json.dumps(summary.to_json_dict(), indent=2, ensure_ascii=False)
        written = self._writer.write(self.path_for(summary), content + "\n")
        self._log.info(
            "summary_queued",
            user_id=summary.user_id,
            topics=len(summary.topics),
            path=written.path,
        )
        return written


class MemoryMailer:
    """Keeps summaries in a list."""

    def __init__(self) -> None:
        """Initialize an empty mailer."""
        self._sent: list[ActivitySummary] = []
        self._lock = threading.Lock()

    @property
    def sent(self) -> list[ActivitySummary]:
        """Summaries received so far."""
        with self._lock:
            return list(self._sent)

    def send(self, summary: ActivitySummary) -> None:
        """Record a summary."""
        with self._lock:
            self._sent.append(summary)

    def sent_to(self, user_id: int) -> list[ActivitySummary]:
        """Summaries received for one user."""
        return [s for s in self.sent if s.user_id == user_id]

    def clear(self) -> None:
        """Forget everything received."""
        with self._lock:
            self._sent.clear()
