"""I/O utilities for the mailer module.

Provides atomic file writing so outbox readers never see partial files.
"""

import hashlib
from dataclasses import dataclass
from pathlib import Path

import structlog


logger = structlog.get_logger()


@dataclass
class WrittenFile:
    """Information about a written file.

    Attributes:
        path: Path relative to the base directory.
        absolute_path: Absolute path to the file.
        bytes_written: Number of bytes written.
        sha256: SHA-256 checksum of the content.
    """

    path: str
    absolute_path: str
    bytes_written: int
    sha256: str


class AtomicWriter:
    """Writes files through a temporary file and a rename."""

    def __init__(self, base_dir: Path) -> None:
        """Initialize the atomic writer.

        Args:
            base_dir: Base directory for relative path calculation.
        """
        self._base_dir = base_dir
        self._log = logger.bind(component="atomic_writer")

    def write(self, path: Path, content: str) -> WrittenFile:
        """Write content to a file with atomic semantics.

        Args:
            path: Target file path.
            content: Content to write (encoded as UTF-8).

        Returns:
            Information about the written file.
        """
        content_bytes = content.encode("utf-8")
        sha256 = hashlib.sha256(content_bytes).hexdigest()

        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_suffix(path.suffix + ".tmp")
        temp_path.write_bytes(content_bytes)
        temp_path.replace(path)

        try:
            relative_path = str(path.relative_to(self._base_dir))
        except ValueError:
            relative_path = str(path)

        self._log.debug(
            "file_written",
            path=relative_path,
            bytes=len(content_bytes),
            sha256=sha256[:12],
        )

        return WrittenFile(
            path=relative_path,
            absolute_path=str(path.resolve()),
            bytes_written=len(content_bytes),
            sha256=sha256,
        )
