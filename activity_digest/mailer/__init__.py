"""Sinks for finished activity summaries."""

from activity_digest.mailer.io import AtomicWriter, WrittenFile
from activity_digest.mailer.mailers import MemoryMailer, OutboxMailer


__all__ = ["AtomicWriter", "MemoryMailer", "OutboxMailer", "WrittenFile"]
