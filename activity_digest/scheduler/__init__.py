"""Digest scheduler orchestrating preferences, eligibility and topics."""

from activity_digest.scheduler.clock import Clock, FakeClock, SystemClock
from activity_digest.scheduler.factory import build_scheduler
from activity_digest.scheduler.metrics import SchedulerMetrics
from activity_digest.scheduler.models import (
    ActivitySummary,
    BatchResult,
    UserOutcome,
    UserResult,
)
from activity_digest.scheduler.scheduler import DigestScheduler, Mailer
from activity_digest.scheduler.single_flight import SingleFlightGuard


__all__ = [
    "ActivitySummary",
    "BatchResult",
    "Clock",
    "DigestScheduler",
    "FakeClock",
    "Mailer",
    "SchedulerMetrics",
    "SingleFlightGuard",
    "SystemClock",
    "UserOutcome",
    "UserResult",
    "build_scheduler",
]
