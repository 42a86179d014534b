"""Time-based eligibility gate for summary emails."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from activity_digest.preferences.models import EffectivePrefs
from activity_digest.store.models import UserStats


class EligibilityReason(str, Enum):
    """Why a summary is or is not due.

    - DISABLED: the user gets no summaries
    - COOLDOWN: the previous summary is too recent
    - GRACE_PERIOD: a new user has not yet been around for one interval
    - RECENTLY_ACTIVE: the user visited within the last interval
    - DUE: a summary should be built now
    """

    DISABLED = "disabled"
    COOLDOWN = "cooldown"
    GRACE_PERIOD = "grace_period"
    RECENTLY_ACTIVE = "recently_active"
    DUE = "due"


@dataclass(frozen=True)
class EligibilityDecision:
    """Outcome of one gate evaluation.

    Attributes:
        due: Whether a summary should be built now.
        updated_stats: Stats to persist if not due (may equal the input).
        reason: Why.
    """

    due: bool
    updated_stats: UserStats
    reason: EligibilityReason


def _later(existing: datetime | None, candidate: datetime) -> datetime:
    return candidate if existing is None or candidate > existing else existing


class EligibilityGate:
    """Decides whether a user's summary is due.

    Pure: no clock reads and no storage access.
    """

    def evaluate(
        self, now: datetime, stats: UserStats, prefs: EffectivePrefs
    ) -> EligibilityDecision:
        """Evaluate the gate.

        Args:
            now: Current time.
            stats: The user's current stats.
            prefs: The user's effective settings.

        Returns:
            The decision. When not due, ``next_summary_email_at`` in the
            updated stats never moves backwards, except that it is cleared
            when summaries are disabled.
        """
        if prefs.disabled:
            cleared = stats.model_copy(update={"next_summary_email_at": None})
            return EligibilityDecision(False, cleared, EligibilityReason.DISABLED)

        interval = prefs.interval
        next_at = stats.next_summary_email_at

        if next_at is not None and now < next_at:
            return EligibilityDecision(False, stats, EligibilityReason.COOLDOWN)

        if next_at is None:
            grace_ends = stats.baseline + interval
            if now < grace_ends:
                updated = stats.model_copy(
                    update={"next_summary_email_at": grace_ends}
                )
                return EligibilityDecision(
                    False, updated, EligibilityReason.GRACE_PERIOD
                )

        if not prefs.send_even_if_active and stats.last_seen_at > now - interval:
            updated = stats.model_copy(
                update={"next_summary_email_at": _later(next_at, now + interval)}
            )
            return EligibilityDecision(
                False, updated, EligibilityReason.RECENTLY_ACTIVE
            )

        return EligibilityDecision(True, stats, EligibilityReason.DUE)

    def next_eligible_at(
        self, stats: UserStats, prefs: EffectivePrefs
    ) -> datetime | None:
        """Earliest instant the gate could report due, ignoring activity.

        Args:
            stats: The user's current stats.
            prefs: The user's effective settings.

        Returns:
            The instant, or None when summaries are disabled.
        """
        if prefs.disabled:
            return None
        if stats.next_summary_email_at is not None:
            return stats.next_summary_email_at
        return stats.baseline + prefs.interval

