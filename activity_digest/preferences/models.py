"""Data models for summary email preferences."""

from dataclasses import dataclass
from datetime import timedelta

from pydantic import field_validator

from activity_digest.data_model import StrictBaseModel
from activity_digest.preferences.constants import DO_NOT_SEND


class SummaryPreferences(StrictBaseModel):
    """Optional summary email overrides at user or group scope.

    ``None`` means "inherit from the next link in the chain".

    Attributes:
        summary_email_interval_mins: Minutes between digests, or DO_NOT_SEND.
        summary_email_if_active: Send even if the user was active recently.
    """

    summary_email_interval_mins: int | None = None
    summary_email_if_active: bool | None = None

    @field_validator("summary_email_interval_mins")
    @classmethod
    def check_interval(cls, v: int | None) -> int | None:
        """Reject zero and negative intervals other than the sentinel."""
        if v is None or v == DO_NOT_SEND or v > 0:
            return v
        msg = f"Interval must be positive or {DO_NOT_SEND} (do not send), got {v}"
        raise ValueError(msg)


@dataclass(frozen=True)
class EffectivePrefs:
    """Fully resolved summary email settings for one user.

    Attributes:
        interval_minutes: Minutes between digests, or DO_NOT_SEND.
        send_even_if_active: Whether recent activity suppresses the digest.
    """

    interval_minutes: int
    send_even_if_active: bool

    @property
    def disabled(self) -> bool:
        """Whether digests are switched off."""
        return self.interval_minutes == DO_NOT_SEND

    @property
    def interval(self) -> timedelta:
        """The digest interval as a timedelta.

        Raises:
            ValueError: If digests are disabled.
        """
        if self.disabled:
            msg = "Digests are disabled; there is no interval"
            raise ValueError(msg)
        return timedelta(minutes=self.interval_minutes)
