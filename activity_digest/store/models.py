"""Data models for the digest store."""

from datetime import datetime
from typing import Annotated

from pydantic import Field

from activity_digest.data_model import StrictBaseModel, UtcDatetime


class UserRecord(StrictBaseModel):
    """A platform member who may receive activity summaries."""

    user_id: Annotated[int, Field(ge=1, description="User identifier")]
    username: Annotated[str, Field(min_length=1)]
    email: str | None = None
    is_staff: bool = False
    created_at: UtcDatetime


class UserStats(StrictBaseModel):
    """Per-user activity and summary scheduling state.

    Attributes:
        user_id: User identifier.
        last_seen_at: Last time the user visited the site.
        first_seen_at: First time the user was seen (account creation).
        topics_new_since: Cursor; topics created at or after it are unprocessed.
        next_summary_email_at: Earliest time of the next summary. None until
            the first evaluation, and again while summaries are disabled.
        last_summary_email_at: When the last summary was produced.
    """

    user_id: Annotated[int, Field(ge=1)]
    last_seen_at: UtcDatetime
    first_seen_at: UtcDatetime | None = None
    topics_new_since: UtcDatetime
    next_summary_email_at: UtcDatetime | None = None
    last_summary_email_at: UtcDatetime | None = None

    @property
    def baseline(self) -> datetime:
        """Instant the first-run grace period is measured from."""
        return self.first_seen_at or self.last_seen_at


class Category(StrictBaseModel):
    """A topic category, as far as visibility and summaries care."""

    category_id: Annotated[int, Field(ge=1)]
    name: Annotated[str, Field(min_length=1)]
    parent_id: int | None = None
    staff_only: bool = False
    unlisted: bool = False
    deleted: bool = False
    include_in_summaries: bool = True


class DigestRecord(StrictBaseModel):
    """Marker that a summary was produced for a user's window."""

    user_id: Annotated[int, Field(ge=1)]
    generated_at: UtcDatetime
    window_start: UtcDatetime
    window_end: UtcDatetime
    page_ids: tuple[str, ...] = ()
    dropped_count: Annotated[int, Field(ge=0)] = 0


class Run(StrictBaseModel):
    """Batch run tracking record."""

    run_id: Annotated[str, Field(min_length=1, description="Unique run identifier")]
    started_at: UtcDatetime
    finished_at: UtcDatetime | None = None
    success: bool | None = None
    users_evaluated: Annotated[int, Field(ge=0)] = 0
    digests_produced: Annotated[int, Field(ge=0)] = 0
    users_failed: Annotated[int, Field(ge=0)] = 0
    error_summary: str | None = None
