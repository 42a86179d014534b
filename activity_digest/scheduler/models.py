"""Data models for scheduler results."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Annotated, Any

from pydantic import Field

from activity_digest.data_model import StrictBaseModel, UtcDatetime
from activity_digest.topics.models import TopicMeta


class ActivitySummary(StrictBaseModel):
    """The content of one summary email.

    Attributes:
        user_id: Recipient.
        username: Recipient's username.
        email: Recipient's address, if known.
        topics: Selected topics, best first. Never empty.
        generated_at: When the summary was built.
        window_start: The recipient's cursor before this summary.
        window_end: Newest creation time that was considered.
        dropped_count: Candidates left out because of the cap.
    """

    user_id: Annotated[int, Field(ge=1)]
    username: str
    email: str | None = None
    topics: Annotated[tuple[TopicMeta, ...], Field(min_length=1)]
    generated_at: UtcDatetime
    window_start: UtcDatetime
    window_end: UtcDatetime
    dropped_count: Annotated[int, Field(ge=0)] = 0

    def to_json_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        return self.model_dump(mode="json")


class UserOutcome(str, Enum):
    """What happened to one user in a batch.

    - DIGEST: a summary was produced
    - NOT_DUE: the gate said no
    - EMPTY: due, but nothing to tell; the cooldown advanced anyway
    - UNKNOWN: no such user, or a malformed id
    - FAILED: evaluation raised and was rolled back
    """

    DIGEST = "digest"
    NOT_DUE = "not_due"
    EMPTY = "empty"
    UNKNOWN = "unknown"
    FAILED = "failed"


@dataclass
class UserResult:
    """Result of evaluating one user."""

    user_id: object
    outcome: UserOutcome
    summary: ActivitySummary | None = None
    reason: str | None = None
    error: str | None = None


@dataclass
class BatchResult:
    """Result of one recurring-job run."""

    run_id: str
    started_at: datetime
    finished_at: datetime
    user_results: list[UserResult] = field(default_factory=list)
    delivery_failures: int = 0

    @property
    def summaries(self) -> list[ActivitySummary]:
        """Summaries produced, in evaluation order."""
        return [r.summary for r in self.user_results if r.summary is not None]

    @property
    def users_evaluated(self) -> int:
        """Number of users looked at."""
        return len(self.user_results)

    @property
    def digests_produced(self) -> int:
        """Number of summaries produced."""
        return self.count(UserOutcome.DIGEST)

    @property
    def users_failed(self) -> int:
        """Number of users skipped because of an error."""
        return self.count(UserOutcome.FAILED)

    def count(self, outcome: UserOutcome) -> int:
        """Number of users with the given outcome."""
        return sum(1 for r in self.user_results if r.outcome == outcome)
