"""Candidate topic collection for a user's summary."""

from collections import Counter
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Protocol

import structlog

from activity_digest.authz.errors import AuthorizationLookupError
from activity_digest.topics.constants import MIN_TOPIC_AGE_DIVISOR
from activity_digest.topics.models import PageRole, TopicMeta


if TYPE_CHECKING:
    from activity_digest.authz.authorizer import Authorizer


logger = structlog.get_logger()


class TopicSource(Protocol):
    """Read access to topics by creation time."""

    def list_topics_created_between(
        self, since: datetime, until: datetime
    ) -> list[TopicMeta]:
        """Get topics with ``since <= created_at <= until``."""
        ...


class ReadTracker(Protocol):
    """Knows which topics a user has read."""

    def has_user_read(self, user_id: int, page_id: str) -> bool:
        """Check whether the user has read the page."""
        ...


def min_age_window(
    interval_minutes: int, divisor: int = MIN_TOPIC_AGE_DIVISOR
) -> timedelta:
    """Minimum age a topic needs before it may be summarized.

    Args:
        interval_minutes: The user's summary interval.
        divisor: Fraction of the interval a topic must have aged.

    Returns:
        ``interval / divisor``.

    Raises:
        ValueError: If either argument is not positive.
    """
    if interval_minutes <= 0 or divisor <= 0:
        msg = (
            f"Interval and divisor must be positive, got {interval_minutes} "
            f"and {divisor}"
        )
        raise ValueError(msg)
    return timedelta(minutes=interval_minutes) / divisor


class TopicCollector:
    """Collects the new topics a user may be told about."""

    def __init__(
        self,
        source: TopicSource,
        authorizer: "Authorizer",
        read_tracker: ReadTracker,
    ) -> None:
        """Initialize the collector.

        Args:
            source: Topic storage.
            authorizer: Visibility checks.
            read_tracker: Read state of topics.
        """
        self._source = source
        self._authorizer = authorizer
        self._read_tracker = read_tracker
        self._log = logger.bind(component="collector")

    def collect(
        self,
        user_id: int,
        since_cursor: datetime,
        now: datetime,
        min_age_window: timedelta,
    ) -> list[TopicMeta]:
        """Collect candidate topics.

        Args:
            user_id: Summary recipient.
            since_cursor: Only topics created at or after this instant.
            now: Current time.
            min_age_window: Topics newer than ``now - min_age_window`` wait.

        Returns:
            Eligible topics, oldest first.
        """
        horizon = now - min_age_window
        if horizon < since_cursor:
            return []

        excluded: Counter[str] = Counter()
        candidates: list[TopicMeta] = []
        for topic in self._source.list_topics_created_between(since_cursor, horizon):
            reason = self._exclusion_reason(user_id, topic)
            if reason is None:
                candidates.append(topic)
            else:
                excluded[reason] += 1

        candidates.sort(key=lambda t: (t.created_at, t.page_id))

        self._log.debug(
            "topics_collected",
            user_id=user_id,
            since=since_cursor.isoformat(),
            horizon=horizon.isoformat(),
            candidates=len(candidates),
            excluded=dict(excluded),
        )
        return candidates

    def _exclusion_reason(self, user_id: int, topic: TopicMeta) -> str | None:
        if topic.author_id == user_id:
            return "own"
        if topic.page_role == PageRole.ABOUT_CATEGORY:
            return "about_category"
        if topic.deleted:
            return "deleted"

        try:
            if not self._authorizer.may_user_see_page(user_id, topic):
                return "not_visible"
        except AuthorizationLookupError as e:
            self._log.warning(
                "authorization_lookup_failed",
                user_id=user_id,
                page_id=topic.page_id,
                error=e.message,
            )
            return "authz_error"

        if self._read_tracker.has_user_read(user_id, topic.page_id):
            return "read"
        return None
