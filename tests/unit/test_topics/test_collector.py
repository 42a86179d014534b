"""Unit tests for candidate topic collection."""

from datetime import datetime, timedelta
from unittest.mock import MagicMock

import pytest

from activity_digest.authz.errors import AuthorizationLookupError
from activity_digest.topics.collector import TopicCollector, min_age_window
from activity_digest.topics.models import PageRole, TopicMeta
from tests.helpers.time import FIXED_NOW, ONE_DAY, ONE_HOUR


USER_ID = 7
OTHER_ID = 8


def make_topic(
    page_id: str,
    created_at: datetime,
    author_id: int = OTHER_ID,
    **kwargs: object,
) -> TopicMeta:
    """Build a topic authored by someone else by default."""
    return TopicMeta(
        page_id=page_id, author_id=author_id, created_at=created_at, **kwargs
    )


def make_collector(
    topics: list[TopicMeta],
    visible: bool = True,
    read: set[str] | None = None,
) -> tuple[TopicCollector, MagicMock, MagicMock, MagicMock]:
    """Build a collector over mock collaborators."""
    source = MagicMock()
    source.list_topics_created_between.side_effect = lambda since, until: [
        t for t in topics if since <= t.created_at <= until
    ]
    authorizer = MagicMock()
    authorizer.may_user_see_page.return_value = visible
    tracker = MagicMock()
    read_ids = read or set()
    tracker.has_user_read.side_effect = lambda uid, pid: pid in read_ids
    return TopicCollector(source, authorizer, tracker), source, authorizer, tracker


class TestMinAgeWindow:
    """Tests for min_age_window."""

    def test_daily_quarter(self) -> None:
        """Test a daily interval waits six hours."""
        assert min_age_window(24 * 60) == timedelta(hours=6)

    def test_custom_divisor(self) -> None:
        """Test the divisor is honored."""
        assert min_age_window(60, divisor=2) == timedelta(minutes=30)

    @pytest.mark.parametrize(("interval", "divisor"), [(0, 4), (-1, 4), (60, 0)])
    def test_rejects_non_positive(self, interval: int, divisor: int) -> None:
        """Test non-positive arguments raise."""
        with pytest.raises(ValueError, match="must be positive"):
            min_age_window(interval, divisor)


class TestThrottle:
    """Tests for the minimum age horizon."""

    def test_young_topics_wait(self) -> None:
        """Test topics newer than now - window are not collected."""
        old = make_topic("old", FIXED_NOW - 10 * ONE_HOUR)
        young = make_topic("young", FIXED_NOW - ONE_HOUR)
        collector, *_ = make_collector([old, young])

        result = collector.collect(
            USER_ID, FIXED_NOW - ONE_DAY, FIXED_NOW, timedelta(hours=6)
        )

        assert [t.page_id for t in result] == ["old"]

    def test_horizon_before_cursor(self) -> None:
        """Test an inverted window yields nothing without querying."""
        collector, source, *_ = make_collector([])

        result = collector.collect(
            USER_ID, FIXED_NOW - ONE_HOUR, FIXED_NOW, timedelta(hours=6)
        )

        assert result == []
        source.list_topics_created_between.assert_not_called()

    def test_queries_inclusive_window(self) -> None:
        """Test the source is asked for [cursor, horizon]."""
        collector, source, *_ = make_collector([])
        since = FIXED_NOW - ONE_DAY

        collector.collect(USER_ID, since, FIXED_NOW, timedelta(hours=6))

        source.list_topics_created_between.assert_called_once_with(
            since, FIXED_NOW - timedelta(hours=6)
        )


class TestExclusions:
    """Tests for topics that never make a summary."""

    def test_own_topics(self) -> None:
        """Test the user's own topics are skipped."""
        own = make_topic("own", FIXED_NOW - ONE_DAY, author_id=USER_ID)
        collector, *_ = make_collector([own])

        assert collector.collect(
            USER_ID, FIXED_NOW - 2 * ONE_DAY, FIXED_NOW, timedelta(hours=6)
        ) == []

    def test_about_category_pages(self) -> None:
        """Test category description pages are skipped."""
        about = make_topic(
            "about", FIXED_NOW - ONE_DAY, page_role=PageRole.ABOUT_CATEGORY
        )
        collector, *_ = make_collector([about])

        assert collector.collect(
            USER_ID, FIXED_NOW - 2 * ONE_DAY, FIXED_NOW, timedelta(hours=6)
        ) == []

    def test_deleted_topics(self) -> None:
        """Test deleted topics are skipped."""
        gone = make_topic("gone", FIXED_NOW - ONE_DAY, deleted=True)
        collector, *_ = make_collector([gone])

        assert collector.collect(
            USER_ID, FIXED_NOW - 2 * ONE_DAY, FIXED_NOW, timedelta(hours=6)
        ) == []

    def test_invisible_topics(self) -> None:
        """Test topics the user may not see are skipped."""
        hidden = make_topic("hidden", FIXED_NOW - ONE_DAY)
        collector, _, authorizer, _ = make_collector([hidden], visible=False)

        assert collector.collect(
            USER_ID, FIXED_NOW - 2 * ONE_DAY, FIXED_NOW, timedelta(hours=6)
        ) == []
        authorizer.may_user_see_page.assert_called_once_with(USER_ID, hidden)

    def test_read_topics(self) -> None:
        """Test already read topics are skipped."""
        seen = make_topic("seen", FIXED_NOW - ONE_DAY)
        fresh = make_topic("fresh", FIXED_NOW - ONE_DAY)
        collector, *_ = make_collector([seen, fresh], read={"seen"})

        result = collector.collect(
            USER_ID, FIXED_NOW - 2 * ONE_DAY, FIXED_NOW, timedelta(hours=6)
        )

        assert [t.page_id for t in result] == ["fresh"]

    def test_authorization_error_fails_closed(self) -> None:
        """Test a lookup failure excludes the topic instead of raising."""
        broken = make_topic("broken", FIXED_NOW - ONE_DAY)
        fine = make_topic("fine", FIXED_NOW - ONE_DAY)
        collector, _, authorizer, _ = make_collector([broken, fine])

        def check(user_id: int, topic: TopicMeta) -> bool:
            if topic.page_id == "broken":
                raise AuthorizationLookupError("no category", page_id="broken")
            return True

        authorizer.may_user_see_page.side_effect = check

        result = collector.collect(
            USER_ID, FIXED_NOW - 2 * ONE_DAY, FIXED_NOW, timedelta(hours=6)
        )

        assert [t.page_id for t in result] == ["fine"]


class TestOrdering:
    """Tests for candidate ordering."""

    def test_oldest_first_then_page_id(self) -> None:
        """Test candidates sort by creation time, ties by page id."""
        at = FIXED_NOW - ONE_DAY
        topics = [
            make_topic("c", at),
            make_topic("a", at - ONE_HOUR),
            make_topic("b", at),
        ]
        collector, *_ = make_collector(topics)

        result = collector.collect(
            USER_ID, FIXED_NOW - 2 * ONE_DAY, FIXED_NOW, timedelta(hours=6)
        )

        assert [t.page_id for t in result] == ["a", "b", "c"]
