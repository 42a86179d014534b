"""End-to-end scheduling scenarios driven by a fake clock."""

import tempfile
from collections.abc import Generator
from datetime import timedelta
from pathlib import Path

import pytest

from activity_digest.preferences.constants import (
    DO_NOT_SEND,
    ONE_DAY_MINUTES,
    ONE_WEEK_MINUTES,
)
from activity_digest.preferences.models import SummaryPreferences
from activity_digest.scheduler import DigestScheduler, FakeClock, SchedulerMetrics
from activity_digest.store.metrics import StoreMetrics
from activity_digest.store.models import Category
from activity_digest.store.store import DigestStore
from activity_digest.topics.models import PageRole, TopicMeta
from tests.helpers.digest import add_topics, add_user, make_scheduler, set_everyone
from tests.helpers.time import FIXED_NOW, ONE_DAY, ONE_HOUR, ONE_WEEK


T0 = FIXED_NOW


@pytest.fixture
def store() -> Generator[DigestStore]:
    """Connected store with daily defaults."""
    StoreMetrics.reset()
    SchedulerMetrics.reset()
    with tempfile.TemporaryDirectory() as tmpdir:
        store = DigestStore(Path(tmpdir) / "digest.sqlite")
        store.connect()
        set_everyone(store)
        yield store
        store.close()


@pytest.fixture
def clock() -> FakeClock:
    """Clock starting at T0."""
    return FakeClock(T0)


@pytest.fixture
def author(store: DigestStore) -> int:
    """A user who writes topics."""
    return add_user(store, "author", T0 - 30 * ONE_DAY)


def page_ids(scheduler: DigestScheduler, user_id: int) -> list[str] | None:
    """Evaluate one user now; page ids of the summary or None."""
    ((_, summary),) = scheduler.process_batch([user_id])
    if summary is None:
        return None
    return [t.page_id for t in summary.topics]


class TestNewUserGracePeriod:
    """A daily user is not mailed before one interval has passed."""

    def test_23_hours_no_25_hours_yes(
        self, store: DigestStore, clock: FakeClock, author: int
    ) -> None:
        """Test a new user gets the first summary only after a day."""
        user = add_user(store, "newbie", T0)
        add_topics(store, author, T0 + ONE_HOUR, count=1)
        scheduler = make_scheduler(store, clock)

        clock.advance(23 * ONE_HOUR)
        assert page_ids(scheduler, user) is None

        clock.advance(2 * ONE_HOUR)
        assert page_ids(scheduler, user) == ["t00"]


class TestCadence:
    """Summaries repeat at the resolved interval."""

    def test_daily(self, store: DigestStore, clock: FakeClock, author: int) -> None:
        """Test a daily user is mailed once per day with only new topics."""
        user = add_user(store, "daily", T0 - 30 * ONE_DAY)
        add_topics(store, author, T0 - ONE_DAY, count=1, prefix="a")
        scheduler = make_scheduler(store, clock)

        assert page_ids(scheduler, user) == ["a00"]

        add_topics(store, author, T0 + ONE_HOUR, count=1, prefix="b")
        clock.advance(12 * ONE_HOUR)
        assert page_ids(scheduler, user) is None

        clock.advance(12 * ONE_HOUR)
        assert page_ids(scheduler, user) == ["b00"]

    def test_weekly_group(
        self, store: DigestStore, clock: FakeClock, author: int
    ) -> None:
        """Test a weekly group's interval overrides the daily default."""
        user = add_user(store, "weekly", T0 - 30 * ONE_DAY)
        group = store.create_group("weekly")
        store.set_group_preferences(
            group, SummaryPreferences(summary_email_interval_mins=ONE_WEEK_MINUTES)
        )
        store.add_group_member(group, user)
        add_topics(store, author, T0 - 2 * ONE_DAY, count=1, prefix="a")
        scheduler = make_scheduler(store, clock)

        assert page_ids(scheduler, user) == ["a00"]

        add_topics(store, author, T0 + ONE_HOUR, count=1, prefix="b")
        clock.advance(2 * ONE_DAY)
        assert page_ids(scheduler, user) is None

        clock.advance(ONE_WEEK - 2 * ONE_DAY)
        assert page_ids(scheduler, user) == ["b00"]

    def test_daily_and_weekly_in_one_batch(
        self, store: DigestStore, clock: FakeClock, author: int
    ) -> None:
        """Test one batch gives each user the topics since its own cursor."""
        daily = add_user(store, "daily", T0 - 30 * ONE_DAY)
        weekly = add_user(store, "weekly", T0 - 30 * ONE_DAY)
        group = store.create_group("weekly")
        store.set_group_preferences(
            group, SummaryPreferences(summary_email_interval_mins=ONE_WEEK_MINUTES)
        )
        store.add_group_member(group, weekly)
        add_topics(store, author, T0 - 2 * ONE_DAY, count=1, prefix="a")
        scheduler = make_scheduler(store, clock)

        first = scheduler.process_batch([daily, weekly])
        assert [[t.page_id for t in s.topics] for _, s in first if s] == [
            ["a00"],
            ["a00"],
        ]

        add_topics(store, author, T0 + ONE_HOUR, count=1, prefix="b")
        clock.advance(ONE_DAY + ONE_HOUR)
        assert page_ids(scheduler, daily) == ["b00"]

        add_topics(store, author, T0 + 5 * ONE_DAY, count=1, prefix="c")
        clock.set(T0 + ONE_WEEK + ONE_HOUR)
        results = dict(scheduler.process_batch([daily, weekly]))

        daily_summary = results[daily]
        weekly_summary = results[weekly]
        assert daily_summary is not None
        assert weekly_summary is not None
        assert [t.page_id for t in daily_summary.topics] == ["c00"]
        assert sorted(t.page_id for t in weekly_summary.topics) == ["b00", "c00"]
        assert weekly_summary.window_start < daily_summary.window_start

    def test_first_group_wins(
        self, store: DigestStore, clock: FakeClock, author: int
    ) -> None:
        """Test the earlier explicit group decides over later ones."""
        user = add_user(store, "member", T0 - 30 * ONE_DAY)
        never = store.create_group("never")
        store.set_group_preferences(
            never, SummaryPreferences(summary_email_interval_mins=DO_NOT_SEND)
        )
        hourly = store.create_group("hourly")
        store.set_group_preferences(
            hourly, SummaryPreferences(summary_email_interval_mins=60)
        )
        store.add_group_member(never, user)
        store.add_group_member(hourly, user)
        add_topics(store, author, T0 - ONE_DAY, count=1)
        scheduler = make_scheduler(store, clock)

        assert page_ids(scheduler, user) is None


class TestPreferenceChanges:
    """Preference edits take effect on the next evaluation."""

    def test_everyone_toggle(
        self, store: DigestStore, clock: FakeClock, author: int
    ) -> None:
        """Test disabling and re-enabling the site default."""
        user = add_user(store, "member", T0 - 30 * ONE_DAY)
        add_topics(store, author, T0 - ONE_DAY, count=1)
        scheduler = make_scheduler(store, clock)

        set_everyone(store, interval_minutes=DO_NOT_SEND)
        assert page_ids(scheduler, user) is None
        stats = store.load_user_stats(user)
        assert stats is not None
        assert stats.next_summary_email_at is None

        set_everyone(store, interval_minutes=ONE_DAY_MINUTES)
        assert page_ids(scheduler, user) == ["t00"]

    def test_user_opt_out_beats_group(
        self, store: DigestStore, clock: FakeClock, author: int
    ) -> None:
        """Test a user's own setting wins over the site default."""
        user = add_user(store, "quiet", T0 - 30 * ONE_DAY)
        store.set_user_preferences(
            user, SummaryPreferences(summary_email_interval_mins=DO_NOT_SEND)
        )
        add_topics(store, author, T0 - ONE_DAY, count=1)
        scheduler = make_scheduler(store, clock)

        clock.advance(ONE_WEEK)
        assert page_ids(scheduler, user) is None


class TestCap:
    """At most ten topics per summary; the rest are consumed."""

    def test_dropped_topics_never_reappear(
        self, store: DigestStore, clock: FakeClock, author: int
    ) -> None:
        """Test 15 candidates give 10 topics and the other 5 are gone."""
        user = add_user(store, "reader", T0 - 30 * ONE_DAY)
        created = add_topics(store, author, T0 - 2 * ONE_DAY, count=15)
        scheduler = make_scheduler(store, clock)

        ((_, summary),) = scheduler.process_batch([user])
        assert summary is not None
        assert [t.page_id for t in summary.topics] == created[:4:-1]
        assert summary.dropped_count == 5

        clock.advance(ONE_DAY)
        assert page_ids(scheduler, user) is None

        add_topics(store, author, T0 + ONE_DAY, count=1, prefix="new")
        clock.advance(ONE_DAY)
        assert page_ids(scheduler, user) == ["new00"]


class TestActivity:
    """Recent visitors are skipped unless they opted in."""

    def test_recently_active_skipped(
        self, store: DigestStore, clock: FakeClock, author: int
    ) -> None:
        """Test a visit two hours ago suppresses the summary."""
        user = add_user(store, "visitor", T0 - 30 * ONE_DAY)
        store.record_visit(user, T0 - 2 * ONE_HOUR)
        add_topics(store, author, T0 - ONE_DAY, count=1)
        scheduler = make_scheduler(store, clock)

        assert page_ids(scheduler, user) is None
        stats = store.load_user_stats(user)
        assert stats is not None
        assert stats.next_summary_email_at == T0 + ONE_DAY

        clock.advance(ONE_DAY)
        assert page_ids(scheduler, user) == ["t00"]

    def test_if_active_opt_in(
        self, store: DigestStore, clock: FakeClock, author: int
    ) -> None:
        """Test send_even_if_active mails visitors too."""
        set_everyone(store, if_active=True)
        user = add_user(store, "visitor", T0 - 30 * ONE_DAY)
        store.record_visit(user, T0 - 2 * ONE_HOUR)
        add_topics(store, author, T0 - ONE_DAY, count=1)
        scheduler = make_scheduler(store, clock)

        assert page_ids(scheduler, user) == ["t00"]


class TestTopicFilters:
    """Topics a user must not be told about."""

    def test_read_topics_excluded(
        self, store: DigestStore, clock: FakeClock, author: int
    ) -> None:
        """Test topics the user already read are left out."""
        user = add_user(store, "reader", T0 - 30 * ONE_DAY)
        add_topics(store, author, T0 - ONE_DAY, count=2)
        store.mark_read(user, "t00", T0 - ONE_HOUR)
        scheduler = make_scheduler(store, clock)

        assert page_ids(scheduler, user) == ["t01"]

    def test_own_and_about_pages_excluded(
        self, store: DigestStore, clock: FakeClock, author: int
    ) -> None:
        """Test the user's own topics and category about pages are left out."""
        user = add_user(store, "writer", T0 - 30 * ONE_DAY)
        add_topics(store, user, T0 - ONE_DAY, count=1, prefix="own")
        add_topics(
            store,
            author,
            T0 - ONE_DAY,
            count=1,
            prefix="about",
            page_role=PageRole.ABOUT_CATEGORY,
        )
        add_topics(store, author, T0 - ONE_DAY, count=1, prefix="ok")
        scheduler = make_scheduler(store, clock)

        assert page_ids(scheduler, user) == ["ok00"]

    def test_young_topics_deferred_not_lost(
        self, store: DigestStore, clock: FakeClock, author: int
    ) -> None:
        """Test a topic younger than a quarter interval waits a cycle."""
        user = add_user(store, "reader", T0 - 30 * ONE_DAY)
        add_topics(store, author, T0 - ONE_DAY, count=1, prefix="old")
        add_topics(store, author, T0 - ONE_HOUR, count=1, prefix="young")
        scheduler = make_scheduler(store, clock)

        assert page_ids(scheduler, user) == ["old00"]

        clock.advance(ONE_DAY)
        assert page_ids(scheduler, user) == ["young00"]

    def test_categories(
        self, store: DigestStore, clock: FakeClock, author: int
    ) -> None:
        """Test restricted categories reach staff only; opted-out reach nobody."""
        for category in (
            Category(category_id=1, name="General"),
            Category(category_id=2, name="Staff", staff_only=True),
            Category(category_id=3, name="Staff Sub", parent_id=2),
            Category(category_id=4, name="Unlisted", unlisted=True),
            Category(category_id=5, name="Quiet", include_in_summaries=False),
        ):
            store.upsert_category(category)
        member = add_user(store, "member", T0 - 30 * ONE_DAY)
        staff = add_user(store, "staff", T0 - 30 * ONE_DAY, is_staff=True)
        for category_id in range(1, 6):
            add_topics(
                store,
                author,
                T0 - ONE_DAY + category_id * ONE_HOUR,
                count=1,
                prefix=f"c{category_id}-",
                category_id=category_id,
            )
        scheduler = make_scheduler(store, clock)

        assert page_ids(scheduler, member) == ["c1-00"]
        assert page_ids(scheduler, staff) == ["c4-00", "c3-00", "c2-00", "c1-00"]

    def test_private_messages(
        self, store: DigestStore, clock: FakeClock, author: int
    ) -> None:
        """Test private messages reach their members only."""
        member = add_user(store, "member", T0 - 30 * ONE_DAY)
        outsider = add_user(store, "outsider", T0 - 30 * ONE_DAY, is_staff=True)
        store.create_topic(
            TopicMeta(
                page_id="pm",
                author_id=author,
                created_at=T0 - ONE_DAY,
                page_role=PageRole.PRIVATE_MESSAGE,
            ),
            member_ids=[author, member],
        )
        scheduler = make_scheduler(store, clock)

        assert page_ids(scheduler, member) == ["pm"]
        assert page_ids(scheduler, outsider) is None


class TestSimulation:
    """A few weeks of daily activity."""

    def test_each_topic_delivered_once(
        self, store: DigestStore, clock: FakeClock, author: int
    ) -> None:
        """Test every topic reaches a daily reader exactly once."""
        user = add_user(store, "reader", T0 - 30 * ONE_DAY)
        scheduler = make_scheduler(store, clock)
        delivered: list[str] = []
        expected: list[str] = []

        for day in range(14):
            expected += add_topics(
                store,
                author,
                clock.now() + ONE_HOUR,
                count=3,
                prefix=f"d{day:02d}-",
                spacing=5 * ONE_HOUR,
            )
            for _ in range(8):
                clock.advance(3 * ONE_HOUR)
                delivered += page_ids(scheduler, user) or []

        assert sorted(delivered) == sorted(expected[: len(delivered)])
        assert len(delivered) == len(set(delivered))
        assert len(store.list_digests(user)) <= 14
        generated = [d.generated_at for d in store.list_digests(user)]
        assert all(b - a >= ONE_DAY for a, b in zip(generated, generated[1:]))
        # only the last day's topics may still be waiting
        assert len(expected) - len(delivered) <= 3

    def test_batch_run_simulation(
        self, store: DigestStore, clock: FakeClock, author: int
    ) -> None:
        """Test periodic run_once calls mail each reader once per day."""
        readers = [add_user(store, f"r{i}", T0 - 30 * ONE_DAY) for i in range(3)]
        counts = dict.fromkeys(readers, 0)

        with make_scheduler(store, clock, max_workers=2) as scheduler:
            for day in range(3):
                add_topics(
                    store,
                    author,
                    clock.now() - 12 * ONE_HOUR,
                    count=2,
                    prefix=f"d{day}-",
                )
                for _ in range(24):
                    clock.advance(ONE_HOUR)
                    result = scheduler.run_once()
                    assert result is not None
                    for summary in result.summaries:
                        counts[summary.user_id] += 1

        assert counts == dict.fromkeys(readers, 3)

    def test_disabled_users_do_not_starve_enabled_ones(
        self, store: DigestStore, clock: FakeClock, author: int
    ) -> None:
        """Test a daily reader is mailed while opted-out users fill a page."""
        set_everyone(store, interval_minutes=DO_NOT_SEND)
        for i in range(4):
            add_user(store, f"quiet{i}", T0 - 30 * ONE_DAY)
        reader = add_user(store, "reader", T0 - 30 * ONE_DAY)
        store.set_user_preferences(
            reader, SummaryPreferences(summary_email_interval_mins=ONE_DAY_MINUTES)
        )
        scheduler = make_scheduler(store, clock, batch_size=4)
        delivered = 0

        for day in range(5):
            add_topics(
                store, author, clock.now() - 12 * ONE_HOUR, count=1, prefix=f"d{day}-"
            )
            for _ in range(24):
                clock.advance(ONE_HOUR)
                result = scheduler.run_once()
                assert result is not None
                # author and the four quiet users are listed on every run
                assert result.users_evaluated >= 5
                delivered += sum(1 for s in result.summaries if s.user_id == reader)

        assert delivered == 5

    def test_long_absence(
        self, store: DigestStore, clock: FakeClock, author: int
    ) -> None:
        """Test a month of backlog yields one capped summary, then quiet."""
        user = add_user(store, "away", T0 - 30 * ONE_DAY)
        add_topics(store, author, T0, count=30, spacing=ONE_DAY)
        scheduler = make_scheduler(store, clock)

        clock.advance(60 * ONE_DAY)
        ((_, summary),) = scheduler.process_batch([user])
        assert summary is not None
        assert len(summary.topics) == 10
        assert summary.dropped_count == 20

        clock.advance(ONE_DAY)
        assert page_ids(scheduler, user) is None


def test_min_age_scales_with_interval(
    store: DigestStore, clock: FakeClock, author: int
) -> None:
    """Test an hourly user waits only fifteen minutes for new topics."""
    user = add_user(store, "hourly", T0 - 30 * ONE_DAY)
    store.set_user_preferences(user, SummaryPreferences(summary_email_interval_mins=60))
    add_topics(store, author, T0 - timedelta(minutes=20), count=1)
    scheduler = make_scheduler(store, clock)

    assert page_ids(scheduler, user) == ["t00"]
