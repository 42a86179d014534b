"""Wiring of a scheduler from application settings."""

from datetime import timedelta

from activity_digest.authz.authorizer import CategoryAuthorizer
from activity_digest.preferences.resolver import PreferenceResolver
from activity_digest.scheduler.clock import Clock, SystemClock
from activity_digest.scheduler.scheduler import DigestScheduler, Mailer
from activity_digest.settings.app import AppSettings
from activity_digest.store.store import DigestStore
from activity_digest.topics.collector import TopicCollector
from activity_digest.topics.selector import SCORERS, TopicSelector


def build_scheduler(
    store: DigestStore,
    settings: AppSettings,
    clock: Clock | None = None,
    mailer: Mailer | None = None,
) -> DigestScheduler:
    """Build a scheduler with store-backed collaborators.

    The resolver and authorizer caches are invalidated by store change
    notifications and cleared at the start of every run.

    Args:
        store: Connected digest store.
        settings: Application settings.
        clock: Time source; the wall clock if omitted.
        mailer: Summary sink for run_once().

    Returns:
        The scheduler.
    """
    resolver = PreferenceResolver(store)
    authorizer = CategoryAuthorizer(store)
    store.add_change_listener(resolver.on_store_change)
    store.add_change_listener(authorizer.on_store_change)

    return DigestScheduler(
        store=store,
        resolver=resolver,
        collector=TopicCollector(store, authorizer, store),
        selector=TopicSelector(
            scorer=SCORERS[settings.topic_ranking], cap=settings.max_top_topics
        ),
        clock=clock or SystemClock(),
        mailer=mailer,
        min_topic_age_divisor=settings.min_topic_age_divisor,
        max_top_topics=settings.max_top_topics,
        max_workers=settings.max_workers,
        batch_size=settings.batch_size,
        lease_ttl=timedelta(seconds=settings.lease_seconds),
        run_start_hooks=(resolver.clear_cache, authorizer.clear_cache),
    )
