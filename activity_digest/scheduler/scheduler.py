"""Digest scheduler: decides, per user, whether a summary is due and builds it."""

import threading
import uuid
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Protocol

import structlog

from activity_digest.data_model.base import ensure_utc
from activity_digest.eligibility.gate import EligibilityGate
from activity_digest.observability.logging import bind_run_context, clear_run_context
from activity_digest.preferences.errors import ConfigurationError
from activity_digest.preferences.resolver import PreferenceResolver
from activity_digest.scheduler.clock import Clock
from activity_digest.scheduler.metrics import SchedulerMetrics
from activity_digest.scheduler.models import (
    ActivitySummary,
    BatchResult,
    UserOutcome,
    UserResult,
)
from activity_digest.scheduler.single_flight import SingleFlightGuard
from activity_digest.store.models import DigestRecord
from activity_digest.store.state_machine import RunState, RunStateMachine
from activity_digest.store.store import DigestStore
from activity_digest.topics.collector import TopicCollector, min_age_window
from activity_digest.topics.constants import MAX_TOP_TOPICS, MIN_TOPIC_AGE_DIVISOR
from activity_digest.topics.selector import TopicSelector


logger = structlog.get_logger()

# The cursor is exclusive of the scan horizon
_CURSOR_STEP = timedelta(microseconds=1)


class Mailer(Protocol):
    """Receives finished summaries."""

    def send(self, summary: ActivitySummary) -> None:
        """Deliver or queue a summary."""
        ...


class DigestScheduler:
    """Runs the per-user pipeline: resolve, gate, collect, select, persist.

    Each user is evaluated inside one ``BEGIN IMMEDIATE`` transaction, so
    the write of ``next_summary_email_at`` doubles as the guard against a
    concurrent evaluation producing a second summary for the same window.
    """

    def __init__(  # noqa: PLR0913
        self,
        store: DigestStore,
        resolver: PreferenceResolver,
        collector: TopicCollector,
        selector: TopicSelector,
        clock: Clock,
        gate: EligibilityGate | None = None,
        mailer: Mailer | None = None,
        min_topic_age_divisor: int = MIN_TOPIC_AGE_DIVISOR,
        max_top_topics: int = MAX_TOP_TOPICS,
        max_workers: int = 1,
        batch_size: int = 500,
        lease_ttl: timedelta = timedelta(minutes=10),
        run_start_hooks: Sequence[Callable[[], None]] = (),
    ) -> None:
        """Initialize the scheduler.

        Args:
            store: Digest store.
            resolver: Effective preference lookup.
            collector: Candidate topic lookup.
            selector: Ranking and cap.
            clock: Time source; core logic never reads the wall clock.
            gate: Eligibility gate.
            mailer: Receives summaries produced by run_once().
            min_topic_age_divisor: Topics must be interval / divisor old.
            max_top_topics: Cap on topics per summary.
            max_workers: Users evaluated in parallel.
            batch_size: Candidate ids fetched per page in run_once().
            lease_ttl: Lifetime of the batch lease.
            run_start_hooks: Called at the start of every run_once(),
                typically to clear caches.
        """
        if min_topic_age_divisor <= 0:
            msg = f"Divisor must be positive, got {min_topic_age_divisor}"
            raise ValueError(msg)
        self._store = store
        self._resolver = resolver
        self._collector = collector
        self._selector = selector
        self._clock = clock
        self._gate = gate or EligibilityGate()
        self._mailer = mailer
        self._divisor = min_topic_age_divisor
        self._max_top_topics = max_top_topics
        self._max_workers = max_workers
        self._batch_size = batch_size
        self._run_start_hooks = list(run_start_hooks)
        self._guard = SingleFlightGuard(store, ttl=lease_ttl)
        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = threading.Lock()
        self._metrics = SchedulerMetrics.get_instance()
        self._log = logger.bind(component="scheduler")

    @property
    def clock(self) -> Clock:
        """The scheduler's time source."""
        return self._clock

    @property
    def guard(self) -> SingleFlightGuard:
        """The batch single-flight guard."""
        return self._guard

    # ===== Batch processing =====

    def process_batch(
        self, user_ids: Sequence[object], now: datetime | None = None
    ) -> list[tuple[object, ActivitySummary | None]]:
        """Evaluate a batch of users.

        Args:
            user_ids: Users to evaluate. Unknown or malformed ids yield None.
            now: Evaluation time; defaults to the clock.

        Returns:
            ``(user_id, summary or None)`` in input order.

        Raises:
            ConfigurationError: If preferences cannot be resolved at all.
        """
        now = ensure_utc(now) if now is not None else self._clock.now()
        return [(r.user_id, r.summary) for r in self.evaluate_users(user_ids, now)]

    def evaluate_users(
        self, user_ids: Sequence[object], now: datetime
    ) -> list[UserResult]:
        """Evaluate a batch of users, keeping the outcome of each.

        Args:
            user_ids: Users to evaluate.
            now: Evaluation time.

        Returns:
            One result per input id, in input order.
        """
        if self._max_workers <= 1 or len(user_ids) <= 1:
            return [self._evaluate_user(user_id, now) for user_id in user_ids]

        executor = self._get_executor()
        futures = [
            executor.submit(self._evaluate_user, user_id, now) for user_id in user_ids
        ]
        return [future.result() for future in futures]

    def _get_executor(self) -> ThreadPoolExecutor:
        """Worker pool shared by every batch.

        Each worker thread keeps one store connection, so reusing the pool
        bounds the number of open connections by ``max_workers``.
        """
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._max_workers,
                    thread_name_prefix="digest-worker",
                )
            return self._executor

    def close(self) -> None:
        """Shut down the worker pool."""
        with self._executor_lock:
            executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)

    def __enter__(self) -> "DigestScheduler":
        """Context manager entry."""
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Context manager exit."""
        self.close()

    def _evaluate_user(self, user_id: object, now: datetime) -> UserResult:
        """Evaluate one user with failure isolation."""
        if isinstance(user_id, bool) or not isinstance(user_id, int) or user_id < 1:
            self._metrics.record_outcome(UserOutcome.UNKNOWN.value)
            return UserResult(user_id=user_id, outcome=UserOutcome.UNKNOWN)

        try:
            with self._store.user_transaction(user_id):
                result = self._evaluate_in_transaction(user_id, now)
        except ConfigurationError:
            raise
        except Exception as e:  # noqa: BLE001
            self._log.error(
                "user_skipped_error",
                user_id=user_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            result = UserResult(
                user_id=user_id, outcome=UserOutcome.FAILED, error=str(e)
            )

        self._metrics.record_outcome(result.outcome.value, result.reason)
        return result

    def _evaluate_in_transaction(self, user_id: int, now: datetime) -> UserResult:
        """Gate, collect and persist one user inside its transaction.

        The cursor advances to just past the scan horizon rather than to
        ``now``, so topics still inside the age window stay eligible for
        the next summary.
        """
        stats = self._store.load_user_stats(user_id)
        if stats is None:
            return UserResult(user_id=user_id, outcome=UserOutcome.UNKNOWN)

        prefs = self._resolver.resolve(user_id)
        decision = self._gate.evaluate(now, stats, prefs)

        if not decision.due:
            if decision.updated_stats != stats:
                self._store.save_user_stats(decision.updated_stats)
            self._log.debug(
                "user_not_due",
                user_id=user_id,
                reason=decision.reason.value,
                next_summary_email_at=_iso(
                    decision.updated_stats.next_summary_email_at
                ),
            )
            return UserResult(
                user_id=user_id,
                outcome=UserOutcome.NOT_DUE,
                reason=decision.reason.value,
            )

        window = min_age_window(prefs.interval_minutes, self._divisor)
        horizon = now - window
        cursor = max(stats.topics_new_since, horizon + _CURSOR_STEP)
        next_at = now + prefs.interval

        candidates = self._collector.collect(
            user_id, stats.topics_new_since, now, window
        )

        if not candidates:
            self._store.save_user_stats(
                stats.model_copy(
                    update={
                        "next_summary_email_at": next_at,
                        "topics_new_since": cursor,
                    }
                )
            )
            self._log.info(
                "user_evaluated",
                user_id=user_id,
                outcome=UserOutcome.EMPTY.value,
                next_summary_email_at=next_at.isoformat(),
            )
            return UserResult(user_id=user_id, outcome=UserOutcome.EMPTY)

        selection = self._selector.select(candidates, cap=self._max_top_topics)
        user = self._store.load_user(user_id)
        if user is None:
            return UserResult(user_id=user_id, outcome=UserOutcome.UNKNOWN)

        summary = ActivitySummary(
            user_id=user_id,
            username=user.username,
            email=user.email,
            topics=selection.selected,
            generated_at=now,
            window_start=stats.topics_new_since,
            window_end=horizon,
            dropped_count=len(selection.dropped),
        )

        self._store.save_user_stats(
            stats.model_copy(
                update={
                    "next_summary_email_at": next_at,
                    "topics_new_since": cursor,
                    "last_summary_email_at": now,
                }
            )
        )
        self._store.record_digest(
            DigestRecord(
                user_id=user_id,
                generated_at=now,
                window_start=stats.topics_new_since,
                window_end=horizon,
                page_ids=tuple(t.page_id for t in selection.selected),
                dropped_count=len(selection.dropped),
            )
        )

        self._metrics.record_selection(
            len(selection.selected), len(selection.dropped)
        )
        self._log.info(
            "digest_produced",
            user_id=user_id,
            topics=len(selection.selected),
            dropped=len(selection.dropped),
            window_start=stats.topics_new_since.isoformat(),
            window_end=horizon.isoformat(),
            next_summary_email_at=next_at.isoformat(),
        )
        return UserResult(user_id=user_id, outcome=UserOutcome.DIGEST, summary=summary)

    # ===== Recurring job =====

    def run_once(self, now: datetime | None = None) -> BatchResult | None:
        """Run one batch over every user whose summary may be due.

        Args:
            now: Run time; defaults to the clock.

        Returns:
            The batch result, or None if another run holds the guard.

        Raises:
            ConfigurationError: If preferences cannot be resolved at all.
        """
        now = ensure_utc(now) if now is not None else self._clock.now()

        if not self._guard.acquire(now):
            self._metrics.record_run_skipped()
            self._log.info("batch_already_running", now=now.isoformat())
            return None

        run_id = str(uuid.uuid4())
        bind_run_context(run_id)
        try:
            return self._run(run_id, now)
        finally:
            clear_run_context()
            self._guard.release()

    def _run(self, run_id: str, now: datetime) -> BatchResult:
        log = self._log.bind(run_id=run_id)
        state = RunStateMachine(run_id)
        self._metrics.record_run_started()

        for hook in self._run_start_hooks:
            hook()

        self._store.begin_run(run_id, now)
        log.info("batch_started", now=now.isoformat())

        try:
            state.transition(RunState.RUN_EVALUATING)
            results = self._evaluate_candidates(now, log)

            state.transition(RunState.RUN_DELIVERING)
            summaries = [r.summary for r in results if r.summary is not None]
            delivery_failures = self._deliver(summaries, log)

            state.transition(RunState.RUN_FINISHED_SUCCESS)
        except Exception as e:
            if not state.is_terminal():
                state.transition(RunState.RUN_FINISHED_FAILURE)
            self._metrics.record_run_failed()
            self._store.end_run(
                run_id,
                self._finish_time(now),
                success=False,
                error_summary=f"{type(e).__name__}: {e}",
            )
            log.error("batch_failed", error_type=type(e).__name__, error=str(e))
            raise

        result = BatchResult(
            run_id=run_id,
            started_at=now,
            finished_at=self._finish_time(now),
            user_results=results,
            delivery_failures=delivery_failures,
        )
        self._store.end_run(
            run_id,
            result.finished_at,
            success=True,
            users_evaluated=result.users_evaluated,
            digests_produced=result.digests_produced,
            users_failed=result.users_failed,
        )
        log.info(
            "batch_finished",
            users_evaluated=result.users_evaluated,
            digests_produced=result.digests_produced,
            users_failed=result.users_failed,
            delivery_failures=delivery_failures,
        )
        return result

    def _evaluate_candidates(
        self, now: datetime, log: structlog.stdlib.BoundLogger
    ) -> list[UserResult]:
        """Evaluate every candidate user, ``batch_size`` ids at a time."""
        results: list[UserResult] = []
        after_user_id = 0
        while True:
            user_ids = self._store.list_user_ids_to_evaluate(
                now, self._batch_size, after_user_id=after_user_id
            )
            if not user_ids:
                break
            log.debug("batch_page", first=user_ids[0], size=len(user_ids))
            results.extend(self.evaluate_users(user_ids, now))
            after_user_id = user_ids[-1]
        return results

    def _deliver(
        self, summaries: list[ActivitySummary], log: structlog.stdlib.BoundLogger
    ) -> int:
        """Hand summaries to the mailer; failures are logged and counted."""
        if self._mailer is None:
            return 0
        failures = 0
        for summary in summaries:
            try:
                self._mailer.send(summary)
            except Exception as e:  # noqa: BLE001
                failures += 1
                self._metrics.record_delivery_failure()
                log.warning(
                    "summary_delivery_failed",
                    user_id=summary.user_id,
                    error_type=type(e).__name__,
                    error=str(e),
                )
        return failures

    def _finish_time(self, started: datetime) -> datetime:
        return max(started, self._clock.now())


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None
