"""SQLite digest store implementation."""

import json
import sqlite3
import threading
import time
import uuid
from collections.abc import Callable, Generator, Iterable
from contextlib import AbstractContextManager, contextmanager
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import structlog

from activity_digest.preferences.models import SummaryPreferences
from activity_digest.store.errors import (
    ConnectionError as StoreConnectionError,
    RunNotFoundError,
    TransientStorageError,
    UserNotFoundError,
)
from activity_digest.store.metrics import StoreMetrics, TransactionContext
from activity_digest.store.migrations import MigrationManager
from activity_digest.store.models import (
    Category,
    DigestRecord,
    Run,
    UserRecord,
    UserStats,
)
from activity_digest.topics.models import PageRole, TopicMeta


logger = structlog.get_logger()

# Listener signature: (entity kind, entity id)
ChangeListener = Callable[[str, int], None]

CHANGE_USER_PREFERENCES = "user_preferences"
CHANGE_GROUP_PREFERENCES = "group_preferences"
CHANGE_MEMBERSHIP = "membership"
CHANGE_CATEGORY = "category"


def _ts(value: datetime) -> str:
    """Format a timestamp so that string order equals time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="microseconds")


def _opt_ts(value: datetime | None) -> str | None:
    return _ts(value) if value is not None else None


def _parse(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value is not None else None


def _opt_bool(value: int | None) -> bool | None:
    return bool(value) if value is not None else None


def _opt_int(value: bool | None) -> int | None:
    return int(value) if value is not None else None


class DigestStore:
    """SQLite store for users, preferences, topics and summary scheduling state.

    Each thread gets its own connection so a worker pool can evaluate users
    in parallel. WAL mode lets readers proceed while one writer holds a
    ``BEGIN IMMEDIATE`` transaction; other writers wait up to the busy timeout.

    The database must be a file; ``:memory:`` would give every thread a
    separate, empty database.
    """

    def __init__(
        self,
        db_path: Path | str,
        run_id: str | None = None,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the digest store.

        Args:
            db_path: Path to SQLite database file.
            run_id: Optional run ID for logging context.
            busy_timeout_ms: How long a writer waits for a locked database.
        """
        self._db_path = Path(db_path) if isinstance(db_path, str) else db_path
        self._run_id = run_id or str(uuid.uuid4())
        self._busy_timeout_ms = busy_timeout_ms
        self._local = threading.local()
        self._connections: list[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        self._connected = False
        self._listeners: list[ChangeListener] = []
        self._metrics = StoreMetrics.get_instance()
        self._log = logger.bind(
            component="store",
            run_id=self._run_id,
            db_path=str(self._db_path),
        )

    @property
    def db_path(self) -> Path:
        """Get the database path."""
        return self._db_path

    @property
    def is_connected(self) -> bool:
        """Check if connected to database."""
        return self._connected

    def connect(self) -> None:
        """Open the database and apply migrations.

        Creates the database file and parent directories if they don't exist.
        """
        if self._connected:
            return

        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._log.info("connecting_to_database")

        self._connected = True
        conn = self._connection()

        migration_mgr = MigrationManager(conn)
        old_version = migration_mgr.get_current_version()
        applied = migration_mgr.apply_migrations()

        self._log.info(
            "database_connected",
            old_version=old_version,
            new_version=migration_mgr.get_current_version(),
            migrations_applied=applied,
        )

    def close(self) -> None:
        """Close every connection opened by this store."""
        with self._connections_lock:
            for conn in self._connections:
                conn.close()
            self._connections.clear()
        self._local = threading.local()
        if self._connected:
            self._connected = False
            self._log.info("database_closed")

    @property
    def connection_count(self) -> int:
        """Number of per-thread connections currently open."""
        with self._connections_lock:
            return len(self._connections)

    def __enter__(self) -> "DigestStore":
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(
        self,
        exc_type: type | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        """Context manager exit."""
        self.close()

    def _connection(self) -> sqlite3.Connection:
        """Get the calling thread's connection, opening it on first use.

        Raises:
            StoreConnectionError: If the store is not connected.
        """
        if not self._connected:
            raise StoreConnectionError("Database not connected. Call connect() first.")

        conn: sqlite3.Connection | None = getattr(self._local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(
                str(self._db_path),
                isolation_level=None,
                check_same_thread=False,
            )
            conn.row_factory = sqlite3.Row
            conn.execute(f"PRAGMA busy_timeout={int(self._busy_timeout_ms)}")
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("PRAGMA foreign_keys=ON")
            self._local.conn = conn
            with self._connections_lock:
                self._connections.append(conn)
        return conn

    # ===== Change notification =====

    def add_change_listener(self, listener: ChangeListener) -> None:
        """Register a callback invoked after preference or membership writes.

        Args:
            listener: Called with (entity kind, entity id) after commit.
        """
        self._listeners.append(listener)

    def remove_change_listener(self, listener: ChangeListener) -> None:
        """Unregister a change listener."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, kind: str, entity_id: int) -> None:
        for listener in list(self._listeners):
            listener(kind, entity_id)

    # ===== Transactions =====

    @contextmanager
    def transaction(
        self, operation: str, immediate: bool = False
    ) -> Generator[TransactionContext]:
        """Context manager for transactions with timing and logging.

        Nested use joins the enclosing transaction. ``immediate`` takes the
        write lock up front, which is what read-modify-write scopes need so
        that two evaluations of the same user serialize.

        Args:
            operation: Name of the operation for logging.
            immediate: Begin with ``BEGIN IMMEDIATE``.

        Yields:
            Transaction context with timing information.

        Raises:
            TransientStorageError: If SQLite reports an operational failure.
        """
        conn = self._connection()
        tx_id = str(uuid.uuid4())[:8]
        start_ns = time.perf_counter_ns()
        ctx = TransactionContext(
            tx_id=tx_id, start_time_ns=start_ns, operation=operation
        )

        if conn.in_transaction:
            yield ctx
            return

        try:
            conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
        except sqlite3.OperationalError as e:
            self._metrics.record_tx_failed()
            raise TransientStorageError(operation, e) from e

        self._log.debug("transaction_started", tx_id=tx_id, op=operation)

        try:
            yield ctx
            conn.commit()
        except sqlite3.OperationalError as e:
            self._rollback(conn, tx_id, operation, start_ns)
            raise TransientStorageError(operation, e) from e
        except BaseException:
            self._rollback(conn, tx_id, operation, start_ns)
            raise

        duration_ms = (time.perf_counter_ns() - start_ns) / 1_000_000
        self._metrics.record_tx_duration(duration_ms)
        self._log.debug(
            "transaction_complete",
            tx_id=tx_id,
            op=operation,
            affected_rows=ctx.affected_rows,
            duration_ms=round(duration_ms, 2),
        )

    def _rollback(
        self, conn: sqlite3.Connection, tx_id: str, operation: str, start_ns: int
    ) -> None:
        if conn.in_transaction:
            conn.rollback()
        self._metrics.record_tx_failed()
        duration_ms = (time.perf_counter_ns() - start_ns) / 1_000_000
        self._log.warning(
            "transaction_failed",
            tx_id=tx_id,
            op=operation,
            duration_ms=round(duration_ms, 2),
        )

    def user_transaction(
        self, user_id: int
    ) -> AbstractContextManager[TransactionContext]:
        """Read-modify-write scope for one user's scheduling state.

        Args:
            user_id: User being evaluated (for logging).

        Returns:
            Context manager running an immediate transaction.
        """
        return self.transaction(f"evaluate_user:{user_id}", immediate=True)

    def _query(
        self, operation: str, sql: str, params: Iterable[Any] = ()
    ) -> list[sqlite3.Row]:
        """Run a read query, mapping driver failures to TransientStorageError."""
        conn = self._connection()
        try:
            return conn.execute(sql, tuple(params)).fetchall()
        except sqlite3.OperationalError as e:
            raise TransientStorageError(operation, e) from e

    # ===== Users =====

    def create_user(  # noqa: PLR0913
        self,
        username: str,
        created_at: datetime,
        email: str | None = None,
        is_staff: bool = False,
        user_id: int | None = None,
    ) -> UserRecord:
        """Create a user together with its stats row.

        The stats start with ``first_seen_at = last_seen_at =
        topics_new_since = created_at`` and no scheduled summary.

        Args:
            username: Unique username.
            created_at: Account creation time.
            email: Optional email address.
            is_staff: Whether the user is staff (admin or moderator).
            user_id: Explicit id; assigned by the database if omitted.

        Returns:
            The created user.
        """
        with self.transaction("create_user") as ctx:
            conn = self._connection()
            cursor = conn.execute(
                """
                INSERT INTO users (user_id, username, email, is_staff, created_at)
                VALUES (?, ?, ?, ?, ?)
                """,
                (user_id, username, email, int(is_staff), _ts(created_at)),
            )
            new_id = int(cursor.lastrowid) if user_id is None else user_id
            conn.execute(
                """
                INSERT INTO user_stats (
                    user_id, last_seen_at, first_seen_at, topics_new_since,
                    next_summary_email_at, last_summary_email_at
                ) VALUES (?, ?, ?, ?, NULL, NULL)
                """,
                (new_id, _ts(created_at), _ts(created_at), _ts(created_at)),
            )
            ctx.add_affected_rows(2)

        self._log.info("user_created", user_id=new_id, username=username)
        return UserRecord(
            user_id=new_id,
            username=username,
            email=email,
            is_staff=is_staff,
            created_at=created_at,
        )

    def load_user(self, user_id: int) -> UserRecord | None:
        """Get a user by id.

        Args:
            user_id: The user id to look up.

        Returns:
            The user, or None if not found.
        """
        rows = self._query(
            "load_user", "SELECT * FROM users WHERE user_id = ?", (user_id,)
        )
        if not rows:
            return None
        row = rows[0]
        return UserRecord(
            user_id=row["user_id"],
            username=row["username"],
            email=row["email"],
            is_staff=bool(row["is_staff"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def load_user_by_username(self, username: str) -> UserRecord | None:
        """Get a user by username."""
        rows = self._query(
            "load_user_by_username",
            "SELECT user_id FROM users WHERE username = ?",
            (username,),
        )
        return self.load_user(rows[0]["user_id"]) if rows else None

    def list_user_ids(self) -> list[int]:
        """Get all user ids in ascending order."""
        rows = self._query(
            "list_user_ids", "SELECT user_id FROM users ORDER BY user_id"
        )
        return [row["user_id"] for row in rows]

    def record_visit(self, user_id: int, at: datetime) -> None:
        """Record that a user was seen on the site.

        ``last_seen_at`` never moves backwards.

        Args:
            user_id: Visiting user.
            at: Visit time.

        Raises:
            UserNotFoundError: If the user does not exist.
        """
        with self.transaction("record_visit") as ctx:
            cursor = self._connection().execute(
                """
                UPDATE user_stats SET last_seen_at = MAX(last_seen_at, ?)
                WHERE user_id = ?
                """,
                (_ts(at), user_id),
            )
            if cursor.rowcount == 0:
                raise UserNotFoundError(user_id)
            ctx.add_affected_rows(cursor.rowcount)

    # ===== User stats =====

    def _row_to_stats(self, row: sqlite3.Row) -> UserStats:
        return UserStats(
            user_id=row["user_id"],
            last_seen_at=datetime.fromisoformat(row["last_seen_at"]),
            first_seen_at=_parse(row["first_seen_at"]),
            topics_new_since=datetime.fromisoformat(row["topics_new_since"]),
            next_summary_email_at=_parse(row["next_summary_email_at"]),
            last_summary_email_at=_parse(row["last_summary_email_at"]),
        )

    def load_user_stats(self, user_id: int) -> UserStats | None:
        """Get the stats of one user.

        Args:
            user_id: The user id to look up.

        Returns:
            The stats, or None if the user does not exist.
        """
        rows = self._query(
            "load_user_stats",
            "SELECT * FROM user_stats WHERE user_id = ?",
            (user_id,),
        )
        return self._row_to_stats(rows[0]) if rows else None

    def load_user_stats_many(self, user_ids: Iterable[int]) -> dict[int, UserStats]:
        """Get the stats of several users.

        Args:
            user_ids: User ids to look up; unknown ids are left out.

        Returns:
            Mapping of user id to stats.
        """
        ids = list(dict.fromkeys(user_ids))
        if not ids:
            return {}
        placeholders = ",".join("?" for _ in ids)
        rows = self._query(
            "load_user_stats_many",
            f"SELECT * FROM user_stats WHERE user_id IN ({placeholders})",  # noqa: S608
            ids,
        )
        return {row["user_id"]: self._row_to_stats(row) for row in rows}

    def save_user_stats(self, stats: UserStats) -> None:
        """Persist the scheduling columns of a user's stats.

        Only ``next_summary_email_at``, ``topics_new_since`` and
        ``last_summary_email_at`` are written; ``last_seen_at`` belongs to
        visit tracking. The cursor never moves backwards.

        Args:
            stats: Stats to persist.

        Raises:
            UserNotFoundError: If the user does not exist.
        """
        with self.transaction("save_user_stats") as ctx:
            cursor = self._connection().execute(
                """
                UPDATE user_stats SET
                    next_summary_email_at = ?,
                    topics_new_since = MAX(topics_new_since, ?),
                    last_summary_email_at = ?
                WHERE user_id = ?
                """,
                (
                    _opt_ts(stats.next_summary_email_at),
                    _ts(stats.topics_new_since),
                    _opt_ts(stats.last_summary_email_at),
                    stats.user_id,
                ),
            )
            if cursor.rowcount == 0:
                raise UserNotFoundError(stats.user_id)
            ctx.add_affected_rows(cursor.rowcount)
        self._metrics.record_stats_saved()

    def list_user_ids_to_evaluate(
        self, now: datetime, limit: int = 500, after_user_id: int = 0
    ) -> list[int]:
        """Find users whose summary may be due, one page at a time.

        Pages are keyed on ``user_id``: pass the last id of a page as
        ``after_user_id`` to get the next one. Unscheduled users (never
        evaluated, or disabled) and overdue users are both candidates.

        Args:
            now: Current time.
            limit: Maximum number of ids to return.
            after_user_id: Only ids greater than this are returned.

        Returns:
            User ids in ascending order.
        """
        rows = self._query(
            "list_user_ids_to_evaluate",
            """
            SELECT user_id FROM user_stats
            WHERE user_id > ?
              AND (next_summary_email_at IS NULL OR next_summary_email_at <= ?)
            ORDER BY user_id
            LIMIT ?
            """,
            (after_user_id, _ts(now), limit),
        )
        return [row["user_id"] for row in rows]

    # ===== Groups and preferences =====

    def create_group(self, name: str, group_id: int | None = None) -> int:
        """Create an explicit group.

        Args:
            name: Unique group name.
            group_id: Explicit id; assigned by the database if omitted.

        Returns:
            The group id.
        """
        with self.transaction("create_group") as ctx:
            cursor = self._connection().execute(
                "INSERT INTO groups (group_id, name) VALUES (?, ?)",
                (group_id, name),
            )
            ctx.add_affected_rows(1)
        return int(cursor.lastrowid) if group_id is None else group_id

    def find_group_id(self, name: str) -> int | None:
        """Get a group id by name."""
        rows = self._query(
            "find_group_id", "SELECT group_id FROM groups WHERE name = ?", (name,)
        )
        return rows[0]["group_id"] if rows else None

    def add_group_member(
        self, group_id: int, user_id: int, position: int | None = None
    ) -> None:
        """Add a user to a group.

        Args:
            group_id: Group to join.
            user_id: Joining user.
            position: Precedence among the user's groups (lower wins);
                defaults to after the user's existing groups.
        """
        with self.transaction("add_group_member") as ctx:
            conn = self._connection()
            if position is None:
                row = conn.execute(
                    """
                    SELECT COALESCE(MAX(position), -1) + 1 FROM group_members
                    WHERE user_id = ?
                    """,
                    (user_id,),
                ).fetchone()
                position = int(row[0])
            conn.execute(
                """
                INSERT INTO group_members (group_id, user_id, position)
                VALUES (?, ?, ?)
                ON CONFLICT(group_id, user_id)
                DO UPDATE SET position = excluded.position
                """,
                (group_id, user_id, position),
            )
            ctx.add_affected_rows(1)
        self._notify(CHANGE_MEMBERSHIP, user_id)

    def list_group_ids_for_user(self, user_id: int) -> list[int]:
        """Get the explicit groups of a user, in precedence order.

        The built-in Everyone group is not included.
        """
        rows = self._query(
            "list_group_ids_for_user",
            """
            SELECT group_id FROM group_members
            WHERE user_id = ?
            ORDER BY position, group_id
            """,
            (user_id,),
        )
        return [row["group_id"] for row in rows]

    def _load_preferences(
        self, operation: str, table: str, key: str, entity_id: int
    ) -> SummaryPreferences:
        rows = self._query(
            operation,
            f"""
            SELECT summary_email_interval_mins, summary_email_if_active
            FROM {table} WHERE {key} = ?
            """,  # noqa: S608
            (entity_id,),
        )
        if not rows:
            return SummaryPreferences()
        row = rows[0]
        return SummaryPreferences(
            summary_email_interval_mins=row["summary_email_interval_mins"],
            summary_email_if_active=_opt_bool(row["summary_email_if_active"]),
        )

    def load_user_preferences(self, user_id: int) -> SummaryPreferences:
        """Get a user's explicit summary preferences (empty if none set)."""
        return self._load_preferences(
            "load_user_preferences", "user_preferences", "user_id", user_id
        )

    def load_group_preferences(self, group_id: int) -> SummaryPreferences:
        """Get a group's summary preferences (empty if none set)."""
        return self._load_preferences(
            "load_group_preferences", "group_preferences", "group_id", group_id
        )

    def set_user_preferences(self, user_id: int, prefs: SummaryPreferences) -> None:
        """Replace a user's explicit summary preferences.

        Args:
            user_id: User to update.
            prefs: New preferences; None fields inherit.
        """
        with self.transaction("set_user_preferences") as ctx:
            self._connection().execute(
                """
                INSERT INTO user_preferences (
                    user_id, summary_email_interval_mins, summary_email_if_active
                ) VALUES (?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    summary_email_interval_mins = excluded.summary_email_interval_mins,
                    summary_email_if_active = excluded.summary_email_if_active
                """,
                (
                    user_id,
                    prefs.summary_email_interval_mins,
                    _opt_int(prefs.summary_email_if_active),
                ),
            )
            ctx.add_affected_rows(1)
        self._log.info(
            "user_preferences_updated",
            user_id=user_id,
            interval_mins=prefs.summary_email_interval_mins,
            if_active=prefs.summary_email_if_active,
        )
        self._notify(CHANGE_USER_PREFERENCES, user_id)

    def set_group_preferences(self, group_id: int, prefs: SummaryPreferences) -> None:
        """Replace a group's summary preferences.

        Args:
            group_id: Group to update (EVERYONE_GROUP_ID for the site default).
            prefs: New preferences; None fields inherit.
        """
        with self.transaction("set_group_preferences") as ctx:
            self._connection().execute(
                """
                INSERT INTO group_preferences (
                    group_id, summary_email_interval_mins, summary_email_if_active
                ) VALUES (?, ?, ?)
                ON CONFLICT(group_id) DO UPDATE SET
                    summary_email_interval_mins = excluded.summary_email_interval_mins,
                    summary_email_if_active = excluded.summary_email_if_active
                """,
                (
                    group_id,
                    prefs.summary_email_interval_mins,
                    _opt_int(prefs.summary_email_if_active),
                ),
            )
            ctx.add_affected_rows(1)
        self._log.info(
            "group_preferences_updated",
            group_id=group_id,
            interval_mins=prefs.summary_email_interval_mins,
            if_active=prefs.summary_email_if_active,
        )
        self._notify(CHANGE_GROUP_PREFERENCES, group_id)

    # ===== Categories =====

    def upsert_category(self, category: Category) -> None:
        """Create or replace a category."""
        with self.transaction("upsert_category") as ctx:
            self._connection().execute(
                """
                INSERT INTO categories (
                    category_id, parent_id, name, staff_only, unlisted,
                    deleted, include_in_summaries
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(category_id) DO UPDATE SET
                    parent_id = excluded.parent_id,
                    name = excluded.name,
                    staff_only = excluded.staff_only,
                    unlisted = excluded.unlisted,
                    deleted = excluded.deleted,
                    include_in_summaries = excluded.include_in_summaries
                """,
                (
                    category.category_id,
                    category.parent_id,
                    category.name,
                    int(category.staff_only),
                    int(category.unlisted),
                    int(category.deleted),
                    int(category.include_in_summaries),
                ),
            )
            ctx.add_affected_rows(1)
        self._notify(CHANGE_CATEGORY, category.category_id)

    def load_category(self, category_id: int) -> Category | None:
        """Get a category by id."""
        rows = self._query(
            "load_category",
            "SELECT * FROM categories WHERE category_id = ?",
            (category_id,),
        )
        if not rows:
            return None
        row = rows[0]
        return Category(
            category_id=row["category_id"],
            parent_id=row["parent_id"],
            name=row["name"],
            staff_only=bool(row["staff_only"]),
            unlisted=bool(row["unlisted"]),
            deleted=bool(row["deleted"]),
            include_in_summaries=bool(row["include_in_summaries"]),
        )

    # ===== Topics and reading =====

    def create_topic(self, topic: TopicMeta, member_ids: Iterable[int] = ()) -> None:
        """Store a topic.

        Args:
            topic: Topic metadata.
            member_ids: Members of a private-message topic.
        """
        with self.transaction("create_topic") as ctx:
            conn = self._connection()
            conn.execute(
                """
                INSERT INTO topics (
                    page_id, author_id, created_at, title, category_id,
                    page_role, deleted, num_replies
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    topic.page_id,
                    topic.author_id,
                    _ts(topic.created_at),
                    topic.title,
                    topic.category_id,
                    topic.page_role.value,
                    int(topic.deleted),
                    topic.num_replies,
                ),
            )
            conn.executemany(
                "INSERT OR IGNORE INTO page_members (page_id, user_id) VALUES (?, ?)",
                [(topic.page_id, member_id) for member_id in member_ids],
            )
            ctx.add_affected_rows(1)

    def list_topics_created_between(
        self, since: datetime, until: datetime
    ) -> list[TopicMeta]:
        """Get topics with ``since <= created_at <= until``.

        Topics in categories that opt out of summaries are left out.

        Args:
            since: Inclusive lower bound.
            until: Inclusive upper bound.

        Returns:
            Topics ordered by creation time ascending.
        """
        if until < since:
            return []
        rows = self._query(
            "list_topics_created_between",
            """
            SELECT t.* FROM topics t
            LEFT JOIN categories c ON c.category_id = t.category_id
            WHERE t.created_at >= ? AND t.created_at <= ?
              AND COALESCE(c.include_in_summaries, 1) = 1
            ORDER BY t.created_at, t.page_id
            """,
            (_ts(since), _ts(until)),
        )
        return [
            TopicMeta(
                page_id=row["page_id"],
                author_id=row["author_id"],
                created_at=datetime.fromisoformat(row["created_at"]),
                title=row["title"],
                category_id=row["category_id"],
                page_role=PageRole(row["page_role"]),
                deleted=bool(row["deleted"]),
                num_replies=row["num_replies"],
            )
            for row in rows
        ]

    def load_page_member_ids(self, page_id: str) -> frozenset[int]:
        """Get the members of a private-message topic."""
        rows = self._query(
            "load_page_member_ids",
            "SELECT user_id FROM page_members WHERE page_id = ?",
            (page_id,),
        )
        return frozenset(row["user_id"] for row in rows)

    def mark_read(self, user_id: int, page_id: str, at: datetime) -> None:
        """Record that a user read a topic."""
        with self.transaction("mark_read") as ctx:
            self._connection().execute(
                """
                INSERT INTO read_progress (user_id, page_id, last_read_at)
                VALUES (?, ?, ?)
                ON CONFLICT(user_id, page_id) DO UPDATE SET
                    last_read_at = MAX(last_read_at, excluded.last_read_at)
                """,
                (user_id, page_id, _ts(at)),
            )
            ctx.add_affected_rows(1)

    def has_user_read(self, user_id: int, page_id: str) -> bool:
        """Check whether a user has read a topic."""
        rows = self._query(
            "has_user_read",
            "SELECT 1 FROM read_progress WHERE user_id = ? AND page_id = ?",
            (user_id, page_id),
        )
        return bool(rows)

    # ===== Digests =====

    def record_digest(self, record: DigestRecord) -> None:
        """Persist the marker of a produced summary."""
        with self.transaction("record_digest") as ctx:
            self._connection().execute(
                """
                INSERT INTO digests (
                    user_id, generated_at, window_start, window_end,
                    page_ids, dropped_count
                ) VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    record.user_id,
                    _ts(record.generated_at),
                    _ts(record.window_start),
                    _ts(record.window_end),
                    json.dumps(list(record.page_ids)),
                    record.dropped_count,
                ),
            )
            ctx.add_affected_rows(1)
        self._metrics.record_digest()

    def list_digests(self, user_id: int) -> list[DigestRecord]:
        """Get a user's produced summaries, oldest first."""
        rows = self._query(
            "list_digests",
            "SELECT * FROM digests WHERE user_id = ? ORDER BY generated_at, digest_id",
            (user_id,),
        )
        return [
            DigestRecord(
                user_id=row["user_id"],
                generated_at=datetime.fromisoformat(row["generated_at"]),
                window_start=datetime.fromisoformat(row["window_start"]),
                window_end=datetime.fromisoformat(row["window_end"]),
                page_ids=tuple(json.loads(row["page_ids"])),
                dropped_count=row["dropped_count"],
            )
            for row in rows
        ]

    # ===== Run Lifecycle =====

    def begin_run(self, run_id: str, now: datetime) -> Run:
        """Begin a new batch run.

        Args:
            run_id: Run identifier.
            now: Run start time.

        Returns:
            The created Run record.
        """
        with self.transaction("begin_run") as ctx:
            self._connection().execute(
                "INSERT INTO runs (run_id, started_at) VALUES (?, ?)",
                (run_id, _ts(now)),
            )
            ctx.add_affected_rows(1)
        return Run(run_id=run_id, started_at=now)

    def end_run(  # noqa: PLR0913
        self,
        run_id: str,
        now: datetime,
        success: bool,
        users_evaluated: int = 0,
        digests_produced: int = 0,
        users_failed: int = 0,
        error_summary: str | None = None,
    ) -> Run:
        """End a batch run.

        Returns:
            The updated Run record.

        Raises:
            RunNotFoundError: If the run does not exist.
        """
        with self.transaction("end_run") as ctx:
            cursor = self._connection().execute(
                """
                UPDATE runs SET
                    finished_at = ?, success = ?, users_evaluated = ?,
                    digests_produced = ?, users_failed = ?, error_summary = ?
                WHERE run_id = ?
                """,
                (
                    _ts(now),
                    int(success),
                    users_evaluated,
                    digests_produced,
                    users_failed,
                    error_summary,
                    run_id,
                ),
            )
            ctx.add_affected_rows(cursor.rowcount)

        run = self.get_run(run_id)
        if run is None:
            raise RunNotFoundError(run_id)
        return run

    def get_run(self, run_id: str) -> Run | None:
        """Get a run by ID."""
        rows = self._query("get_run", "SELECT * FROM runs WHERE run_id = ?", (run_id,))
        if not rows:
            return None
        row = rows[0]
        return Run(
            run_id=row["run_id"],
            started_at=datetime.fromisoformat(row["started_at"]),
            finished_at=_parse(row["finished_at"]),
            success=_opt_bool(row["success"]),
            users_evaluated=row["users_evaluated"],
            digests_produced=row["digests_produced"],
            users_failed=row["users_failed"],
            error_summary=row["error_summary"],
        )

    def get_last_successful_run(self) -> Run | None:
        """Get the most recent successful run."""
        rows = self._query(
            "get_last_successful_run",
            """
            SELECT run_id FROM runs
            WHERE success = 1 AND finished_at IS NOT NULL
            ORDER BY finished_at DESC
            LIMIT 1
            """,
        )
        return self.get_run(rows[0]["run_id"]) if rows else None

    # ===== Leases =====

    def try_acquire_lease(
        self, name: str, holder: str, now: datetime, ttl: timedelta
    ) -> bool:
        """Take a named lease unless another holder has an unexpired one.

        Args:
            name: Lease name.
            holder: Identifier of the would-be holder.
            now: Current time.
            ttl: How long the lease lasts if taken.

        Returns:
            True if the lease is now held by ``holder``.
        """
        with self.transaction("acquire_lease", immediate=True) as ctx:
            conn = self._connection()
            row = conn.execute(
                "SELECT holder, expires_at FROM leases WHERE name = ?", (name,)
            ).fetchone()
            if (
                row is not None
                and row["holder"] != holder
                and row["expires_at"] > _ts(now)
            ):
                return False
            conn.execute(
                """
                INSERT INTO leases (name, holder, expires_at) VALUES (?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    holder = excluded.holder, expires_at = excluded.expires_at
                """,
                (name, holder, _ts(now + ttl)),
            )
            ctx.add_affected_rows(1)
        return True

    def release_lease(self, name: str, holder: str) -> None:
        """Release a lease if ``holder`` owns it."""
        with self.transaction("release_lease") as ctx:
            cursor = self._connection().execute(
                "DELETE FROM leases WHERE name = ? AND holder = ?", (name, holder)
            )
            ctx.add_affected_rows(cursor.rowcount)

    # ===== Stats =====

    def get_stats(self) -> dict[str, int]:
        """Get row counts for the main tables."""
        stats: dict[str, int] = {}
        for table in ("users", "topics", "digests", "runs"):
            rows = self._query("get_stats", f"SELECT COUNT(*) FROM {table}")  # noqa: S608
            stats[table] = rows[0][0]
        return stats

    def get_schema_version(self) -> int:
        """Get current schema version."""
        return MigrationManager(self._connection()).get_current_version()
