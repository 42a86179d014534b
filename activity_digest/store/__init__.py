"""SQLite store for users, preferences, topics and summary scheduling state.

This module provides persistent storage for:
- Users, their activity stats and summary scheduling columns
- User and group summary preferences
- Categories, topics, page members and read progress
- Produced digest markers, batch runs and the single-flight lease
"""

from activity_digest.store.errors import (
    ConnectionError,
    MigrationError,
    NotFoundError,
    RunNotFoundError,
    StateStoreError,
    TransientStorageError,
    UserNotFoundError,
)
from activity_digest.store.metrics import StoreMetrics
from activity_digest.store.models import (
    Category,
    DigestRecord,
    Run,
    UserRecord,
    UserStats,
)
from activity_digest.store.state_machine import RunState, RunStateError, RunStateMachine
from activity_digest.store.store import (
    CHANGE_CATEGORY,
    CHANGE_GROUP_PREFERENCES,
    CHANGE_MEMBERSHIP,
    CHANGE_USER_PREFERENCES,
    DigestStore,
)


__all__ = [
    # Errors
    "ConnectionError",
    "MigrationError",
    "NotFoundError",
    "RunNotFoundError",
    "StateStoreError",
    "TransientStorageError",
    "UserNotFoundError",
    # Metrics
    "StoreMetrics",
    # Models
    "Category",
    "DigestRecord",
    "Run",
    "UserRecord",
    "UserStats",
    # State machine
    "RunState",
    "RunStateError",
    "RunStateMachine",
    # Store
    "CHANGE_CATEGORY",
    "CHANGE_GROUP_PREFERENCES",
    "CHANGE_MEMBERSHIP",
    "CHANGE_USER_PREFERENCES",
    "DigestStore",
]
