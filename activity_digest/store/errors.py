"""Domain exceptions for the digest store.

Infrastructure errors (database unavailable, locked, corrupt) are kept apart
from domain errors (unknown user, unknown run) so the scheduler can decide
which ones abort a single user's evaluation and which ones are skipped
silently.
"""


class StateStoreError(Exception):
    """Base exception for all digest store errors."""


class ConnectionError(StateStoreError):
    """Raised when the database connection is not established."""

    def __init__(self, message: str = "Database not connected") -> None:
        """Initialize the connection error.

        Args:
            message: Human-readable error message.
        """
        super().__init__(message)


class TransientStorageError(StateStoreError):
    """Raised for recoverable storage failures (locked database, I/O error).

    Nothing is committed when this is raised, so the affected evaluation can
    simply be retried on the next scheduled run.
    """

    def __init__(self, operation: str, cause: BaseException) -> None:
        """Initialize the error.

        Args:
            operation: Store operation that failed.
            cause: Underlying driver exception.
        """
        self.operation = operation
        self.cause = cause
        super().__init__(f"Storage operation '{operation}' failed: {cause}")


class NotFoundError(StateStoreError):
    """Base class for lookups of entities that do not exist."""


class UserNotFoundError(NotFoundError):
    """Raised when a user id does not exist."""

    def __init__(self, user_id: object) -> None:
        """Initialize the error with the missing user id.

        Args:
            user_id: The user id that was not found.
        """
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class RunNotFoundError(NotFoundError):
    """Raised when a batch run record is not found."""

    def __init__(self, run_id: str) -> None:
        """Initialize the error with the missing run id.

        Args:
            run_id: The run id that was not found.
        """
        self.run_id = run_id
        super().__init__(f"Run not found: {run_id}")


class MigrationError(StateStoreError):
    """Raised when a schema migration fails."""

    def __init__(self, version: int, message: str) -> None:
        """Initialize the migration error.

        Args:
            version: The migration version that failed.
            message: Human-readable error message.
        """
        self.version = version
        super().__init__(f"Migration {version} failed: {message}")
