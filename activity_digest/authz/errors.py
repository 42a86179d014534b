"""Error types for visibility checks."""


class AuthorizationLookupError(Exception):
    """Data needed to decide visibility could not be loaded.

    Callers fail closed: the page is treated as not visible.
    """

    def __init__(
        self, message: str, user_id: int | None = None, page_id: str | None = None
    ) -> None:
        """Initialize the lookup error.

        Args:
            message: Human-readable error message.
            user_id: User the check was for.
            page_id: Page the check was for.
        """
        super().__init__(message)
        self.message = message
        self.user_id = user_id
        self.page_id = page_id
