"""Error types for preference resolution."""


class ConfigurationError(Exception):
    """No value could be resolved for a preference setting.

    Unreachable while compiled-in defaults exist; treated as fatal.
    """

    def __init__(self, setting: str, message: str | None = None) -> None:
        """Initialize the configuration error.

        Args:
            setting: Name of the unresolvable setting.
            message: Optional detail.
        """
        self.setting = setting
        super().__init__(message or f"No value or default for setting: {setting}")
