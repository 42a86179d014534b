"""Constants for summary email preferences."""

# Interval sentinel meaning "never send summary emails"
DO_NOT_SEND: int = -1

# Built-in group every user belongs to, consulted after explicit groups
EVERYONE_GROUP_ID: int = 10

# Compiled-in defaults, the last link of the inheritance chain
DEFAULT_INTERVAL_MINUTES: int = DO_NOT_SEND
DEFAULT_SEND_EVEN_IF_ACTIVE: bool = False

# Common intervals
ONE_DAY_MINUTES: int = 60 * 24
ONE_WEEK_MINUTES: int = ONE_DAY_MINUTES * 7
