"""Summary email preferences and their inheritance chain."""

from activity_digest.preferences.cache import ReadThroughCache
from activity_digest.preferences.constants import (
    DEFAULT_INTERVAL_MINUTES,
    DEFAULT_SEND_EVEN_IF_ACTIVE,
    DO_NOT_SEND,
    EVERYONE_GROUP_ID,
    ONE_DAY_MINUTES,
    ONE_WEEK_MINUTES,
)
from activity_digest.preferences.errors import ConfigurationError
from activity_digest.preferences.models import EffectivePrefs, SummaryPreferences
from activity_digest.preferences.resolver import (
    PreferenceResolver,
    PreferenceSource,
    coalesce,
)


__all__ = [
    "DEFAULT_INTERVAL_MINUTES",
    "DEFAULT_SEND_EVEN_IF_ACTIVE",
    "DO_NOT_SEND",
    "EVERYONE_GROUP_ID",
    "ONE_DAY_MINUTES",
    "ONE_WEEK_MINUTES",
    "ConfigurationError",
    "EffectivePrefs",
    "PreferenceResolver",
    "PreferenceSource",
    "ReadThroughCache",
    "SummaryPreferences",
    "coalesce",
]
