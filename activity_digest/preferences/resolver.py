"""Effective summary settings from the preference inheritance chain."""

from typing import Protocol, TypeVar

import structlog

from activity_digest.preferences.cache import ReadThroughCache
from activity_digest.preferences.constants import (
    DEFAULT_INTERVAL_MINUTES,
    DEFAULT_SEND_EVEN_IF_ACTIVE,
    EVERYONE_GROUP_ID,
)
from activity_digest.preferences.errors import ConfigurationError
from activity_digest.preferences.models import EffectivePrefs, SummaryPreferences


logger = structlog.get_logger()

T = TypeVar("T")

# Entity kinds announced by the store after a committed change
_USER_PREFERENCES = "user_preferences"
_GROUP_PREFERENCES = "group_preferences"
_MEMBERSHIP = "membership"


def coalesce(setting: str, *candidates: T | None) -> T:
    """Return the first defined candidate.

    Args:
        setting: Setting name, for the error message.
        candidates: Values in precedence order; None means undefined.

    Returns:
        The first candidate that is not None.

    Raises:
        ConfigurationError: If every candidate is None.
    """
    for candidate in candidates:
        if candidate is not None:
            return candidate
    raise ConfigurationError(setting)


class PreferenceSource(Protocol):
    """Read access to stored preferences and memberships."""

    def load_user_preferences(self, user_id: int) -> SummaryPreferences:
        """Get a user's explicit preferences."""
        ...

    def load_group_preferences(self, group_id: int) -> SummaryPreferences:
        """Get a group's preferences."""
        ...

    def list_group_ids_for_user(self, user_id: int) -> list[int]:
        """Get a user's explicit groups in precedence order."""
        ...


class PreferenceResolver:
    """Resolves effective summary settings for a user.

    Per setting, the first defined value wins along: the user's own
    preferences, the user's explicit groups in membership order, the
    Everyone group, then the compiled-in default.
    """

    def __init__(
        self,
        source: PreferenceSource,
        default_interval_minutes: int | None = DEFAULT_INTERVAL_MINUTES,
        default_send_even_if_active: bool | None = DEFAULT_SEND_EVEN_IF_ACTIVE,
    ) -> None:
        """Initialize the resolver.

        Args:
            source: Preference storage.
            default_interval_minutes: Last link of the interval chain.
            default_send_even_if_active: Last link of the if-active chain.
        """
        self._source = source
        self._default_interval = default_interval_minutes
        self._default_if_active = default_send_even_if_active
        self._user_prefs: ReadThroughCache[int, SummaryPreferences] = (
            ReadThroughCache("user_preferences", source.load_user_preferences)
        )
        self._group_prefs: ReadThroughCache[int, SummaryPreferences] = (
            ReadThroughCache("group_preferences", source.load_group_preferences)
        )
        self._memberships: ReadThroughCache[int, tuple[int, ...]] = ReadThroughCache(
            "memberships",
            lambda user_id: tuple(source.list_group_ids_for_user(user_id)),
        )
        self._log = logger.bind(component="preferences")

    def chain_for(self, user_id: int) -> list[SummaryPreferences]:
        """Get the preference layers of a user, highest precedence first."""
        group_ids = [
            g for g in self._memberships.get(user_id) if g != EVERYONE_GROUP_ID
        ]
        group_ids.append(EVERYONE_GROUP_ID)
        return [self._user_prefs.get(user_id)] + [
            self._group_prefs.get(group_id) for group_id in group_ids
        ]

    def resolve(self, user_id: int) -> EffectivePrefs:
        """Resolve the effective settings of a user.

        Args:
            user_id: User to resolve for.

        Returns:
            Fully defined settings.

        Raises:
            ConfigurationError: If a setting has no value and no default.
        """
        chain = self.chain_for(user_id)
        interval = coalesce(
            "summary_email_interval_mins",
            *(p.summary_email_interval_mins for p in chain),
            self._default_interval,
        )
        if_active = coalesce(
            "summary_email_if_active",
            *(p.summary_email_if_active for p in chain),
            self._default_if_active,
        )
        return EffectivePrefs(interval_minutes=interval, send_even_if_active=if_active)

    def invalidate_user(self, user_id: int) -> None:
        """Forget cached preferences and memberships of a user."""
        self._user_prefs.invalidate(user_id)
        self._memberships.invalidate(user_id)

    def invalidate_group(self, group_id: int) -> None:
        """Forget cached preferences of a group."""
        self._group_prefs.invalidate(group_id)

    def clear_cache(self) -> None:
        """Forget everything cached."""
        self._user_prefs.clear()
        self._group_prefs.clear()
        self._memberships.clear()

    def on_store_change(self, kind: str, entity_id: int) -> None:
        """Store change listener; invalidates the affected entry.

        Args:
            kind: Entity kind that changed.
            entity_id: Id of the changed entity.
        """
        if kind in (_USER_PREFERENCES, _MEMBERSHIP):
            self.invalidate_user(entity_id)
        elif kind == _GROUP_PREFERENCES:
            self.invalidate_group(entity_id)
