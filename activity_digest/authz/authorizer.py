"""Category based visibility of topics."""

from typing import TYPE_CHECKING, Protocol

import structlog

from activity_digest.authz.errors import AuthorizationLookupError
from activity_digest.preferences.cache import ReadThroughCache
from activity_digest.topics.models import PageRole, TopicMeta


if TYPE_CHECKING:
    from activity_digest.store.models import Category, UserRecord


logger = structlog.get_logger()

# Guards against cycles in a corrupted category tree
MAX_CATEGORY_DEPTH = 32


class Authorizer(Protocol):
    """Decides whether a user may see a page."""

    def may_user_see_page(self, user_id: int, topic: TopicMeta) -> bool:
        """Check visibility.

        Raises:
            AuthorizationLookupError: If required data is missing.
        """
        ...


class AuthzSource(Protocol):
    """Storage reads needed for visibility decisions."""

    def load_user(self, user_id: int) -> "UserRecord | None":
        """Get a user."""
        ...

    def load_category(self, category_id: int) -> "Category | None":
        """Get a category."""
        ...

    def load_page_member_ids(self, page_id: str) -> frozenset[int]:
        """Get the members of a private page."""
        ...


class CategoryAuthorizer:
    """Visibility from the category tree, staff flag and page membership.

    Rules:
    - Private messages are visible to their members only.
    - A topic in a staff-only, unlisted or deleted category (or below one)
      is visible to staff only.
    - Topics without a category are visible to everyone.
    """

    def __init__(self, source: AuthzSource) -> None:
        """Initialize the authorizer.

        Args:
            source: Storage reads for users, categories and page members.
        """
        self._source = source
        self._categories: "ReadThroughCache[int, Category | None]" = ReadThroughCache(
            "categories", source.load_category
        )
        self._log = logger.bind(component="authz")

    def clear_cache(self) -> None:
        """Forget cached categories."""
        self._categories.clear()

    def on_store_change(self, kind: str, entity_id: int) -> None:
        """Store change listener; drops a changed category."""
        if kind == "category":
            self._categories.invalidate(entity_id)

    def may_user_see_page(self, user_id: int, topic: TopicMeta) -> bool:
        """Check whether a user may see a topic.

        Args:
            user_id: Viewer.
            topic: Topic to check.

        Returns:
            True if visible.

        Raises:
            AuthorizationLookupError: If the user or a category is missing.
        """
        user = self._source.load_user(user_id)
        if user is None:
            raise AuthorizationLookupError(
                f"User not found: {user_id}", user_id=user_id, page_id=topic.page_id
            )

        if topic.page_role == PageRole.PRIVATE_MESSAGE:
            return user_id in self._source.load_page_member_ids(topic.page_id)

        if topic.category_id is None:
            return True

        if user.is_staff:
            # Staff see every category, but a broken tree is still an error
            self._category_chain(topic, user_id)
            return True

        return not any(
            c.staff_only or c.unlisted or c.deleted
            for c in self._category_chain(topic, user_id)
        )

    def _category_chain(self, topic: TopicMeta, user_id: int) -> list["Category"]:
        """Load a topic's category and all its ancestors."""
        chain: list[Category] = []
        category_id = topic.category_id
        while category_id is not None:
            if len(chain) >= MAX_CATEGORY_DEPTH:
                raise AuthorizationLookupError(
                    f"Category tree too deep or cyclic at {category_id}",
                    user_id=user_id,
                    page_id=topic.page_id,
                )
            category = self._categories.get(category_id)
            if category is None:
                raise AuthorizationLookupError(
                    f"Category not found: {category_id}",
                    user_id=user_id,
                    page_id=topic.page_id,
                )
            chain.append(category)
            category_id = category.parent_id
        return chain
