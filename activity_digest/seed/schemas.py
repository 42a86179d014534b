"""Pydantic schemas for YAML seed fixtures."""

from typing import Annotated, Self

from pydantic import Field, model_validator

from activity_digest.data_model import StrictBaseModel, UtcDatetime
from activity_digest.preferences.constants import EVERYONE_GROUP_ID
from activity_digest.preferences.models import SummaryPreferences
from activity_digest.topics.models import PageRole


class GroupSeed(StrictBaseModel):
    """An explicit group."""

    id: Annotated[int, Field(ge=1)] | None = None
    name: Annotated[str, Field(min_length=1)]
    preferences: SummaryPreferences = Field(default_factory=SummaryPreferences)


class CategorySeed(StrictBaseModel):
    """A category. Parents must be listed before their children."""

    id: Annotated[int, Field(ge=1)]
    name: Annotated[str, Field(min_length=1)]
    parent_id: int | None = None
    staff_only: bool = False
    unlisted: bool = False
    deleted: bool = False
    include_in_summaries: bool = True


class UserSeed(StrictBaseModel):
    """A user with optional memberships, preferences and last visit."""

    id: Annotated[int, Field(ge=1)] | None = None
    username: Annotated[str, Field(min_length=1)]
    email: str | None = None
    is_staff: bool = False
    created_at: UtcDatetime
    last_seen_at: UtcDatetime | None = None
    groups: list[str] = Field(default_factory=list)
    preferences: SummaryPreferences = Field(default_factory=SummaryPreferences)


class TopicSeed(StrictBaseModel):
    """A topic, authored by a seeded user."""

    page_id: Annotated[str, Field(min_length=1)]
    author: Annotated[str, Field(min_length=1, description="Author username")]
    created_at: UtcDatetime
    title: str = ""
    category_id: int | None = None
    page_role: PageRole = PageRole.DISCUSSION
    deleted: bool = False
    num_replies: Annotated[int, Field(ge=0)] = 0
    members: list[str] = Field(
        default_factory=list, description="Usernames of private message members"
    )


class ReadSeed(StrictBaseModel):
    """A topic a user has read."""

    username: Annotated[str, Field(min_length=1)]
    page_id: Annotated[str, Field(min_length=1)]
    at: UtcDatetime


class SeedConfig(StrictBaseModel):
    """Root of a seed fixture file."""

    everyone: SummaryPreferences = Field(
        default_factory=SummaryPreferences,
        description="Preferences of the built-in Everyone group",
    )
    groups: list[GroupSeed] = Field(default_factory=list)
    categories: list[CategorySeed] = Field(default_factory=list)
    users: list[UserSeed] = Field(default_factory=list)
    topics: list[TopicSeed] = Field(default_factory=list)
    reads: list[ReadSeed] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_references(self) -> Self:
        """Reject duplicates and references to undeclared entities."""
        group_names = [g.name for g in self.groups]
        _require_unique("group name", group_names)
        if any(g.id == EVERYONE_GROUP_ID for g in self.groups):
            msg = f"Group id {EVERYONE_GROUP_ID} is reserved for Everyone"
            raise ValueError(msg)

        seen_categories: set[int] = set()
        for category in self.categories:
            if category.id in seen_categories:
                msg = f"Duplicate category id: {category.id}"
                raise ValueError(msg)
            parent = category.parent_id
            if parent is not None and parent not in seen_categories:
                msg = (
                    f"Category {category.id} references parent {parent}, "
                    "which must be declared before it"
                )
                raise ValueError(msg)
            seen_categories.add(category.id)

        usernames = [u.username for u in self.users]
        _require_unique("username", usernames)
        for user in self.users:
            _require_known("group", user.groups, set(group_names))

        _require_unique("page_id", [t.page_id for t in self.topics])
        known_users = set(usernames)
        for topic in self.topics:
            _require_known("user", [topic.author, *topic.members], known_users)
            category_id = topic.category_id
            if category_id is not None and category_id not in seen_categories:
                msg = f"Topic {topic.page_id} references unknown category {category_id}"
                raise ValueError(msg)

        page_ids = {t.page_id for t in self.topics}
        for read in self.reads:
            _require_known("user", [read.username], known_users)
            _require_known("topic", [read.page_id], page_ids)
        return self


def _require_unique(what: str, values: list[str]) -> None:
    seen: set[str] = set()
    for value in values:
        if value in seen:
            msg = f"Duplicate {what}: {value}"
            raise ValueError(msg)
        seen.add(value)


def _require_known(what: str, values: list[str], known: set[str]) -> None:
    for value in values:
        if value not in known:
            msg = f"Unknown {what}: {value}"
            raise ValueError(msg)
