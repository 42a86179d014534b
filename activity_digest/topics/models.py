"""Data models for topics considered by activity summaries."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated

from pydantic import Field

from activity_digest.data_model import StrictBaseModel, UtcDatetime


class PageRole(str, Enum):
    """Kind of page a topic is.

    - ABOUT_CATEGORY: category description page, never summarized
    - PRIVATE_MESSAGE: visible to its members only
    """

    DISCUSSION = "discussion"
    QUESTION = "question"
    PROBLEM = "problem"
    IDEA = "idea"
    ABOUT_CATEGORY = "about_category"
    PRIVATE_MESSAGE = "private_message"


class TopicMeta(StrictBaseModel):
    """Metadata of one topic (page) on the platform."""

    page_id: Annotated[str, Field(min_length=1, description="Page identifier")]
    author_id: Annotated[int, Field(description="User id of the topic author")]
    created_at: UtcDatetime = Field(description="When the topic was created")
    title: str = Field(default="", description="Topic title")
    category_id: int | None = Field(default=None, description="Containing category")
    page_role: PageRole = Field(default=PageRole.DISCUSSION)
    deleted: bool = Field(default=False)
    num_replies: Annotated[int, Field(ge=0)] = 0

    def to_json_dict(self) -> dict[str, object]:
        """Convert to a JSON-serializable dictionary."""
        return self.model_dump(mode="json")


@dataclass(frozen=True)
class SelectionResult:
    """Outcome of ranking and capping a candidate set.

    Attributes:
        selected: Topics to include, best first.
        dropped: Candidates cut by the cap. They are consumed all the same.
    """

    selected: tuple[TopicMeta, ...]
    dropped: tuple[TopicMeta, ...] = field(default_factory=tuple)

    @property
    def considered(self) -> int:
        """Number of candidates that went into the selection."""
        return len(self.selected) + len(self.dropped)
