"""Topic collection and selection for activity summaries."""

from activity_digest.topics.collector import (
    ReadTracker,
    TopicCollector,
    TopicSource,
    min_age_window,
)
from activity_digest.topics.constants import MAX_TOP_TOPICS, MIN_TOPIC_AGE_DIVISOR
from activity_digest.topics.models import PageRole, SelectionResult, TopicMeta
from activity_digest.topics.selector import (
    SCORERS,
    Scorer,
    TopicSelector,
    score_by_recency,
    score_by_replies,
)


__all__ = [
    "MAX_TOP_TOPICS",
    "MIN_TOPIC_AGE_DIVISOR",
    "SCORERS",
    "PageRole",
    "ReadTracker",
    "Scorer",
    "SelectionResult",
    "TopicCollector",
    "TopicMeta",
    "TopicSelector",
    "TopicSource",
    "min_age_window",
    "score_by_recency",
    "score_by_replies",
]
