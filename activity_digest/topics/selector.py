"""Ranking and capping of candidate topics."""

from collections.abc import Callable, Sequence

from activity_digest.topics.constants import MAX_TOP_TOPICS
from activity_digest.topics.models import SelectionResult, TopicMeta


Scorer = Callable[[TopicMeta], float]


def score_by_recency(topic: TopicMeta) -> float:
    """Newer topics score higher."""
    return topic.created_at.timestamp()


def score_by_replies(topic: TopicMeta) -> float:
    """Busier topics score higher."""
    return float(topic.num_replies)


SCORERS: dict[str, Scorer] = {
    "recency": score_by_recency,
    "replies": score_by_replies,
}


class TopicSelector:
    """Ranks candidates and keeps the best ``cap`` of them.

    Candidates beyond the cap are reported as dropped. Callers advance the
    cursor past them all the same, so they are never offered again.
    """

    def __init__(
        self, scorer: Scorer = score_by_recency, cap: int = MAX_TOP_TOPICS
    ) -> None:
        """Initialize the selector.

        Args:
            scorer: Higher scores rank first.
            cap: Default maximum number of selected topics.
        """
        self._scorer = scorer
        self._cap = cap

    @property
    def cap(self) -> int:
        """Default maximum number of selected topics."""
        return self._cap

    def select(
        self, candidates: Sequence[TopicMeta], cap: int | None = None
    ) -> SelectionResult:
        """Rank and cap candidates.

        Ties break on recency (newer first), then ``page_id``.

        Args:
            candidates: Topics to choose from.
            cap: Overrides the default cap.

        Returns:
            Selected topics best first, and the dropped remainder.

        Raises:
            ValueError: If the cap is negative.
        """
        limit = self._cap if cap is None else cap
        if limit < 0:
            msg = f"Cap must not be negative, got {limit}"
            raise ValueError(msg)

        ranked = sorted(
            candidates,
            key=lambda t: (-self._scorer(t), -t.created_at.timestamp(), t.page_id),
        )
        return SelectionResult(
            selected=tuple(ranked[:limit]), dropped=tuple(ranked[limit:])
        )
