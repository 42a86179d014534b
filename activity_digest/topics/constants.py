"""Constants for topic collection and selection."""

# A topic must be at least interval / divisor old to be summarized
MIN_TOPIC_AGE_DIVISOR: int = 4

# Maximum number of topics in one summary
MAX_TOP_TOPICS: int = 10
