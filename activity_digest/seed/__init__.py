"""YAML seed fixtures for users, groups, categories and topics."""

from activity_digest.seed.loader import SeedLoader, SeedReport, SeedValidationError
from activity_digest.seed.schemas import (
    CategorySeed,
    GroupSeed,
    ReadSeed,
    SeedConfig,
    TopicSeed,
    UserSeed,
)


__all__ = [
    "CategorySeed",
    "GroupSeed",
    "ReadSeed",
    "SeedConfig",
    "SeedLoader",
    "SeedReport",
    "SeedValidationError",
    "TopicSeed",
    "UserSeed",
]
