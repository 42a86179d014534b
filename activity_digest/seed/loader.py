"""YAML seed fixture loading and application."""

import hashlib
from dataclasses import dataclass
from pathlib import Path

import structlog
import yaml
from pydantic import ValidationError

from activity_digest.preferences.constants import EVERYONE_GROUP_ID
from activity_digest.preferences.models import SummaryPreferences
from activity_digest.seed.schemas import SeedConfig
from activity_digest.store.models import Category
from activity_digest.store.store import DigestStore
from activity_digest.topics.models import TopicMeta


logger = structlog.get_logger()


class SeedValidationError(Exception):
    """Raised when a seed file cannot be parsed or validated."""

    def __init__(self, errors: list[dict[str, str]], file_path: str) -> None:
        """Initialize the error.

        Args:
            errors: List of validation error details.
            file_path: Path to the file that failed validation.
        """
        self.errors = errors
        self.file_path = file_path
        super().__init__(f"Validation failed for {file_path}: {len(errors)} errors")


@dataclass
class SeedReport:
    """Counts of entities written by a seed."""

    groups: int = 0
    categories: int = 0
    users: int = 0
    topics: int = 0
    reads: int = 0


def _has_values(prefs: SummaryPreferences) -> bool:
    return (
        prefs.summary_email_interval_mins is not None
        or prefs.summary_email_if_active is not None
    )


class SeedLoader:
    """Loads seed fixtures and writes them into a store."""

    def __init__(self) -> None:
        """Initialize the loader."""
        self._log = logger.bind(component="seed")

    def load(self, file_path: Path) -> SeedConfig:
        """Parse and validate a seed file.

        Args:
            file_path: Path to the YAML file.

        Returns:
            The validated fixture.

        Raises:
            FileNotFoundError: If the file does not exist.
            SeedValidationError: If the YAML is malformed or invalid.
        """
        content_bytes = file_path.read_bytes()
        checksum = hashlib.sha256(content_bytes).hexdigest()
        self._log.info("loading_seed_file", file_path=str(file_path))

        try:
            data = yaml.safe_load(content_bytes.decode("utf-8")) or {}
        except yaml.YAMLError as e:
            errors = [{"loc": "yaml", "msg": str(e), "type": "yaml_parse_error"}]
            self._log.error("seed_yaml_parse_error", error=str(e))
            raise SeedValidationError(errors, str(file_path)) from e

        try:
            seed = SeedConfig.model_validate(data)
        except ValidationError as e:
            errors = [
                {
                    "loc": ".".join(str(loc) for loc in err["loc"]),
                    "msg": err["msg"],
                    "type": err["type"],
                }
                for err in e.errors()
            ]
            self._log.error(
                "seed_validation_failed",
                validation_error_count=len(errors),
                errors=errors,
            )
            raise SeedValidationError(errors, str(file_path)) from e

        self._log.info(
            "seed_file_loaded",
            file_path=str(file_path),
            file_sha256=checksum,
            users=len(seed.users),
            topics=len(seed.topics),
        )
        return seed

    def apply(self, store: DigestStore, seed: SeedConfig) -> SeedReport:
        """Write a fixture into the store in one transaction.

        Args:
            store: Connected digest store.
            seed: Validated fixture.

        Returns:
            Counts of written entities.
        """
        report = SeedReport()
        with store.transaction("seed"):
            group_ids: dict[str, int] = {}
            for group in seed.groups:
                group_ids[group.name] = store.create_group(group.name, group.id)
                if _has_values(group.preferences):
                    store.set_group_preferences(
                        group_ids[group.name], group.preferences
                    )
                report.groups += 1

            if _has_values(seed.everyone):
                store.set_group_preferences(EVERYONE_GROUP_ID, seed.everyone)

            for category in seed.categories:
                store.upsert_category(
                    Category(
                        category_id=category.id,
                        parent_id=category.parent_id,
                        name=category.name,
                        staff_only=category.staff_only,
                        unlisted=category.unlisted,
                        deleted=category.deleted,
                        include_in_summaries=category.include_in_summaries,
                    )
                )
                report.categories += 1

            user_ids: dict[str, int] = {}
            for user in seed.users:
                record = store.create_user(
                    username=user.username,
                    created_at=user.created_at,
                    email=user.email,
                    is_staff=user.is_staff,
                    user_id=user.id,
                )
                user_ids[user.username] = record.user_id
                for position, group_name in enumerate(user.groups):
                    store.add_group_member(
                        group_ids[group_name], record.user_id, position
                    )
                if _has_values(user.preferences):
                    store.set_user_preferences(record.user_id, user.preferences)
                if user.last_seen_at is not None:
                    store.record_visit(record.user_id, user.last_seen_at)
                report.users += 1

            for topic in seed.topics:
                store.create_topic(
                    TopicMeta(
                        page_id=topic.page_id,
                        author_id=user_ids[topic.author],
                        created_at=topic.created_at,
                        title=topic.title,
                        category_id=topic.category_id,
                        page_role=topic.page_role,
                        deleted=topic.deleted,
                        num_replies=topic.num_replies,
                    ),
                    member_ids=[user_ids[m] for m in topic.members],
                )
                report.topics += 1

            for read in seed.reads:
                store.mark_read(user_ids[read.username], read.page_id, read.at)
                report.reads += 1

        self._log.info(
            "seed_applied",
            groups=report.groups,
            categories=report.categories,
            users=report.users,
            topics=report.topics,
            reads=report.reads,
        )
        return report
