"""CLI commands for the activity digest scheduler."""

import json
import logging
import sys
import time
from datetime import UTC, datetime
from pathlib import Path

import click
import structlog

from activity_digest import __version__
from activity_digest.mailer import OutboxMailer
from activity_digest.observability.logging import configure_logging, level_from_name
from activity_digest.preferences.constants import DO_NOT_SEND, EVERYONE_GROUP_ID
from activity_digest.preferences.errors import ConfigurationError
from activity_digest.preferences.models import SummaryPreferences
from activity_digest.scheduler import BatchResult, UserOutcome, build_scheduler
from activity_digest.scheduler.clock import SystemClock
from activity_digest.seed import SeedLoader, SeedValidationError
from activity_digest.settings import AppSettings, get_settings
from activity_digest.store import DigestStore


logger = structlog.get_logger()

# Keywords accepted by set-prefs
NEVER = "never"
INHERIT = "inherit"


def _parse_now(
    ctx: click.Context, param: click.Parameter, value: str | None
) -> datetime | None:
    """Parse an ISO-8601 --now value; naive values are taken as UTC."""
    if value is None:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as e:
        raise click.BadParameter(f"not an ISO-8601 timestamp: {value}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _parse_interval(
    ctx: click.Context, param: click.Parameter, value: str | None
) -> int | str | None:
    """Parse --interval: minutes, 'never' or 'inherit'."""
    if value is None or value in (NEVER, INHERIT):
        return value
    try:
        minutes = int(value)
    except ValueError as e:
        raise click.BadParameter(
            f"expected minutes, '{NEVER}' or '{INHERIT}', got {value}"
        ) from e
    if minutes <= 0:
        raise click.BadParameter(f"interval must be positive, got {minutes}")
    return minutes


def _settings_with_overrides(**overrides: object) -> AppSettings:
    """Environment settings with CLI options that were given."""
    settings = get_settings()
    given = {k: v for k, v in overrides.items() if v is not None}
    return settings.model_copy(update=given) if given else settings


def _setup_logging(settings: AppSettings, verbose: bool) -> None:
    level = logging.DEBUG if verbose else level_from_name(settings.log_level)
    configure_logging(level=level, json_format=settings.json_logs)


def _echo_batch(result: BatchResult) -> None:
    click.echo(
        f"Run {result.run_id}: evaluated {result.users_evaluated} users, "
        f"produced {result.digests_produced} digests, "
        f"{result.count(UserOutcome.EMPTY)} empty, "
        f"{result.users_failed} failed."
    )


state_option = click.option(
    "--state",
    "state_path",
    type=click.Path(path_type=Path),
    default=None,
    help="Path to SQLite state database (default: DIGEST_STATE_PATH).",
)


@click.group()
@click.version_option(version=__version__)
def cli() -> None:
    """Activity digest scheduler CLI."""


@cli.command()
@state_option
@click.option(
    "--outbox",
    "outbox_dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Directory receiving summary JSON files (default: DIGEST_OUTBOX_DIR).",
)
@click.option(
    "--now",
    callback=_parse_now,
    default=None,
    help="Evaluate as of this ISO-8601 time instead of the current time.",
)
@click.option(
    "--max-workers",
    type=click.IntRange(min=1),
    default=None,
    help="Users evaluated in parallel.",
)
@click.option(
    "--json-logs/--no-json-logs",
    default=None,
    help="Use JSON format for logs (default: DIGEST_JSON_LOGS).",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose logging.",
)
def run(  # noqa: PLR0913
    state_path: Path | None,
    outbox_dir: Path | None,
    now: datetime | None,
    max_workers: int | None,
    json_logs: bool | None,
    verbose: bool,
) -> None:
    """Run one batch: evaluate due users and queue their summaries."""
    settings = _settings_with_overrides(
        state_path=state_path,
        outbox_dir=outbox_dir,
        max_workers=max_workers,
        json_logs=json_logs,
    )
    _setup_logging(settings, verbose)

    with DigestStore(settings.state_path) as store, build_scheduler(
        store,
        settings,
        clock=SystemClock(),
        mailer=OutboxMailer(settings.outbox_dir),
    ) as scheduler:
        result = scheduler.run_once(now)

    if result is None:
        click.echo("Another batch run is in progress; skipped.")
        return
    _echo_batch(result)


@cli.command()
@state_option
@click.option(
    "--outbox",
    "outbox_dir",
    type=click.Path(path_type=Path),
    default=None,
    help="Directory receiving summary JSON files (default: DIGEST_OUTBOX_DIR).",
)
@click.option(
    "--every",
    "every_minutes",
    type=click.IntRange(min=1),
    default=None,
    help="Minutes between batches (default: DIGEST_TICK_MINUTES).",
)
@click.option(
    "--iterations",
    type=click.IntRange(min=1),
    default=None,
    help="Stop after this many batches (default: run until interrupted).",
)
@click.option(
    "--json-logs/--no-json-logs",
    default=None,
    help="Use JSON format for logs (default: DIGEST_JSON_LOGS).",
)
@click.option(
    "--verbose",
    "-v",
    is_flag=True,
    help="Enable verbose logging.",
)
def serve(  # noqa: PLR0913
    state_path: Path | None,
    outbox_dir: Path | None,
    every_minutes: int | None,
    iterations: int | None,
    json_logs: bool | None,
    verbose: bool,
) -> None:
    """Run batches on a fixed interval until interrupted."""
    settings = _settings_with_overrides(
        state_path=state_path,
        outbox_dir=outbox_dir,
        tick_minutes=every_minutes,
        json_logs=json_logs,
    )
    _setup_logging(settings, verbose)
    log = logger.bind(component="cli", command="serve")
    log.info("serve_started", every_minutes=settings.tick_minutes)

    completed = 0
    with DigestStore(settings.state_path) as store, build_scheduler(
        store,
        settings,
        clock=SystemClock(),
        mailer=OutboxMailer(settings.outbox_dir),
    ) as scheduler:
        try:
            while iterations is None or completed < iterations:
                try:
                    result = scheduler.run_once()
                except ConfigurationError:
                    raise
                except Exception as e:  # noqa: BLE001
                    # The next tick picks up whatever this one left
                    log.error(
                        "batch_failed",
                        error_type=type(e).__name__,
                        error=str(e),
                    )
                    click.echo(f"Batch failed: {type(e).__name__}: {e}", err=True)
                else:
                    if result is not None:
                        _echo_batch(result)
                completed += 1
                if iterations is None or completed < iterations:
                    time.sleep(settings.tick_minutes * 60)
        except KeyboardInterrupt:
            log.info("serve_interrupted", batches=completed)

    log.info("serve_stopped", batches=completed)


@cli.command()
@state_option
@click.option(
    "--file",
    "seed_path",
    required=True,
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="Path to a YAML seed file.",
)
def seed(state_path: Path | None, seed_path: Path) -> None:
    """Load users, groups, categories, topics and reads from a YAML file."""
    settings = _settings_with_overrides(state_path=state_path)
    configure_logging(json_format=False, level=logging.WARNING)

    loader = SeedLoader()
    try:
        fixture = loader.load(seed_path)
    except SeedValidationError as e:
        click.echo(f"Seed validation failed for {e.file_path}:", err=True)
        for error in e.errors:
            click.echo(f"  - {error['loc']}: {error['msg']}", err=True)
        sys.exit(1)

    with DigestStore(settings.state_path) as store:
        report = loader.apply(store, fixture)

    click.echo(
        f"Seeded {report.users} users, {report.groups} groups, "
        f"{report.categories} categories, {report.topics} topics, "
        f"{report.reads} reads."
    )


@cli.command("set-prefs")
@state_option
@click.option("--user", "username", default=None, help="Username to update.")
@click.option("--group", "group_name", default=None, help="Group name to update.")
@click.option(
    "--everyone",
    is_flag=True,
    help="Update the built-in Everyone group (site default).",
)
@click.option(
    "--interval",
    callback=_parse_interval,
    default=None,
    help=f"Minutes between summaries, '{NEVER}' or '{INHERIT}'.",
)
@click.option(
    "--if-active",
    type=click.Choice(["yes", "no", INHERIT]),
    default=None,
    help="Send even if the user was active recently.",
)
def set_prefs(  # noqa: PLR0913
    state_path: Path | None,
    username: str | None,
    group_name: str | None,
    everyone: bool,
    interval: int | str | None,
    if_active: str | None,
) -> None:
    """Change summary email preferences of a user or group.

    Settings not given on the command line are kept.
    """
    if sum((username is not None, group_name is not None, everyone)) != 1:
        raise click.UsageError("Give exactly one of --user, --group or --everyone.")

    settings = _settings_with_overrides(state_path=state_path)
    configure_logging(json_format=False, level=logging.WARNING)

    with DigestStore(settings.state_path) as store:
        if username is not None:
            user = store.load_user_by_username(username)
            if user is None:
                click.echo(f"Unknown user: {username}", err=True)
                sys.exit(1)
            current = store.load_user_preferences(user.user_id)
        else:
            group_id = (
                EVERYONE_GROUP_ID if everyone else store.find_group_id(str(group_name))
            )
            if group_id is None:
                click.echo(f"Unknown group: {group_name}", err=True)
                sys.exit(1)
            current = store.load_group_preferences(group_id)

        updated = _merge_preferences(current, interval, if_active)

        if username is not None:
            store.set_user_preferences(user.user_id, updated)
            target = f"user {username}"
        else:
            store.set_group_preferences(group_id, updated)
            target = "group Everyone" if everyone else f"group {group_name}"

    click.echo(
        f"Updated {target}: interval="
        f"{_describe(updated.summary_email_interval_mins)}, "
        f"if_active={_describe(updated.summary_email_if_active)}"
    )


def _merge_preferences(
    current: SummaryPreferences, interval: int | str | None, if_active: str | None
) -> SummaryPreferences:
    """Apply set-prefs options on top of stored preferences."""
    update: dict[str, object] = {}
    if interval == NEVER:
        update["summary_email_interval_mins"] = DO_NOT_SEND
    elif interval == INHERIT:
        update["summary_email_interval_mins"] = None
    elif interval is not None:
        update["summary_email_interval_mins"] = interval
    if if_active is not None:
        update["summary_email_if_active"] = (
            None if if_active == INHERIT else if_active == "yes"
        )
    return current.model_copy(update=update)


def _describe(value: int | bool | None) -> str:
    if value is None:
        return INHERIT
    if isinstance(value, bool):
        return "yes" if value else "no"
    if value == DO_NOT_SEND:
        return NEVER
    return str(value)


@cli.command("db-stats")
@state_option
@click.option(
    "--json",
    "json_output",
    is_flag=True,
    help="Output as JSON.",
)
def db_stats(state_path: Path | None, json_output: bool) -> None:
    """Display state database statistics.

    Shows row counts, schema version, and the last successful run.
    """
    settings = _settings_with_overrides(state_path=state_path)
    configure_logging(json_format=False, level=logging.WARNING)

    if not settings.state_path.exists():
        click.echo(f"State database does not exist: {settings.state_path}", err=True)
        sys.exit(1)

    with DigestStore(settings.state_path) as store:
        stats = store.get_stats()
        schema_version = store.get_schema_version()
        last_success = store.get_last_successful_run()

    last_finished = (
        last_success.finished_at.isoformat()
        if last_success is not None and last_success.finished_at is not None
        else None
    )
    if json_output:
        output = {
            "schema_version": schema_version,
            "tables": stats,
            "last_successful_run": last_finished,
        }
        click.echo(json.dumps(output, indent=2))
    else:
        click.echo("State Database Statistics")
        click.echo("=" * 40)
        click.echo(f"  Schema Version: {schema_version}")
        click.echo(f"  Last Successful Run: {last_finished or 'None'}")
        click.echo("")
        click.echo("Table Row Counts:")
        for table, count in sorted(stats.items()):
            click.echo(f"  {table}: {count}")


if __name__ == "__main__":
    cli()
