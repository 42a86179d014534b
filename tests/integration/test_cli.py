"""Integration tests for the digest CLI."""

import json
import sqlite3
from pathlib import Path

import pytest
from click.testing import CliRunner

from activity_digest.cli.digest import cli
from activity_digest.scheduler import DigestScheduler, SchedulerMetrics
from activity_digest.store.errors import TransientStorageError
from activity_digest.store.metrics import StoreMetrics
from activity_digest.store.store import DigestStore


SEED_YAML = """\
everyone:
  summary_email_interval_mins: 1440
  summary_email_if_active: false
groups:
  - name: weekly
    preferences:
      summary_email_interval_mins: 10080
categories:
  - id: 1
    name: General
  - id: 2
    name: Staff
    staff_only: true
users:
  - username: alice
    email: alice@example.com
    created_at: 2017-05-01T00:00:00Z
  - username: bob
    email: bob@example.com
    created_at: 2017-05-01T00:00:00Z
  - username: carol
    created_at: 2017-05-01T00:00:00Z
    groups: [weekly]
topics:
  - page_id: welcome
    author: alice
    title: Welcome
    created_at: 2017-06-10T00:00:00Z
    category_id: 1
  - page_id: staff-notes
    author: alice
    created_at: 2017-06-10T01:00:00Z
    category_id: 2
reads:
  - username: carol
    page_id: welcome
    at: 2017-06-11T00:00:00Z
"""


@pytest.fixture(autouse=True)
def reset_metrics() -> None:
    """Reset metric singletons between tests."""
    StoreMetrics.reset()
    SchedulerMetrics.reset()


@pytest.fixture
def runner() -> CliRunner:
    """Click test runner."""
    return CliRunner()


@pytest.fixture
def seeded(tmp_path: Path, runner: CliRunner) -> Path:
    """State database loaded from SEED_YAML."""
    seed_file = tmp_path / "seed.yaml"
    seed_file.write_text(SEED_YAML)
    state = tmp_path / "state.sqlite"
    result = runner.invoke(
        cli, ["seed", "--state", str(state), "--file", str(seed_file)]
    )
    assert result.exit_code == 0, result.output
    return state


class TestSeedCommand:
    """Tests for the seed command."""

    def test_seed_reports_counts(self, tmp_path: Path, runner: CliRunner) -> None:
        """Test seeding prints what was written."""
        seed_file = tmp_path / "seed.yaml"
        seed_file.write_text(SEED_YAML)

        result = runner.invoke(
            cli,
            ["seed", "--state", str(tmp_path / "s.sqlite"), "--file", str(seed_file)],
        )

        assert result.exit_code == 0
        assert result.output.strip() == (
            "Seeded 3 users, 1 groups, 2 categories, 2 topics, 1 reads."
        )

    def test_seed_invalid_file(self, tmp_path: Path, runner: CliRunner) -> None:
        """Test validation errors exit with status 1."""
        seed_file = tmp_path / "seed.yaml"
        seed_file.write_text("users:\n  - username: alice\n")

        result = runner.invoke(
            cli,
            ["seed", "--state", str(tmp_path / "s.sqlite"), "--file", str(seed_file)],
        )

        assert result.exit_code == 1
        assert "users.0.created_at" in result.output


class TestRunCommand:
    """Tests for the run command."""

    def test_run_writes_outbox(
        self, tmp_path: Path, runner: CliRunner, seeded: Path
    ) -> None:
        """Test a run produces summaries in the outbox."""
        outbox = tmp_path / "outbox"

        result = runner.invoke(
            cli,
            [
                "run",
                "--state", str(seeded),
                "--outbox", str(outbox),
                "--now", "2017-06-13T00:00:00",
                "--max-workers", "1",
            ],
        )

        assert result.exit_code == 0, result.output
        assert "evaluated 3 users, produced 1 digests, 2 empty, 0 failed." in (
            result.output
        )
        files = list(outbox.glob("*.json"))
        assert len(files) == 1
        data = json.loads(files[0].read_text())
        assert data["username"] == "bob"
        assert [t["page_id"] for t in data["topics"]] == ["welcome"]

    def test_second_run_nothing_due(
        self, tmp_path: Path, runner: CliRunner, seeded: Path
    ) -> None:
        """Test a rerun at the same time evaluates nobody."""
        args = [
            "run",
            "--state", str(seeded),
            "--outbox", str(tmp_path / "outbox"),
            "--now", "2017-06-13T00:00:00Z",
        ]
        runner.invoke(cli, args)

        result = runner.invoke(cli, args)

        assert result.exit_code == 0
        assert "evaluated 0 users" in result.output

    def test_bad_now(self, runner: CliRunner, seeded: Path) -> None:
        """Test a malformed --now is a usage error."""
        result = runner.invoke(
            cli, ["run", "--state", str(seeded), "--now", "yesterday"]
        )

        assert result.exit_code == 2
        assert "not an ISO-8601 timestamp" in result.output


class TestServeCommand:
    """Tests for the serve command."""

    def test_failed_batch_does_not_stop_serve(
        self,
        tmp_path: Path,
        runner: CliRunner,
        seeded: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test a batch raising a storage error leaves the next tick to run."""
        calls: list[int] = []
        sleeps: list[float] = []

        def flaky_run_once(self: DigestScheduler, now: object = None) -> None:
            calls.append(len(calls))
            if len(calls) == 1:
                raise TransientStorageError(
                    "begin_run", sqlite3.OperationalError("database is locked")
                )

        monkeypatch.setattr(DigestScheduler, "run_once", flaky_run_once)
        monkeypatch.setattr("activity_digest.cli.digest.time.sleep", sleeps.append)

        result = runner.invoke(
            cli,
            [
                "serve",
                "--state", str(seeded),
                "--outbox", str(tmp_path / "outbox"),
                "--every", "5",
                "--iterations", "2",
            ],
        )

        assert result.exit_code == 0, result.output
        assert len(calls) == 2
        assert sleeps == [300]
        assert "Batch failed: TransientStorageError" in result.output

    def test_serve_runs_batches(
        self,
        tmp_path: Path,
        runner: CliRunner,
        seeded: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Test serve runs the requested number of batches."""
        monkeypatch.setattr("activity_digest.cli.digest.time.sleep", lambda _: None)

        result = runner.invoke(
            cli,
            [
                "serve",
                "--state", str(seeded),
                "--outbox", str(tmp_path / "outbox"),
                "--iterations", "2",
            ],
        )

        assert result.exit_code == 0, result.output
        assert result.output.count("Run ") == 2


class TestSetPrefsCommand:
    """Tests for the set-prefs command."""

    def test_set_user_interval(self, runner: CliRunner, seeded: Path) -> None:
        """Test a user's interval is stored and the other setting kept."""
        result = runner.invoke(
            cli,
            ["set-prefs", "--state", str(seeded), "--user", "bob", "--interval", "60"],
        )

        assert result.exit_code == 0, result.output
        assert result.output.strip() == (
            "Updated user bob: interval=60, if_active=inherit"
        )
        with DigestStore(seeded) as store:
            user = store.load_user_by_username("bob")
            assert user is not None
            prefs = store.load_user_preferences(user.user_id)
        assert prefs.summary_email_interval_mins == 60

    def test_everyone_never_and_inherit(
        self, runner: CliRunner, seeded: Path
    ) -> None:
        """Test keywords map to the sentinel and to inherit."""
        result = runner.invoke(
            cli,
            [
                "set-prefs",
                "--state", str(seeded),
                "--everyone",
                "--interval", "never",
                "--if-active", "inherit",
            ],
        )

        assert result.exit_code == 0, result.output
        assert "Updated group Everyone: interval=never, if_active=inherit" in (
            result.output
        )

    def test_group_if_active(self, runner: CliRunner, seeded: Path) -> None:
        """Test a named group's if-active flag keeps its interval."""
        result = runner.invoke(
            cli,
            [
                "set-prefs",
                "--state", str(seeded),
                "--group", "weekly",
                "--if-active", "yes",
            ],
        )

        assert result.exit_code == 0, result.output
        assert "interval=10080, if_active=yes" in result.output

    def test_requires_one_target(self, runner: CliRunner, seeded: Path) -> None:
        """Test exactly one of --user, --group and --everyone is required."""
        result = runner.invoke(
            cli,
            ["set-prefs", "--state", str(seeded), "--user", "bob", "--everyone"],
        )

        assert result.exit_code == 2

    def test_unknown_user(self, runner: CliRunner, seeded: Path) -> None:
        """Test an unknown user exits with status 1."""
        result = runner.invoke(
            cli,
            ["set-prefs", "--state", str(seeded), "--user", "zed", "--interval", "5"],
        )

        assert result.exit_code == 1
        assert "Unknown user: zed" in result.output

    def test_bad_interval(self, runner: CliRunner, seeded: Path) -> None:
        """Test a non-positive interval is rejected."""
        result = runner.invoke(
            cli,
            ["set-prefs", "--state", str(seeded), "--user", "bob", "--interval", "0"],
        )

        assert result.exit_code == 2


class TestDbStatsCommand:
    """Tests for the db-stats command."""

    def test_json(self, runner: CliRunner, seeded: Path) -> None:
        """Test JSON statistics."""
        result = runner.invoke(cli, ["db-stats", "--state", str(seeded), "--json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["schema_version"] == 1
        assert data["tables"]["users"] == 3
        assert data["last_successful_run"] is None

    def test_text(self, runner: CliRunner, seeded: Path) -> None:
        """Test human-readable statistics."""
        result = runner.invoke(cli, ["db-stats", "--state", str(seeded)])

        assert result.exit_code == 0
        assert "Schema Version: 2" in result.output
        assert "topics: 2" in result.output

    def test_missing_database(self, tmp_path: Path, runner: CliRunner) -> None:
        """Test a missing database exits with status 1."""
        result = runner.invoke(
            cli, ["db-stats", "--state", str(tmp_path / "missing.sqlite")]
        )

        assert result.exit_code == 1
