"""Smoke tests for the CLI.

These tests verify CLI behaviour without docker: transfers run against
FakeBuilder through a patched strategy factory.
"""

import json
from unittest.mock import patch

from typer.testing import CliRunner

from conftest import FakeBuilder, read_tree, write_tree

from cache_dance import __version__
from cache_dance.cli import app

runner = CliRunner()

STRATEGY = "cache_dance.transfer.service.get_strategy"


def _map(tmp_path, **entries) -> str:
    return json.dumps({str(tmp_path / name): target for name, target in entries.items()})


def _transfer_args(tmp_path) -> list[str]:
    return ["--scratch-dir", str(tmp_path / "scratch"), "--no-sudo"]


class TestCLIHelp:
    """Test CLI help and version commands."""

    def test_help_returns_zero(self) -> None:
        """CLI --help should return exit code 0."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "Cache Dance" in result.stdout

    def test_version_flag(self) -> None:
        """CLI --version should print version and exit 0."""
        result = runner.invoke(app, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_short_version_flag(self) -> None:
        """CLI -V should print version and exit 0."""
        result = runner.invoke(app, ["-V"])
        assert result.exit_code == 0
        assert __version__ in result.stdout

    def test_no_args_shows_help(self) -> None:
        """CLI with no args should show help."""
        result = runner.invoke(app, [])
        assert "Usage:" in result.stdout

    def test_commands_listed(self) -> None:
        result = runner.invoke(app, ["--help"])
        for command in ("extract", "inject", "action", "dancefile", "config"):
            assert command in result.stdout


class TestCLIConfig:
    """Test CLI config command."""

    def test_config_command_shows_all_settings(self) -> None:
        """CLI config should show all configuration fields."""
        result = runner.invoke(app, ["config"])
        assert result.exit_code == 0
        assert "Effective Configuration:" in result.stdout
        assert "Cache map:" in result.stdout
        assert "Builder:" in result.stdout
        assert "Operational:" in result.stdout
        for label in (
            "Scratch directory",
            "Utility image",
            "Job mode",
            "Output strategy",
            "Dancefile input",
            "Use sudo",
            "Skip extraction",
            "Timeout",
            "Log level",
            "Verbose",
        ):
            assert label in result.stdout
        assert "(not set)" in result.stdout

    def test_config_reads_environment(self, monkeypatch) -> None:
        """CLI config should reflect CACHE_DANCE_ variables."""
        monkeypatch.setenv("CACHE_DANCE_BUILDER", "ci-builder")
        monkeypatch.setenv("CACHE_DANCE_JOB_MODE", "batch")

        result = runner.invoke(app, ["config"])

        assert result.exit_code == 0
        assert "ci-builder" in result.stdout
        assert "batch" in result.stdout

    def test_config_json(self) -> None:
        """CLI config --json should output JSON."""
        result = runner.invoke(app, ["config", "--json"])
        assert result.exit_code == 0
        data = json.loads(result.stdout)
        assert data["builder"] == "default"
        assert data["job_mode"] == "per-mount"
        assert data["use_sudo"] is True
        assert data["cache_map"] is None


class TestCLIDancefile:
    """Test CLI dancefile command."""

    def test_per_mount_extract(self) -> None:
        """Should print one dancefile per mount."""
        result = runner.invoke(
            app,
            [
                "dancefile",
                "extract",
                "--cache-map",
                '{"apt": "/var/cache/apt", "pip": "/root/.cache/pip"}',
            ],
        )
        assert result.exit_code == 0
        assert "# apt" in result.stdout
        assert "# pip" in result.stdout
        assert result.stdout.count("AS dance-extract") == 2

    def test_batch_inject(self) -> None:
        """Should print a single dancefile in batch mode."""
        result = runner.invoke(
            app,
            [
                "dancefile",
                "inject",
                "--job-mode",
                "batch",
                "--utility-image",
                "alpine:3",
                "--cache-map",
                '{"apt": "/var/cache/apt", "pip": "/root/.cache/pip"}',
            ],
        )
        assert result.exit_code == 0
        assert result.stdout.count("FROM alpine:3") == 1
        assert "from=dance-var-cache-apt" in result.stdout

    def test_invalid_cache_map(self) -> None:
        """Should exit 1 on a malformed cache map."""
        result = runner.invoke(
            app, ["dancefile", "extract", "--cache-map", '{"apt": "relative"}']
        )
        assert result.exit_code == 1
        assert "Error" in result.stdout

    def test_missing_cache_map(self) -> None:
        result = runner.invoke(app, ["dancefile", "extract"])
        assert result.exit_code == 1
        assert "No cache map configured" in result.stdout

    def test_cache_map_file_flag_beats_env_text(self, tmp_path, monkeypatch) -> None:
        """A cache map file on the command line replaces the one from the env."""
        monkeypatch.setenv("CACHE_DANCE_CACHE_MAP", '{"from-env": "/env/target"}')
        path = tmp_path / "map.json"
        path.write_text(json.dumps({"from-file": "/file/target"}))

        result = runner.invoke(
            app, ["dancefile", "extract", "--cache-map-file", str(path)]
        )

        assert result.exit_code == 0, result.stdout
        assert "/file/target" in result.stdout
        assert "/env/target" not in result.stdout

    def test_unreadable_cache_map_file(self, tmp_path) -> None:
        result = runner.invoke(
            app, ["dancefile", "extract", "--cache-map-file", str(tmp_path)]
        )
        assert result.exit_code == 1
        assert "Cannot read" in result.stdout


class TestCLITransfers:
    """Test CLI extract, inject and action commands."""

    def test_extract(self, tmp_path) -> None:
        """Should extract caches and list the results."""
        builder = FakeBuilder(store={"/var/cache/apt": {"a": b"1"}})

        with patch(STRATEGY, return_value=builder):
            result = runner.invoke(
                app,
                ["extract", "--cache-map", _map(tmp_path, apt="/var/cache/apt")]
                + _transfer_args(tmp_path),
            )

        assert result.exit_code == 0, result.stdout
        assert "extract" in result.stdout
        assert read_tree(tmp_path / "apt") == {"a": b"1"}

    def test_extract_failure_exits_non_zero(self, tmp_path) -> None:
        """Should exit 1 and name the failed source."""
        builder = FakeBuilder(fail_targets={"/root/.cache/pip"})

        with patch(STRATEGY, return_value=builder):
            result = runner.invoke(
                app,
                [
                    "extract",
                    "--cache-map",
                    _map(tmp_path, apt="/var/cache/apt", pip="/root/.cache/pip"),
                ]
                + _transfer_args(tmp_path),
            )

        assert result.exit_code == 1
        assert "1 cache transfer(s) failed" in result.stdout
        assert (tmp_path / "apt").is_dir()

    def test_skip_extraction(self, tmp_path) -> None:
        builder = FakeBuilder()

        with patch(STRATEGY, return_value=builder):
            result = runner.invoke(
                app,
                [
                    "extract",
                    "--skip-extraction",
                    "--cache-map",
                    _map(tmp_path, apt="/var/cache/apt"),
                ]
                + _transfer_args(tmp_path),
            )

        assert result.exit_code == 0
        assert builder.builds == []

    def test_inject(self, tmp_path) -> None:
        """Should inject the sources into the caches."""
        write_tree(tmp_path / "apt", {"a": b"1"})
        builder = FakeBuilder()

        with patch(STRATEGY, return_value=builder):
            result = runner.invoke(
                app,
                [
                    "inject",
                    "--job-mode",
                    "batch",
                    "--cache-map",
                    _map(tmp_path, apt="/var/cache/apt"),
                ]
                + _transfer_args(tmp_path),
            )

        assert result.exit_code == 0, result.stdout
        assert builder.store == {"/var/cache/apt": {"a": b"1"}}

    def test_invalid_timeout(self, tmp_path) -> None:
        """Should reject a non-positive timeout."""
        result = runner.invoke(
            app,
            ["inject", "--timeout", "0", "--cache-map", _map(tmp_path, a="/a")],
        )
        assert result.exit_code == 1
        assert "Invalid configuration" in result.stdout

    def test_no_cache_map(self, tmp_path) -> None:
        result = runner.invoke(app, ["inject"] + _transfer_args(tmp_path))
        assert result.exit_code == 1
        assert "No cache map configured" in result.stdout

    def test_action_main_step_injects(self, tmp_path, monkeypatch) -> None:
        """Should inject and record the post step in GITHUB_STATE."""
        state_file = tmp_path / "state"
        monkeypatch.setenv("GITHUB_STATE", str(state_file))
        monkeypatch.setenv("CACHE_DANCE_USE_SUDO", "false")
        write_tree(tmp_path / "apt", {"a": b"1"})
        builder = FakeBuilder()

        with patch(STRATEGY, return_value=builder):
            result = runner.invoke(
                app,
                [
                    "action",
                    "--scratch-dir",
                    str(tmp_path / "scratch"),
                    "--cache-map",
                    _map(tmp_path, apt="/var/cache/apt"),
                ],
            )

        assert result.exit_code == 0, result.stdout
        assert "POST=true" in state_file.read_text()
        assert builder.store == {"/var/cache/apt": {"a": b"1"}}

    def test_action_post_step_extracts(self, tmp_path, monkeypatch) -> None:
        """Should extract when STATE_POST is set."""
        monkeypatch.setenv("STATE_POST", "true")
        monkeypatch.setenv("CACHE_DANCE_USE_SUDO", "false")
        builder = FakeBuilder(store={"/var/cache/apt": {"a": b"1"}})

        with patch(STRATEGY, return_value=builder):
            result = runner.invoke(
                app,
                [
                    "action",
                    "--scratch-dir",
                    str(tmp_path / "scratch"),
                    "--cache-map",
                    _map(tmp_path, apt="/var/cache/apt"),
                ],
            )

        assert result.exit_code == 0, result.stdout
        assert read_tree(tmp_path / "apt") == {"a": b"1"}
