# ==============================================================================
# Tests for CLI Help Commands
# ==============================================================================
"""
Tests that all CLI help commands generate the expected output.

Verifies that every command and subcommand in the beacon CLI:
- Exits with code 0 when invoked with --help
- Contains the expected description text
- Lists the expected subcommands or options

These tests use the real app from beacon.app (not minimal Typer apps)
to ensure the full command tree is wired up correctly and that Typer can
introspect all command function signatures without errors.
"""

from typer.testing import CliRunner

from beacon.app import app

runner = CliRunner()


# ==============================================================================
# Root App
# ==============================================================================


class TestRootHelp:
    """Tests for the root `beacon --help` output."""

    def test_exit_code(self):
        """Root --help exits successfully."""
        result = runner.invoke(app, ["--help"])
        assert result.exit_code == 0

    def test_description(self):
        """Root --help shows the app description."""
        result = runner.invoke(app, ["--help"])
        assert "Telemetry and experimentation engine CLI" in result.output

    def test_lists_all_subcommands(self):
        """Root --help lists every top-level command."""
        result = runner.invoke(app, ["--help"])
        for cmd in ["analyze", "config"]:
            assert cmd in result.output, f"Missing command: {cmd}"


# ==============================================================================
# Config
# ==============================================================================


class TestConfigHelp:
    """Tests for `beacon config` help output."""

    def test_exit_code(self):
        result = runner.invoke(app, ["config", "--help"])
        assert result.exit_code == 0

    def test_description(self):
        result = runner.invoke(app, ["config", "--help"])
        assert "Configuration management" in result.output

    def test_lists_subcommands(self):
        result = runner.invoke(app, ["config", "--help"])
        assert "show" in result.output

    def test_show_options(self):
        """Config show --help lists the --json option."""
        result = runner.invoke(app, ["config", "show", "--help"])
        assert result.exit_code == 0
        assert "--json" in result.output


# ==============================================================================
# Analyze
# ==============================================================================


class TestAnalyzeHelp:
    """Tests for `beacon analyze` help output."""

    def test_exit_code(self):
        result = runner.invoke(app, ["analyze", "--help"])
        assert result.exit_code == 0

    def test_description(self):
        result = runner.invoke(app, ["analyze", "--help"])
        assert "Analyze a delivered event log" in result.output

    def test_lists_subcommands(self):
        result = runner.invoke(app, ["analyze", "--help"])
        for cmd in ["funnel", "cohorts", "experiment", "list"]:
            assert cmd in result.output, f"Missing subcommand: {cmd}"

    def test_funnel_options(self):
        """Analyze funnel --help lists date range and log options."""
        result = runner.invoke(app, ["analyze", "funnel", "--help"])
        assert result.exit_code == 0
        for opt in ["--start", "--end", "--log", "--json"]:
            assert opt in result.output, f"Missing option: {opt}"

    def test_cohorts_options(self):
        result = runner.invoke(app, ["analyze", "cohorts", "--help"])
        assert result.exit_code == 0
        for opt in ["--start", "--end", "--log", "--json"]:
            assert opt in result.output, f"Missing option: {opt}"

    def test_experiment_options(self):
        result = runner.invoke(app, ["analyze", "experiment", "--help"])
        assert result.exit_code == 0
        assert "--log" in result.output
        assert "--json" in result.output
