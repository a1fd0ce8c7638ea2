"""Tests for CLI functionality."""

import json
from unittest.mock import AsyncMock, patch

import pytest
import typer
from typer.testing import CliRunner

from apps.cli.main import app, current_requirement, format_diff_output, parse_credential
from podfix.errors import NoViableVersion
from podfix.models import Credential, Dependency, ResolutionResult, UpdateReport

PODFILE = "platform :ios, '9.0'\n\ntarget 'MyApp' do\n  pod 'Alamofire', '~> 3.0.0'\nend\n"
UPDATED_PODFILE = PODFILE.replace("~> 3.0.0", "~> 4.0.0")
LOCKFILE = "PODS:\n  - Alamofire (3.0.0)\n\nDEPENDENCIES:\n  - Alamofire (~> 3.0.0)\n"
UPDATED_LOCKFILE = "PODS:\n  - Alamofire (4.0.1)\n\nDEPENDENCIES:\n  - Alamofire (~> 4.0.0)\n"


def make_report(changed=True, notes=None):
    return UpdateReport(
        podfile=UPDATED_PODFILE if changed else PODFILE,
        lockfile=UPDATED_LOCKFILE if changed else LOCKFILE,
        resolution=ResolutionResult(
            versions={"Alamofire": "4.0.1" if changed else "3.0.0"},
            changed={"Alamofire"} if changed else set(),
        ),
        notes=notes if notes is not None else [],
        podfile_changed=changed,
        lockfile_changed=changed,
    )


class TestCLI:
    """Test CLI command interface."""

    def setup_method(self):
        """Setup test fixtures."""
        self.runner = CliRunner()

    def write_project(self, tmp_path):
        podfile = tmp_path / "Podfile"
        podfile.write_text(PODFILE)
        lockfile = tmp_path / "Podfile.lock"
        lockfile.write_text(LOCKFILE)
        return podfile, lockfile

    def test_cli_help_command(self):
        """Should display help when called with --help."""
        result = self.runner.invoke(app, ["--help"])
        assert result.exit_code == 0
        assert "podfix" in result.output.lower()
        assert "--pod" in result.output

    def test_update_in_place(self, tmp_path):
        """Should update the Podfile and the sibling lockfile in place."""
        podfile, lockfile = self.write_project(tmp_path)

        with patch("apps.cli.main.PodfileUpdater") as mock_updater_class:
            mock_updater = AsyncMock()
            mock_updater_class.return_value = mock_updater
            mock_updater.update.return_value = make_report(notes=["Alamofire 3.0.0 -> 4.0.1"])

            result = self.runner.invoke(app, [str(podfile), "--pod", "Alamofire", "-r", "~> 4.0.0", "-i"])

            assert result.exit_code == 0
            assert podfile.read_text() == UPDATED_PODFILE
            assert lockfile.read_text() == UPDATED_LOCKFILE

            args = mock_updater.update.call_args[0]
            assert args[0] == PODFILE
            assert args[1] == LOCKFILE
            assert args[2] == Dependency("Alamofire", "~> 4.0.0", "~> 3.0.0")

    def test_update_with_output_directory(self, tmp_path):
        """Should write both files into the output directory."""
        podfile, lockfile = self.write_project(tmp_path)
        out_dir = tmp_path / "out"

        with patch("apps.cli.main.PodfileUpdater") as mock_updater_class:
            mock_updater = AsyncMock()
            mock_updater_class.return_value = mock_updater
            mock_updater.update.return_value = make_report()

            result = self.runner.invoke(app, [str(podfile), "-p", "Alamofire", "-r", "~> 4.0.0", "--out", str(out_dir)])

            assert result.exit_code == 0
            assert (out_dir / "Podfile").read_text() == UPDATED_PODFILE
            assert (out_dir / "Podfile.lock").read_text() == UPDATED_LOCKFILE
            assert podfile.read_text() == PODFILE

    def test_update_dry_run(self, tmp_path):
        """Should print a diff and leave files alone."""
        podfile, lockfile = self.write_project(tmp_path)

        with patch("apps.cli.main.PodfileUpdater") as mock_updater_class:
            mock_updater = AsyncMock()
            mock_updater_class.return_value = mock_updater
            mock_updater.update.return_value = make_report()

            result = self.runner.invoke(
                app, [str(podfile), "-p", "Alamofire", "-r", "~> 4.0.0", "--dry-run", "-i"]
            )

            assert result.exit_code == 0
            assert "-  pod 'Alamofire', '~> 3.0.0'" in result.output
            assert "+  pod 'Alamofire', '~> 4.0.0'" in result.output
            assert "+  - Alamofire (4.0.1)" in result.output
            assert podfile.read_text() == PODFILE
            assert lockfile.read_text() == LOCKFILE

    def test_json_output(self, tmp_path):
        """Should print a JSON summary."""
        podfile, _ = self.write_project(tmp_path)

        with patch("apps.cli.main.PodfileUpdater") as mock_updater_class:
            mock_updater = AsyncMock()
            mock_updater_class.return_value = mock_updater
            mock_updater.update.return_value = make_report()

            result = self.runner.invoke(app, [str(podfile), "-p", "Alamofire", "-r", "~> 4.0.0", "--format", "json"])

            assert result.exit_code == 0
            data = json.loads(result.output)
            assert data["pod"] == "Alamofire"
            assert data["versions"] == {"Alamofire": "4.0.1"}
            assert data["changed"] == ["Alamofire"]
            assert data["podfile_changed"] is True

    def test_no_changes_exit_code(self, tmp_path):
        """Should exit with 2 when nothing changes."""
        podfile, _ = self.write_project(tmp_path)

        with patch("apps.cli.main.PodfileUpdater") as mock_updater_class:
            mock_updater = AsyncMock()
            mock_updater_class.return_value = mock_updater
            mock_updater.update.return_value = make_report(changed=False)

            result = self.runner.invoke(app, [str(podfile), "-p", "Alamofire", "-r", "~> 3.0.0", "-i"])

            assert result.exit_code == 2
            assert "No updates available" in result.output

    def test_update_error(self, tmp_path):
        """Should report update failures with their code."""
        podfile, lockfile = self.write_project(tmp_path)

        with patch("apps.cli.main.PodfileUpdater") as mock_updater_class:
            mock_updater = AsyncMock()
            mock_updater_class.return_value = mock_updater
            mock_updater.update.side_effect = NoViableVersion("Alamofire", "~> 9.0")

            result = self.runner.invoke(app, [str(podfile), "-p", "Alamofire", "-r", "~> 9.0", "-i"])

            assert result.exit_code == 1
            assert "NO_VIABLE_VERSION" in result.output
            assert lockfile.read_text() == LOCKFILE

    def test_settings_and_credentials(self, tmp_path):
        """Should pass settings and credentials to the updater."""
        podfile, _ = self.write_project(tmp_path)

        with patch("apps.cli.main.PodfileUpdater") as mock_updater_class:
            mock_updater = AsyncMock()
            mock_updater_class.return_value = mock_updater
            mock_updater.update.return_value = make_report()

            result = self.runner.invoke(
                app,
                [
                    str(podfile), "-p", "Alamofire", "-r", "~> 4.0.0", "-i",
                    "--cdn-url", "https://cdn.example.com",
                    "--credential", "github.com=x-access-token:tok",
                ],
            )

            assert result.exit_code == 0
            kwargs = mock_updater_class.call_args[1]
            assert kwargs["settings"].cdn_url == "https://cdn.example.com/"
            assert kwargs["credentials"] == [
                Credential(kind="git_source", host="github.com", username="x-access-token", secret="tok")
            ]

    def test_missing_file(self, tmp_path):
        """Should fail for a Podfile that does not exist."""
        result = self.runner.invoke(app, [str(tmp_path / "Podfile"), "-p", "Alamofire", "-i"])
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_missing_lockfile(self, tmp_path):
        """Should fail when no lockfile sits next to the Podfile."""
        podfile = tmp_path / "Podfile"
        podfile.write_text(PODFILE)

        result = self.runner.invoke(app, [str(podfile), "-p", "Alamofire", "-i"])

        assert result.exit_code == 1
        assert "Lockfile" in result.output

    def test_stdin_requires_lockfile(self):
        """Should refuse stdin input without --lockfile."""
        result = self.runner.invoke(app, ["-", "-p", "Alamofire", "--out", "-"], input=PODFILE)
        assert result.exit_code == 1
        assert "--lockfile" in result.output

    def test_not_a_podfile(self, tmp_path):
        """Should refuse input that is not a Podfile."""
        other = tmp_path / "notes.txt"
        other.write_text("just some text\n")
        lockfile = tmp_path / "Podfile.lock"
        lockfile.write_text(LOCKFILE)

        result = self.runner.invoke(app, [str(other), "-p", "Alamofire", "-l", str(lockfile), "-i"])

        assert result.exit_code == 1
        assert "(unknown)" in result.output


class TestHelpers:
    """Test CLI helper functions."""

    def test_parse_credential(self):
        """Should split host, username and secret."""
        assert parse_credential("github.com=bot:s3cret") == Credential(
            kind="git_source", host="github.com", username="bot", secret="s3cret"
        )
        assert parse_credential("github.com=s3cret").username is None

    def test_parse_credential_invalid(self):
        """Should reject values without a host."""
        with pytest.raises(typer.BadParameter):
            parse_credential("s3cret")

    def test_current_requirement(self):
        """Should read the declared requirement."""
        assert current_requirement(PODFILE, "Alamofire") == "~> 3.0.0"
        assert current_requirement(PODFILE, "Nimble") is None

    def test_format_diff_output(self):
        """Should produce a unified diff."""
        diff = format_diff_output(PODFILE, UPDATED_PODFILE, "Podfile")
        assert diff.startswith("--- Podfile\n+++ Podfile\n")
        assert "+  pod 'Alamofire', '~> 4.0.0'\n" in diff
