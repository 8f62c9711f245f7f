"""Tests for the CLI entry point."""

from unittest.mock import patch

import pytest

import nixpkgs_update
from common.logging_utils import ENV_LOG_LEVEL, extra_context, safe_url
from constants import ExitCodes
from update.batch import BatchSummary


@pytest.fixture(autouse=True)
def _restore_log_level(monkeypatch):
    monkeypatch.setenv(ENV_LOG_LEVEL, "INFO")


def _exit_code(argv):
    with pytest.raises(SystemExit) as excinfo:
        nixpkgs_update.main(argv)
    return excinfo.value.code


class TestMain:
    """Subcommand dispatch and exit codes."""

    @patch("nixpkgs_update.batch.update_one", return_value=True)
    def test_update_success(self, mock_update):
        """A successful single update exits 0."""
        assert _exit_code(["update", "foo 1.0 1.1", "-C", "/src/nixpkgs"]) == ExitCodes.SUCCESS.value
        options = mock_update.call_args.args[0]
        assert not options.batch_update
        assert mock_update.call_args.kwargs["repo_dir"] == "/src/nixpkgs"

    @patch("nixpkgs_update.batch.update_one", return_value=False)
    def test_update_failure(self, _mock_update):
        """A failed single update has its own exit code."""
        assert _exit_code(["update", "foo 1.0 1.1"]) == ExitCodes.UPDATE_FAILED.value

    @patch("nixpkgs_update.batch.update_all", return_value=BatchSummary(1, 0, 0))
    def test_update_batch(self, mock_update_all, tmp_path):
        """Batch mode reads the list and enables batch options."""
        updates = tmp_path / "updates.txt"
        updates.write_text("foo 1.0 1.1\n", encoding="utf-8")

        assert _exit_code(["update-batch", str(updates), "--pr"]) == ExitCodes.SUCCESS.value

        options, text = mock_update_all.call_args.args
        assert options.batch_update and options.do_pr
        assert text == "foo 1.0 1.1\n"

    @patch("nixpkgs_update.batch.cve_all")
    def test_cve_report(self, mock_cve_all, tmp_path):
        """cve-report dispatches to the report printer."""
        updates = tmp_path / "updates.txt"
        updates.write_text("openssl 3.0.7 3.0.8\n", encoding="utf-8")

        assert _exit_code(["cve-report", str(updates)]) == ExitCodes.SUCCESS.value
        mock_cve_all.assert_called_once()

    def test_missing_update_list(self, tmp_path):
        """An unreadable list is a file error."""
        assert _exit_code(["check-github", str(tmp_path / "absent.txt")]) == ExitCodes.FILE_ERROR.value

    def test_bad_config(self, tmp_path):
        """An invalid config file is a file error."""
        config = tmp_path / "config.yml"
        config.write_text("- not a mapping\n", encoding="utf-8")
        assert _exit_code(["update", "foo 1.0 1.1", "--config", str(config)]) == ExitCodes.FILE_ERROR.value

    def test_unknown_option_type(self, tmp_path):
        """Option values of the wrong shape are rejected."""
        assert _exit_code(["update", "foo 1.0 1.1", "--set", "update_branches=5"]) == ExitCodes.FILE_ERROR.value


class TestLoggingUtils:
    """Redaction and structured context."""

    def test_safe_url_redacts_secrets(self):
        """Credentials, secret parameters and GitHub tokens are masked."""
        cleaned = safe_url("https://user:pw@api.example/x?token=abc&page=2")
        assert "pw" not in cleaned and "abc" not in cleaned
        assert "page=2" in cleaned
        assert "ghp_" not in safe_url("https://x/ghp_" + "a" * 30)

    def test_extra_context_drops_none(self):
        assert extra_context(event="x", target=None) == {"event": "x"}
