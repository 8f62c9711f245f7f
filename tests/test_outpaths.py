"""Tests for outpath sets and rebuild counting."""

from unittest.mock import patch

import pytest

from analysis import outpaths as op
from analysis.outpaths import Outpath
from common.process import ProcessError, ProcessResult
from nix.evaluator import NixError


def _op(package, store_path, output="out", platform="x86_64-linux"):
    return Outpath(package, platform, output, store_path)


class TestParsing:
    """Parsing nix-env output."""

    def test_single_output_line(self):
        """A bare store path is the default output."""
        entries = op.parse_outpath_line("hello.x86_64-linux  /nix/store/abc-hello-2.12")
        assert entries == [_op("hello", "/nix/store/abc-hello-2.12")]

    def test_multi_output_line(self):
        """name=path pairs give one entry per output."""
        entries = op.parse_outpath_line("openssl.aarch64-linux  bin=/nix/store/b;out=/nix/store/o")
        assert entries == [
            _op("openssl", "/nix/store/b", output="bin", platform="aarch64-linux"),
            _op("openssl", "/nix/store/o", platform="aarch64-linux"),
        ]

    def test_lines_without_path_are_ignored(self):
        """Lines with one field produce nothing."""
        assert op.parse_outpath_line("warning") == []

    def test_parse_whole_output(self):
        """Duplicate lines collapse in the set."""
        text = "a.x86_64-linux /nix/store/1\na.x86_64-linux /nix/store/1\nb.x86_64-linux /nix/store/2\n"
        assert len(op.parse_outpaths(text)) == 2


class TestRebuildCount:
    """Diffs and counts."""

    def test_count_is_symmetric(self):
        """Swapping the arguments gives the same rebuild count."""
        before = frozenset({_op("a", "/1"), _op("b", "/2"), _op("c", "/3")})
        after = frozenset({_op("a", "/1"), _op("b", "/2b"), _op("d", "/4")})

        assert op.rebuild_count(before, after) == op.rebuild_count(after, before) == 3

    def test_counts_distinct_packages(self):
        """Several outputs of one package count once."""
        before = frozenset({_op("a", "/1"), _op("a", "/1d", output="dev")})
        after = frozenset({_op("a", "/2"), _op("a", "/2d", output="dev")})

        assert op.rebuild_count(before, after) == 1

    def test_identical_sets(self):
        """No difference, no rebuilds."""
        same = frozenset({_op("a", "/1")})
        assert op.rebuild_count(same, same) == 0

    def test_dummy_sets_differ(self):
        """The placeholders always yield a nonzero count."""
        assert op.rebuild_count(op.dummy_outpath_set_before("foo"), op.dummy_outpath_set_after("foo")) == 1


class TestReport:
    """Rebuild report rendering."""

    def test_report_lists_packages_and_platforms(self):
        """The report counts paths, packages and platforms."""
        diff = frozenset({_op("a", "/1"), _op("b", "/2", platform="aarch64-linux")})
        report = op.outpath_report(diff)

        assert "2 total rebuild path(s)" in report
        assert "2 package rebuild(s)" in report
        assert "1 aarch64-linux" in report
        assert "a\nb" in report

    def test_no_diff_no_report(self):
        """An unknown diff renders nothing."""
        assert op.outpath_report(None) == ""


class TestCurrentOutpathSet:
    """Evaluating the checkout."""

    @patch("analysis.outpaths.process.run_checked")
    def test_runs_nix_env_and_parses(self, mock_run):
        """The helper expression is evaluated with nix-env."""
        mock_run.return_value = ProcessResult(0, "a.x86_64-linux /nix/store/1\n", "")

        result = op.current_outpath_set("/repo")

        assert result == frozenset({_op("a", "/nix/store/1")})
        cmd = mock_run.call_args.args[0]
        assert cmd[0] == "nix-env"
        assert "--out-path" in cmd
        assert "/repo" in cmd

    @patch("analysis.outpaths.process.run_checked")
    def test_failure_raises_nix_error(self, mock_run):
        """Evaluation failures surface as NixError."""
        mock_run.side_effect = ProcessError(["nix-env"], "exit 1")

        with pytest.raises(NixError):
            op.current_outpath_set("/repo")
