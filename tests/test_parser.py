"""Tests for candidate list parsing and the candidate model."""

from update.models import Candidate, FailureKind, Options, UpdateError
from update.parser import parse_update_line, parse_updates


class TestParseUpdateLine:
    """Single lines."""

    def test_three_tokens(self):
        """Name, old and new version."""
        cand = parse_update_line("foo 1.0 1.1", Options())
        assert isinstance(cand, Candidate)
        assert (cand.package_name, cand.old_version, cand.new_version, cand.source_url) == ("foo", "1.0", "1.1", None)

    def test_four_tokens(self):
        """An optional source URL."""
        cand = parse_update_line("foo 1.0 1.1 https://example.org/foo", Options())
        assert cand.source_url == "https://example.org/foo"

    def test_malformed(self):
        """Other token counts are reported as errors."""
        assert parse_update_line("foo 1.0", Options()) == "Unable to parse update: foo 1.0"
        assert parse_update_line("a b c d e", Options()).startswith("Unable to parse update")

    def test_parse_updates_skips_blank_lines(self):
        """Blank lines are not candidates."""
        parsed = parse_updates("foo 1.0 1.1\n\n   \nbar 2 3\n", Options())
        assert [p.package_name for p in parsed] == ["foo", "bar"]


class TestCandidate:
    """Derived values."""

    def test_branch_and_title(self):
        """Branch names use the package name, titles the attribute path."""
        cand = Candidate("foo", "1.0", "1.1")
        assert cand.branch_name == "auto-update/foo"
        assert cand.title("python3Packages.foo") == "python3Packages.foo: 1.0 -> 1.1"

    def test_without_trailing_zero(self):
        """Only a trailing .0 is stripped, once per call."""
        assert Candidate("foo", "1.0", "2.0.0").without_trailing_zero().new_version == "2.0"
        assert Candidate("foo", "1.0", "2.1").without_trailing_zero() is None

    def test_update_error_str(self):
        """Errors render their kind and optional branch."""
        assert str(UpdateError(FailureKind.ZERO_REBUILDS, "none")) == "[zero-rebuilds] none"
        err = UpdateError(FailureKind.ALREADY_UPDATED, "gone", branch="staging")
        assert str(err) == "[already-updated-on-branch(staging)] gone"
