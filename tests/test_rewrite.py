"""Tests for the derivation rewrite steps."""

from unittest.mock import MagicMock

import pytest

from conftest import OLD_CONTENTS, make_candidate
from constants import Constants
from nix.evaluator import BuildSucceededUnexpectedly, NixEvaluator
from update import rewrite
from update.rewrite import RewriteArgs, RewriteError


@pytest.fixture
def drv(tmp_path):
    path = tmp_path / "default.nix"
    path.write_text(OLD_CONTENTS, encoding="utf-8")
    return path


def _args(drv, contents=None):
    return RewriteArgs(make_candidate(), "foo", str(drv), contents if contents is not None else drv.read_text())


class TestFileReplace:
    """In-place replacement."""

    def test_replaces_and_reports_change(self, drv):
        """Every occurrence is replaced."""
        assert rewrite.file_replace("oldhash", "newhash", str(drv)) is True
        assert "newhash" in drv.read_text()

    def test_no_match(self, drv):
        """Nothing to replace leaves the file untouched."""
        before = drv.read_text()
        assert rewrite.file_replace("absent", "x", str(drv)) is False
        assert drv.read_text() == before


class TestVersionRewrite:
    """Version and hash update."""

    def test_updates_version_and_hash(self, drv):
        """The sentinel hash is written, built and replaced."""
        nix = MagicMock(spec=NixEvaluator)
        nix.get_old_hash.return_value = "oldhash"

        def build(attr_path):
            assert Constants.SHA256_ZERO in drv.read_text()
            return "newhash"

        nix.get_hash_from_build.side_effect = build

        assert rewrite.version_rewrite(_args(drv), nix) is None
        text = drv.read_text()
        assert 'version = "1.1";' in text
        assert 'sha256 = "newhash";' in text
        assert Constants.SHA256_ZERO not in text

    def test_multiple_fetchers_are_skipped(self, drv):
        """Derivations with several sources are left alone."""
        contents = OLD_CONTENTS + "\nother = fetchurl {\n  sha256 = \"x\";\n};\n"
        drv.write_text(contents, encoding="utf-8")
        nix = MagicMock(spec=NixEvaluator)

        assert rewrite.version_rewrite(_args(drv), nix) is None
        assert drv.read_text() == contents
        nix.get_hash_from_build.assert_not_called()

    def test_missing_version_literal_is_not_a_change(self, drv):
        """No version literal, no rewrite and no build."""
        drv.write_text(OLD_CONTENTS.replace('"1.0"', '"0.9"'), encoding="utf-8")
        nix = MagicMock(spec=NixEvaluator)
        nix.get_old_hash.return_value = "oldhash"

        assert rewrite.version_rewrite(_args(drv), nix) is None
        nix.get_hash_from_build.assert_not_called()

    def test_hash_recovery_failure(self, drv):
        """Hash recovery failures fail the step."""
        nix = MagicMock(spec=NixEvaluator)
        nix.get_old_hash.return_value = "oldhash"
        nix.get_hash_from_build.side_effect = BuildSucceededUnexpectedly("build succeeded")

        with pytest.raises(RewriteError, match="build succeeded"):
            rewrite.version_rewrite(_args(drv), nix)

    def test_equal_hashes_are_written_back(self, drv):
        """An unchanged hash is restored and left for the change checks to judge."""
        nix = MagicMock(spec=NixEvaluator)
        nix.get_old_hash.return_value = "oldhash"
        nix.get_hash_from_build.return_value = "oldhash"

        assert rewrite.version_rewrite(_args(drv), nix) is None
        text = drv.read_text()
        assert 'sha256 = "oldhash";' in text
        assert Constants.SHA256_ZERO not in text

    def test_version_in_url_is_bumped(self, drv):
        """Every occurrence of the old version follows the bump."""
        drv.write_text(
            OLD_CONTENTS.replace("foo-${version}.tar.gz", "foo-1.0.tar.gz"), encoding="utf-8"
        )
        nix = MagicMock(spec=NixEvaluator)
        nix.get_old_hash.return_value = "oldhash"
        nix.get_hash_from_build.return_value = "newhash"

        rewrite.version_rewrite(_args(drv), nix)

        text = drv.read_text()
        assert 'url = "https://example.org/foo-1.1.tar.gz";' in text
        assert 'version = "1.1";' in text
        assert "1.0" not in text


class TestQuotedUrls:
    """Homepage quoting."""

    def test_quotes_bare_homepage(self, drv):
        """A bare homepage is quoted and a message returned."""
        drv.write_text(OLD_CONTENTS + "homepage = https://foo.org;\n", encoding="utf-8")
        nix = MagicMock(spec=NixEvaluator)
        nix.get_homepage.return_value = '"https://foo.org"'

        message = rewrite.quoted_urls(_args(drv), nix)

        assert "RFC 45" in message
        assert 'homepage = "https://foo.org";' in drv.read_text()

    def test_already_quoted(self, drv):
        """Quoted homepages need nothing."""
        drv.write_text(OLD_CONTENTS + 'homepage = "https://foo.org";\n', encoding="utf-8")
        nix = MagicMock(spec=NixEvaluator)
        nix.get_homepage.return_value = '"https://foo.org"'

        assert rewrite.quoted_urls(_args(drv), nix) is None


class TestRunAll:
    """Step ordering and message collection."""

    def test_runs_steps_in_order_and_collects_messages(self, drv):
        """Messages of every step are kept in order."""
        calls = []
        steps = [
            ("first", lambda a, n: calls.append("first")),
            ("second", lambda a, n: calls.append("second") or "second done"),
        ]

        messages = rewrite.run_all(_args(drv), MagicMock(), steps=steps)

        assert calls == ["first", "second"]
        assert messages == ["second done"]

    def test_default_order(self):
        """version runs before quoted_urls."""
        assert [name for name, _ in rewrite.STEPS] == ["version", "quoted_urls"]
