"""Tests for CVE correlation and the security report."""

from unittest.mock import MagicMock

from analysis import cve
from nix.evaluator import NixError
from vulndb.models import VulnDbError, VulnerabilityRecord

A = VulnerabilityRecord("CVE-2023-0001", ">=1.0 <1.1")
B = VulnerabilityRecord("CVE-2023-0002")
C = VulnerabilityRecord("CVE-2023-0003")


def _db(by_version):
    db = MagicMock()
    db.query.side_effect = lambda name, version: list(by_version.get((name, version), []))
    return db


class TestPartition:
    """Splitting records into resolved, introduced and unresolved."""

    def test_partition_example(self):
        """{A,B} -> {B,C} resolves A, introduces C, keeps B."""
        delta = cve.partition(frozenset({A, B}), frozenset({B, C}))

        assert delta.resolved == frozenset({A})
        assert delta.introduced == frozenset({C})
        assert delta.unresolved == frozenset({B})

    def test_empty(self):
        """No records on either side."""
        assert cve.partition(frozenset(), frozenset()).is_empty()


class TestCorrelate:
    """Database lookups."""

    def test_name_variants_are_unioned(self):
        """Hyphenated and underscored names are both queried."""
        db = _db({
            ("foo-bar", "1.0"): [A],
            ("foo_bar", "1.0"): [A, B],
            ("foo_bar", "1.1"): [B],
        })

        delta = cve.correlate(db, "foo-bar", "1.0", "1.1")

        assert delta.resolved == frozenset({A})
        assert delta.unresolved == frozenset({B})
        assert delta.introduced == frozenset()

    def test_single_variant_without_hyphen(self):
        """Names without hyphens are queried once per version."""
        db = _db({})
        cve.correlate(db, "openssl", "1.0", "1.1")
        assert db.query.call_count == 2


class TestReport:
    """Markdown rendering."""

    def test_empty_report(self):
        """Nothing to report renders nothing."""
        assert cve.render_report([], [], []) == ""

    def test_report_sections(self):
        """Every section is present and patched records are marked."""
        report = cve.render_report(
            cve.annotate_patched("[ \"CVE-2023-0001.patch\" ]", frozenset({A})),
            [],
            cve.annotate_patched(None, frozenset({B})),
        )

        assert "Security report" in report
        assert "[CVE-2023-0001](https://nvd.nist.gov/vuln/detail/CVE-2023-0001) (patched)" in report
        assert "CVEs introduced by this update:\nnone" in report
        assert "- [CVE-2023-0002]" in report
        assert "CVE-2023-0002](https://nvd.nist.gov/vuln/detail/CVE-2023-0002) (patched)" not in report

    def test_cve_report_end_to_end(self):
        """cve_report chains lookup, patch annotation and rendering."""
        db = _db({("foo", "1.0"): [A, B], ("foo", "1.1"): [B, C]})

        report = cve.cve_report(db, "foo", "1.0", "1.1", patches_lookup=lambda: "[ ]")

        assert "CVE-2023-0001" in report
        assert "CVE-2023-0003" in report

    def test_database_failure_yields_empty_report(self, caplog):
        """Lookup failures never fail the update."""
        db = MagicMock()
        db.query.side_effect = VulnDbError("offline")

        assert cve.cve_report(db, "foo", "1.0", "1.1") == ""
        assert "CVE lookup for foo failed" in caplog.text

    def test_patch_lookup_failure_means_unpatched(self):
        """A failing patch lookup marks nothing as patched."""
        db = _db({("foo", "1.0"): [A], ("foo", "1.1"): [A]})

        def broken():
            raise NixError("no patches attribute")

        report = cve.cve_report(db, "foo", "1.0", "1.1", patches_lookup=broken)
        assert "(patched)" not in report
        assert "CVE-2023-0001" in report
