"""CVE correlation between the old and the new version of a package.

Records are looked up for both the hyphenated and the underscored spelling
of the package name and unioned, then split into three disjoint sets:
resolved (old only), introduced (new only) and unresolved (both).
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, List, Optional, Tuple

from nix.evaluator import NixError
from vulndb.models import VulnDbError, VulnerabilityDatabase, VulnerabilityRecord

logger = logging.getLogger(__name__)

RecordSet = FrozenSet[VulnerabilityRecord]
Annotated = List[Tuple[VulnerabilityRecord, bool]]


@dataclass(frozen=True)
class CveDelta:
    resolved: RecordSet = field(default_factory=frozenset)
    introduced: RecordSet = field(default_factory=frozenset)
    unresolved: RecordSet = field(default_factory=frozenset)

    def is_empty(self) -> bool:
        return not (self.resolved or self.introduced or self.unresolved)


def name_variants(package_name: str) -> List[str]:
    variants = [package_name]
    underscored = package_name.replace("-", "_")
    if underscored != package_name:
        variants.append(underscored)
    return variants


def records_for(db: VulnerabilityDatabase, package_name: str, version: str) -> RecordSet:
    """Union of the records of every spelling of ``package_name``."""
    found = set()
    for name in name_variants(package_name):
        found.update(db.query(name, version))
    return frozenset(found)


def partition(old: RecordSet, new: RecordSet) -> CveDelta:
    return CveDelta(
        resolved=frozenset(old - new),
        introduced=frozenset(new - old),
        unresolved=frozenset(old & new),
    )


def correlate(db: VulnerabilityDatabase, package_name: str, old_version: str, new_version: str) -> CveDelta:
    return partition(
        records_for(db, package_name, old_version),
        records_for(db, package_name, new_version),
    )


def annotate_patched(patches: Optional[str], records: RecordSet) -> Annotated:
    """Pair each record with whether a patch named after it already exists.

    ``patches`` is the printed list of patch names; None means the lookup
    failed and nothing counts as patched.
    """
    return [(r, bool(patches) and r.id in patches) for r in sorted(records)]


def _list_item(record: VulnerabilityRecord, patched: bool) -> str:
    suffix = " (patched)" if patched else ""
    return f"- [{record.id}]({record.url}){suffix}"


def _markdown_list(items: Annotated) -> str:
    if not items:
        return "none"
    return "\n".join(_list_item(r, p) for r, p in items)


def render_report(resolved: Annotated, introduced: Annotated, unresolved: Annotated) -> str:
    """Markdown security report, or an empty string when there is nothing to say."""
    if not (resolved or introduced or unresolved):
        return ""
    return (
        "<details>\n"
        "<summary>\n"
        "Security report (click to expand)\n"
        "</summary>\n\n"
        f"CVEs resolved by this update:\n{_markdown_list(resolved)}\n\n"
        f"CVEs introduced by this update:\n{_markdown_list(introduced)}\n\n"
        f"CVEs present in both versions:\n{_markdown_list(unresolved)}\n\n\n"
        "</details>\n"
        "<br/>\n"
    )


def cve_report(
    db: VulnerabilityDatabase,
    package_name: str,
    old_version: str,
    new_version: str,
    patches_lookup: Optional[Callable[[], str]] = None,
) -> str:
    """Correlate, annotate and render in one go.

    A failing database lookup yields an empty report; the update itself is
    not affected by missing security data.
    """
    try:
        delta = correlate(db, package_name, old_version, new_version)
    except VulnDbError as exc:
        logger.warning("CVE lookup for %s failed: %s", package_name, exc)
        return ""
    if delta.is_empty():
        return ""
    patches = None
    if patches_lookup is not None:
        try:
            patches = patches_lookup()
        except NixError as exc:
            logger.debug("Patch lookup for %s failed: %s", package_name, exc)
    return render_report(
        annotate_patched(patches, delta.resolved),
        annotate_patched(patches, delta.introduced),
        annotate_patched(patches, delta.unresolved),
    )
