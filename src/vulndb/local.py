"""Vulnerability backend reading records from a local YAML file.

File layout::

    openssl:
      - id: CVE-2023-0286
        affected: ">=3.0.0 <3.0.8"
        description: X.400 address type confusion

Ranges use npm-style syntax and are matched with ``semantic_version``.
Versions that cannot be coerced to semver never match.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import semantic_version
import yaml

from .models import VulnDbError, VulnerabilityDatabase, VulnerabilityRecord

logger = logging.getLogger(__name__)


def _coerce(version: str) -> Optional[semantic_version.Version]:
    try:
        return semantic_version.Version.coerce(version)
    except ValueError:
        return None


def version_in_range(version: str, spec: str) -> bool:
    """True when ``version`` falls inside the npm-style range ``spec``."""
    if not spec or spec.strip() == "*":
        return True
    parsed = _coerce(version)
    if parsed is None:
        logger.debug("Version %s is not semver-like; treating as unaffected", version)
        return False
    try:
        return semantic_version.NpmSpec(spec).match(parsed)
    except ValueError:
        logger.warning("Ignoring unparseable vulnerability range %r", spec)
        return False


class LocalDatabase(VulnerabilityDatabase):
    """Serves records from an in-memory mapping loaded from YAML."""

    def __init__(self, entries: Dict[str, List[Dict[str, Any]]]):
        self._entries = entries

    @classmethod
    def from_file(cls, path: str) -> "LocalDatabase":
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as exc:
            raise VulnDbError(f"Could not load vulnerability file {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise VulnDbError(f"Vulnerability file {path} must map package names to lists")
        return cls(data)

    def query(self, package_name: str, version: str) -> List[VulnerabilityRecord]:
        records = []
        for entry in self._entries.get(package_name) or []:
            if not isinstance(entry, dict) or not entry.get("id"):
                continue
            spec = str(entry.get("affected", "") or "")
            if version_in_range(version, spec):
                records.append(
                    VulnerabilityRecord(
                        id=str(entry["id"]),
                        affected_version_range=spec,
                        description=entry.get("description"),
                    )
                )
        return records
