"""OSV (https://osv.dev) vulnerability backend."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from constants import Constants
from common.http_client import post_json
from common.logging_utils import extra_context, is_debug_enabled
from .models import VulnDbError, VulnerabilityDatabase, VulnerabilityRecord

logger = logging.getLogger(__name__)


def _preferred_id(vuln: Dict[str, Any]) -> str:
    """CVE alias when there is one, so it can be matched against patch names."""
    for alias in vuln.get("aliases") or []:
        if isinstance(alias, str) and alias.startswith("CVE-"):
            return alias
    return str(vuln.get("id", ""))


def _render_ranges(vuln: Dict[str, Any]) -> str:
    parts = []
    for affected in vuln.get("affected") or []:
        for rng in affected.get("ranges") or []:
            for event in rng.get("events") or []:
                for key in ("introduced", "fixed", "last_affected"):
                    if key in event:
                        parts.append(f"{key} {event[key]}")
    return ", ".join(parts)


def _to_record(vuln: Dict[str, Any]) -> Optional[VulnerabilityRecord]:
    vid = _preferred_id(vuln)
    if not vid:
        return None
    return VulnerabilityRecord(
        id=vid,
        affected_version_range=_render_ranges(vuln),
        description=vuln.get("summary") or vuln.get("details"),
    )


class OsvDatabase(VulnerabilityDatabase):
    """Queries the OSV API by package name and version."""

    def __init__(self, api_url: Optional[str] = None, ecosystem: Optional[str] = None):
        self.api_url = api_url or Constants.OSV_API_URL
        self.ecosystem = ecosystem if ecosystem is not None else Constants.OSV_ECOSYSTEM

    def _payload(self, package_name: str, version: str) -> Dict[str, Any]:
        package: Dict[str, str] = {"name": package_name}
        if self.ecosystem:
            package["ecosystem"] = self.ecosystem
        return {"package": package, "version": version}

    def query(self, package_name: str, version: str) -> List[VulnerabilityRecord]:
        status, _, data = post_json(self.api_url, self._payload(package_name, version))
        if status != 200 or not isinstance(data, dict):
            raise VulnDbError(f"OSV query for {package_name} {version} failed with status {status}")
        records = [r for r in (_to_record(v) for v in data.get("vulns") or []) if r is not None]
        if is_debug_enabled(logger):
            logger.debug(
                "OSV query",
                extra=extra_context(
                    event="vulndb_query",
                    component="osv",
                    action="query",
                    target=f"{package_name}@{version}",
                    count=len(records),
                )
            )
        return records
