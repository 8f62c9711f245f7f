"""Data models for vulnerability lookups."""

from dataclasses import dataclass, field
from typing import List, Optional


class VulnDbError(Exception):
    """The vulnerability database could not be queried."""


@dataclass(frozen=True, order=True)
class VulnerabilityRecord:
    """One known vulnerability affecting a range of versions."""

    id: str
    affected_version_range: str = field(default="", compare=False)
    description: Optional[str] = field(default=None, compare=False)

    @property
    def url(self) -> str:
        if self.id.startswith("CVE-"):
            return f"https://nvd.nist.gov/vuln/detail/{self.id}"
        return f"https://osv.dev/vulnerability/{self.id}"


class VulnerabilityDatabase:
    """Interface of every vulnerability backend."""

    def query(self, package_name: str, version: str) -> List[VulnerabilityRecord]:
        raise NotImplementedError
