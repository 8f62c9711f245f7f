"""Vulnerability database backends."""

from constants import Constants

from .models import VulnDbError, VulnerabilityDatabase, VulnerabilityRecord
from .osv import OsvDatabase
from .local import LocalDatabase

__all__ = [
    "VulnDbError",
    "VulnerabilityDatabase",
    "VulnerabilityRecord",
    "OsvDatabase",
    "LocalDatabase",
    "open_database",
]


def open_database(location: str = Constants.DEFAULT_VULNDB) -> VulnerabilityDatabase:
    """``"osv"`` selects the OSV API; anything else is a path to a YAML file."""
    if location == "osv":
        return OsvDatabase()
    return LocalDatabase.from_file(location)
