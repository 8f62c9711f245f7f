"""Data models for the update pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional, Tuple

from constants import Constants


@dataclass(frozen=True)
class Options:
    """Switches and tunables shared by every candidate of a run."""

    do_pr: bool = False
    push_to_cachix: bool = False
    calculate_outpaths: bool = False
    batch_update: bool = False
    trunk_branch: str = Constants.TRUNK_BRANCH
    staging_branch: str = Constants.STAGING_BRANCH
    update_branches: Tuple[str, ...] = tuple(Constants.UPDATE_BRANCHES)
    staging_rebuild_threshold: int = Constants.STAGING_REBUILD_THRESHOLD
    python_rebuild_limit: int = Constants.PYTHON_REBUILD_LIMIT
    ci_queue_threshold: int = Constants.CI_QUEUE_THRESHOLD
    ci_poll_interval_sec: float = Constants.CI_POLL_INTERVAL_SEC
    ci_stats_url: str = Constants.CI_STATS_URL
    merge_base_max_age_sec: int = Constants.MERGE_BASE_MAX_AGE_SEC
    fetch_max_age_sec: int = Constants.FETCH_MAX_AGE_SEC
    github_repo: str = Constants.GITHUB_REPO
    github_fork_owner: Optional[str] = None
    cachix_cache: str = Constants.CACHIX_CACHE
    vulndb: str = Constants.DEFAULT_VULNDB
    log_dir: str = Constants.LOG_DIR


@dataclass(frozen=True)
class Candidate:
    """One proposed package/version bump."""

    package_name: str
    old_version: str
    new_version: str
    source_url: Optional[str] = None
    options: Options = field(default_factory=Options)

    @property
    def branch_name(self) -> str:
        return Constants.BRANCH_PREFIX + self.package_name

    def title(self, attr_path: str) -> str:
        """Commit and pull request title."""
        return f"{attr_path}: {self.old_version} -> {self.new_version}"

    def without_trailing_zero(self) -> Optional["Candidate"]:
        """Return a copy with a trailing ``.0`` stripped, or None if absent."""
        if not self.new_version.endswith(".0"):
            return None
        return replace(self, new_version=self.new_version[: -len(".0")])

    def describe(self) -> str:
        line = f"{self.package_name} {self.old_version} -> {self.new_version}"
        if self.source_url:
            line += f" {self.source_url}"
        return line


class FailureKind(Enum):
    """Why a candidate was rejected. Terminal for the candidate only."""

    BLACKLISTED = "blacklist-rejection"
    VERSION_NOT_NEWER = "version-not-newer"
    DUPLICATE_SUBMISSION = "duplicate-submission"
    ATTR_RESOLUTION = "attribute-resolution-failure"
    PIN_INCOMPATIBLE = "pin-incompatible"
    URL_BLACKLISTED = "url-blacklisted"
    ALREADY_UPDATED = "already-updated-on-branch"
    CONTENT_BLACKLISTED = "content-blacklisted"
    REWRITE_FAILED = "rewrite-failed"
    NO_CHANGE = "no-change-detected"
    URL_UNCHANGED = "url-unchanged"
    HASH_UNCHANGED = "hash-unchanged"
    REBUILD_VETOED = "rebuild-count-vetoed"
    ZERO_REBUILDS = "zero-rebuilds"
    BUILD_FAILED = "build-failed"
    PUSH_FAILED = "push-failed-after-retries"
    EVALUATION_FAILED = "evaluation-failed"
    PUBLISH_FAILED = "publish-failed"
    REPOSITORY_FAILED = "repository-failed"


class UpdateError(Exception):
    """A pipeline stage rejected the candidate."""

    def __init__(self, kind: FailureKind, reason: str, branch: Optional[str] = None):
        self.kind = kind
        self.reason = reason
        self.branch = branch
        super().__init__(reason)

    def __str__(self) -> str:
        label = self.kind.value
        if self.branch:
            label = f"{label}({self.branch})"
        return f"[{label}] {self.reason}"


@dataclass(frozen=True)
class BestEffort:
    """Outcome of a step whose failure degrades the run instead of aborting it."""

    ok: bool
    detail: str = ""

    @classmethod
    def success(cls, detail: str = "") -> "BestEffort":
        return cls(True, detail)

    @classmethod
    def degraded(cls, detail: str) -> "BestEffort":
        return cls(False, detail)


@dataclass
class UpdateResult:
    """What a successful run produced."""

    attr_path: str
    commit_hash: Optional[str] = None
    rebuild_count: Optional[int] = None
    base_branch: Optional[str] = None
    pr_url: Optional[str] = None
    messages: List[str] = field(default_factory=list)
