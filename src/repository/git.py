"""Git adapter for the nixpkgs checkout.

The working tree is process-wide state: every checkout changes what the Nix
evaluator sees. Each method documents the ref it leaves checked out, and
callers must never interleave two stages against the same checkout.
"""
from __future__ import annotations

import logging
import os
import time
from typing import List, Optional

from constants import Constants
from common import process
from common.process import ProcessError
from update.models import BestEffort

logger = logging.getLogger(__name__)


class GitError(Exception):
    """A git command failed."""


class Git:
    """Single-owner wrapper around the git CLI for one repository."""

    def __init__(self, repo_dir: str = ".", remote: str = Constants.REMOTE, upstream: str = "upstream"):
        self.repo_dir = repo_dir
        self.remote = remote
        self.upstream = upstream

    def _git(self, *args: str, timeout: Optional[float] = None) -> str:
        cmd: List[str] = ["git", *args]
        try:
            return process.run_checked(cmd, cwd=self.repo_dir, timeout=timeout).stdout
        except ProcessError as exc:
            raise GitError(str(exc)) from exc

    def _fetch_head_age(self) -> Optional[float]:
        path = os.path.join(self.repo_dir, ".git", "FETCH_HEAD")
        try:
            return time.time() - os.path.getmtime(path)
        except OSError:
            return None

    def fetch_if_stale(self, max_age_sec: float = Constants.FETCH_MAX_AGE_SEC) -> BestEffort:
        """Fetch the upstream remote unless FETCH_HEAD is recent. Ref unchanged."""
        age = self._fetch_head_age()
        if age is not None and age < max_age_sec:
            return BestEffort.success("fetch is recent")
        try:
            self._git("fetch", "-q", "--prune", "--multiple", self.upstream, self.remote)
        except GitError as exc:
            return BestEffort.degraded(f"Failed to fetch: {exc}")
        return BestEffort.success("fetched")

    def clean_and_reset_to(self, branch: str) -> None:
        """Discard local changes and check out ``<upstream>/<branch>``. Leaves ``branch``."""
        self._git("reset", "--hard")
        self._git("clean", "-fdx")
        self._git("checkout", "-B", branch, f"{self.upstream}/{branch}")
        self._git("reset", "--hard", f"{self.upstream}/{branch}")

    def merge_base(self, trunk: str = Constants.TRUNK_BRANCH, staging: str = Constants.STAGING_BRANCH) -> str:
        return self._git("merge-base", f"{self.upstream}/{trunk}", f"{self.upstream}/{staging}").strip()

    def checkout_at_merge_base(
        self,
        branch_name: str,
        trunk: str = Constants.TRUNK_BRANCH,
        staging: str = Constants.STAGING_BRANCH,
    ) -> None:
        """Create ``branch_name`` at the trunk/staging merge base. Leaves ``branch_name``."""
        base = self.merge_base(trunk, staging)
        self._git("checkout", "-B", branch_name, base)

    def diff(self) -> str:
        return self._git("diff")

    def commit(self, message: str) -> None:
        self._git("commit", "-am", message)

    def head_hash(self) -> str:
        return self._git("rev-parse", "HEAD").strip()

    def push(self, branch_name: str) -> None:
        self._git("push", "--force", "--set-upstream", self.remote, branch_name)

    def auto_update_branch_exists(self, branch_name: str) -> bool:
        out = self._git("ls-remote", "--heads", self.remote, branch_name, timeout=Constants.REQUEST_TIMEOUT)
        return bool(out.strip())

    def delete_branch(self, branch_name: str) -> None:
        self._git("branch", "-D", branch_name)

    def cleanup(self, branch_name: str, trunk: str = Constants.TRUNK_BRANCH) -> None:
        """Return to trunk and drop the working branch if it exists. Leaves ``trunk``."""
        self.clean_and_reset_to(trunk)
        branches = self._git("branch", "--list", branch_name)
        if branches.strip():
            self.delete_branch(branch_name)
