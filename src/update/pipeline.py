"""Per-candidate update pipeline.

Runs a fixed sequence of gates and side effects against the nixpkgs
checkout and either publishes the change or raises ``UpdateError`` naming
the stage that rejected it. Nothing on disk changes before the version
ordering gate has passed.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator, List, Optional, Tuple, Type

from analysis import blacklist
from analysis.blacklist import Blacklisted
from analysis.impact import MergeBaseOutpathsInfo, RebuildImpactEstimator
from analysis.outpaths import current_outpath_set
from analysis.version_pin import PinIncompatible, assert_compatible_with_path_pin
from common.logging_utils import Timer, extra_context, is_debug_enabled
from common.process import ProcessError
from nix.evaluator import NixError, NixEvaluator
from repository.git import Git, GitError
from repository.github import GitHubClient, GitHubError
from update import rewrite
from update.models import Candidate, FailureKind, UpdateError, UpdateResult
from update.publish import PublishContext, Publisher
from vulndb import open_database
from vulndb.models import VulnerabilityDatabase

logger = logging.getLogger(__name__)


@contextmanager
def failing_as(kind: FailureKind, *errors: Type[BaseException], branch: Optional[str] = None) -> Iterator[None]:
    """Translate ``errors`` raised inside the block into ``UpdateError(kind)``."""
    try:
        yield
    except errors as exc:
        raise UpdateError(kind, str(exc), branch=branch) from exc


def _read(path: str) -> str:
    with open(path, "r", encoding="utf-8") as fh:
        return fh.read()


class UpdatePipeline:
    """Orchestrates one candidate at a time against a single checkout."""

    def __init__(
        self,
        nix: NixEvaluator,
        git: Git,
        github: GitHubClient,
        vulndb: VulnerabilityDatabase,
        estimator: RebuildImpactEstimator,
        publisher: Optional[Publisher] = None,
    ):
        self.nix = nix
        self.git = git
        self.github = github
        self.vulndb = vulndb
        self.estimator = estimator
        self.publisher = publisher or Publisher(nix, git, github, vulndb)

    @classmethod
    def from_options(cls, options, repo_dir: str = ".") -> "UpdatePipeline":
        """Wire the real adapters for ``options``."""
        nix = NixEvaluator(repo_dir)
        git = Git(repo_dir)
        github = GitHubClient(repo=options.github_repo, fork_owner=options.github_fork_owner)
        estimator = RebuildImpactEstimator(
            enabled=options.calculate_outpaths,
            max_age_sec=options.merge_base_max_age_sec,
            compute=lambda: current_outpath_set(repo_dir),
        )
        return cls(nix, git, github, open_database(options.vulndb), estimator)

    # ----- shared stages -----

    def _assert_newer(self, cand: Candidate) -> None:
        with failing_as(FailureKind.VERSION_NOT_NEWER, NixError):
            self.nix.assert_newer_version(cand.new_version, cand.old_version)

    def _resolve_attr_path(self, cand: Candidate) -> str:
        with failing_as(FailureKind.ATTR_RESOLUTION, NixError):
            attr_path = self.nix.lookup_attr_path(cand.package_name, cand.old_version)
            version = self.nix.get_version(attr_path)
        if version and version != cand.old_version:
            raise UpdateError(
                FailureKind.ATTR_RESOLUTION,
                f"{attr_path} has version {version}, expected {cand.old_version}",
            )
        with failing_as(FailureKind.BLACKLISTED, Blacklisted):
            blacklist.check_attr_path(attr_path)
        logger.info("Found attr path %s", attr_path)
        return attr_path

    def _assert_pin(self, cand: Candidate, attr_path: str) -> None:
        with failing_as(FailureKind.PIN_INCOMPATIBLE, PinIncompatible):
            assert_compatible_with_path_pin(attr_path, cand.old_version, cand.new_version)

    def _snapshot(self, attr_path: str) -> Tuple[str, str, str, str]:
        """Derivation file, its contents, the old hash and the old source URL."""
        with failing_as(FailureKind.EVALUATION_FAILED, NixError, OSError):
            derivation_file = self.nix.get_derivation_file(attr_path)
            contents = _read(derivation_file)
            old_hash = self.nix.get_old_hash(attr_path)
            old_src_url = self.nix.get_src_url(attr_path)
        return derivation_file, contents, old_hash, old_src_url

    def _rewrite(self, cand: Candidate, attr_path: str, derivation_file: str, contents: str) -> List[str]:
        args = rewrite.RewriteArgs(cand, attr_path, derivation_file, contents)
        with failing_as(FailureKind.REWRITE_FAILED, rewrite.RewriteError, NixError, OSError):
            return rewrite.run_all(args, self.nix)

    def _assert_changed(
        self, attr_path: str, derivation_file: str, contents: str, old_hash: str, old_src_url: str
    ) -> str:
        """Fail unless contents, source URL and hash all changed; return the new URL."""
        with failing_as(FailureKind.REPOSITORY_FAILED, GitError):
            logger.info("Diff after rewrites:\n%s", self.git.diff())
        with failing_as(FailureKind.EVALUATION_FAILED, NixError, OSError):
            new_contents = _read(derivation_file)
            if new_contents == contents:
                raise UpdateError(FailureKind.NO_CHANGE, "No rewrites performed on derivation.")
            new_src_url = self.nix.get_src_url(attr_path)
            if new_src_url == old_src_url:
                raise UpdateError(FailureKind.URL_UNCHANGED, "Source url did not change.")
            new_hash = self.nix.get_hash(attr_path)
            if new_hash == old_hash:
                raise UpdateError(FailureKind.HASH_UNCHANGED, "Hashes equal; no update necessary")
        return new_src_url

    def _build(self, attr_path: str) -> str:
        with Timer() as t:
            with failing_as(FailureKind.BUILD_FAILED, NixError):
                result_path = self.nix.build(attr_path)
        if is_debug_enabled(logger):
            logger.debug(
                "Build finished",
                extra=extra_context(
                    event="build", component="pipeline", action="nix_build",
                    outcome="success", target=attr_path, duration_ms=t.duration_ms(),
                )
            )
        return result_path

    # ----- batch mode -----

    def _reset_to_trunk(self, trunk: str) -> None:
        try:
            self.git.clean_and_reset_to(trunk)
        except GitError as exc:
            logger.warning("Resetting to %s failed: %s", trunk, exc)

    def update_batch(self, cand: Candidate, cache: MergeBaseOutpathsInfo) -> UpdateResult:
        """Run every stage for ``cand``.

        Raises:
            UpdateError: Naming the first stage that rejected the candidate.
        """
        with failing_as(FailureKind.BLACKLISTED, Blacklisted):
            blacklist.check_package_name(cand.package_name)
        self._assert_newer(cand)
        try:
            return self._update_synced(cand, cache)
        finally:
            self._reset_to_trunk(cand.options.trunk_branch)

    def _sync(self, cand: Candidate) -> None:
        options = cand.options
        fetched = self.git.fetch_if_stale(options.fetch_max_age_sec)
        if not fetched.ok:
            logger.warning("%s", fetched.detail)
        with failing_as(FailureKind.REPOSITORY_FAILED, GitError):
            self.git.clean_and_reset_to(options.trunk_branch)

    def _assert_not_submitted(self, cand: Candidate) -> None:
        with failing_as(FailureKind.REPOSITORY_FAILED, GitError, GitHubError):
            branch_exists = self.git.auto_update_branch_exists(cand.branch_name)
        if branch_exists:
            raise UpdateError(FailureKind.DUPLICATE_SUBMISSION, "Update branch is already on origin.")
        with failing_as(FailureKind.REPOSITORY_FAILED, GitError, GitHubError):
            existing = self.github.existing_update_pr(cand.package_name, cand.new_version)
        if existing:
            raise UpdateError(
                FailureKind.DUPLICATE_SUBMISSION,
                f"There might already be an open PR for this update: {existing}",
            )

    def _assert_not_updated(self, cand: Candidate, derivation_file: str) -> None:
        for branch in cand.options.update_branches:
            with failing_as(FailureKind.REPOSITORY_FAILED, GitError, branch=branch):
                self.git.clean_and_reset_to(branch)
            with failing_as(FailureKind.ALREADY_UPDATED, NixError, OSError, branch=branch):
                self.nix.assert_old_version_on(cand.old_version, branch, _read(derivation_file))

    def _update_synced(self, cand: Candidate, cache: MergeBaseOutpathsInfo) -> UpdateResult:
        options = cand.options
        self._sync(cand)
        if options.do_pr:
            self._assert_not_submitted(cand)

        attr_path = self._resolve_attr_path(cand)
        self._assert_pin(cand, attr_path)
        with failing_as(FailureKind.EVALUATION_FAILED, NixError):
            src_urls = self.nix.get_src_urls(attr_path)
            derivation_file = self.nix.get_derivation_file(attr_path)
        with failing_as(FailureKind.URL_BLACKLISTED, Blacklisted):
            blacklist.check_src_url(src_urls)

        self._assert_not_updated(cand, derivation_file)
        with failing_as(FailureKind.REPOSITORY_FAILED, GitError):
            self.git.checkout_at_merge_base(cand.branch_name, options.trunk_branch, options.staging_branch)

        with failing_as(FailureKind.EVALUATION_FAILED, NixError, ProcessError):
            baseline = self.estimator.baseline(attr_path, cache)

        derivation_file, contents, old_hash, old_src_url = self._snapshot(attr_path)
        with failing_as(FailureKind.CONTENT_BLACKLISTED, Blacklisted):
            blacklist.check_content(contents)

        messages = self._rewrite(cand, attr_path, derivation_file, contents)
        new_src_url = self._assert_changed(attr_path, derivation_file, contents, old_hash, old_src_url)

        with failing_as(FailureKind.EVALUATION_FAILED, NixError, ProcessError):
            edited = self.estimator.edited(attr_path)
        estimate = self.estimator.estimate(baseline, edited)
        with failing_as(FailureKind.REBUILD_VETOED, Blacklisted):
            blacklist.check_python_rebuilds(estimate.rebuild_count, contents, options.python_rebuild_limit)
        if estimate.rebuild_count == 0:
            raise UpdateError(FailureKind.ZERO_REBUILDS, "Update edits cause no rebuilds.")

        result_path = self._build(attr_path)
        ctx = PublishContext(
            candidate=cand,
            attr_path=attr_path,
            result_path=result_path,
            old_src_url=old_src_url,
            new_src_url=new_src_url,
            rewrite_messages=messages,
            rebuild_count=estimate.rebuild_count if options.calculate_outpaths else None,
            diff=estimate.diff if options.calculate_outpaths else None,
        )
        return self.publisher.publish(ctx)

    # ----- single-package mode -----

    def update_single(self, cand: Candidate) -> UpdateResult:
        """Update one package on the current checkout, without impact estimation."""
        self._assert_newer(cand)
        attr_path = self._resolve_attr_path(cand)
        self._assert_pin(cand, attr_path)
        derivation_file, contents, old_hash, old_src_url = self._snapshot(attr_path)
        messages = self._rewrite(cand, attr_path, derivation_file, contents)
        new_src_url = self._assert_changed(attr_path, derivation_file, contents, old_hash, old_src_url)
        result_path = self._build(attr_path)
        return self.publisher.publish(
            PublishContext(
                candidate=cand,
                attr_path=attr_path,
                result_path=result_path,
                old_src_url=old_src_url,
                new_src_url=new_src_url,
                rewrite_messages=messages,
            )
        )
