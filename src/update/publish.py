"""Publishing a built update: commit, push and pull request.

Everything that only decorates the pull request body (metadata, release
links, result checks, the security report) is best effort. Committing,
pushing and opening the pull request are not.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from constants import Constants
from analysis import blacklist
from analysis.cve import cve_report
from analysis.outpaths import OutpathSet, outpath_report
from analysis.result_check import check_result
from common.logging_utils import extra_context, is_debug_enabled
from nix.evaluator import NixError, NixEvaluator
from repository.git import Git, GitError
from repository.github import GitHubClient, GitHubError
from update.models import Candidate, FailureKind, UpdateError, UpdateResult
from vulndb.models import VulnerabilityDatabase

logger = logging.getLogger(__name__)


@dataclass
class PublishContext:
    """Everything the pipeline learned about a candidate before publishing."""

    candidate: Candidate
    attr_path: str
    result_path: str
    old_src_url: Optional[str] = None
    new_src_url: Optional[str] = None
    rewrite_messages: List[str] = field(default_factory=list)
    rebuild_count: Optional[int] = None
    diff: Optional[OutpathSet] = None


@dataclass
class PrDetails:
    """Rendered sections of the pull request body."""

    description: str = ""
    homepage: str = ""
    maintainers: str = ""
    broken: bool = False
    release_url: str = ""
    compare_url: str = ""
    result_check: str = ""
    cachix: str = ""
    cve_report: str = ""


def base_branch(rebuild_count: Optional[int], options) -> str:
    """Trunk for small or unknown rebuilds, staging otherwise."""
    if rebuild_count is None or rebuild_count < options.staging_rebuild_threshold:
        return options.trunk_branch
    return options.staging_branch


def commit_message(ctx: PublishContext) -> str:
    return ctx.candidate.title(ctx.attr_path)


def cachix_instructions(cache: str, result_path: str) -> str:
    return (
        "Either **download from Cachix**:\n"
        "```\n"
        f"cachix use {cache}\n"
        f"nix-store -r {result_path}\n"
        "```\n"
        "or **build yourself**:\n"
    )


def archive_url(options, commit_hash: str) -> str:
    """Tarball of ``commit_hash`` on the fork the branch is pushed to."""
    repo = options.github_repo
    if options.github_fork_owner:
        repo = f"{options.github_fork_owner}/{repo.split('/', 1)[-1]}"
    return f"{Constants.GITHUB_WEB_BASE}/{repo}/archive/{commit_hash}.tar.gz"


def testing_instructions(ctx: PublishContext, details: PrDetails, commit_hash: str) -> str:
    return (
        f"{details.cachix}"
        "```\n"
        f"nix-build -A {ctx.attr_path} {archive_url(ctx.candidate.options, commit_hash)}\n"
        "```\n\n"
        "After you've downloaded or built it, look at the files and if there are any, run the binaries:\n"
        "```\n"
        f"ls -la {ctx.result_path}\n"
        f"ls -la {ctx.result_path}/bin\n"
        "```\n"
    )


def _section(title: str, body: str) -> str:
    if not body:
        return ""
    return f"<details>\n<summary>\n{title} (click to expand)\n</summary>\n\n{body}\n</details>\n\n"


def pr_message(ctx: PublishContext, details: PrDetails, commit_hash: str) -> str:
    """Render the pull request body for the committed change ``commit_hash``."""
    cand = ctx.candidate
    attr = ctx.attr_path
    intro = f"Semi-automatic update generated by [nixpkgs-update]({Constants.TOOL_URL}) tools."
    if cand.source_url:
        intro += f" This update was made based on information from {cand.source_url}."
    lines = [intro, ""]
    if details.broken:
        lines += ["**WARNING:** This package is marked broken.", ""]
    if details.description:
        lines.append(f'meta.description for {attr} is: "{details.description}"')
        lines.append("")
    if details.homepage:
        lines.append(f"meta.homepage for {attr} is: {details.homepage}")
        lines.append("")
    if details.release_url:
        lines += [f"[Release on GitHub]({details.release_url})", ""]
    if details.compare_url:
        lines += [f"[Compare changes on GitHub]({details.compare_url})", ""]
    lines.append("###### Updates performed")
    lines.append("- Version update")
    lines += [f"- {m}" for m in ctx.rewrite_messages]
    lines.append("")
    lines.append("###### To inspect upstream changes")
    lines.append(f"- {cand.old_version} -> {cand.new_version}")
    if ctx.new_src_url:
        lines.append(f"- source: {ctx.new_src_url}")
    lines.append("")
    body = "\n".join(lines) + "\n"

    checks = f"- built on NixOS\n{details.result_check}".rstrip() + "\n"
    body += _section("Checks done", checks)
    body += _section("Rebuild report (if merged into master)", outpath_report(ctx.diff))
    body += _section("Instructions to test this update", testing_instructions(ctx, details, commit_hash))
    if details.cve_report:
        body += details.cve_report + "\n"
    if details.maintainers:
        body += f"---\n\n###### Maintainer pings\n\ncc {details.maintainers} for testing.\n"
    return body


class Publisher:
    """Turns a built candidate into a commit and, optionally, a pull request."""

    def __init__(
        self,
        nix: NixEvaluator,
        git: Git,
        github: GitHubClient,
        vulndb: VulnerabilityDatabase,
        output: Callable[[str], None] = print,
    ):
        self.nix = nix
        self.git = git
        self.github = github
        self.vulndb = vulndb
        self._output = output

    def _best_effort(self, what: str, getter: Callable[[], str]) -> str:
        try:
            return getter()
        except (NixError, GitHubError) as exc:
            logger.info("Could not get %s: %s", what, exc)
            return ""

    def _cachix(self, ctx: PublishContext) -> str:
        options = ctx.candidate.options
        if not options.push_to_cachix:
            return ""
        try:
            self.nix.push_to_cachix(ctx.result_path, options.cachix_cache)
        except NixError as exc:
            logger.warning("Pushing %s to cachix failed: %s", ctx.result_path, exc)
            return ""
        return cachix_instructions(options.cachix_cache, ctx.result_path)

    def _result_check(self, ctx: PublishContext) -> str:
        skip = blacklist.check_result_skip_reason(ctx.attr_path)
        if skip:
            return skip
        return check_result(ctx.result_path, ctx.candidate.new_version)

    def _is_broken(self, attr_path: str) -> bool:
        try:
            return self.nix.get_is_broken(attr_path)
        except NixError as exc:
            logger.info("Could not read meta.broken: %s", exc)
            return False

    def gather(self, ctx: PublishContext) -> PrDetails:
        """Collect the decorative sections of the PR body."""
        attr = ctx.attr_path
        cand = ctx.candidate
        details = PrDetails(
            description=self._best_effort("description", lambda: self.nix.get_description(attr)),
            homepage=self._best_effort("homepage", lambda: self.nix.get_homepage(attr).strip('"')),
            maintainers=self._best_effort("maintainers", lambda: self.nix.get_maintainers(attr)),
            broken=self._is_broken(attr),
            cachix=self._cachix(ctx),
            result_check=self._result_check(ctx),
            cve_report=cve_report(
                self.vulndb,
                cand.package_name,
                cand.old_version,
                cand.new_version,
                patches_lookup=lambda: self.nix.get_patches(attr),
            ),
        )
        if ctx.new_src_url:
            details.release_url = self._best_effort(
                "release url", lambda: self.github.release_url(ctx.new_src_url, cand.new_version)
            )
            if ctx.old_src_url:
                details.compare_url = self._best_effort(
                    "compare url", lambda: self.github.compare_url(ctx.old_src_url, ctx.new_src_url)
                )
        return details

    def _push(self, branch_name: str) -> None:
        last_error = None
        for attempt in range(1, Constants.PUSH_ATTEMPTS + 1):
            try:
                self.git.push(branch_name)
                return
            except GitError as exc:
                last_error = exc
                logger.warning("Push attempt %d of %d failed: %s", attempt, Constants.PUSH_ATTEMPTS, exc)
        raise UpdateError(FailureKind.PUSH_FAILED, f"Failed to push {branch_name}: {last_error}")

    def publish(self, ctx: PublishContext) -> UpdateResult:
        """Commit the change and open a pull request when requested."""
        cand = ctx.candidate
        options = cand.options
        try:
            self.git.commit(commit_message(ctx))
            commit_hash = self.git.head_hash()
        except GitError as exc:
            raise UpdateError(FailureKind.PUBLISH_FAILED, f"Commit failed: {exc}") from exc
        body = pr_message(ctx, self.gather(ctx), commit_hash)

        base = base_branch(ctx.rebuild_count, options)
        result = UpdateResult(
            attr_path=ctx.attr_path,
            commit_hash=commit_hash,
            rebuild_count=ctx.rebuild_count,
            base_branch=base,
            messages=list(ctx.rewrite_messages),
        )
        if not options.do_pr:
            self._output(body)
            return result

        self._push(cand.branch_name)
        try:
            url = self.github.create_pr(base, cand.branch_name, cand.title(ctx.attr_path), body)
        except GitHubError as exc:
            raise UpdateError(FailureKind.PUBLISH_FAILED, str(exc)) from exc
        if is_debug_enabled(logger):
            logger.debug(
                "Pull request opened",
                extra=extra_context(
                    event="pr_create", component="publish", action="create_pr", outcome="success", target=url
                ),
            )
        result.pr_url = url
        return result
