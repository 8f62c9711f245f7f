"""Batch driver: runs a whole candidate list through the pipeline.

Every candidate outcome is appended to the run log. In batch mode the run
log is a per-day file under ``Options.log_dir``; in single mode it is stdout.
"""
from __future__ import annotations

import logging
import os
import sys
from collections import deque
from dataclasses import dataclass
from datetime import date
from typing import Callable, Deque, Iterable, Optional

from constants import Constants
from analysis.cve import cve_report
from analysis.impact import MergeBaseOutpathsInfo
from nix.evaluator import NixError, NixEvaluator
from repository.git import Git, GitError
from repository.github import GitHubClient, GitHubError
from update.models import Options, UpdateError
from update.parser import ParsedLine, parse_update_line, parse_updates
from update.pipeline import UpdatePipeline
from update.throttle import CiThrottle, fetch_queue_depth
from vulndb import open_database
from vulndb.models import VulnerabilityDatabase

logger = logging.getLogger(__name__)

RUN_LOGGER_NAME = "nixpkgs_update.run"


def log_file_path(log_dir: str, day: Optional[date] = None) -> str:
    """Path of the run log for ``day`` (today by default)."""
    day = day or date.today()
    return os.path.join(os.path.expanduser(log_dir), f"{day.isoformat()}.log")


class RunLog:
    """Append-only record of what happened to each candidate."""

    def __init__(self, handler: logging.Handler):
        self._handler = handler
        self._logger = logging.getLogger(RUN_LOGGER_NAME)
        self._logger.propagate = False
        self._logger.setLevel(logging.INFO)
        for old in list(self._logger.handlers):
            self._logger.removeHandler(old)
            old.close()
        self._logger.addHandler(handler)

    @classmethod
    def open(cls, options: Options, day: Optional[date] = None) -> "RunLog":
        if options.batch_update:
            path = log_file_path(options.log_dir, day)
            os.makedirs(os.path.dirname(path), exist_ok=True)
            handler: logging.Handler = logging.FileHandler(path, encoding="utf-8")
            handler.setFormatter(logging.Formatter(Constants.RUN_LOG_FORMAT, Constants.RUN_LOG_DATE_FORMAT))
        else:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(logging.Formatter("%(message)s"))
        return cls(handler)

    def __call__(self, message: str) -> None:
        self._logger.info(message)

    def close(self) -> None:
        self._logger.removeHandler(self._handler)
        self._handler.close()


@dataclass
class BatchSummary:
    succeeded: int = 0
    failed: int = 0
    unparsed: int = 0


def update_loop(
    pipeline: UpdatePipeline,
    log: Callable[[str], None],
    queue: Deque[ParsedLine],
    cache: MergeBaseOutpathsInfo,
    throttle: Optional[CiThrottle] = None,
) -> BatchSummary:
    """Process ``queue`` to exhaustion.

    A failed candidate whose new version ends in ``.0`` is retried once with
    the suffix stripped, before the rest of the queue.
    """
    summary = BatchSummary()
    while queue:
        item = queue.popleft()
        if isinstance(item, str):
            log(item)
            summary.unparsed += 1
            continue
        cand = item
        log(cand.describe())
        if throttle is not None and cand.options.batch_update:
            throttle.wait_until_free()
        try:
            result = pipeline.update_batch(cand, cache)
        except UpdateError as exc:
            summary.failed += 1
            log(f"FAIL {exc}")
            try:
                pipeline.git.cleanup(cand.branch_name, cand.options.trunk_branch)
            except GitError as cleanup_exc:
                log(f"FAIL cleanup of {cand.branch_name}: {cleanup_exc}")
            retry = cand.without_trailing_zero()
            if retry is not None:
                queue.appendleft(retry)
            continue
        summary.succeeded += 1
        log(f"SUCCESS {result.pr_url}" if result.pr_url else "SUCCESS")
    return summary


def _features(options: Options) -> Iterable[str]:
    if options.do_pr:
        yield "Will open pull requests"
    if options.push_to_cachix:
        yield f"Will push to Cachix cache {options.cachix_cache}"
    if options.calculate_outpaths:
        yield "Will calculate outpaths"


def update_all(
    options: Options,
    text: str,
    pipeline: Optional[UpdatePipeline] = None,
    throttle: Optional[CiThrottle] = None,
    repo_dir: str = ".",
) -> BatchSummary:
    """Run every candidate of ``text`` in batch mode."""
    log = RunLog.open(options)
    try:
        log("New run of nixpkgs-update")
        for feature in _features(options):
            log(feature)
        pipeline = pipeline or UpdatePipeline.from_options(options, repo_dir=repo_dir)
        nix_version = pipeline.nix.version()
        if nix_version:
            log(nix_version)
        if throttle is None:
            throttle = CiThrottle(
                options.ci_queue_threshold,
                options.ci_poll_interval_sec,
                signal=lambda: fetch_queue_depth(options.ci_stats_url),
            )
        cache = MergeBaseOutpathsInfo.stale()
        summary = update_loop(pipeline, log, deque(parse_updates(text, options)), cache, throttle)
        log("nixpkgs-update finished")
        return summary
    finally:
        log.close()


def update_one(
    options: Options,
    line: str,
    pipeline: Optional[UpdatePipeline] = None,
    repo_dir: str = ".",
) -> bool:
    """Update a single package on the current checkout; True on success."""
    log = RunLog.open(options)
    try:
        parsed = parse_update_line(line, options)
        if isinstance(parsed, str):
            log(parsed)
            return False
        pipeline = pipeline or UpdatePipeline.from_options(options, repo_dir=repo_dir)
        try:
            result = pipeline.update_single(parsed)
        except UpdateError as exc:
            log(f"FAIL {exc}")
            return False
        log(f"SUCCESS {result.commit_hash}")
        return True
    finally:
        log.close()


def cve_all(
    options: Options,
    text: str,
    db: Optional[VulnerabilityDatabase] = None,
    output: Callable[[str], None] = print,
) -> None:
    """Print the security report of every candidate in ``text``."""
    db = db or open_database(options.vulndb)
    for item in parse_updates(text, options):
        if isinstance(item, str):
            output(item)
            continue
        report = cve_report(db, item.package_name, item.old_version, item.new_version)
        output(f"{item.describe()}\n{report}")


def source_github_all(
    options: Options,
    text: str,
    github: Optional[GitHubClient] = None,
    nix: Optional[NixEvaluator] = None,
    git: Optional[Git] = None,
    output: Callable[[str], None] = print,
    repo_dir: str = ".",
) -> None:
    """Print candidates whose latest GitHub release differs from the proposal.

    The source URL is read from the derivation on trunk, not from the
    candidate line.
    """
    github = github or GitHubClient(repo=options.github_repo)
    nix = nix or NixEvaluator(repo_dir)
    git = git or Git(repo_dir)
    fetched = git.fetch_if_stale(options.fetch_max_age_sec)
    if not fetched.ok:
        output("Failed to fetch.")
    try:
        git.clean_and_reset_to(options.trunk_branch)
    except GitError as exc:
        logger.warning("Resetting to %s failed: %s", options.trunk_branch, exc)
    for item in parse_updates(text, options):
        if isinstance(item, str):
            continue
        try:
            attr_path = nix.lookup_attr_path(item.package_name, item.old_version)
            src_url = nix.get_src_url(attr_path)
            latest = github.latest_version(src_url)
        except (NixError, GitHubError) as exc:
            logger.debug("Skipping %s: %s", item.package_name, exc)
            continue
        if latest != item.new_version:
            output(f"{item.package_name}: {item.old_version} -> {item.new_version} -> {latest}")
