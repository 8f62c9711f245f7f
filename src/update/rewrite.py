"""In-place rewrite steps applied to a derivation file.

Each step either leaves the file alone and returns None, changes it and
returns None, or changes it and returns a message for the PR body. A step
that cannot complete raises ``RewriteError``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from constants import Constants
from nix.evaluator import NixError, NixEvaluator, number_of_fetchers, number_of_hashes
from update.models import Candidate

logger = logging.getLogger(__name__)


class RewriteError(Exception):
    """A rewrite step could not be applied."""


@dataclass(frozen=True)
class RewriteArgs:
    candidate: Candidate
    attr_path: str
    derivation_file: str
    derivation_contents: str


def file_replace(find: str, replace: str, path: str) -> bool:
    """Replace every occurrence of ``find`` in ``path``; True if anything changed."""
    with open(path, "r", encoding="utf-8") as fh:
        contents = fh.read()
    updated = contents.replace(find, replace)
    if updated == contents:
        return False
    with open(path, "w", encoding="utf-8") as fh:
        fh.write(updated)
    return True


def version_rewrite(args: RewriteArgs, nix: NixEvaluator) -> Optional[str]:
    """Bump the version literal and recompute the source hash.

    Derivations with several fetchers or hashes are left alone; the generic
    rewrite cannot tell which hash belongs to which source.
    """
    contents = args.derivation_contents
    if number_of_fetchers(contents) > 1 or number_of_hashes(contents) > 1:
        logger.info("Generic version rewriter does not support multiple hashes")
        return None
    cand = args.candidate
    try:
        old_hash = nix.get_old_hash(args.attr_path)
    except NixError as exc:
        raise RewriteError(f"Could not read the old hash: {exc}") from exc

    if cand.old_version + '"' not in args.derivation_contents:
        logger.info("Version literal %s not found; skipping", cand.old_version)
        return None
    # Every occurrence, so versions hard-coded in URLs follow the bump.
    file_replace(cand.old_version, cand.new_version, args.derivation_file)
    if not file_replace(old_hash, Constants.SHA256_ZERO, args.derivation_file):
        raise RewriteError(f"Old hash {old_hash} not found in {args.derivation_file}")
    try:
        new_hash = nix.get_hash_from_build(args.attr_path)
    except NixError as exc:
        raise RewriteError(f"Could not recover the new hash: {exc}") from exc
    file_replace(Constants.SHA256_ZERO, new_hash, args.derivation_file)
    logger.info("Updated version and sha256")
    return None


def quoted_urls(args: RewriteArgs, nix: NixEvaluator) -> Optional[str]:
    """Quote a bare homepage URL."""
    try:
        homepage = nix.get_homepage(args.attr_path)
    except NixError as exc:
        raise RewriteError(f"Could not read the homepage: {exc}") from exc
    if len(homepage) < 2 or homepage in ('""', "null"):
        return None
    if homepage in args.derivation_contents:
        return None
    bare = homepage.strip('"')
    if not file_replace(f"homepage = {bare};", f"homepage = {homepage};", args.derivation_file):
        return None
    logger.info("Quoted meta.homepage")
    return "Quoted meta.homepage for [RFC 45](https://github.com/NixOS/rfcs/pull/45)"


Step = Callable[[RewriteArgs, NixEvaluator], Optional[str]]

STEPS: List[Tuple[str, Step]] = [
    ("version", version_rewrite),
    ("quoted_urls", quoted_urls),
]


def run_all(args: RewriteArgs, nix: NixEvaluator, steps: Optional[List[Tuple[str, Step]]] = None) -> List[str]:
    """Apply every step in order and collect their messages."""
    messages: List[str] = []
    for name, step in steps or STEPS:
        logger.info("Rewrite: %s", name)
        message = step(args, nix)
        if message:
            messages.append(message)
    return messages
