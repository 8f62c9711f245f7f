"""Outpath sets: the build-output identities of a whole package set.

An outpath set is evaluated once per point in history and compared with
another one by symmetric difference. The number of distinct packages touched
by that difference is the rebuild count.
"""
from __future__ import annotations

import logging
import os
import tempfile
from collections import Counter
from dataclasses import dataclass
from typing import FrozenSet, Iterable, List, Optional

from constants import Constants
from common import process
from common.process import ProcessError
from nix.evaluator import NixError

logger = logging.getLogger(__name__)

PLATFORMS = (
    "x86_64-linux",
    "aarch64-linux",
    "i686-linux",
    "x86_64-darwin",
    "aarch64-darwin",
)

DEFAULT_OUTPUT = "out"

# Evaluates every package of the checkout with meta checks enabled so that
# broken and unfree packages still report their outputs.
OUTPATH_NIX = """\
{ checkMeta
, path ? ./.
}:
let
  lib = import (path + "/lib");
  hydraJobs = import (path + "/pkgs/top-level/release.nix")
    { nixpkgs = { outPath = path; revCount = 1234; shortRev = "abcdef"; revision = "0000000000000000000000000000000000000000"; };
      officialRelease = false;
      inherit checkMeta;
    };
  recurseIntoAttrs = attrs: attrs // { recurseForDerivations = true; };
  tweak = lib.mapAttrs (name: val:
    if name == "recurseForDerivations" then true
    else if lib.isAttrs val && val.type or null != "derivation"
      then recurseIntoAttrs (tweak val)
    else val
  );
in
  tweak (builtins.removeAttrs hydraJobs [ "tarball" "metrics" "manual" "nixpkgs" "tests" "release-checks" "unstable" "lib-tests" ])
"""


@dataclass(frozen=True, order=True)
class Outpath:
    """One output of one package on one platform."""

    package: str
    platform: str
    output: str
    store_path: str

    @property
    def output_name(self) -> str:
        return f"{self.package}.{self.platform}.{self.output}"


OutpathSet = FrozenSet[Outpath]

EMPTY: OutpathSet = frozenset()


def _split_attr(attr: str) -> tuple:
    """Split ``pkg.attr.x86_64-linux`` into ``("pkg.attr", "x86_64-linux")``."""
    for platform in PLATFORMS:
        suffix = "." + platform
        if attr.endswith(suffix):
            return attr[: -len(suffix)], platform
    return attr, ""


def parse_outpath_line(line: str) -> List[Outpath]:
    """Parse one ``nix-env -qaP --no-name --out-path`` line.

    Single-output packages print the bare store path, multi-output ones
    print ``name=path`` pairs joined by ``;``.
    """
    fields = line.split()
    if len(fields) < 2:
        return []
    package, platform = _split_attr(fields[0])
    entries = []
    for chunk in fields[1].split(";"):
        if not chunk:
            continue
        if "=" in chunk:
            output, store_path = chunk.split("=", 1)
        else:
            output, store_path = DEFAULT_OUTPUT, chunk
        entries.append(Outpath(package, platform, output, store_path))
    return entries


def parse_outpaths(text: str) -> OutpathSet:
    result = set()
    for line in text.splitlines():
        result.update(parse_outpath_line(line))
    return frozenset(result)


def current_outpath_set(repo_dir: str = ".") -> OutpathSet:
    """Evaluate the outpath set of whatever is checked out in ``repo_dir``.

    This is the heaviest operation of the whole tool.
    """
    fd, helper = tempfile.mkstemp(suffix=".nix", prefix="outpath-")
    with os.fdopen(fd, "w", encoding="utf-8") as f:
        f.write(OUTPATH_NIX)
    try:
        result = process.run_checked(
            [
                Constants.NIX_ENV_BIN, "-f", helper, "-qaP", "--no-name", "--out-path",
                "--arg", "path", os.path.abspath(repo_dir),
                "--arg", "checkMeta", "true", "--show-trace",
            ],
            env={"GC_INITIAL_HEAP_SIZE": "10g"},
        )
    except ProcessError as exc:
        raise NixError(f"Evaluating outpaths failed: {exc}") from exc
    finally:
        os.unlink(helper)
    outpaths = parse_outpaths(result.stdout)
    logger.info("Evaluated %d outpaths", len(outpaths))
    return outpaths


def dummy_outpath_set_before(attr_path: str) -> OutpathSet:
    """Placeholder baseline used when impact estimation is disabled."""
    return frozenset({Outpath(attr_path, "x86_64-linux", attr_path, "fakepath")})


def dummy_outpath_set_after(attr_path: str) -> OutpathSet:
    """Placeholder edited set; always differs from the baseline placeholder."""
    return frozenset({Outpath(attr_path, "x86_64-linux", attr_path, "fakepath-edited")})


def outpath_diff(before: Iterable[Outpath], after: Iterable[Outpath]) -> OutpathSet:
    """Symmetric difference of two outpath sets."""
    return frozenset(before).symmetric_difference(after)


def package_rebuilds(diff: Iterable[Outpath]) -> List[str]:
    """Distinct packages in a diff, sorted."""
    return sorted({o.package for o in diff})


def num_package_rebuilds(diff: Iterable[Outpath]) -> int:
    return len(package_rebuilds(diff))


def rebuild_count(before: Iterable[Outpath], after: Iterable[Outpath]) -> int:
    """Rebuild count between two outpath sets. Symmetric in its arguments."""
    return num_package_rebuilds(outpath_diff(before, after))


def outpath_report(diff: Optional[OutpathSet]) -> str:
    """Markdown summary of a rebuild diff."""
    if diff is None:
        return ""
    packages = package_rebuilds(diff)
    by_platform = Counter(o.platform or "unknown" for o in diff)
    platform_lines = "\n".join(
        f"{count} {platform}" for platform, count in sorted(by_platform.items())
    )
    first_fifty = "\n".join(packages[:50])
    return (
        f"{len(diff)} total rebuild path(s)\n\n"
        f"{len(packages)} package rebuild(s)\n\n"
        f"{platform_lines}\n\n"
        f"First fifty rebuilds by attrpath\n{first_fifty}\n"
    )
