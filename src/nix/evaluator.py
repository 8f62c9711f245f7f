"""Nix evaluator/builder adapter.

Wraps the ``nix``, ``nix-build`` and ``nix-env`` command-line tools. All
commands run against the nixpkgs checkout in ``repo_dir``; whatever ref the
git adapter left checked out is what gets evaluated.
"""
from __future__ import annotations

import logging
import os
import re
from typing import Callable, List, Optional

from constants import Constants
from common import process
from common.process import ProcessError

logger = logging.getLogger(__name__)

_STRING_LITERAL_RE = re.compile(r'"((?:[^"\\]|\\.)*)"')

COMMON_OPTIONS = ["--arg", "config", "{ allowBroken = true; allowUnfree = true; allowAliases = false; }"]
BUILD_OPTIONS = ["--option", "sandbox", "true", "--option", "restrict-eval", "true", "--no-out-link"]


class NixError(Exception):
    """An evaluation or build command failed."""


class BuildSucceededUnexpectedly(NixError):
    """A build against the all-zero sentinel hash did not fail."""


class UnrecognizedBuildOutput(NixError):
    """A failed build did not report the expected hash in a known format."""


class BuildFailed(NixError):
    """``nix-build`` failed; the message carries the tail of the build log."""


def _unquote(text: str) -> str:
    text = text.strip()
    if len(text) >= 2 and text[0] == '"' and text[-1] == '"':
        return text[1:-1].replace('\\"', '"').replace("\\\\", "\\")
    return text


def parse_string_list(text: str) -> List[str]:
    """Parse a printed Nix list of strings such as ``[ "out" "dev" ]``."""
    stripped = text.strip()
    if not (stripped.startswith("[") and stripped.endswith("]")):
        raise NixError(f"Not a nix string list: {text}")
    inner = stripped[1:-1]
    items = _STRING_LITERAL_RE.findall(inner)
    leftover = _STRING_LITERAL_RE.sub("", inner).strip()
    if leftover:
        raise NixError(f"Unexpected tokens in nix string list: {leftover}")
    return [i.replace('\\"', '"') for i in items]


def number_of_fetchers(derivation_contents: str) -> int:
    """Count fetcher invocations in a derivation file."""
    return sum(derivation_contents.count(f) for f in ("fetchurl {", "fetchgit {", "fetchFromGitHub {"))


def number_of_hashes(derivation_contents: str) -> int:
    """Count things that look like fixed-output hash declarations."""
    return sum(
        derivation_contents.count(h)
        for h in ("sha256 =", "sha256=", "cargoSha256 =", "vendorSha256 =", "hash =")
    )


class NixEvaluator:
    """Evaluation and build operations consumed by the update pipeline."""

    def __init__(self, repo_dir: str = "."):
        self.repo_dir = repo_dir

    # ----- low level -----

    def _run(self, cmd: List[str], *, env=None, timeout=None) -> str:
        try:
            result = process.run_checked(cmd, cwd=self.repo_dir, env=env, timeout=timeout)
        except ProcessError as exc:
            raise NixError(str(exc)) from exc
        return result.stdout

    def eval(self, expr: str, *, raw: bool = False, env=None) -> str:
        """Evaluate ``expr`` against the checkout and return stripped output."""
        cmd = [Constants.NIX_BIN, "eval", "-f", "."]
        if raw:
            cmd.append("--raw")
        cmd.append(expr)
        return self._run(cmd, env=env).strip()

    def _src_or_main(self, getter: Callable[[str], str], attr_path: str) -> str:
        try:
            return getter(attr_path + ".src")
        except NixError:
            return getter(attr_path)

    def _pkgs_expr(self, attr_path: str, tail: str) -> str:
        return f"(let pkgs = import ./. {{}}; in pkgs.{attr_path}{tail})"

    # ----- versions and attribute paths -----

    def compare_versions(self, left: str, right: str) -> int:
        """Nix's own ``builtins.compareVersions``: -1, 0 or 1."""
        out = self.eval(f'(builtins.compareVersions "{left}" "{right}")')
        try:
            return int(out)
        except ValueError as exc:
            raise NixError(f"Unexpected compareVersions output: {out}") from exc

    def assert_newer_version(self, new_version: str, old_version: str) -> None:
        comparison = self.compare_versions(new_version, old_version)
        if comparison != 1:
            raise NixError(
                f"{new_version} is not newer than {old_version} according to Nix; "
                f"versionComparison: {comparison}"
            )

    def _lookup_attr_path_nix_env(self, name: str, version: str) -> str:
        out = self._run(
            [Constants.NIX_ENV_BIN, "-qa", f"{name}-{version}", "-f", ".", "--attr-path"]
            + COMMON_OPTIONS
        )
        lines = [line for line in out.splitlines() if line.strip()]
        if not lines:
            raise NixError(f"nix-env found no attribute for {name}-{version}")
        return lines[0].split()[0]

    def _lookup_attr_path_by_attr_name(self, name: str, version: str) -> str:
        drv_version = self.eval(f"(builtins.parseDrvName (import ./. {{}}).{name}.name).version", raw=True)
        if drv_version != version:
            raise NixError(f'nix version "{drv_version}" doesn\'t match old version "{version}"')
        return name

    def lookup_attr_path(self, name: str, old_version: str) -> str:
        """Resolve ``name``/``old_version`` to an attribute path."""
        try:
            return self._lookup_attr_path_nix_env(name, old_version)
        except NixError as first:
            try:
                return self._lookup_attr_path_by_attr_name(name, old_version)
            except NixError as second:
                raise NixError(f"{first}\n{second}") from second

    def get_derivation_file(self, attr_path: str) -> str:
        out = self._run(["env", "EDITOR=echo", Constants.NIX_BIN, "edit", attr_path, "-f", "."])
        path = out.strip()
        if not os.path.isabs(path):
            path = os.path.join(self.repo_dir, path)
        return path

    def get_version(self, attr_path: str) -> str:
        return self.eval(self._pkgs_expr(attr_path, ".version or \"\""), raw=True)

    def assert_old_version_on(self, old_version: str, branch: str, contents: str) -> None:
        """Fail when the old version literal is gone from ``contents``."""
        pattern = old_version + '"'
        if pattern not in contents:
            raise NixError(f"Old version {pattern} not present in {branch} derivation file")

    # ----- attributes -----

    def get_hash(self, attr_path: str) -> str:
        return self._src_or_main(
            lambda a: self.eval(f"pkgs.{a}.drvAttrs.outputHash", raw=True), attr_path
        )

    get_old_hash = get_hash

    def get_src_url(self, attr_path: str) -> str:
        return self._src_or_main(
            lambda a: self.eval(
                f"(let pkgs = import ./. {{}}; in builtins.elemAt pkgs.{a}.drvAttrs.urls 0)", raw=True
            ),
            attr_path,
        )

    def get_src_urls(self, attr_path: str) -> str:
        return self._src_or_main(lambda a: self.eval(f"pkgs.{a}.urls"), attr_path)

    def get_description(self, attr_path: str) -> str:
        return _unquote(self.eval(self._pkgs_expr(attr_path, '.meta.description or ""')))

    def get_homepage(self, attr_path: str) -> str:
        """Homepage as printed by nix, i.e. still quoted."""
        return self.eval(self._pkgs_expr(attr_path, '.meta.homepage or ""'))

    def get_maintainers(self, attr_path: str) -> str:
        """GitHub handles of the maintainers, ``@``-prefixed and space separated."""
        expr = (
            "(let pkgs = import ./. {}; gh = m : m.github or \"\"; nonempty = s: s != \"\"; "
            "addAt = s: \"@\"+s; in builtins.concatStringsSep \" \" (map addAt "
            f"(builtins.filter nonempty (map gh pkgs.{attr_path}.meta.maintainers or []))))"
        )
        return self.eval(expr, raw=True)

    def _read_bool(self, text: str) -> bool:
        if text == "true":
            return True
        if text == "false":
            return False
        raise NixError(f"Failed to read expected nix boolean {text}")

    def get_is_broken(self, attr_path: str) -> bool:
        return self._read_bool(self.eval(self._pkgs_expr(attr_path, ".meta.broken or false")))

    def get_changelog(self, attr_path: str) -> str:
        return _unquote(self.eval(self._pkgs_expr(attr_path, '.meta.changelog or ""')))

    def get_patches(self, attr_path: str) -> str:
        """Printed list of patch names (kept as text for substring checks)."""
        return self.eval(f"(let pkgs = import ./. {{}}; in (map (p: p.name) pkgs.{attr_path}.patches))")

    def has_patch_named(self, attr_path: str, name: str) -> bool:
        return name in self.get_patches(attr_path)

    def has_update_script(self, attr_path: str) -> bool:
        out = self.eval(f'(let pkgs = import ./. {{}}; in builtins.hasAttr "updateScript" pkgs.{attr_path})')
        return out == "true"

    def get_outpaths(self, attr_path: str) -> List[str]:
        outputs = parse_string_list(
            self.eval(f"{attr_path}.outputs", env={"GC_INITIAL_HEAP_SIZE": "10g"})
        )
        return [self.eval(f"{attr_path}.{o}", raw=True) for o in outputs]

    # ----- building -----

    def _build_cmd(self, attr_path: str) -> List[str]:
        return [Constants.NIX_BUILD_BIN] + BUILD_OPTIONS + ["-A", attr_path]

    def build_log_tail(self, attr_path: str, lines: int = Constants.BUILD_LOG_TAIL_LINES) -> str:
        out = self._run([Constants.NIX_BIN, "log", "-f", ".", attr_path])
        return "\n".join(out.splitlines()[-lines:])

    def build(self, attr_path: str) -> str:
        """Build ``attr_path`` and return its output path.

        Raises:
            BuildFailed: With the last lines of the build log as message.
        """
        result = process.run(
            [Constants.NIX_BUILD_BIN, "--option", "sandbox", "true", "-A", attr_path],
            cwd=self.repo_dir,
        )
        if result.ok:
            lines = [line for line in result.stdout.splitlines() if line.strip()]
            return lines[-1].strip() if lines else self.result_link()
        try:
            tail = self.build_log_tail(attr_path)
        except NixError as exc:
            raise BuildFailed(f"nix log failed trying to get build logs: {exc}") from exc
        raise BuildFailed("nix build failed.\n" + tail)

    def get_hash_from_build(self, attr_path: str) -> str:
        """Recover the expected hash of a fixed-output derivation.

        The derivation must currently declare the all-zero sentinel hash, so
        the build is guaranteed to fail and report the hash it actually got.
        """
        def attempt(path: str) -> str:
            result = process.run(self._build_cmd(path), cwd=self.repo_dir)
            if result.ok:
                raise BuildSucceededUnexpectedly(f"build of {path} succeeded unexpectedly")
            stderr = result.stderr
            parts = stderr.split(Constants.HASH_DELIMITER, 1)
            if len(parts) < 2:
                raise UnrecognizedBuildOutput(
                    "stderr did not split as expected full stderr was: \n" + stderr
                )
            token = parts[1].split("\n", 1)[0].strip()
            if not token:
                raise UnrecognizedBuildOutput(
                    "stderr did not split second part as expected full stderr was: \n" + stderr
                )
            return token

        try:
            return attempt(attr_path + ".src")
        except BuildSucceededUnexpectedly:
            raise
        except NixError:
            return attempt(attr_path)

    def result_link(self) -> str:
        for link in ("result", "result-bin"):
            path = os.path.join(self.repo_dir, link)
            if os.path.islink(path):
                return os.readlink(path)
        raise NixError("Could not find result link.")

    def push_to_cachix(self, result_path: str, cache: str) -> None:
        try:
            process.run_checked(["cachix", "push", cache], stdin=result_path + "\n")
        except ProcessError as exc:
            raise NixError(f"cachix push failed: {exc}") from exc

    def version(self) -> Optional[str]:
        try:
            return self._run([Constants.NIX_BIN, "--version"], timeout=Constants.INTROSPECT_TIMEOUT).strip()
        except NixError:
            return None
