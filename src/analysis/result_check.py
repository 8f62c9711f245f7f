"""Smoke checks run against a freshly built result.

Runs every binary under ``<result>/bin`` with common help and version flags,
and looks for the expected version string in the output tree. The findings
are rendered as a markdown list for the pull request body.
"""
from __future__ import annotations

import logging
import os
from typing import List

from constants import Constants
from common import process
from common.process import ProcessError

logger = logging.getLogger(__name__)

HELP_FLAGS = ["-h", "--help", "help"]
VERSION_FLAGS = ["-V", "-v", "--version", "version", "-h", "--help", "help"]
CHUNK_SIZE = 1 << 20


def _binaries(result_path: str) -> List[str]:
    bin_dir = os.path.join(result_path, "bin")
    found = []
    for root, _, files in os.walk(bin_dir):
        for name in sorted(files):
            path = os.path.join(root, name)
            if os.path.isfile(path) and os.access(path, os.X_OK):
                found.append(path)
    return found


def _try_flag(binary: str, flag: str):
    try:
        return process.run([binary, flag], timeout=Constants.INTROSPECT_TIMEOUT, stdin="")
    except ProcessError as exc:
        logger.debug("Running %s %s failed: %s", binary, flag, exc)
        return None


def try_binary(binary: str, expected_version: str) -> List[str]:
    """Return report lines for one binary."""
    lines = []
    for flag in HELP_FLAGS:
        result = _try_flag(binary, flag)
        if result is not None and result.ok:
            lines.append(f"- ran `{binary} {flag}` got 0 exit code")
    for flag in VERSION_FLAGS:
        result = _try_flag(binary, flag)
        if result is not None and expected_version in (result.stdout + result.stderr):
            lines.append(f"- ran `{binary} {flag}` and found version {expected_version}")
    return lines


def _file_contains(path: str, needle: bytes) -> bool:
    # Consecutive chunks overlap by len(needle) - 1 bytes so matches across a boundary are found.
    keep = len(needle) - 1
    tail = b""
    with open(path, "rb") as f:
        while True:
            chunk = f.read(CHUNK_SIZE)
            if not chunk:
                return False
            window = tail + chunk
            if needle in window:
                return True
            tail = window[-keep:] if keep else b""


def _version_in_contents(result_path: str, expected_version: str) -> bool:
    needle = expected_version.encode()
    for root, _, files in os.walk(result_path):
        for name in files:
            path = os.path.join(root, name)
            if not os.path.isfile(path):
                continue
            try:
                if _file_contains(path, needle):
                    return True
            except OSError:
                continue
    return False


def _version_in_filenames(result_path: str, expected_version: str) -> bool:
    for root, dirs, files in os.walk(result_path):
        if any(expected_version in n for n in dirs + files):
            return True
    return expected_version in os.path.basename(result_path)


def check_result(result_path: str, expected_version: str) -> str:
    """Run every check and return the markdown report."""
    lines = []
    for binary in _binaries(result_path):
        lines.extend(try_binary(binary, expected_version))
    if _version_in_contents(result_path, expected_version):
        lines.append(f"- found {expected_version} with grep in {result_path}")
    if _version_in_filenames(result_path, expected_version):
        lines.append(f"- found {expected_version} in filename of file in {result_path}")
    return "\n".join(lines)
