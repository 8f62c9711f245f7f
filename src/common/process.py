"""Thin subprocess helpers for the external command-line collaborators.

Every call is synchronous. Callers pick a timeout for short introspection calls and
leave it unset for builds, which may run for as long as they need.
"""
from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Sequence

from common.logging_utils import extra_context, is_debug_enabled, Timer

logger = logging.getLogger(__name__)


class ProcessError(Exception):
    """Raised when a command exits non-zero, times out or cannot be started."""

    def __init__(self, cmd: Sequence[str], message: str, result: Optional["ProcessResult"] = None):
        self.cmd = list(cmd)
        self.result = result
        super().__init__(message)


@dataclass
class ProcessResult:
    """Captured outcome of a finished command."""

    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0


def _merged_env(env: Optional[Mapping[str, str]]) -> Optional[Dict[str, str]]:
    if not env:
        return None
    merged = dict(os.environ)
    merged.update(env)
    return merged


def run(
    cmd: Sequence[str],
    *,
    cwd: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
    stdin: Optional[str] = None,
) -> ProcessResult:
    """Run ``cmd`` and return its captured output regardless of exit status.

    Raises:
        ProcessError: When the command cannot be started or times out.
    """
    with Timer() as t:
        try:
            completed = subprocess.run(  # noqa: S603
                list(cmd),
                cwd=cwd,
                env=_merged_env(env),
                input=stdin,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise ProcessError(cmd, f"{cmd[0]} timed out after {timeout} seconds") from exc
        except OSError as exc:
            raise ProcessError(cmd, f"{cmd[0]} could not be started: {exc}") from exc

    if is_debug_enabled(logger):
        logger.debug(
            "Process finished",
            extra=extra_context(
                event="process_exit",
                component="process",
                action=cmd[0],
                outcome="success" if completed.returncode == 0 else "failure",
                returncode=completed.returncode,
                duration_ms=t.duration_ms(),
            )
        )
    return ProcessResult(completed.returncode, completed.stdout or "", completed.stderr or "")


def run_checked(
    cmd: Sequence[str],
    *,
    cwd: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout: Optional[float] = None,
    stdin: Optional[str] = None,
) -> ProcessResult:
    """Like :func:`run` but raise ``ProcessError`` on a non-zero exit status."""
    result = run(cmd, cwd=cwd, env=env, timeout=timeout, stdin=stdin)
    if not result.ok:
        detail = (result.stderr or result.stdout).strip()
        raise ProcessError(
            cmd,
            f"{' '.join(cmd)} exited with {result.returncode}: {detail}",
            result,
        )
    return result
