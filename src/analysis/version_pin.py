"""Version pins encoded in attribute paths.

Attributes such as ``python37``, ``nodejs-slim-10_x`` or ``libgit2_0_25``
pin a package to a release series. An update is rejected when the old
version honoured the pin and the new one does not.
"""
from __future__ import annotations

import re
from typing import Optional, Tuple

_IGNORED_SUFFIXES = ("-unwrapped", "_x", "_latest")

_UNDERSCORE_PIN_RE = re.compile(r"_(\d+(?:_\d+)+)$")
_DASH_PIN_RE = re.compile(r"[-_](\d+)$")
_GLUED_PIN_RE = re.compile(r"[A-Za-z](\d+)$")


class PinIncompatible(Exception):
    """The new version leaves the release series pinned by the attribute path."""


def _strip_suffixes(attr_path: str) -> str:
    changed = True
    while changed:
        changed = False
        for suffix in _IGNORED_SUFFIXES:
            if attr_path.lower().endswith(suffix):
                attr_path = attr_path[: -len(suffix)]
                changed = True
    return attr_path


def path_pin(attr_path: str) -> Optional[Tuple[str, bool]]:
    """Return ``(pin, dotted)`` for the version pinned by ``attr_path``, or None.

    ``libgit2_0_25`` pins ``0.25`` and ``nodejs-slim-10_x`` pins ``10``, both
    matched against whole version components. ``owncloud90`` pins the digits
    ``90``, which are compared against the version with its periods removed.
    """
    name = _strip_suffixes(attr_path.rsplit(".", 1)[-1])
    m = _UNDERSCORE_PIN_RE.search(name) or _DASH_PIN_RE.search(name)
    if m:
        return m.group(1).replace("_", "."), True
    m = _GLUED_PIN_RE.search(name)
    if m:
        return m.group(1), False
    return None


def version_compatible_with_path_pin(attr_path: str, version: str) -> bool:
    pinned = path_pin(attr_path)
    if pinned is None:
        return True
    pin, dotted = pinned
    if dotted:
        return version == pin or version.startswith(pin + ".")
    return version.replace(".", "").startswith(pin)


def assert_compatible_with_path_pin(attr_path: str, old_version: str, new_version: str) -> None:
    """Reject updates that move a pinned attribute to another series."""
    if version_compatible_with_path_pin(attr_path, old_version) and not version_compatible_with_path_pin(
        attr_path, new_version
    ):
        raise PinIncompatible(f"Version in attr path {attr_path} not compatible with {new_version}")
