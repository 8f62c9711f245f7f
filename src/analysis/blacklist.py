"""Blacklist rules that reject candidates outright.

Each rule is a predicate on a piece of text plus the reason reported when
it matches. Rule lists are evaluated in order; the first match wins.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence


class Blacklisted(Exception):
    """A blacklist rule matched."""


@dataclass(frozen=True)
class Rule:
    matches: Callable[[str], bool]
    reason: str


def prefix_of(prefix: str, reason: str) -> Rule:
    return Rule(lambda text: text.startswith(prefix), reason)


def infix_of(infix: str, reason: str) -> Rule:
    return Rule(lambda text: infix in text, reason)


def suffix_of(suffix: str, reason: str) -> Rule:
    return Rule(lambda text: text.endswith(suffix), reason)


def eq(value: str, reason: str) -> Rule:
    return Rule(lambda text: text == value, reason)


def first_match(rules: Sequence[Rule], text: str) -> Optional[str]:
    for rule in rules:
        if rule.matches(text):
            return rule.reason
    return None


def _check(rules: Sequence[Rule], text: str) -> None:
    reason = first_match(rules, text)
    if reason is not None:
        raise Blacklisted(f"{text}: {reason}")


SRC_URL_RULES: List[Rule] = [
    infix_of("gnome", "Packages from gnome are currently blacklisted."),
    infix_of("gnu.org", "Packages from gnu.org are handled by a separate updater."),
    prefix_of("https://github.com/graalvm", "Packages from graalvm are too heavy to build."),
    infix_of("pypi.python.org/packages/source", "Unversioned PyPI URLs are not supported."),
]

ATTR_PATH_RULES: List[Rule] = [
    prefix_of("lxqt", "Packages for lxqt are currently skipped."),
    prefix_of("altcoins.bitcoin", "@roconnor asked for a blacklist on this until something can be done about GPG signatures https://github.com/NixOS/nixpkgs/commit/77f3ac7b7638b33ab198330eaabbd6e0a2e751a9"),
    eq("sqlite-interactive", "it is an override"),
    eq("harfbuzzFull", "it is an override"),
    prefix_of("linuxPackages", "Kernel modules are updated with the kernel."),
    prefix_of("linux_", "Kernels are updated by their own scripts."),
    suffix_of("Packages.haskell-language-server", "Haskell packages are generated."),
]

PACKAGE_NAME_RULES: List[Rule] = [
    prefix_of("r-", "we don't know how to find the attrpath for these"),
    infix_of("jquery", "this isn't a real package"),
    infix_of("google-cloud-sdk", "complicated package"),
    infix_of("github-release", "complicated package"),
    eq("imagemagick", "complicated package"),
    eq("imagemagickBig", "complicated package"),
    eq("imagemagick_light", "complicated package"),
    eq("libxc", "currently people don't want to update this https://github.com/NixOS/nixpkgs/pull/35821"),
    eq("slic3r", "package depends on old version"),
    eq("xf86-input-wacom", "the latest version is always beta"),
    eq("xf86-input-synaptics", "the latest version is always beta"),
    eq("freepats", "update script is unreliable"),
    eq("chromedriver", "complicated package"),
    eq("gcc-arm-embedded", "complicated package"),
    eq("haskell-language-server", "Haskell packages are generated."),
    suffix_of("-unwrapped", "wrapped packages are updated through their wrappers"),
]

CONTENT_RULES: List[Rule] = [
    infix_of("nixpkgs-update: no auto update", "Derivation file opts-out of auto-updates"),
    infix_of("DO NOT EDIT", "Derivation file says not to edit it"),
    infix_of("Do not edit!", "Derivation file says not to edit it"),
    infix_of("Generated by", "Derivation file is generated"),
    infix_of("This file was generated by", "Derivation file is generated"),
    infix_of("buildGoPackage", "buildGoPackage is deprecated and not supported"),
]

CHECK_RESULT_RULES: List[Rule] = [
    infix_of("busybox", "- busybox result is not automatically checked, because some binaries kill the shell"),
    infix_of("fcitx", "- fcitx result is not automatically checked, because some binaries gets stuck in daemons"),
    infix_of("x2goclient", "- x2goclient result is not automatically checked, because some binaries don't timeout properly"),
    infix_of("kicad", "- kicad result is not automatically checked, because some binaries don't timeout properly"),
    infix_of("systemd", "- systemd result is not automatically checked, because it's a gamble"),
    infix_of("qemu", "- qemu result is not automatically checked, because some binaries start a virtual machine"),
]


def check_src_url(urls: str) -> None:
    _check(SRC_URL_RULES, urls)


def check_attr_path(attr_path: str) -> None:
    _check(ATTR_PATH_RULES, attr_path)


def check_package_name(name: str) -> None:
    _check(PACKAGE_NAME_RULES, name)


def check_content(contents: str) -> None:
    reason = first_match(CONTENT_RULES, contents)
    if reason is not None:
        raise Blacklisted(reason)


def check_result_skip_reason(name: str) -> Optional[str]:
    """Reason to skip the result check for ``name``, if any."""
    return first_match(CHECK_RESULT_RULES, name)


def check_python_rebuilds(rebuild_count: int, derivation_contents: str, limit: int) -> None:
    """Veto Python package updates whose rebuild count exceeds ``limit``."""
    is_python = "buildPythonPackage" in derivation_contents or "buildPythonApplication" in derivation_contents
    if is_python and rebuild_count > limit:
        raise Blacklisted(
            f"Python package with too many package rebuilds {rebuild_count}  > {limit}"
        )
