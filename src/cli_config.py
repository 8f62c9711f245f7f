"""Configuration loading: YAML file, ``--set`` overrides and CLI flags.

Precedence, highest first: CLI flags, ``--set KEY=VALUE``, the YAML file,
``Constants`` defaults. Unknown keys are ignored with a warning.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from typing import Any, Dict, Iterable, Optional

import yaml

from update.models import Options

logger = logging.getLogger(__name__)

_OPTION_FIELDS = {f.name for f in dataclasses.fields(Options)}


class ConfigError(Exception):
    """The configuration file could not be read."""


def load_config(path: Optional[str]) -> Dict[str, Any]:
    """Load a YAML mapping from ``path``; an absent path yields ``{}``."""
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = yaml.safe_load(fh) or {}
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Could not read config {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Config {path} must contain a mapping")
    return data


def _coerce_value(text):
    """Best-effort convert string to JSON/number/bool, else raw string."""
    s = str(text).strip()
    try:
        return json.loads(s)
    except ValueError:
        sl = s.lower()
        if sl == "true":
            return True
        if sl == "false":
            return False
        try:
            if s.isdigit() or (s.startswith("-") and s[1:].isdigit()):
                return int(s)
            return float(s)
        except ValueError:
            return s


def _apply_dot_path(dct, dot_path, value):
    parts = [p for p in dot_path.split(".") if p]
    cur = dct
    for key in parts[:-1]:
        if key not in cur or not isinstance(cur.get(key), dict):
            cur[key] = {}
        cur = cur[key]
    cur[parts[-1]] = value


def _deep_merge(dest, src):
    for k, v in src.items():
        if isinstance(v, dict) and isinstance(dest.get(k), dict):
            _deep_merge(dest[k], v)
        else:
            dest[k] = v


def collect_overrides(pairs: Iterable[str]) -> Dict[str, Any]:
    """Turn ``KEY=VALUE`` strings into a nested mapping."""
    overrides: Dict[str, Any] = {}
    for item in pairs or []:
        if not isinstance(item, str) or "=" not in item:
            logger.warning("Ignoring malformed override %r (expected KEY=VALUE)", item)
            continue
        key, val = item.split("=", 1)
        _apply_dot_path(overrides, key.strip(), _coerce_value(val.strip()))
    return overrides


def _option_values(config: Dict[str, Any]) -> Dict[str, Any]:
    """Pick the ``Options`` fields out of a merged config mapping."""
    values: Dict[str, Any] = {}
    for key, value in config.items():
        if key not in _OPTION_FIELDS:
            logger.warning("Ignoring unknown config key %s", key)
            continue
        if key == "update_branches":
            if isinstance(value, str):
                value = [b.strip() for b in value.split(",") if b.strip()]
            value = tuple(value)
        values[key] = value
    return values


def build_options(args, batch_update: bool = False) -> Options:
    """Merge YAML config, ``--set`` overrides and CLI flags into ``Options``."""
    config = load_config(getattr(args, "CONFIG", None))
    _deep_merge(config, collect_overrides(getattr(args, "CONFIG_SET", [])))
    values = _option_values(config)
    if getattr(args, "DO_PR", False):
        values["do_pr"] = True
    if getattr(args, "CACHIX", False):
        values["push_to_cachix"] = True
    if getattr(args, "OUTPATHS", False):
        values["calculate_outpaths"] = True
    values["batch_update"] = batch_update
    return Options(**values)
