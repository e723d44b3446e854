"""
Policy Status — Configuration

Settings come from three layers, later ones winning:
  1. policy_status.yaml
  2. config/{PS_ENV}.yaml beside it (or under PS_CONFIG_DIR)
  3. PS_<SECTION>__<KEY> environment variables,
     e.g. PS_RECONCILER__MAX_CONCURRENT_RECONCILES=4

Only two sections are read: ``reconciler`` (worker pool and requeue
backoff) and ``logging`` (level). ``ReconcilerSettings.from_config``
turns the merged mapping into typed values and rejects bad ones with
ValueError.
"""

from __future__ import annotations

import copy
import os
from dataclasses import dataclass
from typing import Any

import yaml

from infra.logging import get_logger, log_fields

log = get_logger("config")

DEFAULT_CONFIG_FILE = "policy_status.yaml"
ENV_PREFIX = "PS_"
# Read by the loader itself, never merged as settings
_LOADER_VARS = {"PS_ENV", "PS_CONFIG_DIR"}


def deep_merge(base: dict, overlay: dict) -> dict:
    """Return base with overlay merged in. Nested dicts merge; anything else is replaced."""
    result = copy.deepcopy(base)
    for key, value in overlay.items():
        if isinstance(result.get(key), dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _read_yaml(path: str) -> dict[str, Any]:
    with open(path) as f:
        doc = yaml.safe_load(f)
    if doc is None:
        return {}
    if not isinstance(doc, dict):
        raise ValueError(f"{path}: expected a mapping at the top level, got {type(doc).__name__}")
    return doc


def _overlay_path(base_path: str, env: str, config_dir: str) -> str:
    config_dir = (config_dir or os.environ.get("PS_CONFIG_DIR")
                  or os.path.join(os.path.dirname(base_path), "config"))
    return os.path.join(config_dir, f"{env}.yaml")


def _env_overrides(environ=None) -> dict[str, Any]:
    """
    Collect PS_ variables. "__" separates nesting levels and values
    are parsed as YAML scalars, so "4" becomes 4 and "0.5" becomes 0.5.
    """
    environ = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}
    for name, raw in environ.items():
        if not name.startswith(ENV_PREFIX) or name in _LOADER_VARS:
            continue
        *sections, leaf = name[len(ENV_PREFIX):].lower().split("__")
        target = overrides
        for section in sections:
            if not isinstance(target.get(section), dict):
                target[section] = {}
            target = target[section]
        try:
            target[leaf] = yaml.safe_load(raw)
        except yaml.YAMLError:
            target[leaf] = raw
    return overrides


def load_config(
    base_path: str = DEFAULT_CONFIG_FILE,
    env: str = "",
    config_dir: str = "",
    include_env_vars: bool = True,
) -> dict[str, Any]:
    """
    Merge the three layers into one mapping.

    A missing base file or overlay is skipped. A file that exists but
    does not parse to a mapping raises (yaml.YAMLError or ValueError).
    """
    config: dict[str, Any] = {}
    if os.path.exists(base_path):
        config = _read_yaml(base_path)
        log.debug("Loaded the base config", extra=log_fields(path=base_path))

    env = env or os.environ.get("PS_ENV", "")
    if env:
        path = _overlay_path(base_path, env, config_dir)
        if os.path.exists(path):
            config = deep_merge(config, _read_yaml(path))
            log.info("Loaded the config overlay", extra=log_fields(path=path, env=env))
        else:
            log.debug("No config overlay", extra=log_fields(path=path, env=env))

    if include_env_vars:
        config = deep_merge(config, _env_overrides())
    return config


def get_config_value(path: str, config: dict[str, Any], default: Any = None) -> Any:
    """Look up a dotted path such as "reconciler.max_retries"."""
    current: Any = config
    for key in path.split("."):
        if not isinstance(current, dict) or key not in current:
            return default
        current = current[key]
    return current


@dataclass
class ReconcilerSettings:
    """Knobs for the reconcile worker pool and requeue backoff."""
    max_concurrent_reconciles: int = 10
    max_retries: int = 5
    backoff_base: float = 0.5       # seconds; delay = base * 2^attempt + jitter
    backoff_max: float = 30.0
    jitter: float = 0.2             # ±20% randomization on backoff
    log_level: str = "INFO"

    @classmethod
    def from_config(cls, config: dict[str, Any]) -> ReconcilerSettings:
        d = cls()
        section = config.get("reconciler") or {}
        if not isinstance(section, dict):
            raise ValueError(f"reconciler: expected a mapping, got {type(section).__name__}")
        settings = cls(
            max_concurrent_reconciles=int(section.get(
                "max_concurrent_reconciles", d.max_concurrent_reconciles)),
            max_retries=int(section.get("max_retries", d.max_retries)),
            backoff_base=float(section.get("backoff_base", d.backoff_base)),
            backoff_max=float(section.get("backoff_max", d.backoff_max)),
            jitter=float(section.get("jitter", d.jitter)),
            log_level=str(get_config_value("logging.level", config, d.log_level)),
        )
        if settings.max_concurrent_reconciles < 1:
            raise ValueError(
                f"max_concurrent_reconciles must be >= 1, got {settings.max_concurrent_reconciles}"
            )
        if settings.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {settings.max_retries}")
        return settings
