"""Locate, expand and parse dripproxy YAML configs."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml

from dripproxy.config.schema import AppConfig, parse_config


DEFAULT_CONFIG_PATH = Path(__file__).with_name("defaults.yml")
CONFIG_PATH_ENV = "DRIPPROXY_CONFIG"
PROXY_OVERRIDE_KEYS = ("chunk_size", "jitter_range", "release_interval_ms")
_ENV_REF = re.compile(r"\$\{(?P<name>[A-Za-z_]\w*)(?::-(?P<fallback>[^}]*))?\}")


def resolve_config_path(path: Path | None = None) -> Path:
    """Explicit path first, then ``$DRIPPROXY_CONFIG``, then the bundled defaults."""
    if path is not None:
        return path
    from_env = os.environ.get(CONFIG_PATH_ENV, "").strip()
    if from_env:
        return Path(from_env)
    return DEFAULT_CONFIG_PATH


def load_config(
    path: Path | None = None,
    *,
    proxy_overrides: dict[str, int | None] | None = None,
) -> AppConfig:
    """Parse a config file, letting ``proxy_overrides`` win over its proxy section.

    Overrides with a ``None`` value are ignored. A ``seed`` override switches
    the jitter to the seeded kind. Everything is validated once, by
    :func:`parse_config`.
    """
    config_path = resolve_config_path(path)
    if not config_path.is_file():
        raise FileNotFoundError(f"config file does not exist: {config_path}")
    document = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    if document is None:
        document = {}
    if not isinstance(document, dict):
        raise ValueError(f"config root must be a mapping: {config_path}")
    expanded = _expand(document)
    if proxy_overrides:
        _override_proxy(expanded, proxy_overrides)
    return parse_config(expanded)


def write_starter_config(path: Path, force: bool = False) -> Path:
    if path.exists() and not force:
        raise FileExistsError(f"config already exists: {path}")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(DEFAULT_CONFIG_PATH.read_text(encoding="utf-8"), encoding="utf-8")
    return path


def _override_proxy(document: dict[str, Any], overrides: dict[str, int | None]) -> None:
    proxy = document.setdefault("proxy", {})
    if not isinstance(proxy, dict):
        raise ValueError("'proxy' must be an object")
    for key in PROXY_OVERRIDE_KEYS:
        if overrides.get(key) is not None:
            proxy[key] = overrides[key]
    seed = overrides.get("seed")
    if seed is not None:
        proxy["jitter"] = {"kind": "seeded", "seed": seed}


def _expand(node: Any) -> Any:
    if isinstance(node, dict):
        return {key: _expand(value) for key, value in node.items()}
    if isinstance(node, list):
        return [_expand(value) for value in node]
    if isinstance(node, str) and "${" in node:
        return _ENV_REF.sub(_env_value, node)
    return node


def _env_value(match: re.Match[str]) -> str:
    name = match.group("name")
    value = os.environ.get(name)
    if value is None:
        value = match.group("fallback")
    if value is None:
        raise ValueError(f"environment variable {name} is not set and {match.group(0)} has no default")
    return value
