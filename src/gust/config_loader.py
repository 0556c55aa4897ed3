"""Load GustConfig from gust.yaml / gust.toml if present.

Merges file config with keyword overrides. Overrides take precedence.
"""

from __future__ import annotations

import tomllib
from dataclasses import fields
from typing import TYPE_CHECKING

import yaml

from gust._errors import ConfigError
from gust.config import GustConfig

if TYPE_CHECKING:
    from pathlib import Path

_KNOWN_KEYS = frozenset(f.name for f in fields(GustConfig))


def load_config(root: Path, **overrides: object) -> GustConfig:
    """Load GustConfig from root, optionally merging gust.yaml.

    Looks for gust.yaml, gust.yml, or gust.toml in root. If found, loads
    and merges with overrides. Overrides take precedence.
    """
    file_config = _read_gust_config(root)
    merged = {**file_config, **overrides}
    return GustConfig(**merged)  # type: ignore[arg-type]


def _read_gust_config(root: Path) -> dict[str, object]:
    """Read gust config from yaml/toml if present. Returns empty dict otherwise."""
    for name in ("gust.yaml", "gust.yml"):
        path = root / name
        if path.is_file():
            return _parse_yaml(path)
    toml_path = root / "gust.toml"
    if toml_path.is_file():
        return _parse_toml(toml_path)
    return {}


def _parse_yaml(path: Path) -> dict[str, object]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except (OSError, yaml.YAMLError) as exc:
        msg = f"Cannot read {path.name}: {exc}"
        raise ConfigError(msg) from exc
    if not isinstance(data, dict):
        msg = f"{path.name} must contain a mapping, got {type(data).__name__}"
        raise ConfigError(msg)
    return _flatten_gust_section(data)


def _parse_toml(path: Path) -> dict[str, object]:
    try:
        data = tomllib.loads(path.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError) as exc:
        msg = f"Cannot read {path.name}: {exc}"
        raise ConfigError(msg) from exc
    return _flatten_gust_section(data)


def _flatten_gust_section(data: dict[str, object]) -> dict[str, object]:
    """Extract gust.* keys into top-level config; top-level keys lose to the section."""
    result: dict[str, object] = {
        k: v for k, v in data.items() if k != "gust" and k in _KNOWN_KEYS
    }
    section = data.get("gust")
    if isinstance(section, dict):
        for k, v in section.items():
            if k in _KNOWN_KEYS:
                result[k] = v
    return result
