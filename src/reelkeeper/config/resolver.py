"""Merging of configuration layers: defaults, file, environment and CLI."""

from __future__ import annotations

from collections.abc import Mapping as MappingABC
from copy import deepcopy
from typing import Any, Dict, Iterable, Mapping

import yaml
from pydantic import ValidationError

from .exceptions import ConfigError
from .models import ReelkeeperConfig

ENV_PREFIX = "REELKEEPER__"


def resolve_with_precedence(
    *,
    defaults: ReelkeeperConfig,
    file_overrides: Mapping[str, Any] | None = None,
    env_overrides: Mapping[str, Any] | None = None,
    cli_overrides: Mapping[str, Any] | None = None,
) -> ReelkeeperConfig:
    """Layer the override sources over ``defaults`` and validate the result.

    Later layers win: file, then environment, then CLI. Keys may be nested
    mappings or dotted paths (``pipeline.max_items_per_run``).

    Raises:
        ConfigError: If a layer is malformed or the merged values are invalid.
    """
    merged: dict[str, Any] = defaults.model_dump(mode="python")
    layers = (("file", file_overrides), ("environment", env_overrides), ("cli", cli_overrides))
    for layer, overrides in layers:
        if overrides:
            merged = _merge(merged, _expand_dotted(overrides, layer))

    try:
        return ReelkeeperConfig.model_validate(merged)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration values: {exc}") from exc


def env_overrides(env: Mapping[str, str]) -> dict[str, Any]:
    """Collect ``REELKEEPER__SECTION__KEY`` variables into a nested mapping.

    Values are parsed as YAML so numbers, booleans and lists keep their type;
    values YAML cannot parse are kept as plain strings.
    """
    collected: dict[str, Any] = {}
    for name, raw in env.items():
        if not name.startswith(ENV_PREFIX):
            continue
        path = [part.lower() for part in name[len(ENV_PREFIX) :].split("__") if part]
        if not path:
            continue
        try:
            value: Any = yaml.safe_load(raw)
        except yaml.YAMLError:
            value = raw
        _set_path(collected, path, value, layer="environment")
    return collected


def flatten_for_env(config: ReelkeeperConfig) -> Dict[str, str]:
    """Render ``config`` as the environment variables that would reproduce it."""
    flat: Dict[str, str] = {}
    for path, value in _leaves(config.model_dump(mode="python"), ()):
        name = ENV_PREFIX + "__".join(part.upper() for part in path)
        if isinstance(value, list):
            flat[name] = yaml.safe_dump(value, default_flow_style=True).strip()
        elif value is None:
            flat[name] = "null"
        elif isinstance(value, bool):
            flat[name] = "true" if value else "false"
        else:
            flat[name] = str(value)
    return flat


def _leaves(
    data: Mapping[str, Any], prefix: tuple[str, ...]
) -> Iterable[tuple[tuple[str, ...], Any]]:
    for key, value in data.items():
        path = prefix + (str(key),)
        if isinstance(value, MappingABC):
            yield from _leaves(value, path)
        else:
            yield path, value


def merge_overrides(
    base: Mapping[str, Any], overrides: Mapping[str, Any], *, layer: str = "file"
) -> dict[str, Any]:
    """Return ``base`` with ``overrides`` (nested or dotted keys) merged on top."""
    return _merge(base, _expand_dotted(overrides, layer))


def _expand_dotted(overrides: Mapping[str, Any], layer: str) -> dict[str, Any]:
    if not isinstance(overrides, MappingABC):
        raise ConfigError(f"{layer.capitalize()} overrides must be a mapping.")
    expanded: dict[str, Any] = {}
    for key, value in overrides.items():
        if not isinstance(key, str):
            raise ConfigError(f"{layer.capitalize()} override keys must be strings.")
        if isinstance(value, MappingABC):
            value = _expand_dotted(value, layer)
        _set_path(expanded, key.split("."), value, layer=layer)
    return expanded


def _set_path(target: dict[str, Any], path: list[str], value: Any, *, layer: str) -> None:
    node = target
    for segment in path[:-1]:
        child = node.setdefault(segment, {})
        if not isinstance(child, dict):
            raise ConfigError(
                f"{layer.capitalize()} override for {'.'.join(path)} conflicts with {segment}."
            )
        node = child
    leaf = path[-1]
    if isinstance(value, dict) and isinstance(node.get(leaf), dict):
        node[leaf] = _merge(node[leaf], value)
    else:
        node[leaf] = value


def _merge(base: Mapping[str, Any], overrides: Mapping[str, Any]) -> dict[str, Any]:
    merged = deepcopy(dict(base))
    for key, value in overrides.items():
        current = merged.get(key)
        if isinstance(value, MappingABC) and isinstance(current, MappingABC):
            merged[key] = _merge(current, value)
        else:
            merged[key] = deepcopy(value)
    return merged


__all__ = [
    "ENV_PREFIX",
    "resolve_with_precedence",
    "env_overrides",
    "flatten_for_env",
    "merge_overrides",
]
