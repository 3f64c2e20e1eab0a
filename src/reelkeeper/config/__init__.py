"""Configuration management for Reelkeeper."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

import yaml

from .exceptions import ConfigError
from .models import ReelkeeperConfig
from .resolver import (
    ENV_PREFIX,
    env_overrides,
    flatten_for_env,
    merge_overrides,
    resolve_with_precedence,
)

DEFAULT_CONFIG_PATH = Path("~/.reelkeeper/config.yaml")
STAMP_PREFIX = "# Last updated:"
_HEADER_LINES = (
    "# Reelkeeper configuration file",
    "# Edit by hand or with `reelkeeper config set KEY --value VALUE`.",
    f"# Environment variables named {ENV_PREFIX}SECTION__KEY override these values.",
)


class ConfigManager:
    """Read, validate and persist the YAML configuration file.

    The directory holding the file doubles as the state directory; ledgers
    and download staging default to folders beside it.
    """

    def __init__(
        self,
        config_path: Path | None = None,
        *,
        env: Mapping[str, str] | None = None,
    ) -> None:
        self._config_path = (config_path or DEFAULT_CONFIG_PATH).expanduser()
        self._env = os.environ if env is None else env

    @property
    def config_path(self) -> Path:
        return self._config_path

    @property
    def state_dir(self) -> Path:
        """Directory holding the configuration file (``~/.reelkeeper``)."""
        return self._config_path.parent

    def load(
        self,
        *,
        cli_overrides: Mapping[str, Any] | None = None,
        include_env: bool = True,
        ensure_file: bool = True,
        env_overrides: Mapping[str, str] | None = None,
    ) -> ReelkeeperConfig:
        """Return the effective configuration.

        Args:
            cli_overrides: Dotted-key overrides from the command line.
            include_env: Whether ``REELKEEPER__`` variables are applied.
            ensure_file: Create the file with defaults when it is missing.
            env_overrides: Environment to read instead of ``os.environ``.

        Raises:
            ConfigError: If the file is unreadable or a value is invalid.
        """
        if ensure_file:
            self.ensure_exists()
        environment = None
        if include_env:
            environment = _env_layer(self._env if env_overrides is None else env_overrides)
        return resolve_with_precedence(
            defaults=ReelkeeperConfig(),
            file_overrides=self.load_file_overrides(),
            env_overrides=environment,
            cli_overrides=cli_overrides,
        )

    def load_file_overrides(self) -> dict[str, Any]:
        """Return the mapping stored in the file; empty when there is no file."""
        if not self._config_path.exists():
            return {}
        try:
            data = yaml.safe_load(self._config_path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise ConfigError(f"Failed to parse configuration file: {exc}") from exc
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError("Configuration file must contain a mapping at the top level.")
        return data

    def read_text(self) -> str:
        if not self._config_path.exists():
            return ""
        return self._config_path.read_text(encoding="utf-8")

    def save(self, config: ReelkeeperConfig | Mapping[str, Any]) -> None:
        """Validate and write ``config``; invalid data never reaches the file.

        Raises:
            ConfigError: If the values do not form a valid configuration.
        """
        if isinstance(config, ReelkeeperConfig):
            data = config.model_dump(mode="python")
        else:
            data = dict(config)
            resolve_with_precedence(defaults=ReelkeeperConfig(), file_overrides=data)
        self._write(data)

    def set_value(self, key: str, value: Any) -> dict[str, Any]:
        """Store ``value`` under the dotted ``key`` and return the new file mapping.

        Raises:
            ConfigError: If the key is empty or the resulting configuration is invalid.
        """
        segments = [segment.strip() for segment in key.split(".") if segment.strip()]
        if not segments:
            raise ConfigError("KEY must be a dotted path such as 'organization.bucket_strategy'.")
        data = merge_overrides(self.load_file_overrides(), {".".join(segments): value})
        self.save(data)
        return data

    def ensure_exists(self) -> Path:
        """Write the default configuration unless a file is already present."""
        if not self._config_path.exists():
            self._write(ReelkeeperConfig().model_dump(mode="python"))
        return self._config_path

    def _write(self, data: Mapping[str, Any]) -> None:
        stamp = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
        lines = [*_HEADER_LINES, f"{STAMP_PREFIX} {stamp}"]
        body = yaml.safe_dump(dict(data), sort_keys=False)
        self._config_path.parent.mkdir(parents=True, exist_ok=True)
        self._config_path.write_text("\n".join(lines) + "\n" + body, encoding="utf-8")


def _env_layer(env: Mapping[str, str]) -> dict[str, Any] | None:
    return env_overrides(env) or None


__all__ = [
    "ConfigManager",
    "DEFAULT_CONFIG_PATH",
    "STAMP_PREFIX",
    "ReelkeeperConfig",
    "resolve_with_precedence",
    "env_overrides",
    "flatten_for_env",
    "ConfigError",
]
