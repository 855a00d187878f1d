import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

import yaml

from open_loop.errors import ConfigurationError

DEFAULT_CONFIG_FILE = ".opencode/open-loop.yaml"


class Config:
    """
    Configuration loaded from a YAML file.
    """

    def __init__(self, config_path: Optional[Union[str, Path]] = None):
        self.config_path = Path(config_path) if config_path else None
        self.config = self.load_config()

    def load_config(self) -> dict:
        """
        Loads the configuration from a YAML file.

        A missing file yields an empty configuration so that every
        setting falls back to its default.

        Returns:
            A dictionary containing the configuration.
        """
        if self.config_path is None or not self.config_path.exists():
            return {}
        try:
            with open(self.config_path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {self.config_path}: {e}") from e
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Expected a mapping at the top of {self.config_path}, "
                f"got {type(data).__name__}"
            )
        return data

    def get(self, key: str, default=None):
        """
        Gets a configuration value.

        Args:
            key: Dotted key of the configuration value (e.g. "loop.max_iterations").
            default: The default value to return if the key is not found.

        Returns:
            The configuration value.
        """
        keys = key.split(".")
        value = self.config
        for k in keys:
            if isinstance(value, dict):
                value = value.get(k, default)
            else:
                return default
        return value


@dataclass
class LoopSettings:
    """Resolved settings for one workspace."""

    state_file: str = ".opencode/open-loop.state.json"
    completion_promise: str = "DONE"
    max_iterations: int = 0  # 0 = unlimited
    strict_state: bool = False

    # Prompt submission policy
    submit_max_attempts: int = 1
    submit_backoff_seconds: float = 2.0
    submit_backoff_multiplier: float = 2.0

    server_url: str = "http://127.0.0.1:4096"
    request_timeout: float = 600.0

    log_file: str = ".opencode/open-loop.log"

    @classmethod
    def from_config(cls, config: Config) -> "LoopSettings":
        """Build settings from a Config, applying defaults and env overrides."""
        defaults = cls()
        settings = cls(
            state_file=str(config.get("loop.state_file", defaults.state_file)),
            completion_promise=str(
                config.get("loop.completion_promise", defaults.completion_promise)
            ),
            max_iterations=_as_int(
                config.get("loop.max_iterations", defaults.max_iterations),
                "loop.max_iterations",
            ),
            strict_state=_as_bool(
                config.get("loop.strict_state", defaults.strict_state),
                "loop.strict_state",
            ),
            submit_max_attempts=_as_int(
                config.get("submit.max_attempts", defaults.submit_max_attempts),
                "submit.max_attempts",
            ),
            submit_backoff_seconds=_as_float(
                config.get("submit.backoff_seconds", defaults.submit_backoff_seconds),
                "submit.backoff_seconds",
            ),
            submit_backoff_multiplier=_as_float(
                config.get("submit.backoff_multiplier", defaults.submit_backoff_multiplier),
                "submit.backoff_multiplier",
            ),
            server_url=str(config.get("server.url", defaults.server_url)),
            request_timeout=_as_float(
                config.get("server.timeout", defaults.request_timeout),
                "server.timeout",
            ),
            log_file=str(config.get("logging.file", defaults.log_file)),
        )

        env_url = os.getenv("OPENCODE_SERVER_URL")
        if env_url:
            settings.server_url = env_url

        if settings.max_iterations < 0:
            raise ConfigurationError("loop.max_iterations must be >= 0")
        if settings.submit_max_attempts < 1:
            raise ConfigurationError("submit.max_attempts must be >= 1")
        return settings


def load_settings(
    workspace: Union[str, Path], config_path: Optional[Union[str, Path]] = None
) -> LoopSettings:
    """Load settings for a workspace, using the default config file if none is given."""
    if config_path is None:
        config_path = Path(workspace) / DEFAULT_CONFIG_FILE
    return LoopSettings.from_config(Config(config_path))


def _as_int(value, key: str) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"{key} must be an integer, got {value!r}")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{key} must be an integer, got {value!r}") from e


def _as_float(value, key: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"{key} must be a number, got {value!r}") from e


def _as_bool(value, key: str) -> bool:
    # YAML already maps true/false/yes/no; anything else is a typo
    if not isinstance(value, bool):
        raise ConfigurationError(f"{key} must be true or false, got {value!r}")
    return value
