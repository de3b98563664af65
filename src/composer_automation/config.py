"""Configuration loading from environment variables and JSON files."""

import json
import os
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path

from composer_automation.errors import ConfigError
from composer_automation.models import DeploymentSettings, LogLevel, normalize_target

DEFAULT_PORT = 3000


def default_cursor_path() -> str:
    if sys.platform == "darwin":
        return "/Applications/Cursor.app/Contents/MacOS/Cursor"
    if sys.platform == "win32":
        return "C:\\Program Files\\Cursor\\Cursor.exe"
    return "/usr/bin/cursor"


@dataclass(frozen=True)
class Configuration:
    cursor_path: str = field(default_factory=default_cursor_path)
    working_directory: Path = field(default_factory=lambda: Path.cwd() / "output")
    deployment_settings: DeploymentSettings = field(default_factory=DeploymentSettings)
    log_level: LogLevel = LogLevel.INFO
    service_mode: bool = False
    port: int | None = None
    host: str = "127.0.0.1"
    launch_timeout: float = 5.0
    activation_timeout: float = 3.0
    input_timeout: float = 2.0
    close_timeout: float = 5.0
    completion_timeout: float = 0.0
    stability_window: float = 2.0
    job_retention: float = 3600.0
    slack_bot_token: str | None = None
    slack_channel: str | None = None

    @property
    def listen_port(self) -> int:
        return self.port if self.port is not None else DEFAULT_PORT

    @classmethod
    def from_env(cls) -> "Configuration":
        config = cls()

        if cursor := os.environ.get("CURSOR_PATH"):
            config = replace(config, cursor_path=cursor)

        if work_dir := os.environ.get("CCA_WORKING_DIR"):
            config = replace(config, working_directory=Path(work_dir).resolve())

        if level := os.environ.get("CCA_LOG_LEVEL"):
            config = replace(config, log_level=_log_level(level))

        if port := os.environ.get("CCA_PORT"):
            config = replace(config, port=_int("CCA_PORT", port))

        if timeout := os.environ.get("CCA_COMPLETION_TIMEOUT"):
            config = replace(config, completion_timeout=_float("CCA_COMPLETION_TIMEOUT", timeout))

        if channel := os.environ.get("CCA_SLACK_CHANNEL"):
            config = replace(config, slack_channel=channel)

        return replace(config, slack_bot_token=os.environ.get("SLACK_BOT_TOKEN"))

    @classmethod
    def from_dict(cls, data: dict, base: "Configuration | None" = None) -> "Configuration":
        """Merge a JSON configuration object over ``base`` (defaults if omitted)."""
        if not isinstance(data, dict):
            raise ConfigError("Configuration must be a JSON object")

        config = base or cls()
        updates = {}
        for key, (attr, convert) in _JSON_FIELDS.items():
            if key in data and data[key] is not None:
                updates[attr] = convert(key, data[key])

        if "deploymentSettings" in data and data["deploymentSettings"] is not None:
            updates["deployment_settings"] = _deployment_settings(data["deploymentSettings"])

        return replace(config, **updates)

    def with_overrides(self, **overrides) -> "Configuration":
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})

    def ensure_working_directory(self) -> Path:
        try:
            self.working_directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ConfigError(
                f"Working directory {self.working_directory} cannot be created: {e}"
            ) from e
        return self.working_directory


def load_config(path: str | Path | None = None, **overrides) -> Configuration:
    """Environment defaults, then the JSON file at ``path``, then CLI overrides."""
    config = Configuration.from_env()

    if path is not None:
        config_path = Path(path).resolve()
        if not config_path.exists():
            raise ConfigError(f"Configuration file not found: {config_path}")
        try:
            data = json.loads(config_path.read_text())
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigError(f"Failed to parse configuration file {config_path}: {e}") from e
        config = Configuration.from_dict(data, base=config)

    return config.with_overrides(**overrides)


def get_config() -> Configuration:
    return Configuration.from_env()


# ── Converters ────────────────────────────────────────────────────────────────


def _str(key: str, value) -> str:
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{key} must be a non-empty string")
    return value


def _path(key: str, value) -> Path:
    return Path(_str(key, value)).resolve()


def _bool(key: str, value) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"{key} must be a boolean")
    return value


def _int(key: str, value) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} must be an integer") from e


def _float(key: str, value) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{key} must be a number")
    try:
        result = float(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{key} must be a number") from e
    if result < 0:
        raise ConfigError(f"{key} must not be negative")
    return result


def _log_level(value, key: str = "logLevel") -> LogLevel:
    try:
        return LogLevel.parse(value)
    except ValueError as e:
        raise ConfigError(f"Invalid {key}: {value}") from e


def _deployment_settings(value) -> DeploymentSettings:
    if not isinstance(value, dict):
        raise ConfigError("deploymentSettings must be an object")

    targets = value.get("targets") or []
    if not isinstance(targets, list):
        raise ConfigError("deploymentSettings.targets must be a list")
    credentials = value.get("credentials") or {}
    if not isinstance(credentials, dict):
        raise ConfigError("deploymentSettings.credentials must be an object")
    options = value.get("options") or {}
    if not isinstance(options, dict):
        raise ConfigError("deploymentSettings.options must be an object")

    return DeploymentSettings(
        targets=tuple(normalize_target(t) for t in targets),
        credentials={str(k): str(v) for k, v in credentials.items()},
        options=dict(options),
    )


_JSON_FIELDS = {
    "cursorPath": ("cursor_path", _str),
    "workingDirectory": ("working_directory", _path),
    "logLevel": ("log_level", lambda key, value: _log_level(value, key)),
    "serviceMode": ("service_mode", _bool),
    "port": ("port", _int),
    "host": ("host", _str),
    "launchTimeout": ("launch_timeout", _float),
    "activationTimeout": ("activation_timeout", _float),
    "inputTimeout": ("input_timeout", _float),
    "closeTimeout": ("close_timeout", _float),
    "completionTimeout": ("completion_timeout", _float),
    "stabilityWindow": ("stability_window", _float),
    "jobRetention": ("job_retention", _float),
    "slackChannel": ("slack_channel", _str),
}
