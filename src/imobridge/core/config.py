"""
Dynaconf-powered configuration loader with Pydantic validation.

Settings are layered: built-in defaults, an optional ``config.yaml`` in the
configuration directory, ``IMOBRIDGE_*`` environment variables, and finally
command line overrides applied through `ConfigService.apply_changes`.
"""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Any, Literal

from dynaconf import Dynaconf
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

CONFIG_FILENAMES = ("config.yaml",)
DEFAULT_CONFIG_DIR = Path.home() / ".config" / "imo-bridge"
DEFAULT_PORT = 6631
DEFAULT_STATUS_FILE = Path(tempfile.gettempdir()) / "imo-current.txt"

InputMethodName = Literal["ibus", "fcitx", "fcitx5"]
OutputMode = Literal["stdout", "native-message", "websocket"]


def _lower_keys(raw: Any) -> Any:
    """Dynaconf upper-cases top-level keys; models expect lower-case names."""
    if isinstance(raw, dict):
        return {str(key).lower(): _lower_keys(value) for key, value in raw.items()}
    if isinstance(raw, list):
        return [_lower_keys(item) for item in raw]
    return raw


def _deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge dictionaries without mutating the originals."""
    result: dict[str, Any] = {**base}
    for key, value in updates.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


class ConfigError(RuntimeError):
    """Raised when configuration files or overrides are invalid."""


class DebounceSettings(BaseModel):
    """Quiet windows for publication and idle shutdown."""

    model_config = ConfigDict(extra="ignore")

    publish_seconds: float = Field(default=0.05, gt=0.0)
    idle_shutdown_seconds: float = Field(default=30.0, gt=0.0)


class WebsocketSettings(BaseModel):
    """WebSocket broadcast server configuration."""

    model_config = ConfigDict(extra="ignore")

    host: str = Field(default="127.0.0.1")
    serve_http: bool = Field(default=True)


class NativeMessageSettings(BaseModel):
    """Length-framed stdio transport configuration."""

    model_config = ConfigDict(extra="ignore")

    max_frame_bytes: int = Field(default=64 * 1024 * 1024, gt=0)


class BridgeSettings(BaseModel):
    """Validated runtime settings for one bridge process."""

    model_config = ConfigDict(extra="ignore")

    im_name: InputMethodName | None = Field(default=None)
    mode: OutputMode = Field(default="stdout")
    port: int = Field(default=DEFAULT_PORT, ge=0, le=65535)
    verbose: bool = Field(default=False)
    xinputrc: Path = Field(default_factory=lambda: Path.home() / ".xinputrc")
    status_file: Path | None = Field(default=DEFAULT_STATUS_FILE)
    log_level: str = Field(default="INFO")
    log_file: Path | None = Field(default=None)
    debounce: DebounceSettings = Field(default_factory=DebounceSettings)
    websocket: WebsocketSettings = Field(default_factory=WebsocketSettings)
    native_message: NativeMessageSettings = Field(default_factory=NativeMessageSettings)

    @field_validator("im_name", mode="before")
    @classmethod
    def _blank_im_name(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("status_file", "log_file", mode="before")
    @classmethod
    def _blank_path(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("xinputrc", "status_file", "log_file")
    @classmethod
    def _expand_user(cls, value: Path | None) -> Path | None:
        return value.expanduser() if value is not None else None


class ConfigService:
    """
    Runtime facade for loading, validating, and overriding configuration.
    """

    def __init__(
        self,
        *,
        config_dir: str | Path | None = None,
        settings: Dynaconf | None = None,
    ) -> None:
        self._config_dir = Path(config_dir) if config_dir else DEFAULT_CONFIG_DIR
        settings_files = [self._config_dir / name for name in CONFIG_FILENAMES]
        existing_files = [str(path) for path in settings_files if path.exists()]
        self._settings = settings or Dynaconf(
            envvar_prefix="IMOBRIDGE",
            settings_files=existing_files,
            load_dotenv=False,
            environments=False,
        )
        self._overrides: dict[str, Any] = {}
        self._snapshot = self._build_snapshot()

    @property
    def config_dir(self) -> Path:
        return self._config_dir

    @property
    def snapshot(self) -> BridgeSettings:
        """Latest validated settings."""
        return self._snapshot

    def refresh(self) -> BridgeSettings:
        """Reload configuration files and re-apply the stored overrides."""
        self._settings.reload()
        self._snapshot = self._build_snapshot()
        return self._snapshot

    def apply_changes(self, changes: dict[str, Any]) -> BridgeSettings:
        """
        Merge overrides (typically command line flags) on top of the loaded files.

        ``None`` values are ignored so unset flags do not mask file values.
        """
        filtered = {key: value for key, value in changes.items() if value is not None}
        self._overrides = _deep_merge(self._overrides, filtered)
        self._snapshot = self._build_snapshot()
        return self._snapshot

    def _build_snapshot(self) -> BridgeSettings:
        raw = _lower_keys(self._settings.as_dict())
        data = _deep_merge(raw, self._overrides)
        try:
            return BridgeSettings.model_validate(data)
        except ValidationError as exc:
            raise ConfigError(f"Configuration validation failed: {exc}") from exc


__all__ = [
    "BridgeSettings",
    "ConfigError",
    "ConfigService",
    "DebounceSettings",
    "InputMethodName",
    "NativeMessageSettings",
    "OutputMode",
    "WebsocketSettings",
]
