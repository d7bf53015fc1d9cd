"""Client configuration loading and validation."""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, ClassVar, Dict, Iterable

import yaml
from pydantic import Field, PositiveFloat, ValidationInfo, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_CONFIG_LOCATIONS: tuple[Path, ...] = (
    Path("/etc/xolib/client.yaml"),
    Path("/etc/xolib/client.yml"),
    Path("./config/xolib.yaml"),
    Path("./config/xolib.yml"),
)


class XoSettings(BaseSettings):
    """Validated settings for the management API client."""

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix="XO_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Endpoint
    url: str = Field(
        default="ws://localhost/",
        description="Server URL; http(s) schemes are mapped onto ws(s).",
    )
    api_path: str = Field(
        default="/api/",
        description="Path of the JSON-RPC endpoint, used when the URL has no path.",
    )

    # Reconnection
    reconnect_base_delay_seconds: PositiveFloat = Field(
        default=1.0,
        description="Base delay for transport reconnection backoff.",
    )
    reconnect_max_delay_seconds: PositiveFloat = Field(
        default=30.0,
        description="Maximum delay for transport reconnection backoff.",
    )
    reconnect_jitter: float = Field(
        default=0.2,
        description="Jitter factor applied to reconnection backoff (0.0-1.0).",
    )
    connect_timeout_seconds: PositiveFloat = Field(
        default=10.0,
        description="Seconds allowed for the WebSocket opening handshake.",
    )

    # Calls
    call_timeout_seconds: float = Field(
        default=0,
        description="Per-call response timeout; 0 disables the timeout.",
    )
    call_retry_delay_seconds: float = Field(
        default=0.05,
        description="Pause before reissuing a call that hit a dead link while still marked connected.",
    )
    session_error_codes: list[int] = Field(
        default_factory=lambda: [2],
        description="JSON-RPC error codes meaning the session is not authenticated.",
    )

    log_level: str = Field(
        default="INFO",
        description="Log level for host applications embedding the client.",
    )

    config_path: Path | None = Field(
        default=None,
        description="Resolved path to the on-disk config that seeded the settings.",
        exclude=True,
    )

    @field_validator("reconnect_jitter")
    @classmethod
    def _bound_jitter(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("reconnect_jitter must be between 0.0 and 1.0")
        return value

    @field_validator("call_timeout_seconds", "call_retry_delay_seconds")
    @classmethod
    def _non_negative_delay(cls, value: float, info: ValidationInfo) -> float:
        if value < 0:
            raise ValueError(f"{info.field_name} must not be negative")
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalise_level(cls, value: Any) -> Any:
        if isinstance(value, str):
            return value.upper()
        return value

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[XoSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            cls._yaml_settings_source,
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @staticmethod
    def _yaml_settings_source(settings_cls: type[XoSettings] | None = None) -> Dict[str, Any]:
        candidates: Iterable[Path] = XoSettings._resolve_candidate_paths()

        for path in candidates:
            data = XoSettings._load_file(path)
            if data is not None:
                data.setdefault("config_path", path)
                return data
        return {}

    @staticmethod
    def _resolve_candidate_paths() -> Iterable[Path]:
        explicit = os.getenv("XO_CONFIG_FILE")
        if explicit:
            yield Path(explicit).expanduser()
        yield from DEFAULT_CONFIG_LOCATIONS

    @staticmethod
    def _load_file(path: Path) -> Dict[str, Any] | None:
        if not path.is_file():
            return None
        suffix = path.suffix.lower()
        try:
            with path.open("r", encoding="utf-8") as handle:
                if suffix in {".yaml", ".yml"}:
                    raw = yaml.safe_load(handle)
                elif suffix == ".json":
                    raw = json.load(handle)
                else:
                    return None
        except OSError as exc:
            raise RuntimeError(f"Failed to read client config file {path}") from exc
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise ValueError(f"Invalid client config file {path}") from exc

        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise ValueError(f"Client config file {path} must contain a mapping at top level.")
        return raw


@lru_cache()
def get_settings() -> XoSettings:
    """Return memoized client settings."""

    return XoSettings()
