"""Gateway client configuration loading and validation."""

from __future__ import annotations

import json
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, ClassVar, Dict, Iterable, Literal

import yaml
from pydantic import AnyUrl, Field, NonNegativeInt, PositiveFloat, PositiveInt
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from gateway.protocol.scanner import DEFAULT_MAX_DEPTH, MAX_NESTING_DEPTH

DEFAULT_CONFIG_LOCATIONS: tuple[Path, ...] = (
    Path("/etc/gateway-client/gateway.yaml"),
    Path("/etc/gateway-client/gateway.yml"),
    Path("./config/gateway.yaml"),
    Path("./config/gateway.yml"),
)


class GatewaySettings(BaseSettings):
    """Validated settings for the gateway client."""

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix="GATEWAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Connection + identity
    gateway_url: AnyUrl = Field(
        default="wss://gateway.discord.gg/?v=10&encoding=json",
        description="Gateway WebSocket endpoint used for fresh connections.",
    )
    token: str | None = Field(
        default=None,
        description="Bot token sent with identify and resume.",
        repr=False,
    )
    intents: NonNegativeInt = Field(
        default=513,
        description="Intent bitmask sent with identify.",
    )
    client_name: str = Field(
        default="gateway-client",
        description="Value reported for os/browser/device in identify properties.",
    )
    transport: Literal["dummy", "websocket"] = Field(
        default="websocket",
        description="Transport implementation to use.",
    )

    # Polling & timeouts
    poll_timeout_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Default upper bound for one poll() wait.",
    )
    open_timeout_seconds: PositiveFloat = Field(
        default=10.0,
        description="Timeout for opening the transport.",
    )
    close_timeout_seconds: PositiveFloat = Field(
        default=1.0,
        description="Upper bound for the graceful close handshake before resources are released.",
    )

    # Heartbeat & reliability
    heartbeat_jitter_ratio: float = Field(
        default=1.0,
        description="Share of the interval over which the first heartbeat is randomised (0 disables jitter).",
    )
    heartbeat_ack_grace_ms: NonNegativeInt = Field(
        default=5000,
        description="Extra time past the interval to wait for a heartbeat ack before reconnecting.",
    )
    reconnect_base_delay_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Base delay for transport reconnection backoff.",
    )
    reconnect_max_delay_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Maximum delay for transport reconnection backoff.",
    )
    reconnect_jitter: float = Field(
        default=0.2,
        ge=0,
        le=1,
        description="Jitter factor applied to reconnection backoff (0.0-1.0).",
    )
    fatal_close_codes: list[int] = Field(
        default_factory=lambda: [4004],
        description="Close codes that end the connection for good.",
    )
    session_reset_close_codes: list[int] = Field(
        default_factory=lambda: [4007, 4009],
        description="Close codes after which the session cannot be resumed.",
    )

    # Buffers & parsing
    reassembly_initial_capacity: NonNegativeInt = Field(
        default=65536,
        description="Initial reassembly buffer size in bytes.",
    )
    max_message_bytes: NonNegativeInt = Field(
        default=0,
        description="Upper bound for one inbound message; 0 disables the bound.",
    )
    max_nesting_depth: PositiveInt = Field(
        default=DEFAULT_MAX_DEPTH,
        le=MAX_NESTING_DEPTH,
        description="Maximum JSON nesting depth accepted by the envelope scanner.",
    )

    # Dispatch
    dispatch_queue_max: NonNegativeInt = Field(
        default=0,
        description="Capacity of the dispatch event queue; 0 means unbounded.",
    )
    dispatch_queue_overflow: Literal["block", "drop_new", "drop_oldest"] = Field(
        default="block",
        description="Policy applied when the dispatch event queue is full.",
    )
    dispatch_timeout_seconds: float = Field(
        default=0,
        ge=0,
        description="Per-handler timeout for dispatch handlers; 0 disables it.",
    )

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Minimum log level for the gateway process.",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        if isinstance(value, str):
            return value.upper()
        return value

    @field_validator("heartbeat_jitter_ratio")
    @classmethod
    def _check_jitter_ratio(cls, value: float) -> float:
        if not 0.0 <= value <= 1.0:
            raise ValueError("heartbeat_jitter_ratio must be within [0, 1]")
        return value

    config_path: Path | None = Field(
        default=None,
        description="Resolved path to the on-disk config that seeded the settings.",
        exclude=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[GatewaySettings],
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
    def _yaml_settings_source(settings_cls: type[GatewaySettings] | None = None) -> Dict[str, Any]:
        candidates: Iterable[Path] = GatewaySettings._resolve_candidate_paths()

        for path in candidates:
            data = GatewaySettings._load_file(path)
            if data is not None:
                data.setdefault("config_path", path)
                return data
        return {}

    @staticmethod
    def _resolve_candidate_paths() -> Iterable[Path]:
        explicit = os.getenv("GATEWAY_CONFIG_FILE")
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
            raise RuntimeError(f"Failed to read gateway config file {path}") from exc
        except (yaml.YAMLError, json.JSONDecodeError) as exc:
            raise ValueError(f"Invalid gateway config file {path}") from exc

        if raw is None:
            return {}
        if not isinstance(raw, dict):
            raise ValueError(f"Gateway config file {path} must contain a mapping at top level.")
        return raw


@lru_cache()
def get_settings() -> GatewaySettings:
    """Return memoized gateway settings."""

    return GatewaySettings()
