"""Configuration model and the file-backed config store."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Protocol

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from fleet_probe.errors import ConfigError


DEFAULT_API_BASE_URL = "https://api.rpcm.cloud"
DEFAULT_FORWARDED_HOST = "api.rpcm.cloud"

_MISSING = object()


class DatabaseConfig(BaseModel):
    """Connection info for the result store."""

    model_config = ConfigDict(extra="allow")

    path: str = Field(default="results.db", description="SQLite database file")


class Config(BaseModel):
    """Run configuration, including the persisted bearer credential."""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    credential: str = Field(default="", alias="auth", description="Bearer token")
    login_email: str = Field(default="", alias="login", description="Sign-in email")
    login_password: str = Field(default="", alias="password", description="Sign-in password")
    hosts: list[str] = Field(default_factory=list, description="Hosts to probe")
    lookback_days: int = Field(default=1, alias="days_delta", ge=0, description="Probe query window in days")
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)

    api_base_url: str = Field(default=DEFAULT_API_BASE_URL, description="Auth API base URL")
    forwarded_host: str = Field(default=DEFAULT_FORWARDED_HOST, description="X-Forwarded-Host for probes")
    probe_scheme: str = Field(default="https", description="Scheme used to reach hosts")
    batch_size: int = Field(default=10, ge=1, description="Hosts probed concurrently per batch")
    deadline_seconds: float = Field(default=180.0, gt=0, description="Hard per-request deadline")
    utc_offset_hours: float = Field(default=3.0, description="Offset used to render the lookback window")

    def with_credential(self, token: str) -> "Config":
        return self.model_copy(update={"credential": token})


class ConfigStore(Protocol):
    def load(self) -> Config: ...

    def save(self, config: Config) -> None: ...


def _env_int(name: str) -> int | None:
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return None
    try:
        return int(str(raw).strip())
    except ValueError:
        raise ConfigError(f"{name} must be an integer, got {raw!r}")


def _env_float(name: str) -> float | None:
    raw = os.getenv(name)
    if raw is None or not str(raw).strip():
        return None
    try:
        return float(str(raw).strip())
    except ValueError:
        raise ConfigError(f"{name} must be a number, got {raw!r}")


def env_overrides() -> dict[str, Any]:
    out: dict[str, Any] = {}
    batch_size = _env_int("FLEET_PROBE_BATCH_SIZE")
    if batch_size is not None:
        out["batch_size"] = batch_size
    deadline = _env_float("FLEET_PROBE_DEADLINE_SECONDS")
    if deadline is not None:
        out["deadline_seconds"] = deadline
    base_url = os.getenv("FLEET_PROBE_API_BASE_URL")
    if base_url and base_url.strip():
        out["api_base_url"] = base_url.strip()
    return out


def parse_config(data: Any) -> Config:
    if not isinstance(data, dict):
        raise ConfigError("Config must be a mapping")
    try:
        return Config.model_validate(data)
    except ValidationError as e:
        raise ConfigError(f"Invalid config: {e}") from e


def dump_config(config: Config) -> dict[str, Any]:
    # Written with the on-disk key names so other readers of the file keep working.
    return config.model_dump(by_alias=True, mode="json")


class FileConfigStore:
    """
    Reads and writes the config file.

    `.json` files are handled with json, everything else as YAML. Saves are
    atomic: the new content goes to a sibling temp file which then replaces
    the original.
    """

    def __init__(self, path: Path | str, *, use_env: bool = True) -> None:
        self.path = Path(path)
        self.use_env = use_env
        # File values shadowed by environment overrides, restored on save.
        self._shadowed: dict[str, Any] = {}

    @property
    def is_json(self) -> bool:
        return self.path.suffix.lower() == ".json"

    def _read_raw(self) -> Any:
        try:
            text = self.path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read config {self.path}: {e}") from e
        try:
            if self.is_json:
                return json.loads(text)
            return yaml.safe_load(text) or {}
        except (ValueError, yaml.YAMLError) as e:
            raise ConfigError(f"Cannot parse config {self.path}: {e}") from e

    def load(self) -> Config:
        data = self._read_raw()
        if not isinstance(data, dict):
            raise ConfigError("Config must be a mapping")
        self._shadowed = {}
        if self.use_env:
            overrides = env_overrides()
            for key in overrides:
                self._shadowed[key] = data.get(key, _MISSING)
            data = {**data, **overrides}
        return parse_config(data)

    def save(self, config: Config) -> None:
        payload = dump_config(config)
        for key, value in self._shadowed.items():
            if value is _MISSING:
                payload.pop(key, None)
            else:
                payload[key] = value
        if self.is_json:
            text = json.dumps(payload, ensure_ascii=False, indent=4)
        else:
            text = yaml.safe_dump(payload, sort_keys=False, allow_unicode=True)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(f"{self.path.name}.tmp")
        try:
            tmp.write_text(text, encoding="utf-8")
            tmp.replace(self.path)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise
