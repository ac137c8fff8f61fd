# app/config.py
"""Application settings: YAML file plus ``APP_``-prefixed environment overrides.

    http.port        -> APP_HTTP__PORT
    database.ssl_mode -> APP_DATABASE__SSL_MODE
    logger.level     -> APP_LOGGER__LEVEL

Environment variables win over the file. Settings are validated once at
startup and are immutable afterwards.
"""

from pathlib import Path
from typing import Literal, Optional, Tuple, Type, Union
from urllib.parse import quote_plus

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


CONFIG_FILE_NAME = "config.yaml"
DEFAULT_CONFIG_DIR = "config"

SSL_MODES = {"disable", "allow", "prefer", "require", "verify-ca", "verify-full"}


class ConfigError(Exception):
    """Configuration could not be loaded or is invalid."""


def _required(value: str, name: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError(f"missing {name}")
    return value


class HttpSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=0, le=65535)

    @field_validator("host")
    @classmethod
    def _host_present(cls, v: str) -> str:
        return _required(v, "http host")


class DatabaseSettings(BaseModel):
    # Blank defaults are validated too, so absent keys fail
    model_config = ConfigDict(frozen=True, validate_default=True)

    host: str = ""
    port: int = Field(default=5432, ge=1, le=65535)
    database: str = ""
    username: str = ""
    password: str = ""
    ssl_mode: str = "disable"
    max_conns: int = Field(default=10, ge=1)
    min_conns: int = Field(default=1, ge=0)
    connect_timeout: float = Field(default=10.0, gt=0)

    @field_validator("host", "database", "username")
    @classmethod
    def _connection_fields_present(cls, v: str, info) -> str:
        return _required(v, f"database {info.field_name}")

    @field_validator("ssl_mode")
    @classmethod
    def _known_ssl_mode(cls, v: str) -> str:
        if v not in SSL_MODES:
            raise ValueError(f"ssl_mode must be one of: {', '.join(sorted(SSL_MODES))}")
        return v

    @model_validator(mode="after")
    def _pool_bounds(self) -> "DatabaseSettings":
        if self.min_conns > self.max_conns:
            raise ValueError("min_conns must not exceed max_conns")
        return self

    @property
    def url(self) -> str:
        return (
            "postgresql+psycopg://"
            f"{quote_plus(self.username)}:{quote_plus(self.password)}"
            f"@{self.host}:{self.port}/{quote_plus(self.database)}"
        )


class LoggerSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: Literal["debug", "info", "warn", "error"] = "info"
    format: Literal["json", "text"] = "json"
    output: Literal["stdout", "stderr", "file"] = "stdout"
    file_path: Optional[str] = None
    add_source: bool = False
    service: str = "template"
    version: str = "1.0.0"
    environment: str = "development"


class Settings(BaseSettings):
    http: HttpSettings = Field(default_factory=HttpSettings)
    database: DatabaseSettings
    logger: LoggerSettings = Field(default_factory=LoggerSettings)

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_nested_delimiter="__",
        extra="ignore",
        frozen=True,
    )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # File values arrive as init kwargs and rank below the environment
        return env_settings, dotenv_settings, init_settings


def _read_file(path: Path) -> dict:
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"read config: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"decode config: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"decode config: {path} must contain a mapping")
    return data


def load_config(path: Union[str, Path] = DEFAULT_CONFIG_DIR) -> Settings:
    """Load ``<path>/config.yaml``, apply env overrides and validate."""
    data = _read_file(Path(path) / CONFIG_FILE_NAME)
    try:
        return Settings(**data)
    except ValidationError as e:
        raise ConfigError(f"invalid config: {e}") from e
