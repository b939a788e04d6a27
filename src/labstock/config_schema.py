from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from labstock.common.utils.settings_base import BaseSettings


class AppConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(default="labstock")
    env: Literal["dev", "prod", "local"] = Field(default="local")


class ServerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    host: str = Field(default="0.0.0.0")  # noqa: S104
    port: int = Field(default=8000, ge=1, le=65535)


class LoggingConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    renderer: Literal["json", "console"] = Field(default="json")


class DatabaseConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    url: str = Field(default="sqlite:///./labstock.db")
    echo: bool = Field(default=False)


class LedgerConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    lock_timeout_seconds: float = Field(default=5.0, gt=0.0)
    conflict_retry_attempts: int = Field(default=3, ge=1)
    conflict_retry_wait_min_seconds: float = Field(default=0.05, ge=0.0)
    conflict_retry_wait_max_seconds: float = Field(default=1.0, gt=0.0)


class ExpiryConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    critical_days: int = Field(default=7, ge=0)
    warning_days: int = Field(default=30, ge=0)

    @model_validator(mode="after")
    def _check_band_order(self) -> ExpiryConfig:
        if self.warning_days < self.critical_days:
            raise ValueError("expiry.warning_days must be >= expiry.critical_days")
        return self


class Settings(BaseSettings):
    """
    Root config schema.
    Matches YAML structure in config/*.yaml
    """

    app: AppConfig = Field(default_factory=AppConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    expiry: ExpiryConfig = Field(default_factory=ExpiryConfig)
