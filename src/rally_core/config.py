"""Settings for the Rally MCP server, loaded from environment variables.

A .env file in the working directory is loaded first (existing environment
variables win). Required: RALLY_API_KEY, RALLY_WORKSPACE.
"""
import logging
import os
from functools import lru_cache
from typing import Mapping, Optional

import pydantic
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

from .errors import ConfigurationError

logger = logging.getLogger("rally-core.config")

DEFAULT_BASE_URL = "https://rally1.rallydev.com/slm/webservice/v2.0"

# Settings field -> environment variable
ENV_VARS: dict[str, str] = {
    "rally_api_key": "RALLY_API_KEY",
    "rally_workspace": "RALLY_WORKSPACE",
    "rally_project": "RALLY_PROJECT",
    "rally_base_url": "RALLY_BASE_URL",
    "workspace_fallback": "RALLY_WORKSPACE_FALLBACK",
    "request_timeout": "REQUEST_TIMEOUT",
    "validation_timeout": "VALIDATION_TIMEOUT",
    "host": "HOST",
    "port": "PORT",
    "log_level": "LOG_LEVEL",
    "cors_origins": "CORS_ORIGINS",
}

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class Settings(BaseModel):
    """Runtime configuration."""

    rally_api_key: str = Field(..., min_length=1, repr=False)
    rally_workspace: str = Field(..., min_length=1)
    rally_project: Optional[str] = None
    rally_base_url: str = DEFAULT_BASE_URL
    workspace_fallback: bool = True
    request_timeout: float = Field(60.0, gt=0, description="Per-call timeout in seconds")
    validation_timeout: float = Field(30.0, gt=0, description="Startup validation timeout in seconds")
    host: str = "127.0.0.1"
    port: int = Field(3000, gt=0, lt=65536)
    log_level: str = "info"
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])

    model_config = ConfigDict(frozen=True)

    @field_validator("rally_project", mode="before")
    @classmethod
    def blank_project_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, value):
        level = str(value).strip().lower()
        if level not in LOG_LEVELS:
            raise ValueError(f"must be one of: {', '.join(LOG_LEVELS)}")
        return level

    @field_validator("cors_origins", mode="before")
    @classmethod
    def split_origins(cls, value):
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @property
    def project_ref(self) -> Optional[str]:
        """Default project reference, e.g. /project/12345."""
        return f"/project/{self.rally_project}" if self.rally_project else None

    @property
    def logging_level(self) -> int:
        return LOG_LEVELS[self.log_level]


def load_settings(environ: Optional[Mapping[str, str]] = None) -> Settings:
    """Build Settings from an environment mapping (defaults to os.environ).

    Raises:
        ConfigurationError: if a required variable is missing or a value is invalid
    """
    if environ is None:
        environ = os.environ

    values = {
        field: environ[var]
        for field, var in ENV_VARS.items()
        if environ.get(var) not in (None, "")
    }

    try:
        return Settings(**values)
    except pydantic.ValidationError as e:
        missing = [
            ENV_VARS[str(err["loc"][0])]
            for err in e.errors()
            if err["type"] == "missing"
        ]
        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}") from e

        problems = "; ".join(
            f"{ENV_VARS.get(str(err['loc'][0]), err['loc'][0])}: {err['msg']}"
            for err in e.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from e


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load process settings once, reading .env first."""
    load_dotenv()
    settings = load_settings()
    logger.info(
        f"Loaded settings: workspace={settings.rally_workspace!r}, "
        f"project={settings.rally_project!r}, base_url={settings.rally_base_url}"
    )
    return settings
