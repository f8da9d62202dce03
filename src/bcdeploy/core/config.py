"""Configuration management for bcdeploy."""

from pathlib import Path
from typing import Optional, Union

import structlog
import yaml
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from bcdeploy.core.exceptions import ConfigurationError
from bcdeploy.core.models import PublishOptions

logger = structlog.get_logger()


class Settings(BaseSettings):
    """Process-level settings, read from ``BCDEPLOY_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="BCDEPLOY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Working area
    work_root: Optional[Path] = Field(
        None,
        description="Directory under which working areas are created (system temp dir if unset)",
    )

    # Development endpoint
    verify_local_tls: bool = Field(
        False,
        description="Verify certificates of local HTTPS development endpoints",
    )
    cloud_api_base_url: str = Field(
        "https://api.businesscentral.dynamics.com",
        description="Base URL of the cloud API",
    )

    # Staging
    download_chunk_size: int = Field(64 * 1024, description="Chunk size for streamed downloads and uploads")

    # Observability
    log_level: str = Field("INFO")
    log_format: str = Field("json")

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        if v not in ("json", "console"):
            raise ValueError(f"log_format must be 'json' or 'console', got: {v}")
        return v

    @field_validator("download_chunk_size")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("download_chunk_size must be positive")
        return v


def load_publish_options(path: Union[str, Path]) -> PublishOptions:
    """Load PublishOptions from a YAML publish profile.

    Raises:
        ConfigurationError: If the file cannot be read or the options are invalid
    """
    path = Path(path)
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigurationError(f"Cannot read publish profile {path}: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"Publish profile {path} must contain a mapping")

    try:
        options = PublishOptions(**data)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid publish profile {path}: {e}")

    logger.debug("Loaded publish profile", path=str(path))
    return options
