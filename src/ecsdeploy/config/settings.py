"""
Application settings using Pydantic.

Provides environment-based configuration loading with ECSDEPLOY_ prefix.
The deployment name also honours the plain ``STACK_NAME`` variable used by
existing deploy scripts.
"""

from functools import lru_cache

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_DEPLOYMENT_NAME = "appsignals-ecs-demo"


class Settings(BaseSettings):
    """Application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="ECSDEPLOY_",
        extra="ignore",
        populate_by_name=True,
    )

    # Seeds every resource name and lookup key
    deployment_name: str = Field(
        default=DEFAULT_DEPLOYMENT_NAME,
        validation_alias=AliasChoices("ECSDEPLOY_DEPLOYMENT_NAME", "STACK_NAME"),
    )

    # AWS
    aws_region: str = "us-east-1"
    aws_profile: str | None = None

    # Provisioning engine: cloudformation, memory
    engine: str = "cloudformation"

    # Synthesized templates land here
    output_dir: str = "ecsdeploy.out"

    # Stack operations (seconds)
    stack_wait_delay: int = 15
    stack_wait_max_attempts: int = 240

    # HTTP verification
    http_timeout: int = 10

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
