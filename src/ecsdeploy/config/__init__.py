"""
ecsdeploy configuration.

Pydantic-based settings (environment variables, .env files).
"""

from ecsdeploy.config.settings import DEFAULT_DEPLOYMENT_NAME, Settings, get_settings

__all__ = [
    "DEFAULT_DEPLOYMENT_NAME",
    "Settings",
    "get_settings",
]
