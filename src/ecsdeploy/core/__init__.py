"""Core modules for ecsdeploy - centralized definitions and utilities."""

from ecsdeploy.core.errors import (
    ConfigurationError,
    EcsDeployError,
    ExitCode,
    ProvisioningError,
    ResolutionError,
    ValidationError,
    format_error_message,
    main_with_error_handling,
)

__all__ = [
    "ExitCode",
    "EcsDeployError",
    "ConfigurationError",
    "ProvisioningError",
    "ResolutionError",
    "ValidationError",
    "main_with_error_handling",
    "format_error_message",
]
