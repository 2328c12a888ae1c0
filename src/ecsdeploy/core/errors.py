"""
Unified error handling for ecsdeploy.

Every failure raised while evaluating a deployment is one of the types
below, so the CLI can map it onto a stable exit code and report which
unit and step failed.

Exit Codes:
- 0: Success
- 1: Warning (operation succeeded, verification reported problems)
- 10: Configuration error (missing/invalid input)
- 11: Provisioning error (engine rejected or failed a resource)
- 12: Validation error
- 13: Resolution error (cross-unit lookup key not published)
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    WARNING = 1
    CONFIG_ERROR = 10
    PROVISIONING_ERROR = 11
    VALIDATION_ERROR = 12
    RESOLUTION_ERROR = 13
    UNKNOWN_ERROR = 127


class EcsDeployError(Exception):
    """Base exception for ecsdeploy errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def with_context(self, **context: Any) -> "EcsDeployError":
        """Attach unit/step context without overwriting what is already set."""
        for key, value in context.items():
            self.details.setdefault(key, value)
        return self


class ConfigurationError(EcsDeployError):
    """Raised for missing or invalid required input."""

    exit_code = ExitCode.CONFIG_ERROR


class ProvisioningError(EcsDeployError):
    """Raised when the provisioning engine rejects or fails a declared resource."""

    exit_code = ExitCode.PROVISIONING_ERROR


class ValidationError(EcsDeployError):
    """Raised for validation failures."""

    exit_code = ExitCode.VALIDATION_ERROR


class ResolutionError(EcsDeployError):
    """Raised when a cross-unit lookup key has not been published yet."""

    exit_code = ExitCode.RESOLUTION_ERROR


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI command functions that provides unified error handling.

    Args:
        show_traceback: If True, show full traceback for unexpected errors
        log_errors: If True, log errors to structlog

    Exit codes:
        - EcsDeployError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except EcsDeployError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=int(e.exit_code),
                        **e.details,
                    )
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return 130
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=int(ExitCode.UNKNOWN_ERROR),
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator


def format_error_message(error: EcsDeployError) -> str:
    """Format an error message for display to users."""
    msg = error.message
    if error.details:
        detail_str = ", ".join(f"{k}={v}" for k, v in error.details.items())
        msg = f"{msg} ({detail_str})"
    return msg
