"""Tests for the error hierarchy and CLI error handling."""

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


class TestExitCodes:
    def test_error_exit_codes(self):
        assert ConfigurationError("x").exit_code == ExitCode.CONFIG_ERROR
        assert ProvisioningError("x").exit_code == ExitCode.PROVISIONING_ERROR
        assert ValidationError("x").exit_code == ExitCode.VALIDATION_ERROR
        assert ResolutionError("x").exit_code == ExitCode.RESOLUTION_ERROR
        assert EcsDeployError("x").exit_code == ExitCode.UNKNOWN_ERROR


class TestWithContext:
    def test_does_not_overwrite(self):
        error = ProvisioningError("boom", details={"unit": "registry"})
        assert error.with_context(unit="topology", step="apply") is error
        assert error.details == {"unit": "registry", "step": "apply"}

    def test_format(self):
        error = ResolutionError("missing", details={"key": "/demo/appRepositoryName"})
        assert format_error_message(error) == "missing (key=/demo/appRepositoryName)"
        assert format_error_message(ConfigurationError("plain")) == "plain"


class TestMainWithErrorHandling:
    def test_success(self):
        @main_with_error_handling()
        def command():
            return 0

        assert command() == 0

    def test_ecsdeploy_error(self):
        @main_with_error_handling()
        def command():
            raise ResolutionError("not published", details={"unit": "topology"})

        assert command() == ExitCode.RESOLUTION_ERROR

    def test_unexpected_error(self):
        @main_with_error_handling(log_errors=False)
        def command():
            raise RuntimeError("surprise")

        assert command() == ExitCode.UNKNOWN_ERROR

    def test_keyboard_interrupt(self):
        @main_with_error_handling()
        def command():
            raise KeyboardInterrupt

        assert command() == 130
