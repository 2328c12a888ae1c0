"""Tests for deployment-scoped log context."""

import structlog

from ecsdeploy.logging import bind_deployment, clear_deployment


class TestDeploymentContext:
    def test_bind_and_clear(self):
        bind_deployment("demo", command="deploy")
        try:
            assert structlog.contextvars.get_contextvars() == {
                "deployment": "demo",
                "command": "deploy",
            }
        finally:
            clear_deployment()
        assert structlog.contextvars.get_contextvars() == {}
