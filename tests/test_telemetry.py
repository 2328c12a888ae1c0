"""Tests for Application Signals instrumentation of task definitions."""

import json

import pytest

from ecsdeploy.core.errors import ConfigurationError
from ecsdeploy.units.telemetry import (
    AGENT_MOUNT_PATH,
    AGENT_VOLUME,
    CWAGENT_CONFIG,
    SidecarSettings,
    attach_application_signals,
    instrumentation_environment,
)

LOG_CONFIGURATION = {
    "LogDriver": "awslogs",
    "Options": {
        "awslogs-group": "world-logs",
        "awslogs-region": "us-east-1",
        "awslogs-stream-prefix": "world-app",
    },
}


@pytest.fixture
def task_properties():
    return {
        "ContainerDefinitions": [
            {
                "Name": "App",
                "Image": "world:latest",
                "Environment": [
                    {"Name": "SERVER_PORT", "Value": "8080"},
                    {"Name": "OTEL_TRACES_SAMPLER", "Value": "always_on"},
                ],
            }
        ]
    }


def _containers(task_properties):
    return {c["Name"]: c for c in task_properties["ContainerDefinitions"]}


class TestInstrumentationEnvironment:
    def test_service_name(self):
        env = instrumentation_environment("world-service")
        assert env["OTEL_RESOURCE_ATTRIBUTES"] == "service.name=world-service"
        assert env["OTEL_AWS_APPLICATION_SIGNALS_ENABLED"] == "true"
        assert env["JAVA_TOOL_OPTIONS"].strip() == f"-javaagent:{AGENT_MOUNT_PATH}/javaagent.jar"


class TestAttachApplicationSignals:
    def test_adds_init_and_agent_containers(self, task_properties):
        attach_application_signals(task_properties, "App", "world-service", LOG_CONFIGURATION)
        containers = _containers(task_properties)
        assert list(containers) == ["App", "adot-init", "ecs-cwagent"]
        assert containers["adot-init"]["Essential"] is False
        assert task_properties["Volumes"] == [{"Name": AGENT_VOLUME}]

    def test_app_waits_for_init_and_agent(self, task_properties):
        attach_application_signals(task_properties, "App", "world-service", LOG_CONFIGURATION)
        app = _containers(task_properties)["App"]
        assert app["DependsOn"] == [
            {"ContainerName": "adot-init", "Condition": "SUCCESS"},
            {"ContainerName": "ecs-cwagent", "Condition": "START"},
        ]
        assert app["MountPoints"][0]["ContainerPath"] == AGENT_MOUNT_PATH

    def test_existing_environment_wins(self, task_properties):
        attach_application_signals(task_properties, "App", "world-service", LOG_CONFIGURATION)
        env = {e["Name"]: e["Value"] for e in _containers(task_properties)["App"]["Environment"]}
        assert env["SERVER_PORT"] == "8080"
        assert env["OTEL_TRACES_SAMPLER"] == "always_on"
        assert env["OTEL_RESOURCE_ATTRIBUTES"] == "service.name=world-service"

    def test_agent_logs_under_own_prefix(self, task_properties):
        attach_application_signals(task_properties, "App", "world-service", LOG_CONFIGURATION)
        agent = _containers(task_properties)["ecs-cwagent"]
        options = agent["LogConfiguration"]["Options"]
        assert options["awslogs-stream-prefix"] == "ecs-cwagent"
        assert options["awslogs-group"] == "world-logs"
        # The app's own configuration is untouched
        assert LOG_CONFIGURATION["Options"]["awslogs-stream-prefix"] == "world-app"
        assert json.loads(agent["Environment"][0]["Value"]) == CWAGENT_CONFIG

    def test_sidecar_settings(self, task_properties):
        sidecar = SidecarSettings(container_name="agent", enable_logging=False, memory_mib=256)
        attach_application_signals(
            task_properties, "App", "world-service", LOG_CONFIGURATION, sidecar
        )
        agent = _containers(task_properties)["agent"]
        assert agent["Memory"] == 256
        assert "LogConfiguration" not in agent

    def test_unknown_container(self, task_properties):
        with pytest.raises(ConfigurationError, match="no container 'Missing'"):
            attach_application_signals(
                task_properties, "Missing", "world-service", LOG_CONFIGURATION
            )
