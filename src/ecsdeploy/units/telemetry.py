"""
Application Signals integration for a Fargate task definition.

Adds a Java auto-instrumentation init container, a CloudWatch agent
sidecar, and the OpenTelemetry environment the agent expects. Only the
dependency (world) service carries it.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List

from ecsdeploy.core.errors import ConfigurationError

JAVA_INSTRUMENTATION_VERSION = "v2.10.0"
INSTRUMENTATION_IMAGE = "public.ecr.aws/aws-observability/adot-autoinstrumentation-java"
CWAGENT_IMAGE = "public.ecr.aws/cloudwatch-agent/cloudwatch-agent:latest"

INIT_CONTAINER_NAME = "adot-init"
AGENT_VOLUME = "opentelemetry-auto-instrumentation"
AGENT_MOUNT_PATH = "/otel-auto-instrumentation"
OTLP_ENDPOINT = "http://localhost:4316"

CWAGENT_CONFIG = {
    "agent": {"debug": False},
    "traces": {"traces_collected": {"application_signals": {"enabled": True}}},
    "logs": {"metrics_collected": {"application_signals": {"enabled": True}}},
}


@dataclass(frozen=True)
class SidecarSettings:
    container_name: str = "ecs-cwagent"
    enable_logging: bool = True
    cpu: int = 256
    memory_mib: int = 512


def instrumentation_environment(service_name: str) -> Dict[str, str]:
    """OpenTelemetry settings injected into the instrumented container."""
    return {
        "OTEL_RESOURCE_ATTRIBUTES": f"service.name={service_name}",
        "OTEL_LOGS_EXPORTER": "none",
        "OTEL_METRICS_EXPORTER": "none",
        "OTEL_EXPORTER_OTLP_PROTOCOL": "http/protobuf",
        "OTEL_AWS_APPLICATION_SIGNALS_ENABLED": "true",
        "OTEL_AWS_APPLICATION_SIGNALS_EXPORTER_ENDPOINT": f"{OTLP_ENDPOINT}/v1/metrics",
        "OTEL_EXPORTER_OTLP_TRACES_ENDPOINT": f"{OTLP_ENDPOINT}/v1/traces",
        "OTEL_TRACES_SAMPLER": "xray",
        "OTEL_PROPAGATORS": "tracecontext,baggage,b3,xray",
        "JAVA_TOOL_OPTIONS": f" -javaagent:{AGENT_MOUNT_PATH}/javaagent.jar",
    }


def attach_application_signals(
    task_properties: Dict[str, Any],
    app_container_name: str,
    service_name: str,
    log_configuration: Dict[str, Any],
    sidecar: SidecarSettings = SidecarSettings(),
) -> None:
    """
    Instrument the named container of a task definition in place.

    Args:
        task_properties: ``AWS::ECS::TaskDefinition`` properties
        app_container_name: Container that runs the Java application
        service_name: Service name reported to Application Signals
        log_configuration: Log configuration reused by the sidecar
        sidecar: CloudWatch agent sidecar sizing
    """
    containers: List[Dict[str, Any]] = task_properties.setdefault("ContainerDefinitions", [])
    app = next((c for c in containers if c.get("Name") == app_container_name), None)
    if app is None:
        raise ConfigurationError(
            f"Task definition has no container '{app_container_name}' to instrument"
        )

    task_properties.setdefault("Volumes", []).append({"Name": AGENT_VOLUME})

    init = {
        "Name": INIT_CONTAINER_NAME,
        "Image": f"{INSTRUMENTATION_IMAGE}:{JAVA_INSTRUMENTATION_VERSION}",
        "Essential": False,
        "Command": ["cp", "/javaagent.jar", f"{AGENT_MOUNT_PATH}/javaagent.jar"],
        "MountPoints": [
            {"SourceVolume": AGENT_VOLUME, "ContainerPath": AGENT_MOUNT_PATH, "ReadOnly": False}
        ],
    }

    agent: Dict[str, Any] = {
        "Name": sidecar.container_name,
        "Image": CWAGENT_IMAGE,
        "Essential": True,
        "Cpu": sidecar.cpu,
        "Memory": sidecar.memory_mib,
        "Environment": [
            {
                "Name": "CW_CONFIG_CONTENT",
                "Value": json.dumps(CWAGENT_CONFIG, separators=(",", ":")),
            }
        ],
    }
    if sidecar.enable_logging:
        agent["LogConfiguration"] = _with_stream_prefix(log_configuration, sidecar.container_name)

    env = {e["Name"]: e["Value"] for e in app.get("Environment", [])}
    for key, value in instrumentation_environment(service_name).items():
        env.setdefault(key, value)
    app["Environment"] = [{"Name": k, "Value": v} for k, v in env.items()]
    app.setdefault("MountPoints", []).append(
        {"SourceVolume": AGENT_VOLUME, "ContainerPath": AGENT_MOUNT_PATH, "ReadOnly": False}
    )
    app.setdefault("DependsOn", []).extend(
        [
            {"ContainerName": INIT_CONTAINER_NAME, "Condition": "SUCCESS"},
            {"ContainerName": sidecar.container_name, "Condition": "START"},
        ]
    )

    containers.extend([init, agent])


def _with_stream_prefix(log_configuration: Dict[str, Any], prefix: str) -> Dict[str, Any]:
    options = dict(log_configuration.get("Options", {}))
    options["awslogs-stream-prefix"] = prefix
    return {**log_configuration, "Options": options}
