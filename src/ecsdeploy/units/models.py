"""Handles and descriptors passed between and within deployment units."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ecsdeploy.core.errors import ConfigurationError

ANY_IPV4 = "0.0.0.0/0"


@dataclass(frozen=True)
class RegistryHandle:
    """One image registry, resolvable by name through its lookup key."""

    role: str
    registry_name: str
    lookup_key: str
    logical_id: str


@dataclass(frozen=True)
class NetworkFoundation:
    """Network and cluster handles owned by the foundation unit."""

    vpc_id: Any
    subnet_ids: Any
    cluster_name: Any

    def __post_init__(self) -> None:
        for name in ("vpc_id", "subnet_ids", "cluster_name"):
            if getattr(self, name) in (None, ""):
                raise ConfigurationError(
                    f"Network foundation is missing '{name}'",
                    details={"handle": "foundation"},
                )


@dataclass(frozen=True)
class IngressRule:
    protocol: str
    port: int
    source: str = ANY_IPV4
    description: str = ""

    def to_properties(self) -> Dict[str, Any]:
        rule: Dict[str, Any] = {
            "IpProtocol": self.protocol,
            "FromPort": self.port,
            "ToPort": self.port,
            "CidrIp": self.source,
        }
        if self.description:
            rule["Description"] = self.description
        return rule


@dataclass(frozen=True)
class AccessBoundary:
    """Allow-listed traffic rules shared by every service in the deployment."""

    logical_id: str
    vpc_id: Any
    ingress: Tuple[IngressRule, ...]
    allow_all_outbound: bool = True
    description: str = ""

    def egress_properties(self) -> List[Dict[str, Any]]:
        if self.allow_all_outbound:
            return [
                {
                    "IpProtocol": "-1",
                    "CidrIp": ANY_IPV4,
                    "Description": "Allow all outbound traffic by default",
                }
            ]
        return []


@dataclass(frozen=True)
class HealthCheck:
    """Target health check; traffic is only routed to targets that pass it."""

    path: str = "/"
    matcher: str = "200"
    protocol: str = "HTTP"

    def passes(self, status_code: int) -> bool:
        """
        Evaluate a status code against the matcher.

        Matchers follow the load balancer syntax: a single code ("200"),
        a list ("200,302") or a range ("200-299").
        """
        for part in self.matcher.split(","):
            part = part.strip()
            if not part:
                continue
            if "-" in part:
                low, high = part.split("-", 1)
                if int(low) <= status_code <= int(high):
                    return True
            elif int(part) == status_code:
                return True
        return False


@dataclass
class ServiceDescriptor:
    """One deployable service as declared in the topology unit."""

    role: str
    image: Any
    container_port: int
    environment: Dict[str, Any]
    boundary: AccessBoundary
    desired_count: int = 1
    min_healthy_percent: int = 0
    cpu: int = 256
    memory_mib: int = 512
    telemetry: bool = False
    log_stream_prefix: str = ""
    service_id: Optional[str] = None


@dataclass
class ExposureEndpoint:
    """Internet-facing front door routing to exactly one service."""

    role: str
    front_door_id: str
    target_group_id: str
    listener_id: str
    listener_port: int = 80
    health_check: HealthCheck = field(default_factory=HealthCheck)
    dns_output: str = ""


@dataclass
class ServiceTopology:
    """Handle exposed by the topology unit: both services and their front doors."""

    services: Dict[str, ServiceDescriptor] = field(default_factory=dict)
    endpoints: Dict[str, ExposureEndpoint] = field(default_factory=dict)
