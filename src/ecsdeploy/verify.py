"""
Post-deploy verification of both front doors.

Probes each load balancer over HTTP, evaluates the response against the
target group health matcher, and checks that hello actually reached world
through the injected address.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx
import structlog

from ecsdeploy.core.errors import ValidationError
from ecsdeploy.naming import DEPENDENCY, PRIMARY
from ecsdeploy.units.models import HealthCheck

logger = structlog.get_logger()

# Output name of each front door's DNS address
DNS_OUTPUTS = {
    DEPENDENCY: "WorldALBDNS",
    PRIMARY: "HelloALBDNS",
}

WORLD_BODY = "World"
HELLO_BODY = "Hello World"
# What hello answers when it cannot reach world
HELLO_FALLBACK_BODY = "Hello (world service unavailable)"


@dataclass
class ProbeResult:
    """Outcome of one HTTP probe."""

    role: str
    url: str
    status_code: Optional[int] = None
    body: str = ""
    healthy: bool = False
    error: Optional[str] = None


@dataclass
class VerificationReport:
    """Probe results for every front door plus the cross-service wiring check."""

    deployment: str
    probes: List[ProbeResult] = field(default_factory=list)
    problems: List[str] = field(default_factory=list)

    @property
    def healthy(self) -> bool:
        return bool(self.probes) and all(p.healthy for p in self.probes)

    @property
    def success(self) -> bool:
        return self.healthy and not self.problems


class EndpointVerifier:
    """
    Probes deployed front doors.

    Args:
        timeout: Request timeout in seconds
        health_check: Matcher applied to each response status
        client: Optional pre-built httpx client (tests)
    """

    def __init__(
        self,
        timeout: float = 10.0,
        health_check: Optional[HealthCheck] = None,
        client: Optional[httpx.Client] = None,
    ):
        self.timeout = timeout
        self.health_check = health_check or HealthCheck()
        self._client = client

    def verify(self, deployment: str, outputs: Dict[str, str]) -> VerificationReport:
        """
        Verify both services from the topology unit's outputs.

        Raises:
            ValidationError: If an expected DNS output is missing
        """
        missing = [name for name in DNS_OUTPUTS.values() if not outputs.get(name)]
        if missing:
            raise ValidationError(
                f"Deployment outputs are missing {', '.join(missing)}; is the app unit deployed?",
                details={"deployment": deployment},
            )

        report = VerificationReport(deployment=deployment)
        client = self._client or httpx.Client(timeout=self.timeout, follow_redirects=False)
        try:
            for role in (DEPENDENCY, PRIMARY):
                url = f"http://{outputs[DNS_OUTPUTS[role]]}{self.health_check.path}"
                report.probes.append(self.probe(client, role, url))
        finally:
            if self._client is None:
                client.close()

        world, hello = report.probes
        if world.healthy and world.body.strip() != WORLD_BODY:
            report.problems.append(
                f"world answered {world.body.strip()!r}, expected {WORLD_BODY!r}"
            )
        if hello.healthy:
            body = hello.body.strip()
            if body == HELLO_FALLBACK_BODY:
                report.problems.append("hello cannot reach world through WORLD_SERVICE_URL")
            elif HELLO_BODY not in body:
                report.problems.append(f"hello answered {body!r}, expected {HELLO_BODY!r}")

        logger.info(
            "deployment_verified",
            deployment=deployment,
            healthy=report.healthy,
            problems=len(report.problems),
        )
        return report

    def probe(self, client: httpx.Client, role: str, url: str) -> ProbeResult:
        result = ProbeResult(role=role, url=url)
        try:
            response = client.get(url)
        except httpx.HTTPError as e:
            logger.warning("probe_failed", role=role, url=url, error=str(e))
            result.error = str(e)
            return result

        result.status_code = response.status_code
        result.body = response.text
        result.healthy = self.health_check.passes(response.status_code)
        return result
