"""
CLI command for verifying a deployed topology over HTTP.

Exit codes:
    0 = Both services healthy and hello reaches world
    1 = Services answer but the wiring check failed
    12 = A service is unhealthy or unreachable
"""

from __future__ import annotations

from typing import Optional

from ecsdeploy.cli.ux import console, error, header, success, warning
from ecsdeploy.config.settings import Settings
from ecsdeploy.core.errors import ExitCode
from ecsdeploy.engine import create_engine
from ecsdeploy.units import build_deployment_graph
from ecsdeploy.units.topology import UNIT_NAME as TOPOLOGY_UNIT
from ecsdeploy.verify import EndpointVerifier, VerificationReport


def verify_command(
    settings: Settings,
    engine: Optional[str] = None,
    timeout: Optional[float] = None,
) -> int:
    graph = build_deployment_graph(settings.deployment_name)
    engine_impl = create_engine(settings, engine)
    outputs = engine_impl.outputs(graph.provisioner(TOPOLOGY_UNIT).stack_name)

    verifier = EndpointVerifier(timeout=timeout or settings.http_timeout)
    report = verifier.verify(graph.deployment, outputs)
    _print_report(report)

    if not report.healthy:
        return ExitCode.VALIDATION_ERROR
    if report.problems:
        return ExitCode.WARNING
    return ExitCode.SUCCESS


def _print_report(report: VerificationReport) -> None:
    header(f"Verify: {report.deployment}")
    console.print()
    for probe in report.probes:
        target = f"{probe.role:<6} {probe.url}"
        if probe.healthy:
            console.print(f"  [success]✓[/success] {target} [muted]{probe.status_code}[/muted]")
        elif probe.error:
            console.print(f"  [error]✗[/error] {target} [muted]({probe.error})[/muted]")
        else:
            console.print(f"  [error]✗[/error] {target} [error]{probe.status_code}[/error]")
    console.print()

    for problem in report.problems:
        warning(problem)

    if report.success:
        success("hello answers through world")
    elif not report.healthy:
        error("Health check failed; targets would not receive traffic")
