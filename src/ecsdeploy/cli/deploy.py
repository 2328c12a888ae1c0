"""
CLI commands for deploying and destroying every unit.
"""

from __future__ import annotations

from typing import Optional

from ecsdeploy.cli.ux import confirm, console, error, header, print_key_value, spinner, success
from ecsdeploy.config.settings import Settings
from ecsdeploy.core.errors import ExitCode, format_error_message
from ecsdeploy.engine import create_engine
from ecsdeploy.graph.results import DeployResult
from ecsdeploy.units import build_deployment_graph


def print_deploy_result(result: DeployResult, verb: str) -> None:
    for name in result.order:
        change_set = result.change_sets.get(name)
        if change_set is not None:
            counts = ", ".join(f"{k} {v}" for k, v in change_set.summary().items())
            console.print(
                f"  [success]✓[/success] {name:<12} "
                f"[muted]{change_set.stack_name}: {counts or 'no changes'}[/muted]"
            )
            for retained in change_set.retained:
                console.print(
                    f"     [warning]retained[/warning] {retained.logical_id} "
                    f"[muted]{retained.physical_id or ''}[/muted]"
                )
        elif name == result.failed_unit:
            console.print(f"  [error]✗[/error] {name}")
        elif result.error is not None:
            console.print(f"  [muted]- {name} (not {verb})[/muted]")
    console.print()

    if result.error is not None:
        error(format_error_message(result.error))
    else:
        message = f"{len(result.completed)} units {verb} in {result.duration_seconds:.1f}s"
        if result.total_created:
            message += f", {result.total_created} resources created"
        success(message)


def deploy_command(settings: Settings, engine: Optional[str] = None) -> int:
    """
    Apply every unit in order, stopping at the first failure.

    Units completed before a failure are left deployed.
    """
    graph = build_deployment_graph(settings.deployment_name)
    header(f"Deploy: {graph.deployment}")

    with spinner(f"Deploying {', '.join(graph.order())}"):
        result = graph.deploy(create_engine(settings, engine))

    print_deploy_result(result, "deployed")
    for name, outputs in result.outputs.items():
        if outputs:
            print_key_value(outputs, title=name)
    console.print()

    if result.error is not None:
        return result.error.exit_code
    return ExitCode.SUCCESS


def destroy_command(settings: Settings, engine: Optional[str] = None, yes: bool = False) -> int:
    """Tear every unit down in reverse order."""
    graph = build_deployment_graph(settings.deployment_name)

    if not yes and not confirm(
        f"Destroy every unit of '{graph.deployment}', including both image registries?"
    ):
        console.print("[muted]Aborted[/muted]")
        return ExitCode.WARNING

    header(f"Destroy: {graph.deployment}")
    with spinner("Destroying units"):
        result = graph.destroy(create_engine(settings, engine))

    print_deploy_result(result, "destroyed")
    if result.error is not None:
        return result.error.exit_code
    return ExitCode.SUCCESS
