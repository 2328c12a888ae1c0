"""
CLI command for planning (dry-run) a deployment.
"""

from __future__ import annotations

import json
from typing import Optional

from ecsdeploy.cli.ux import console, error, header, warning
from ecsdeploy.config.settings import Settings
from ecsdeploy.core.errors import ExitCode, format_error_message
from ecsdeploy.engine import ChangeAction, create_engine
from ecsdeploy.graph.results import PlanResult
from ecsdeploy.units import build_deployment_graph

_ACTION_STYLES = {
    ChangeAction.CREATE: "[success]+[/success]",
    ChangeAction.UPDATE: "[warning]~[/warning]",
    ChangeAction.DELETE: "[error]-[/error]",
    ChangeAction.RETAIN: "[muted]=[/muted]",
}


def print_plan_summary(plan: PlanResult) -> None:
    """Print per-unit change sets in evaluation order."""
    console.print()
    header(f"Plan: {plan.deployment}")
    console.print()

    if plan.order:
        console.print(f"[bold]Order:[/bold] {' → '.join(plan.order)}")
        console.print()

    for message in plan.warnings:
        warning(message)
    if plan.warnings:
        console.print()

    for name in plan.order:
        change_set = plan.change_sets.get(name)
        if change_set is None:
            continue
        if change_set.is_empty:
            console.print(
                f"  [success]✓ {name}[/success]  "
                f"[muted]{change_set.stack_name}, no changes[/muted]"
            )
            continue
        console.print(f"  [bold]{name}[/bold]  [muted]{change_set.stack_name}[/muted]")
        for change in change_set.changes:
            console.print(
                f"     {_ACTION_STYLES[change.action]} {change.logical_id} "
                f"[muted]({change.resource_type})[/muted]"
            )
        console.print()

    if plan.error is not None:
        error(format_error_message(plan.error))
        console.print()
        return

    console.print(f"[bold]Total:[/bold] {plan.total_changes} changes")
    console.print()
    console.print("[muted]To apply these changes, run:[/muted]")
    console.print("  [info]ecsdeploy deploy[/info]")
    console.print()


def print_plan_json(plan: PlanResult) -> None:
    output = {
        "deployment": plan.deployment,
        "order": plan.order,
        "units": {
            name: {
                "stack_name": cs.stack_name,
                "changes": [
                    {
                        "logical_id": c.logical_id,
                        "resource_type": c.resource_type,
                        "action": c.action.value,
                    }
                    for c in cs.changes
                ],
            }
            for name, cs in plan.change_sets.items()
        },
        "warnings": plan.warnings,
        "total_changes": plan.total_changes,
        "error": format_error_message(plan.error) if plan.error else None,
        "success": plan.success,
    }
    print(json.dumps(output, indent=2))


def plan_command(
    settings: Settings, engine: Optional[str] = None, output_format: str = "text"
) -> int:
    """
    Preview what deploying would change.

    Args:
        settings: Loaded settings
        engine: Override for the provisioning engine
        output_format: text or json

    Returns:
        Exit code (0 for success, the error's exit code otherwise)
    """
    graph = build_deployment_graph(settings.deployment_name)
    result = graph.plan(create_engine(settings, engine))

    if output_format == "json":
        print_plan_json(result)
    else:
        print_plan_summary(result)

    if result.error is not None:
        return result.error.exit_code
    return ExitCode.SUCCESS
