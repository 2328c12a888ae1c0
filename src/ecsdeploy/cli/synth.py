"""
CLI command for synthesizing CloudFormation templates.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from ecsdeploy.cli.ux import console, header, success
from ecsdeploy.config.settings import Settings
from ecsdeploy.synth import write_templates
from ecsdeploy.units import build_deployment_graph


def synth_command(
    settings: Settings,
    output_dir: Optional[str] = None,
    template_format: str = "json",
) -> int:
    """
    Write one template per unit, without touching any account.

    Args:
        settings: Loaded settings (deployment name, default output dir)
        output_dir: Override for the template directory
        template_format: json or yaml

    Returns:
        Exit code (0 for success)
    """
    graph = build_deployment_graph(settings.deployment_name)
    units = graph.synthesize()
    target = Path(output_dir or settings.output_dir)
    written = write_templates(units, target, template_format)

    header(f"Synth: {graph.deployment}")
    for unit, path in zip(units, written):
        deps = ""
        if unit.dependencies:
            deps = f" [muted](after {', '.join(unit.dependencies)})[/muted]"
        console.print(
            f"  [success]✓[/success] {unit.stack_name:<32} {len(unit.resources):>3} resources"
            f"  [muted]{path}[/muted]{deps}"
        )
    console.print()
    success(f"{len(written)} templates written to {target}")
    return 0
