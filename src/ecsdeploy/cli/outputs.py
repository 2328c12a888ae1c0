"""
CLI command for printing deployed unit outputs.
"""

from __future__ import annotations

import json
from typing import Optional

from ecsdeploy.cli.ux import header, print_key_value, warning
from ecsdeploy.config.settings import Settings
from ecsdeploy.core.errors import ExitCode
from ecsdeploy.engine import create_engine
from ecsdeploy.units import build_deployment_graph


def outputs_command(
    settings: Settings, engine: Optional[str] = None, output_format: str = "text"
) -> int:
    graph = build_deployment_graph(settings.deployment_name)
    collected = graph.outputs(create_engine(settings, engine))

    if output_format == "json":
        print(json.dumps(collected, indent=2))
    else:
        header(f"Outputs: {graph.deployment}")
        if not collected:
            warning("Nothing is deployed")
        for name, outputs in collected.items():
            print_key_value(outputs, title=name)

    return ExitCode.SUCCESS if collected else ExitCode.WARNING
