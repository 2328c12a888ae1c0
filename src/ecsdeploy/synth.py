"""
Template synthesis.

Renders deployment units into CloudFormation templates and writes them,
together with a manifest recording unit order and dependencies, into an
output directory.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List

import structlog
import yaml

from ecsdeploy.core.errors import ConfigurationError
from ecsdeploy.graph.models import DeploymentUnit
from ecsdeploy.graph.tokens import render

logger = structlog.get_logger()

TEMPLATE_FORMAT_VERSION = "2010-09-09"
FORMATS = ("json", "yaml")


def synthesize_unit(unit: DeploymentUnit) -> Dict[str, Any]:
    """Render one unit as a CloudFormation template."""
    unit.validate()

    resources: Dict[str, Any] = {}
    for logical_id, resource in unit.resources.items():
        body: Dict[str, Any] = {"Type": resource.type}
        if resource.properties:
            body["Properties"] = render(resource.properties)
        if resource.depends_on:
            body["DependsOn"] = list(resource.depends_on)
        body["DeletionPolicy"] = resource.deletion_policy.value
        body["UpdateReplacePolicy"] = resource.deletion_policy.value
        resources[logical_id] = body

    template: Dict[str, Any] = {
        "AWSTemplateFormatVersion": TEMPLATE_FORMAT_VERSION,
        "Description": unit.description or f"ecsdeploy unit {unit.name}",
        "Resources": resources,
    }

    if unit.outputs:
        outputs: Dict[str, Any] = {}
        for name, output in unit.outputs.items():
            body = {"Value": render(output.value)}
            if output.description:
                body["Description"] = output.description
            if output.export_name:
                body["Export"] = {"Name": output.export_name}
            outputs[name] = body
        template["Outputs"] = outputs

    return template


def dump_template(template: Dict[str, Any], fmt: str = "json") -> str:
    if fmt == "json":
        return json.dumps(template, indent=2)
    if fmt == "yaml":
        return yaml.safe_dump(template, sort_keys=False, default_flow_style=False)
    raise ConfigurationError(f"Unsupported template format '{fmt}'", details={"formats": FORMATS})


def write_templates(
    units: List[DeploymentUnit], output_dir: Path, fmt: str = "json"
) -> List[Path]:
    """
    Write one template per unit plus ``manifest.json``.

    Args:
        units: Units in evaluation order
        output_dir: Directory to write into (created if missing)
        fmt: Template format, json or yaml

    Returns:
        Paths of written templates, in evaluation order
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    suffix = "template.json" if fmt == "json" else "template.yaml"

    written: List[Path] = []
    manifest: Dict[str, Any] = {"units": []}
    for unit in units:
        path = output_dir / f"{unit.stack_name}.{suffix}"
        path.write_text(dump_template(synthesize_unit(unit), fmt))
        written.append(path)
        manifest["units"].append(
            {
                "name": unit.name,
                "stackName": unit.stack_name,
                "template": path.name,
                "dependencies": list(unit.dependencies),
            }
        )
        logger.info("template_written", unit=unit.name, path=str(path))

    (output_dir / "manifest.json").write_text(json.dumps(manifest, indent=2))
    return written
