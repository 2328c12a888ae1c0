"""
Naming conventions for deployment resources.

Every stack, registry, export and lookup key is derived from the
deployment name, which is passed in explicitly rather than read from
the environment so units stay independently testable.
"""

from __future__ import annotations

import re

from ecsdeploy.core.errors import ConfigurationError

# CloudFormation stack names: letters, digits, hyphens; must start with a letter
_STACK_NAME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9-]*$")

# Service roles
PRIMARY = "hello"
DEPENDENCY = "world"

# Registry suffix per role
REGISTRY_SUFFIXES: dict[str, str] = {
    PRIMARY: "app",
    DEPENDENCY: "world-app",
}

# Parameter store key leaf per role
PARAMETER_LEAVES: dict[str, str] = {
    PRIMARY: "appRepositoryName",
    DEPENDENCY: "worldRepositoryName",
}


def validate_deployment_name(deployment: str | None) -> str:
    """
    Validate a deployment name.

    Args:
        deployment: Raw deployment name

    Returns:
        The stripped deployment name

    Raises:
        ConfigurationError: If the name is empty or not usable as a stack prefix
    """
    name = (deployment or "").strip()
    if not name:
        raise ConfigurationError("Deployment name must not be empty")
    if not _STACK_NAME_RE.match(name):
        raise ConfigurationError(
            f"Invalid deployment name '{name}'",
            details={"hint": "use letters, digits and hyphens, starting with a letter"},
        )
    return name


def get_stack_name(deployment: str, unit: str) -> str:
    """
    Get the stack name for a unit.

    Pattern: {deployment}-{unit}
    Examples:
        - demo-docker
        - demo-infra
        - demo-app
    """
    return f"{deployment}-{unit}"


def get_registry_name(deployment: str, role: str) -> str:
    """
    Get the image registry name for a service role.

    Pattern: {deployment}-app (primary), {deployment}-world-app (dependency)
    """
    try:
        suffix = REGISTRY_SUFFIXES[role]
    except KeyError:
        raise ConfigurationError(f"Unknown service role '{role}'") from None
    return f"{deployment}-{suffix}"


def get_parameter_key(deployment: str, role: str) -> str:
    """
    Get the parameter store key under which a registry name is published.

    Pattern: /{deployment}/appRepositoryName, /{deployment}/worldRepositoryName
    """
    try:
        leaf = PARAMETER_LEAVES[role]
    except KeyError:
        raise ConfigurationError(f"Unknown service role '{role}'") from None
    return f"/{deployment}/{leaf}"


def get_export_name(stack_name: str, output: str) -> str:
    """Get the export name for a stack output consumed by another unit."""
    return f"{stack_name}-{output}"


def get_cluster_name(deployment: str) -> str:
    """Get the compute cluster name."""
    return f"{deployment}-cluster"


def logical_id(*parts: str) -> str:
    """
    Build a CloudFormation logical id from name parts.

    Example: logical_id("world", "target-group") -> "WorldTargetGroup"
    """
    words = []
    for part in parts:
        words.extend(w for w in re.split(r"[^A-Za-z0-9]+", part) if w)
    return "".join(w[:1].upper() + w[1:] for w in words)
