"""Provisioning engines: CloudFormation for real deployments, in-memory for tests and previews."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from ecsdeploy.config.settings import Settings
from ecsdeploy.core.errors import ConfigurationError
from ecsdeploy.engine.base import ChangeAction, ChangeSet, ProvisioningEngine, ResourceChange
from ecsdeploy.engine.cloudformation import CloudFormationEngine
from ecsdeploy.engine.memory import InMemoryEngine

ENGINES = ("cloudformation", "memory")
MEMORY_STATE_FILE = "memory-state.json"


def create_engine(settings: Settings, engine: Optional[str] = None) -> ProvisioningEngine:
    """
    Build the provisioning engine named by ``engine`` or ``settings.engine``.

    The in-memory engine keeps its state next to synthesized templates so
    consecutive commands see the same deployment.
    """
    name = engine or settings.engine
    if name == "cloudformation":
        return CloudFormationEngine(
            region=settings.aws_region,
            profile=settings.aws_profile,
            wait_delay=settings.stack_wait_delay,
            wait_max_attempts=settings.stack_wait_max_attempts,
        )
    if name == "memory":
        return InMemoryEngine(
            region=settings.aws_region,
            state_file=Path(settings.output_dir) / MEMORY_STATE_FILE,
        )
    raise ConfigurationError(
        f"Unknown provisioning engine '{name}'", details={"engines": ", ".join(ENGINES)}
    )


__all__ = [
    "ENGINES",
    "ChangeAction",
    "ChangeSet",
    "CloudFormationEngine",
    "InMemoryEngine",
    "ProvisioningEngine",
    "ResourceChange",
    "create_engine",
]
