"""
Registry unit.

Creates one image registry per service role and publishes each registry's
name to the parameter store so later units can look it up by key instead of
holding a reference to this unit.
"""

from __future__ import annotations

from typing import Dict

from ecsdeploy.graph.context import EvaluationContext, UnitBuild
from ecsdeploy.graph.models import DeletionPolicy, DeploymentUnit, Resource
from ecsdeploy.naming import (
    DEPENDENCY,
    PRIMARY,
    get_parameter_key,
    get_registry_name,
    get_stack_name,
    logical_id,
    validate_deployment_name,
)
from ecsdeploy.units.models import RegistryHandle

UNIT_NAME = "registry"
STACK_SUFFIX = "docker"

# role -> (logical id prefix, parameter description, uri output)
_REGISTRIES = {
    PRIMARY: ("app", "The app repository name", "appRepositoryURI"),
    DEPENDENCY: ("world", "The world app repository name", "worldRepositoryURI"),
}


class RegistryProvisioner:
    """Declares the two image registries and their published lookup keys."""

    def __init__(self, deployment: str) -> None:
        self.deployment = validate_deployment_name(deployment)

    @property
    def name(self) -> str:
        return UNIT_NAME

    @property
    def stack_name(self) -> str:
        return get_stack_name(self.deployment, STACK_SUFFIX)

    def build(self, ctx: EvaluationContext) -> UnitBuild:
        unit = DeploymentUnit(
            name=self.name,
            stack_name=self.stack_name,
            description=f"Image registries for {self.deployment}",
        )
        handles: Dict[str, RegistryHandle] = {}

        for role, (prefix, description, uri_output) in _REGISTRIES.items():
            registry_name = get_registry_name(self.deployment, role)
            lookup_key = get_parameter_key(self.deployment, role)

            # Registry and every image in it go away with the unit
            repository = unit.add(
                Resource(
                    logical_id=logical_id(prefix, "repository"),
                    type="AWS::ECR::Repository",
                    properties={
                        "RepositoryName": registry_name,
                        "EmptyOnDelete": True,
                    },
                    deletion_policy=DeletionPolicy.DELETE,
                )
            )

            parameter = unit.publish_parameter(
                logical_id(prefix, "repository", "name"),
                key=lookup_key,
                value=registry_name,
                description=description,
            )
            parameter.depends_on.append(repository.logical_id)

            unit.add_output(
                uri_output,
                repository.get_att("RepositoryUri"),
                description=f"The {'world app' if role == DEPENDENCY else 'app'} URI "
                "of the ECR repository",
            )

            handles[role] = RegistryHandle(
                role=role,
                registry_name=registry_name,
                lookup_key=lookup_key,
                logical_id=repository.logical_id,
            )

        return UnitBuild(unit=unit, handle=handles)
