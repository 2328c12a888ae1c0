"""
Desired-state graph models.

A DeploymentUnit is an independently provisionable bundle of resource
declarations. Resources are kept in insertion order, which is the order the
unit's provisioner constructed them in; creation order is derived from the
references between them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from ecsdeploy.core.errors import ConfigurationError
from ecsdeploy.graph.ordering import topological_order
from ecsdeploy.graph.tokens import GetAtt, Ref, imports, references


class DeletionPolicy(StrEnum):
    """What happens to a live resource when its unit is torn down."""

    DELETE = "Delete"
    RETAIN = "Retain"


@dataclass
class Resource:
    """One declared cloud resource."""

    logical_id: str
    type: str
    properties: dict[str, Any] = field(default_factory=dict)
    depends_on: list[str] = field(default_factory=list)
    deletion_policy: DeletionPolicy = DeletionPolicy.DELETE

    def ref(self) -> Ref:
        return Ref(self.logical_id)

    def get_att(self, attribute: str) -> GetAtt:
        return GetAtt(self.logical_id, attribute)

    def dependencies(self) -> set[str]:
        """Logical ids this resource needs to exist first."""
        return references(self.properties) | set(self.depends_on)


@dataclass
class Output:
    """A value a unit publishes once deployed."""

    name: str
    value: Any
    description: str = ""
    export_name: str | None = None


@dataclass(frozen=True)
class CrossUnitParameter:
    """A named string written to the parameter store by the producing unit."""

    key: str
    value: Any
    description: str = ""


@dataclass
class DeploymentUnit:
    """A named bundle of resources plus explicit dependencies on other units."""

    name: str
    stack_name: str
    description: str = ""
    dependencies: list[str] = field(default_factory=list)
    resources: dict[str, Resource] = field(default_factory=dict)
    outputs: dict[str, Output] = field(default_factory=dict)
    parameters: dict[str, CrossUnitParameter] = field(default_factory=dict)

    def add_dependency(self, unit_name: str) -> None:
        """Declare that this unit must be provisioned after ``unit_name``."""
        if unit_name == self.name:
            raise ConfigurationError(f"Unit '{self.name}' cannot depend on itself")
        if unit_name not in self.dependencies:
            self.dependencies.append(unit_name)

    def add(self, resource: Resource) -> Resource:
        """Declare a resource; logical ids are unique within a unit."""
        if resource.logical_id in self.resources:
            raise ConfigurationError(
                f"Duplicate resource '{resource.logical_id}' in unit '{self.name}'",
                details={"unit": self.name},
            )
        self.resources[resource.logical_id] = resource
        return resource

    def add_output(
        self,
        name: str,
        value: Any,
        description: str = "",
        export_name: str | None = None,
    ) -> Output:
        output = Output(name=name, value=value, description=description, export_name=export_name)
        self.outputs[name] = output
        return output

    def publish_parameter(
        self, logical_id: str, key: str, value: Any, description: str = ""
    ) -> Resource:
        """Write a cross-unit parameter through the parameter store."""
        self.parameters[key] = CrossUnitParameter(key=key, value=value, description=description)
        return self.add(
            Resource(
                logical_id=logical_id,
                type="AWS::SSM::Parameter",
                properties={
                    "Name": key,
                    "Type": "String",
                    "Value": value,
                    "Description": description,
                    "Tier": "Standard",
                },
            )
        )

    def resource(self, logical_id: str) -> Resource:
        try:
            return self.resources[logical_id]
        except KeyError:
            raise ConfigurationError(
                f"Unit '{self.name}' has no resource '{logical_id}'"
            ) from None

    def position(self, logical_id: str) -> int:
        """Index of a resource in construction order."""
        return list(self.resources).index(self.resource(logical_id).logical_id)

    def resources_of_type(self, resource_type: str) -> list[Resource]:
        return [r for r in self.resources.values() if r.type == resource_type]

    def creation_order(self) -> list[str]:
        """Logical ids ordered so every resource follows what it references."""
        return topological_order(
            self.resources,
            {lid: r.dependencies() for lid, r in self.resources.items()},
            kind="resource",
        )

    def imported_exports(self) -> set[str]:
        found: set[str] = set()
        for resource in self.resources.values():
            found |= imports(resource.properties)
        for output in self.outputs.values():
            found |= imports(output.value)
        return found

    def exports(self) -> dict[str, Output]:
        return {o.export_name: o for o in self.outputs.values() if o.export_name}

    def validate(self) -> None:
        """Check references point at declared resources and there are no cycles."""
        for output in self.outputs.values():
            for ref in references(output.value):
                if ref not in self.resources:
                    raise ConfigurationError(
                        f"Output '{output.name}' references undeclared resource '{ref}'",
                        details={"unit": self.name},
                    )
        try:
            self.creation_order()
        except ConfigurationError as exc:
            raise exc.with_context(unit=self.name)
