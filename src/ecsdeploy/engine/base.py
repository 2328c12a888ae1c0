"""Provisioning engine protocol and change-set types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Dict, List, Optional, Protocol, runtime_checkable

from ecsdeploy.graph.models import DeploymentUnit


class ChangeAction(StrEnum):
    """What reconciliation does to one resource."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    RETAIN = "retain"


@dataclass(frozen=True)
class ResourceChange:
    """One resource-level operation within a change set."""

    logical_id: str
    resource_type: str
    action: ChangeAction
    physical_id: Optional[str] = None


@dataclass
class ChangeSet:
    """Operations needed to bring one stack to its desired state."""

    stack_name: str
    changes: List[ResourceChange] = field(default_factory=list)

    def _with(self, action: ChangeAction) -> List[ResourceChange]:
        return [c for c in self.changes if c.action == action]

    @property
    def creations(self) -> List[ResourceChange]:
        return self._with(ChangeAction.CREATE)

    @property
    def updates(self) -> List[ResourceChange]:
        return self._with(ChangeAction.UPDATE)

    @property
    def deletions(self) -> List[ResourceChange]:
        return self._with(ChangeAction.DELETE)

    @property
    def retained(self) -> List[ResourceChange]:
        return self._with(ChangeAction.RETAIN)

    @property
    def is_empty(self) -> bool:
        return not self.changes

    def summary(self) -> Dict[str, int]:
        """Count of changes per action."""
        counts: Dict[str, int] = {}
        for change in self.changes:
            counts[change.action.value] = counts.get(change.action.value, 0) + 1
        return counts


@runtime_checkable
class ProvisioningEngine(Protocol):
    """Contract for whatever reconciles live cloud state with a unit."""

    def plan(self, unit: DeploymentUnit) -> ChangeSet:
        """Preview the changes applying ``unit`` would make."""
        ...

    def apply(self, unit: DeploymentUnit) -> ChangeSet:
        """Reconcile live state with ``unit`` and wait for completion."""
        ...

    def destroy(self, stack_name: str) -> ChangeSet:
        """Tear down a stack, honouring each resource's deletion policy."""
        ...

    def outputs(self, stack_name: str) -> Dict[str, str]:
        """Resolved outputs of a deployed stack."""
        ...

    def get_parameter(self, key: str) -> Optional[str]:
        """Read a parameter store value, or None if it was never written."""
        ...

    def is_deployed(self, stack_name: str) -> bool:
        ...
