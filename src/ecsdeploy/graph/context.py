"""Provisioner protocol, evaluation context and cross-unit parameter resolvers."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Dict, Iterator, Optional, Protocol, runtime_checkable

import structlog

from ecsdeploy.core.errors import ConfigurationError, EcsDeployError, ResolutionError
from ecsdeploy.graph.models import DeploymentUnit

if TYPE_CHECKING:
    from ecsdeploy.engine.base import ProvisioningEngine

logger = structlog.get_logger()


class ParameterResolver(Protocol):
    """Reads cross-unit parameters by key."""

    def resolve(self, key: str) -> str:
        """Return the value for ``key`` or raise ResolutionError."""
        ...


class DeclaredParameterResolver:
    """Resolves keys declared by units already built in this evaluation."""

    def __init__(self, units: Dict[str, DeploymentUnit]) -> None:
        self._units = units

    def resolve(self, key: str) -> str:
        for unit in self._units.values():
            parameter = unit.parameters.get(key)
            if parameter is not None and isinstance(parameter.value, str):
                return parameter.value
        raise ResolutionError(
            f"Parameter '{key}' is not published by any evaluated unit",
            details={"key": key},
        )


class StoreParameterResolver:
    """Resolves keys from the live parameter store behind an engine."""

    def __init__(self, engine: "ProvisioningEngine") -> None:
        self._engine = engine

    def resolve(self, key: str) -> str:
        value = self._engine.get_parameter(key)
        if value is None:
            raise ResolutionError(
                f"Parameter '{key}' has not been published; "
                "has the producing unit been deployed?",
                details={"key": key},
            )
        return value


class ChainedParameterResolver:
    """Tries each resolver in turn; used for previews before upstream units exist."""

    def __init__(self, *resolvers: ParameterResolver) -> None:
        self._resolvers = resolvers

    def resolve(self, key: str) -> str:
        last_error: Optional[ResolutionError] = None
        for resolver in self._resolvers:
            try:
                return resolver.resolve(key)
            except ResolutionError as exc:
                last_error = exc
        if last_error is None:
            raise ResolutionError(f"No resolver configured for '{key}'", details={"key": key})
        raise last_error


@dataclass
class EvaluationContext:
    """Inputs available to a provisioner while it builds its unit."""

    deployment: str
    unit_name: str
    dependencies: tuple[str, ...]
    resolver: ParameterResolver
    handles: Dict[str, Any] = field(default_factory=dict)

    def handle(self, unit_name: str) -> Any:
        """Handle published by an upstream unit this unit declared a dependency on."""
        if unit_name not in self.dependencies:
            raise ConfigurationError(
                f"Unit '{self.unit_name}' reads '{unit_name}' without declaring a dependency on it",
                details={"unit": self.unit_name},
            )
        if unit_name not in self.handles:
            raise ConfigurationError(
                f"Unit '{unit_name}' has not been evaluated",
                details={"unit": self.unit_name},
            )
        return self.handles[unit_name]


@dataclass
class UnitBuild:
    """A built unit plus the handle it exposes to dependents."""

    unit: DeploymentUnit
    handle: Any = None


@runtime_checkable
class UnitProvisioner(Protocol):
    """Builds one deployment unit's desired state."""

    @property
    def name(self) -> str:
        """Logical unit name (e.g. 'registry')."""
        ...

    @property
    def stack_name(self) -> str:
        """Stack the unit is deployed as."""
        ...

    def build(self, ctx: EvaluationContext) -> UnitBuild:
        """Declare the unit's resources and outputs."""
        ...


@contextmanager
def step(unit: str, name: str) -> Iterator[None]:
    """Tag any error raised inside a provisioning step with its unit and step."""
    try:
        yield
    except EcsDeployError as exc:
        logger.error("step_failed", unit=unit, step=name, error=exc.message)
        raise exc.with_context(unit=unit, step=name)
