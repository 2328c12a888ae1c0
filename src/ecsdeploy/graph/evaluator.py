"""
Deployment graph evaluator.

Units are registered with explicit ordering edges between them. The
evaluator sorts them topologically, builds each unit with the handles of
the units it depends on, and hands the result to the provisioning engine.
Evaluation is single-threaded and stops at the first failing unit; units
that already completed are left as they are.
"""

from __future__ import annotations

import time
from typing import Any, Dict, List

import structlog

from ecsdeploy.core.errors import ConfigurationError, EcsDeployError
from ecsdeploy.engine.base import ChangeAction, ChangeSet, ProvisioningEngine, ResourceChange
from ecsdeploy.graph.context import (
    ChainedParameterResolver,
    DeclaredParameterResolver,
    EvaluationContext,
    ParameterResolver,
    StoreParameterResolver,
    UnitProvisioner,
)
from ecsdeploy.graph.models import DeploymentUnit
from ecsdeploy.graph.ordering import topological_order
from ecsdeploy.graph.results import DeployResult, PlanResult, ResultCollector
from ecsdeploy.naming import validate_deployment_name

logger = structlog.get_logger()


class DeploymentGraph:
    """Registered unit provisioners plus explicit unit-level dependency edges."""

    def __init__(self, deployment: str) -> None:
        self.deployment = validate_deployment_name(deployment)
        self._provisioners: Dict[str, UnitProvisioner] = {}
        self._edges: Dict[str, List[str]] = {}

    def register(self, provisioner: UnitProvisioner) -> UnitProvisioner:
        if provisioner.name in self._provisioners:
            raise ConfigurationError(f"Unit '{provisioner.name}' is already registered")
        self._provisioners[provisioner.name] = provisioner
        self._edges[provisioner.name] = []
        return provisioner

    def add_dependency(self, unit: str, depends_on: str) -> None:
        """Declare that ``unit`` must be provisioned after ``depends_on``."""
        for name in (unit, depends_on):
            if name not in self._provisioners:
                raise ConfigurationError(f"Unit '{name}' is not registered")
        if unit == depends_on:
            raise ConfigurationError(f"Unit '{unit}' cannot depend on itself")
        if depends_on not in self._edges[unit]:
            self._edges[unit].append(depends_on)

    def dependencies(self, unit: str) -> List[str]:
        return list(self._edges[unit])

    def provisioner(self, unit: str) -> UnitProvisioner:
        return self._provisioners[unit]

    def order(self) -> List[str]:
        """Unit names, leaves first."""
        return topological_order(self._provisioners, self._edges, kind="unit")

    def _build(
        self, name: str, resolver: ParameterResolver, handles: Dict[str, Any]
    ) -> DeploymentUnit:
        provisioner = self._provisioners[name]
        ctx = EvaluationContext(
            deployment=self.deployment,
            unit_name=name,
            dependencies=tuple(self._edges[name]),
            resolver=resolver,
            handles=handles,
        )
        try:
            build = provisioner.build(ctx)
        except EcsDeployError as exc:
            raise exc.with_context(unit=name)

        unit = build.unit
        for dependency in self._edges[name]:
            unit.add_dependency(dependency)
        try:
            unit.validate()
        except EcsDeployError as exc:
            raise exc.with_context(unit=name, step="validate")
        handles[name] = build.handle
        return unit

    def synthesize(self) -> List[DeploymentUnit]:
        """
        Build every unit without touching live state.

        Cross-unit parameters resolve against what upstream units declare in
        this same evaluation.
        """
        built: Dict[str, DeploymentUnit] = {}
        handles: Dict[str, Any] = {}
        resolver = DeclaredParameterResolver(built)
        for name in self.order():
            built[name] = self._build(name, resolver, handles)
        return list(built.values())

    def plan(self, engine: ProvisioningEngine) -> PlanResult:
        """Preview per-unit change sets against the engine's live state."""
        result = PlanResult(deployment=self.deployment)
        try:
            result.order = self.order()
        except EcsDeployError as exc:
            result.error = exc
            return result

        built: Dict[str, DeploymentUnit] = {}
        handles: Dict[str, Any] = {}
        resolver = ChainedParameterResolver(
            StoreParameterResolver(engine), DeclaredParameterResolver(built)
        )
        try:
            for name in result.order:
                unit = self._build(name, resolver, handles)
                built[name] = unit
                pending = [
                    d for d in unit.dependencies if not engine.is_deployed(built[d].stack_name)
                ]
                if pending:
                    # Upstream exports don't exist yet, so the engine can't diff this unit
                    result.change_sets[name] = _full_creation(unit)
                    result.warnings.append(
                        f"{name}: upstream unit(s) {', '.join(pending)} not deployed; "
                        "showing full creation"
                    )
                else:
                    result.change_sets[name] = engine.plan(unit)
        except EcsDeployError as exc:
            result.error = exc

        return result

    def deploy(self, engine: ProvisioningEngine) -> DeployResult:
        """Apply every unit in order, stopping at the first failure."""
        start = time.time()
        order = self.order()
        collector = ResultCollector(self.deployment, order)
        handles: Dict[str, Any] = {}
        resolver = StoreParameterResolver(engine)

        for name in order:
            log = logger.bind(deployment=self.deployment, unit=name)
            try:
                unit = self._build(name, resolver, handles)
                log.info("unit_applying", stack=unit.stack_name, resources=len(unit.resources))
                change_set = engine.apply(unit)
                outputs = engine.outputs(unit.stack_name)
            except EcsDeployError as exc:
                exc.with_context(unit=name, step="apply")
                log.error("unit_failed", error=exc.message, **exc.details)
                collector.record_error(exc)
                break
            collector.record(name, change_set, outputs)
            log.info("unit_applied", changes=change_set.summary())

        return collector.finalize(time.time() - start)

    def destroy(self, engine: ProvisioningEngine) -> DeployResult:
        """Tear units down in reverse order."""
        start = time.time()
        order = list(reversed(self.order()))
        collector = ResultCollector(self.deployment, order)

        for name in order:
            stack_name = self._provisioners[name].stack_name
            log = logger.bind(deployment=self.deployment, unit=name)
            if not engine.is_deployed(stack_name):
                log.info("unit_not_deployed", stack=stack_name)
                continue
            try:
                change_set = engine.destroy(stack_name)
            except EcsDeployError as exc:
                exc.with_context(unit=name, step="destroy")
                log.error("unit_destroy_failed", error=exc.message)
                collector.record_error(exc)
                break
            if change_set.retained:
                log.warning(
                    "resources_retained",
                    resources=[c.logical_id for c in change_set.retained],
                )
            collector.record(name, change_set, {})
            log.info("unit_destroyed", changes=change_set.summary())

        return collector.finalize(time.time() - start)

    def outputs(self, engine: ProvisioningEngine) -> Dict[str, Dict[str, str]]:
        """Outputs of every deployed unit, in evaluation order."""
        collected: Dict[str, Dict[str, str]] = {}
        for name in self.order():
            stack_name = self._provisioners[name].stack_name
            if engine.is_deployed(stack_name):
                collected[name] = engine.outputs(stack_name)
        return collected


def _full_creation(unit: DeploymentUnit) -> ChangeSet:
    return ChangeSet(
        stack_name=unit.stack_name,
        changes=[
            ResourceChange(
                logical_id=lid,
                resource_type=unit.resources[lid].type,
                action=ChangeAction.CREATE,
            )
            for lid in unit.creation_order()
        ],
    )

