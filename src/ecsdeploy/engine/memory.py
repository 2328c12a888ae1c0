"""
In-memory provisioning engine.

Reconciles deployment units against state it tracks itself, with the
behaviour the deployment relies on from a real engine: resources are
created in dependency order, tokens are resolved against what already
exists, parameter-store writes land in a local store, exports are
published and protected while imported, and deletion policies are honoured
on teardown. A failed apply rolls the engine back to where it started.

State can optionally be persisted to a JSON file so separate CLI
invocations see the same live state.
"""

from __future__ import annotations

import copy
import json
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import structlog

from ecsdeploy.core.errors import ProvisioningError
from ecsdeploy.engine.base import ChangeAction, ChangeSet, ResourceChange
from ecsdeploy.graph.models import DeletionPolicy, DeploymentUnit, Resource
from ecsdeploy.graph.tokens import render, resolve

logger = structlog.get_logger()

DEFAULT_ACCOUNT_ID = "123456789012"
URL_SUFFIX = "amazonaws.com"

# resource type -> physical id prefix for generated ids
_ID_PREFIXES = {
    "AWS::EC2::VPC": "vpc",
    "AWS::EC2::Subnet": "subnet",
    "AWS::EC2::InternetGateway": "igw",
    "AWS::EC2::RouteTable": "rtb",
    "AWS::EC2::SecurityGroup": "sg",
    "AWS::EC2::SubnetRouteTableAssociation": "rtbassoc",
}


@dataclass
class LiveResource:
    """One resource as the engine created it."""

    logical_id: str
    type: str
    physical_id: str
    template: Dict[str, Any]
    properties: Dict[str, Any]
    attributes: Dict[str, Any] = field(default_factory=dict)
    deletion_policy: str = DeletionPolicy.DELETE.value


@dataclass
class LiveStack:
    name: str
    resources: Dict[str, LiveResource] = field(default_factory=dict)
    outputs: Dict[str, str] = field(default_factory=dict)
    exports: List[str] = field(default_factory=list)
    imports: List[str] = field(default_factory=list)


@dataclass
class Registry:
    """An image registry and the image tags pushed to it."""

    name: str
    stack_name: str
    logical_id: str
    images: List[str] = field(default_factory=list)


class _StackResolver:
    """Resolves tokens against one stack's live resources."""

    def __init__(self, engine: "InMemoryEngine", stack: LiveStack) -> None:
        self._engine = engine
        self._stack = stack

    def _resource(self, logical_id: str) -> LiveResource:
        try:
            return self._stack.resources[logical_id]
        except KeyError:
            raise ProvisioningError(
                f"Unresolved resource dependency '{logical_id}'",
                details={"stack": self._stack.name},
            ) from None

    def ref(self, logical_id: str) -> Any:
        return self._resource(logical_id).physical_id

    def get_att(self, logical_id: str, attribute: str) -> Any:
        resource = self._resource(logical_id)
        if attribute not in resource.attributes:
            raise ProvisioningError(
                f"Template error: resource {logical_id} does not support attribute "
                f"type {attribute} in Fn::GetAtt",
                details={"stack": self._stack.name},
            )
        return resource.attributes[attribute]

    def import_value(self, export_name: str) -> Any:
        try:
            return self._engine.exports[export_name][1]
        except KeyError:
            raise ProvisioningError(
                f"No export named {export_name} found",
                details={"stack": self._stack.name},
            ) from None

    def pseudo(self, name: str) -> str:
        values = {
            "AWS::Region": self._engine.region,
            "AWS::AccountId": self._engine.account_id,
            "AWS::Partition": "aws",
            "AWS::URLSuffix": URL_SUFFIX,
            "AWS::StackName": self._stack.name,
        }
        try:
            return values[name]
        except KeyError:
            raise ProvisioningError(
                f"Unsupported pseudo parameter {name}",
                details={"stack": self._stack.name},
            ) from None


class InMemoryEngine:
    """Provisioning engine backed by process memory (and optionally a state file)."""

    def __init__(
        self,
        region: str = "us-east-1",
        account_id: str = DEFAULT_ACCOUNT_ID,
        state_file: Optional[Path] = None,
    ) -> None:
        self.region = region
        self.account_id = account_id
        self.state_file = state_file
        self.stacks: Dict[str, LiveStack] = {}
        self.parameters: Dict[str, str] = {}
        # export name -> (exporting stack, value)
        self.exports: Dict[str, Tuple[str, str]] = {}
        self.registries: Dict[str, Registry] = {}
        self.orphans: List[LiveResource] = []
        self._sequence = 0

        if state_file is not None and state_file.exists():
            self._load(state_file)

    # -- queries ---------------------------------------------------------

    def is_deployed(self, stack_name: str) -> bool:
        return stack_name in self.stacks

    def outputs(self, stack_name: str) -> Dict[str, str]:
        stack = self._stack(stack_name)
        return dict(stack.outputs)

    def get_parameter(self, key: str) -> Optional[str]:
        return self.parameters.get(key)

    def push_image(self, registry_name: str, tag: str) -> None:
        """Record an image pushed to a registry."""
        try:
            self.registries[registry_name].images.append(tag)
        except KeyError:
            raise ProvisioningError(
                f"The repository with name '{registry_name}' does not exist",
                details={"registry": registry_name},
            ) from None

    def importers(self, export_name: str) -> List[str]:
        """Stacks currently importing ``export_name``."""
        return [s.name for s in self.stacks.values() if export_name in s.imports]

    # -- reconciliation --------------------------------------------------

    def plan(self, unit: DeploymentUnit) -> ChangeSet:
        """Diff the unit's template against live state without changing anything."""
        unit.validate()
        stack = self.stacks.get(unit.stack_name) or LiveStack(name=unit.stack_name)
        changes: List[ResourceChange] = []

        for logical_id in unit.creation_order():
            desired = unit.resources[logical_id]
            live = stack.resources.get(logical_id)
            if live is None:
                changes.append(ResourceChange(logical_id, desired.type, ChangeAction.CREATE))
            elif live.type != desired.type or live.template != _template_of(desired):
                changes.append(
                    ResourceChange(logical_id, desired.type, ChangeAction.UPDATE, live.physical_id)
                )

        for logical_id in reversed(list(stack.resources)):
            if logical_id in unit.resources:
                continue
            live = stack.resources[logical_id]
            action = (
                ChangeAction.RETAIN
                if live.deletion_policy == DeletionPolicy.RETAIN.value
                else ChangeAction.DELETE
            )
            changes.append(ResourceChange(logical_id, live.type, action, live.physical_id))

        return ChangeSet(stack_name=unit.stack_name, changes=changes)

    def apply(self, unit: DeploymentUnit) -> ChangeSet:
        change_set = self.plan(unit)
        log = logger.bind(stack=unit.stack_name)
        snapshot = self._snapshot()

        try:
            self._apply(unit, change_set)
        except ProvisioningError as exc:
            self._restore(snapshot)
            log.error("stack_rolled_back", error=exc.message)
            raise exc.with_context(stack=unit.stack_name)

        if change_set.is_empty:
            log.info("stack_unchanged")
        else:
            log.info("stack_reconciled", changes=change_set.summary())
        self._save()
        return change_set

    def destroy(self, stack_name: str) -> ChangeSet:
        """Delete a stack; retained resources are kept as orphans."""
        stack = self.stacks.get(stack_name)
        if stack is None:
            return ChangeSet(stack_name=stack_name)

        for export_name in stack.exports:
            importers = self.importers(export_name)
            if importers:
                raise ProvisioningError(
                    f"Export {export_name} cannot be deleted as it is in use by "
                    f"{', '.join(importers)}",
                    details={"stack": stack_name, "export": export_name},
                )

        snapshot = self._snapshot()
        changes: List[ResourceChange] = []
        try:
            for live in reversed(list(stack.resources.values())):
                if live.deletion_policy == DeletionPolicy.RETAIN.value:
                    self.orphans.append(live)
                    changes.append(
                        ResourceChange(
                            live.logical_id, live.type, ChangeAction.RETAIN, live.physical_id
                        )
                    )
                    continue
                self._delete_resource(stack, live)
                changes.append(
                    ResourceChange(
                        live.logical_id, live.type, ChangeAction.DELETE, live.physical_id
                    )
                )
        except ProvisioningError as exc:
            self._restore(snapshot)
            logger.error("stack_delete_failed", stack=stack_name, error=exc.message)
            raise exc.with_context(stack=stack_name)

        for export_name in stack.exports:
            self.exports.pop(export_name, None)
        del self.stacks[stack_name]

        change_set = ChangeSet(stack_name=stack_name, changes=changes)
        logger.info("stack_deleted", stack=stack_name, retained=len(change_set.retained))
        self._save()
        return change_set

    def _apply(self, unit: DeploymentUnit, change_set: ChangeSet) -> None:
        for export_name in sorted(unit.imported_exports()):
            if export_name not in self.exports:
                raise ProvisioningError(
                    f"No export named {export_name} found", details={"export": export_name}
                )

        stack = self.stacks.setdefault(unit.stack_name, LiveStack(name=unit.stack_name))
        resolver = _StackResolver(self, stack)

        for change in change_set.changes:
            if change.action == ChangeAction.CREATE:
                self._create_resource(stack, unit, change.logical_id, resolver)
            elif change.action == ChangeAction.UPDATE:
                self._update_resource(stack, unit, change.logical_id, resolver)
            elif change.action == ChangeAction.DELETE:
                self._delete_resource(stack, stack.resources[change.logical_id])
            elif change.action == ChangeAction.RETAIN:
                self.orphans.append(stack.resources.pop(change.logical_id))

        self._publish_outputs(stack, unit, resolver)
        stack.imports = sorted(unit.imported_exports())

    def _create_resource(
        self, stack: LiveStack, unit: DeploymentUnit, logical_id: str, resolver: _StackResolver
    ) -> None:
        desired = unit.resources[logical_id]
        properties = resolve(desired.properties, resolver)
        physical_id, attributes = self._materialize(stack, logical_id, desired.type, properties)
        self._claim(stack, logical_id, desired.type, properties)

        stack.resources[logical_id] = LiveResource(
            logical_id=logical_id,
            type=desired.type,
            physical_id=physical_id,
            template=_template_of(desired),
            properties=properties,
            attributes=attributes,
            deletion_policy=desired.deletion_policy.value,
        )
        logger.debug("resource_created", stack=stack.name, resource=logical_id, type=desired.type)

    def _update_resource(
        self, stack: LiveStack, unit: DeploymentUnit, logical_id: str, resolver: _StackResolver
    ) -> None:
        live = stack.resources[logical_id]
        desired = unit.resources[logical_id]
        properties = resolve(desired.properties, resolver)
        # Registry keeps its images while its name is unchanged
        name = _global_name(desired.type, properties)
        if name is not None and name != live.physical_id:
            self._release(stack, live)
            self._claim(stack, logical_id, desired.type, properties)
            live.physical_id, live.attributes = self._materialize(
                stack, logical_id, desired.type, properties
            )

        live.type = desired.type
        live.template = _template_of(desired)
        live.properties = properties
        live.deletion_policy = desired.deletion_policy.value
        if desired.type == "AWS::SSM::Parameter":
            live.attributes["Value"] = properties["Value"]
            self.parameters[live.physical_id] = str(properties["Value"])
        logger.debug("resource_updated", stack=stack.name, resource=logical_id)

    def _delete_resource(self, stack: LiveStack, live: LiveResource) -> None:
        if live.type == "AWS::ECR::Repository":
            registry = self.registries.get(live.physical_id)
            empty_on_delete = live.properties.get("EmptyOnDelete", False)
            if registry is not None and registry.images and not empty_on_delete:
                raise ProvisioningError(
                    f"The repository with name '{registry.name}' cannot be deleted "
                    "because it still contains images",
                    details={"stack": stack.name, "registry": registry.name},
                )
        self._release(stack, live)
        stack.resources.pop(live.logical_id, None)
        logger.debug("resource_deleted", stack=stack.name, resource=live.logical_id)

    def _claim(
        self, stack: LiveStack, logical_id: str, resource_type: str, properties: Dict[str, Any]
    ) -> None:
        """Take ownership of globally named things (registries, parameters)."""
        if resource_type == "AWS::ECR::Repository":
            name = properties["RepositoryName"]
            existing = self.registries.get(name)
            if existing is not None and (existing.stack_name, existing.logical_id) != (
                stack.name,
                logical_id,
            ):
                raise ProvisioningError(
                    f"Resource of type 'AWS::ECR::Repository' with identifier '{name}' "
                    "already exists",
                    details={"registry": name, "owner": existing.stack_name},
                )
            self.registries[name] = existing or Registry(name, stack.name, logical_id)
        elif resource_type == "AWS::SSM::Parameter":
            key = properties["Name"]
            owner = self._parameter_owner(key)
            if owner is not None and owner != (stack.name, logical_id):
                raise ProvisioningError(
                    f"Parameter '{key}' already exists",
                    details={"key": key, "owner": owner[0]},
                )
            self.parameters[key] = str(properties["Value"])

    def _release(self, stack: LiveStack, live: LiveResource) -> None:
        if live.type == "AWS::ECR::Repository":
            self.registries.pop(live.physical_id, None)
        elif live.type == "AWS::SSM::Parameter":
            self.parameters.pop(live.physical_id, None)

    def _parameter_owner(self, key: str) -> Optional[Tuple[str, str]]:
        for stack in self.stacks.values():
            for live in stack.resources.values():
                if live.type == "AWS::SSM::Parameter" and live.physical_id == key:
                    return stack.name, live.logical_id
        return None

    def _publish_outputs(
        self, stack: LiveStack, unit: DeploymentUnit, resolver: _StackResolver
    ) -> None:
        desired_exports = unit.exports()

        for export_name in stack.exports:
            if export_name in desired_exports:
                continue
            importers = self.importers(export_name)
            if importers:
                raise ProvisioningError(
                    f"Cannot delete export {export_name} as it is in use by "
                    f"{', '.join(importers)}",
                    details={"export": export_name},
                )

        outputs: Dict[str, str] = {}
        for name, output in unit.outputs.items():
            value = resolve(output.value, resolver)
            outputs[name] = ",".join(value) if isinstance(value, list) else str(value)

        for export_name, output in desired_exports.items():
            owner = self.exports.get(export_name)
            if owner is not None and owner[0] != stack.name:
                raise ProvisioningError(
                    f"Export with name {export_name} is already exported by stack {owner[0]}",
                    details={"export": export_name},
                )

        for export_name in stack.exports:
            self.exports.pop(export_name, None)
        for export_name, output in desired_exports.items():
            self.exports[export_name] = (stack.name, outputs[output.name])

        stack.outputs = outputs
        stack.exports = list(desired_exports)

    def _materialize(
        self, stack: LiveStack, logical_id: str, resource_type: str, properties: Dict[str, Any]
    ) -> Tuple[str, Dict[str, Any]]:
        """Physical id and GetAtt attributes for a newly created resource."""
        self._sequence += 1
        seq = self._sequence
        arn_prefix = f"arn:aws:{{}}:{self.region}:{self.account_id}"
        generated = f"{stack.name}-{logical_id}-{seq:06d}"

        if resource_type == "AWS::ECR::Repository":
            name = properties["RepositoryName"]
            return name, {
                "Arn": f"{arn_prefix.format('ecr')}:repository/{name}",
                "RepositoryUri": f"{self.account_id}.dkr.ecr.{self.region}.{URL_SUFFIX}/{name}",
            }
        if resource_type == "AWS::SSM::Parameter":
            return properties["Name"], {
                "Type": properties.get("Type"),
                "Value": properties["Value"],
            }
        if resource_type == "AWS::ECS::Cluster":
            name = properties.get("ClusterName") or generated
            return name, {"Arn": f"{arn_prefix.format('ecs')}:cluster/{name}"}
        if resource_type == "AWS::IAM::Role":
            name = properties.get("RoleName") or generated
            return name, {
                "Arn": f"arn:aws:iam::{self.account_id}:role/{name}",
                "RoleId": f"AROA{seq:017d}",
            }
        if resource_type == "AWS::Logs::LogGroup":
            name = properties.get("LogGroupName") or generated
            return name, {"Arn": f"{arn_prefix.format('logs')}:log-group:{name}:*"}
        if resource_type == "AWS::ECS::TaskDefinition":
            family = properties.get("Family") or generated
            arn = f"{arn_prefix.format('ecs')}:task-definition/{family}:{seq}"
            return arn, {"TaskDefinitionArn": arn}
        if resource_type == "AWS::ECS::Service":
            name = properties.get("ServiceName") or generated
            arn = f"{arn_prefix.format('ecs')}:service/{properties.get('Cluster')}/{name}"
            return arn, {"Name": name, "ServiceArn": arn}
        if resource_type == "AWS::ElasticLoadBalancingV2::LoadBalancer":
            name = f"{logical_id[:20]}-{seq:06d}"
            arn = f"{arn_prefix.format('elasticloadbalancing')}:loadbalancer/app/{name}/{seq:016x}"
            return arn, {
                "DNSName": f"{name}.{self.region}.elb.{URL_SUFFIX}".lower(),
                "LoadBalancerFullName": f"app/{name}/{seq:016x}",
                "LoadBalancerArn": arn,
            }
        if resource_type == "AWS::ElasticLoadBalancingV2::TargetGroup":
            elb = arn_prefix.format("elasticloadbalancing")
            arn = f"{elb}:targetgroup/{logical_id[:20]}/{seq:016x}"
            return arn, {"TargetGroupArn": arn}
        if resource_type == "AWS::ElasticLoadBalancingV2::Listener":
            arn = f"{arn_prefix.format('elasticloadbalancing')}:listener/app/{seq:016x}"
            return arn, {"ListenerArn": arn}

        prefix = _ID_PREFIXES.get(resource_type)
        physical_id = f"{prefix}-{seq:017x}" if prefix else generated
        attributes: Dict[str, Any] = {}
        if resource_type == "AWS::EC2::VPC":
            attributes = {"VpcId": physical_id, "CidrBlock": properties.get("CidrBlock")}
        elif resource_type == "AWS::EC2::Subnet":
            attributes = {
                "SubnetId": physical_id,
                "AvailabilityZone": properties.get("AvailabilityZone"),
            }
        elif resource_type == "AWS::EC2::SecurityGroup":
            attributes = {"GroupId": physical_id, "VpcId": properties.get("VpcId")}
        return physical_id, attributes

    # -- persistence -----------------------------------------------------

    def _snapshot(self) -> Dict[str, Any]:
        return copy.deepcopy(
            {
                "stacks": self.stacks,
                "parameters": self.parameters,
                "exports": self.exports,
                "registries": self.registries,
                "orphans": self.orphans,
                "sequence": self._sequence,
            }
        )

    def _restore(self, snapshot: Dict[str, Any]) -> None:
        self.stacks = snapshot["stacks"]
        self.parameters = snapshot["parameters"]
        self.exports = snapshot["exports"]
        self.registries = snapshot["registries"]
        self.orphans = snapshot["orphans"]
        self._sequence = snapshot["sequence"]

    def _save(self) -> None:
        if self.state_file is None:
            return
        state = {
            "stacks": {name: asdict(stack) for name, stack in self.stacks.items()},
            "parameters": self.parameters,
            "exports": {name: list(owner) for name, owner in self.exports.items()},
            "registries": {name: asdict(r) for name, r in self.registries.items()},
            "orphans": [asdict(o) for o in self.orphans],
            "sequence": self._sequence,
        }
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        self.state_file.write_text(json.dumps(state, indent=2))

    def _load(self, path: Path) -> None:
        try:
            state = json.loads(path.read_text())
        except (OSError, json.JSONDecodeError) as exc:
            raise ProvisioningError(
                f"Cannot read engine state from {path}: {exc}", details={"path": str(path)}
            ) from exc

        for name, data in state.get("stacks", {}).items():
            resources = {
                lid: LiveResource(**resource) for lid, resource in data.pop("resources").items()
            }
            self.stacks[name] = LiveStack(resources=resources, **data)
        self.parameters = dict(state.get("parameters", {}))
        self.exports = {name: (o[0], o[1]) for name, o in state.get("exports", {}).items()}
        self.registries = {
            name: Registry(**data) for name, data in state.get("registries", {}).items()
        }
        self.orphans = [LiveResource(**o) for o in state.get("orphans", [])]
        self._sequence = int(state.get("sequence", 0))
        logger.debug("engine_state_loaded", path=str(path), stacks=len(self.stacks))

    def _stack(self, stack_name: str) -> LiveStack:
        try:
            return self.stacks[stack_name]
        except KeyError:
            raise ProvisioningError(
                f"Stack with id {stack_name} does not exist", details={"stack": stack_name}
            ) from None


def _global_name(resource_type: str, properties: Dict[str, Any]) -> Optional[str]:
    if resource_type == "AWS::ECR::Repository":
        return properties.get("RepositoryName")
    if resource_type == "AWS::SSM::Parameter":
        return properties.get("Name")
    return None


def _template_of(resource: Resource) -> Dict[str, Any]:
    """The template-level view of a resource that change detection compares."""
    return {
        "Properties": render(resource.properties),
        "DependsOn": list(resource.depends_on),
        "DeletionPolicy": resource.deletion_policy.value,
    }
