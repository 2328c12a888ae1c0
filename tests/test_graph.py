"""Tests for the deployment graph: ordering, unit models and evaluation."""

import pytest

from ecsdeploy.core.errors import ConfigurationError, ProvisioningError, ResolutionError
from ecsdeploy.engine.base import ChangeAction
from ecsdeploy.graph import DeletionPolicy, DeploymentUnit, Resource, topological_order
from ecsdeploy.graph.context import (
    ChainedParameterResolver,
    DeclaredParameterResolver,
    EvaluationContext,
    UnitBuild,
)
from ecsdeploy.graph.evaluator import DeploymentGraph
from ecsdeploy.graph.tokens import GetAtt, ImportValue, Ref
from ecsdeploy.units import build_deployment_graph
from ecsdeploy.units.foundation import FoundationProvisioner
from ecsdeploy.units.topology import ServiceTopologyProvisioner


class StaticProvisioner:
    """Provisioner declaring a fixed list of resources."""

    def __init__(self, name, resources=(), fail_with=None):
        self._name = name
        self._resources = resources
        self._fail_with = fail_with
        self.built = 0

    @property
    def name(self):
        return self._name

    @property
    def stack_name(self):
        return f"test-{self._name}"

    def build(self, ctx):
        self.built += 1
        if self._fail_with is not None:
            raise self._fail_with
        unit = DeploymentUnit(name=self._name, stack_name=self.stack_name)
        for resource in self._resources:
            unit.add(resource)
        return UnitBuild(unit=unit)


class TestTopologicalOrder:
    def test_dependencies_first(self):
        order = topological_order(["c", "b", "a"], {"c": ["a", "b"], "b": ["a"]})
        assert order == ["a", "b", "c"]

    def test_declaration_order_breaks_ties(self):
        assert topological_order(["x", "y", "z"], {}) == ["x", "y", "z"]
        assert topological_order(["z", "y", "x"], {}) == ["z", "y", "x"]

    def test_undeclared_dependency(self):
        with pytest.raises(ConfigurationError, match="undeclared unit 'ghost'") as exc_info:
            topological_order(["a"], {"a": ["ghost"]}, kind="unit")
        assert exc_info.value.details["unit"] == "a"

    def test_cycle(self):
        with pytest.raises(ConfigurationError, match="Dependency cycle") as exc_info:
            topological_order(["a", "b", "c"], {"a": ["b"], "b": ["a"]})
        assert exc_info.value.details["cycle"] == "a, b"


class TestDeploymentUnit:
    def test_duplicate_logical_id_rejected(self):
        unit = DeploymentUnit(name="u", stack_name="s")
        unit.add(Resource("Bucket", "AWS::S3::Bucket"))
        with pytest.raises(ConfigurationError, match="Duplicate resource 'Bucket'"):
            unit.add(Resource("Bucket", "AWS::S3::Bucket"))

    def test_creation_order_follows_references(self):
        unit = DeploymentUnit(name="u", stack_name="s")
        unit.add(Resource("Listener", "L", {"LoadBalancerArn": Ref("Alb")}))
        unit.add(Resource("Alb", "A", {"SecurityGroups": [Ref("Sg")]}))
        unit.add(Resource("Sg", "G"))
        unit.add(Resource("Service", "S", depends_on=["Listener"]))
        assert unit.creation_order() == ["Sg", "Alb", "Listener", "Service"]

    def test_validate_rejects_output_to_undeclared_resource(self):
        unit = DeploymentUnit(name="u", stack_name="s")
        unit.add_output("Dns", GetAtt("Missing", "DNSName"))
        with pytest.raises(ConfigurationError, match="undeclared resource 'Missing'"):
            unit.validate()

    def test_validate_tags_unit_on_reference_cycle(self):
        unit = DeploymentUnit(name="u", stack_name="s")
        unit.add(Resource("A", "T", {"X": Ref("B")}))
        unit.add(Resource("B", "T", {"X": Ref("A")}))
        with pytest.raises(ConfigurationError) as exc_info:
            unit.validate()
        assert exc_info.value.details["unit"] == "u"

    def test_cannot_depend_on_itself(self):
        unit = DeploymentUnit(name="u", stack_name="s")
        with pytest.raises(ConfigurationError, match="cannot depend on itself"):
            unit.add_dependency("u")

    def test_publish_parameter_records_declaration(self):
        unit = DeploymentUnit(name="u", stack_name="s")
        resource = unit.publish_parameter("Param", "/demo/key", "value", "A key")
        assert resource.type == "AWS::SSM::Parameter"
        assert resource.properties["Name"] == "/demo/key"
        assert unit.parameters["/demo/key"].value == "value"
        assert resource.deletion_policy == DeletionPolicy.DELETE

    def test_imported_exports_and_exports(self):
        unit = DeploymentUnit(name="u", stack_name="s")
        unit.add(Resource("Sg", "G", {"VpcId": ImportValue("infra-VpcId")}))
        unit.add_output("SgId", Ref("Sg"), export_name="s-SgId")
        unit.add_output("Local", Ref("Sg"))
        assert unit.imported_exports() == {"infra-VpcId"}
        assert list(unit.exports()) == ["s-SgId"]


class TestParameterResolvers:
    def test_declared_resolver(self):
        unit = DeploymentUnit(name="u", stack_name="s")
        unit.publish_parameter("Param", "/demo/key", "demo-app")
        resolver = DeclaredParameterResolver({"u": unit})
        assert resolver.resolve("/demo/key") == "demo-app"
        with pytest.raises(ResolutionError):
            resolver.resolve("/demo/other")

    def test_chained_resolver_falls_through(self):
        unit = DeploymentUnit(name="u", stack_name="s")
        unit.publish_parameter("Param", "/demo/key", "declared")
        empty = DeclaredParameterResolver({})
        resolver = ChainedParameterResolver(empty, DeclaredParameterResolver({"u": unit}))
        assert resolver.resolve("/demo/key") == "declared"

    def test_chained_resolver_reraises_last_error(self):
        resolver = ChainedParameterResolver(DeclaredParameterResolver({}))
        with pytest.raises(ResolutionError, match="/demo/missing"):
            resolver.resolve("/demo/missing")


class TestEvaluationContext:
    def test_handle_requires_declared_dependency(self):
        ctx = EvaluationContext(
            deployment="demo",
            unit_name="topology",
            dependencies=("registry",),
            resolver=DeclaredParameterResolver({}),
            handles={"registry": {}, "foundation": object()},
        )
        assert ctx.handle("registry") == {}
        with pytest.raises(ConfigurationError, match="without declaring a dependency"):
            ctx.handle("foundation")


class TestDeploymentGraph:
    def test_unit_order(self, graph):
        assert graph.order() == ["registry", "foundation", "topology"]
        assert graph.dependencies("topology") == ["registry", "foundation"]

    def test_invalid_deployment_name(self):
        with pytest.raises(ConfigurationError):
            build_deployment_graph("")

    def test_add_dependency_validation(self):
        graph = DeploymentGraph("demo")
        graph.register(StaticProvisioner("a"))
        with pytest.raises(ConfigurationError, match="not registered"):
            graph.add_dependency("a", "b")
        with pytest.raises(ConfigurationError, match="cannot depend on itself"):
            graph.add_dependency("a", "a")

    def test_duplicate_registration(self):
        graph = DeploymentGraph("demo")
        graph.register(StaticProvisioner("a"))
        with pytest.raises(ConfigurationError, match="already registered"):
            graph.register(StaticProvisioner("a"))

    def test_unit_cycle(self):
        graph = DeploymentGraph("demo")
        graph.register(StaticProvisioner("a"))
        graph.register(StaticProvisioner("b"))
        graph.add_dependency("a", "b")
        graph.add_dependency("b", "a")
        with pytest.raises(ConfigurationError, match="Dependency cycle between units"):
            graph.order()

    def test_synthesize_copies_edges_onto_units(self, graph):
        units = graph.synthesize()
        assert [u.name for u in units] == ["registry", "foundation", "topology"]
        assert units[2].dependencies == ["registry", "foundation"]
        assert units[0].dependencies == []

    def test_deploy_records_outputs(self, graph, engine):
        result = graph.deploy(engine)
        assert result.success
        assert result.completed == ["registry", "foundation", "topology"]
        assert set(result.outputs["topology"]) == {"WorldALBDNS", "HelloALBDNS"}
        assert result.total_created > 0

    def test_deploy_stops_at_first_failure(self, engine):
        graph = DeploymentGraph("demo")
        first = graph.register(
            StaticProvisioner("first", [Resource("Sg", "AWS::EC2::SecurityGroup")])
        )
        broken = graph.register(
            StaticProvisioner("broken", fail_with=ProvisioningError("quota exceeded"))
        )
        last = graph.register(StaticProvisioner("last"))
        graph.add_dependency(broken.name, first.name)
        graph.add_dependency(last.name, broken.name)

        result = graph.deploy(engine)

        assert not result.success
        assert result.completed == ["first"]
        assert result.failed_unit == "broken"
        assert result.error.details["step"] == "apply"
        assert last.built == 0
        # Completed units stay deployed
        assert engine.is_deployed("test-first")

    def test_deploy_without_registries_fails_resolution(self, engine):
        """Topology cannot resolve registry names that were never published."""
        graph = DeploymentGraph("demo")
        foundation = graph.register(FoundationProvisioner("demo"))
        topology = graph.register(ServiceTopologyProvisioner("demo"))
        graph.add_dependency(topology.name, foundation.name)

        result = graph.deploy(engine)

        assert isinstance(result.error, ResolutionError)
        assert result.failed_unit == "topology"
        assert result.error.details["step"] == "resolve_registries"
        assert result.error.details["key"] == "/demo/worldRepositoryName"
        assert not engine.is_deployed("demo-app")

    def test_plan_before_deploy_shows_full_creation(self, graph, engine):
        plan = graph.plan(engine)

        assert plan.success
        assert plan.order == ["registry", "foundation", "topology"]
        assert len(plan.warnings) == 1
        assert "registry, foundation not deployed" in plan.warnings[0]
        topology = plan.change_sets["topology"]
        assert all(c.action == ChangeAction.CREATE for c in topology.changes)
        assert len(topology.changes) == len(graph.synthesize()[2].resources)
        # Planning never touches live state
        assert engine.stacks == {}

    def test_plan_after_deploy_is_empty(self, graph, deployed):
        plan = graph.plan(deployed)
        assert plan.success
        assert plan.warnings == []
        assert plan.total_changes == 0

    def test_plan_reports_error(self):
        graph = DeploymentGraph("demo")
        graph.register(StaticProvisioner("a", fail_with=ConfigurationError("bad input")))
        plan = graph.plan(None)
        assert not plan.success
        assert plan.error.details["unit"] == "a"

    def test_destroy_reverse_order(self, graph, deployed):
        result = graph.destroy(deployed)
        assert result.success
        assert result.order == ["topology", "foundation", "registry"]
        assert result.completed == ["topology", "foundation", "registry"]
        assert deployed.stacks == {}

    def test_destroy_skips_undeployed_units(self, graph, engine):
        result = graph.destroy(engine)
        assert result.success
        assert result.completed == []

    def test_outputs_of_deployed_units(self, graph, deployed):
        outputs = graph.outputs(deployed)
        assert list(outputs) == ["registry", "foundation", "topology"]
        assert outputs["registry"]["appRepositoryURI"].endswith("/demo-app")
