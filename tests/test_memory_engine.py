"""Tests for the in-memory provisioning engine."""

import pytest

from ecsdeploy.core.errors import ProvisioningError
from ecsdeploy.engine.base import ChangeAction
from ecsdeploy.engine.memory import InMemoryEngine
from ecsdeploy.graph.models import DeletionPolicy, DeploymentUnit, Resource
from ecsdeploy.graph.tokens import GetAtt, ImportValue, Ref
from ecsdeploy.units import build_deployment_graph


def _squatter(registry_name):
    """A stack from another deployment that owns a registry name."""
    unit = DeploymentUnit(name="squatter", stack_name="other-docker")
    unit.add(Resource("Repo", "AWS::ECR::Repository", {"RepositoryName": registry_name}))
    return unit


class TestApply:
    def test_creates_in_dependency_order(self, engine):
        unit = DeploymentUnit(name="u", stack_name="s")
        unit.add(
            Resource(
                "Listener",
                "AWS::ElasticLoadBalancingV2::Listener",
                {"LoadBalancerArn": Ref("Alb")},
            )
        )
        unit.add(Resource("Alb", "AWS::ElasticLoadBalancingV2::LoadBalancer", {}))
        unit.add_output("Dns", GetAtt("Alb", "DNSName"))

        change_set = engine.apply(unit)

        assert [c.logical_id for c in change_set.creations] == ["Alb", "Listener"]
        stack = engine.stacks["s"]
        assert stack.resources["Listener"].properties["LoadBalancerArn"] == (
            stack.resources["Alb"].physical_id
        )
        assert engine.outputs("s")["Dns"] == stack.resources["Alb"].attributes["DNSName"]

    def test_unknown_attribute(self, engine):
        unit = DeploymentUnit(name="u", stack_name="s")
        unit.add(Resource("Vpc", "AWS::EC2::VPC", {"CidrBlock": "10.0.0.0/16"}))
        unit.add_output("Dns", GetAtt("Vpc", "DNSName"))
        with pytest.raises(ProvisioningError, match="does not support attribute"):
            engine.apply(unit)
        assert not engine.is_deployed("s")

    def test_missing_import(self, engine):
        unit = DeploymentUnit(name="u", stack_name="s")
        unit.add(Resource("Sg", "AWS::EC2::SecurityGroup", {"VpcId": ImportValue("nope")}))
        with pytest.raises(ProvisioningError, match="No export named nope") as exc_info:
            engine.apply(unit)
        assert exc_info.value.details["stack"] == "s"

    def test_outputs_of_unknown_stack(self, engine):
        with pytest.raises(ProvisioningError, match="does not exist"):
            engine.outputs("ghost")


class TestIdempotence:
    def test_second_deploy_changes_nothing(self, graph, deployed):
        before = {name: dict(s.resources) for name, s in deployed.stacks.items()}

        result = graph.deploy(deployed)

        assert result.success
        assert all(cs.is_empty for cs in result.change_sets.values())
        for name, resources in before.items():
            for logical_id, live in resources.items():
                assert deployed.stacks[name].resources[logical_id].physical_id == live.physical_id

    def test_update_in_place_keeps_pushed_images(self, engine):
        unit = DeploymentUnit(name="u", stack_name="s")
        unit.add(Resource("Repo", "AWS::ECR::Repository", {"RepositoryName": "r"}))
        engine.apply(unit)
        engine.push_image("r", "v1")

        unit.resources["Repo"].properties["ImageScanningConfiguration"] = {"ScanOnPush": True}
        change_set = engine.apply(unit)

        assert [c.action for c in change_set.changes] == [ChangeAction.UPDATE]
        assert engine.registries["r"].images == ["v1"]

    def test_parameter_value_update(self, engine):
        unit = DeploymentUnit(name="u", stack_name="s")
        unit.publish_parameter("Param", "/demo/key", "one")
        engine.apply(unit)
        unit.resources["Param"].properties["Value"] = "two"
        engine.apply(unit)
        assert engine.get_parameter("/demo/key") == "two"

    def test_renamed_registry_refreshes_attributes(self, engine):
        unit = DeploymentUnit(name="u", stack_name="s")
        unit.add(Resource("Repo", "AWS::ECR::Repository", {"RepositoryName": "old"}))
        unit.add_output("Uri", GetAtt("Repo", "RepositoryUri"))
        engine.apply(unit)

        unit.resources["Repo"].properties["RepositoryName"] = "new"
        engine.apply(unit)

        live = engine.stacks["s"].resources["Repo"]
        assert live.physical_id == "new"
        assert live.attributes["Arn"].endswith(":repository/new")
        assert engine.outputs("s")["Uri"].endswith("/new")
        assert list(engine.registries) == ["new"]

    def test_renamed_parameter_moves_key(self, engine):
        unit = DeploymentUnit(name="u", stack_name="s")
        unit.publish_parameter("Param", "/demo/old", "value")
        unit.add_output("Stored", GetAtt("Param", "Value"))
        engine.apply(unit)

        unit.resources["Param"].properties["Name"] = "/demo/new"
        engine.apply(unit)

        assert engine.get_parameter("/demo/old") is None
        assert engine.get_parameter("/demo/new") == "value"
        assert engine.stacks["s"].resources["Param"].physical_id == "/demo/new"
        assert engine.outputs("s")["Stored"] == "value"

    def test_removed_resource_is_deleted(self, engine):
        unit = DeploymentUnit(name="u", stack_name="s")
        unit.add(Resource("Keep", "AWS::EC2::VPC", {}))
        unit.add(Resource("Drop", "AWS::EC2::InternetGateway", {}))
        engine.apply(unit)
        del unit.resources["Drop"]

        change_set = engine.apply(unit)

        assert [(c.logical_id, c.action) for c in change_set.changes] == [
            ("Drop", ChangeAction.DELETE)
        ]
        assert "Drop" not in engine.stacks["s"].resources


class TestTeardown:
    def test_destroy_removes_registries_with_images(self, graph, deployed):
        deployed.push_image("demo-app", "latest")
        deployed.push_image("demo-world-app", "latest")

        result = graph.destroy(deployed)

        assert result.success
        assert deployed.registries == {}
        assert deployed.parameters == {}
        assert all(o.type != "AWS::ECR::Repository" for o in deployed.orphans)

    def test_log_groups_are_retained(self, graph, deployed):
        result = graph.destroy(deployed)
        retained = result.change_sets["topology"].retained
        assert [c.logical_id for c in retained] == ["HelloLogGroup", "WorldLogGroup"]
        assert {o.logical_id for o in deployed.orphans} == {"HelloLogGroup", "WorldLogGroup"}

    def test_redeploy_after_destroy(self, graph, deployed):
        graph.destroy(deployed).raise_for_error()
        result = graph.deploy(deployed)
        assert result.success
        assert deployed.get_parameter("/demo/appRepositoryName") == "demo-app"

    def test_registry_with_images_needs_empty_on_delete(self, engine):
        unit = DeploymentUnit(name="u", stack_name="s")
        unit.add(Resource("Repo", "AWS::ECR::Repository", {"RepositoryName": "r"}))
        engine.apply(unit)
        engine.push_image("r", "v1")

        with pytest.raises(ProvisioningError, match="still contains images"):
            engine.destroy("s")
        # Failed teardown leaves the stack as it was
        assert engine.is_deployed("s")
        assert engine.registries["r"].images == ["v1"]

    def test_export_in_use_blocks_destroy(self, deployed):
        with pytest.raises(ProvisioningError, match="in use by demo-app") as exc_info:
            deployed.destroy("demo-infra")
        assert exc_info.value.details["stack"] == "demo-infra"
        assert deployed.is_deployed("demo-infra")
        assert deployed.importers("demo-infra-VpcId") == ["demo-app"]

    def test_destroy_unknown_stack(self, engine):
        assert engine.destroy("ghost").is_empty

    def test_retain_policy_on_removed_resource(self, engine):
        unit = DeploymentUnit(name="u", stack_name="s")
        unit.add(
            Resource("Logs", "AWS::Logs::LogGroup", {}, deletion_policy=DeletionPolicy.RETAIN)
        )
        engine.apply(unit)
        del unit.resources["Logs"]

        change_set = engine.apply(unit)

        assert change_set.retained[0].logical_id == "Logs"
        assert engine.orphans[0].logical_id == "Logs"


class TestCollisions:
    def test_registry_name_taken_by_other_stack(self, graph, engine):
        engine.apply(_squatter("demo-world-app"))

        result = graph.deploy(engine)

        assert isinstance(result.error, ProvisioningError)
        assert result.failed_unit == "registry"
        assert "demo-world-app' already exists" in result.error.message
        # Rolled back: no half-created registry stack, no leaked parameter
        assert not engine.is_deployed("demo-docker")
        assert "demo-app" not in engine.registries
        assert engine.get_parameter("/demo/appRepositoryName") is None
        assert result.completed == []

    def test_deployments_do_not_collide(self, engine):
        build_deployment_graph("blue").deploy(engine).raise_for_error()
        build_deployment_graph("green").deploy(engine).raise_for_error()
        assert {"blue-app", "blue-world-app", "green-app", "green-world-app"} <= set(
            engine.registries
        )

    def test_duplicate_export(self, engine):
        first = DeploymentUnit(name="a", stack_name="a")
        first.add(Resource("Vpc", "AWS::EC2::VPC", {}))
        first.add_output("VpcId", Ref("Vpc"), export_name="shared-VpcId")
        engine.apply(first)

        second = DeploymentUnit(name="b", stack_name="b")
        second.add(Resource("Vpc", "AWS::EC2::VPC", {}))
        second.add_output("VpcId", Ref("Vpc"), export_name="shared-VpcId")
        with pytest.raises(ProvisioningError, match="already exported by stack a"):
            engine.apply(second)
        assert not engine.is_deployed("b")


class TestPersistence:
    def test_state_survives_new_engine(self, graph, tmp_path):
        state_file = tmp_path / "state" / "memory-state.json"
        engine = InMemoryEngine(state_file=state_file)
        graph.deploy(engine).raise_for_error()
        engine.push_image("demo-app", "v1")

        reloaded = InMemoryEngine(state_file=state_file)

        assert reloaded.is_deployed("demo-app")
        assert reloaded.outputs("demo-app") == engine.outputs("demo-app")
        assert reloaded.get_parameter("/demo/worldRepositoryName") == "demo-world-app"
        assert reloaded.importers("demo-infra-ClusterName") == ["demo-app"]
        # push_image alone does not persist; only reconciliations do
        assert reloaded.registries["demo-app"].images == []
        assert graph.plan(reloaded).total_changes == 0

    def test_corrupt_state_file(self, tmp_path):
        state_file = tmp_path / "memory-state.json"
        state_file.write_text("{not json")
        with pytest.raises(ProvisioningError, match="Cannot read engine state"):
            InMemoryEngine(state_file=state_file)
