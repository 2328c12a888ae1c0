"""Tests for CloudFormation template synthesis."""

import json

import pytest
import yaml

from ecsdeploy.core.errors import ConfigurationError
from ecsdeploy.synth import dump_template, synthesize_unit, write_templates


@pytest.fixture
def units(graph):
    return {unit.name: unit for unit in graph.synthesize()}


class TestSynthesizeUnit:
    def test_template_shape(self, units):
        template = synthesize_unit(units["registry"])
        assert template["AWSTemplateFormatVersion"] == "2010-09-09"
        repository = template["Resources"]["AppRepository"]
        assert repository["Type"] == "AWS::ECR::Repository"
        assert repository["DeletionPolicy"] == "Delete"
        assert template["Resources"]["AppRepositoryName"]["DependsOn"] == ["AppRepository"]
        assert "Export" not in template["Outputs"]["appRepositoryURI"]

    def test_exports(self, units):
        outputs = synthesize_unit(units["foundation"])["Outputs"]
        assert outputs["VpcId"] == {
            "Value": {"Ref": "Vpc"},
            "Description": "Shared VPC",
            "Export": {"Name": "demo-infra-VpcId"},
        }

    def test_topology_imports_foundation(self, units):
        resources = synthesize_unit(units["topology"])["Resources"]
        assert resources["ServiceSecurityGroup"]["Properties"]["VpcId"] == {
            "Fn::ImportValue": "demo-infra-VpcId"
        }
        assert resources["WorldLogGroup"]["DeletionPolicy"] == "Retain"
        assert resources["WorldLogGroup"]["UpdateReplacePolicy"] == "Retain"

    def test_template_is_serializable(self, units):
        for unit in units.values():
            json.loads(dump_template(synthesize_unit(unit), "json"))
            yaml.safe_load(dump_template(synthesize_unit(unit), "yaml"))

    def test_unknown_format(self, units):
        with pytest.raises(ConfigurationError, match="Unsupported template format"):
            dump_template(synthesize_unit(units["registry"]), "toml")


class TestWriteTemplates:
    def test_writes_templates_and_manifest(self, graph, tmp_path):
        written = write_templates(graph.synthesize(), tmp_path / "out")

        assert [p.name for p in written] == [
            "demo-docker.template.json",
            "demo-infra.template.json",
            "demo-app.template.json",
        ]
        manifest = json.loads((tmp_path / "out" / "manifest.json").read_text())
        assert [u["name"] for u in manifest["units"]] == ["registry", "foundation", "topology"]
        assert manifest["units"][2]["dependencies"] == ["registry", "foundation"]

    def test_yaml(self, graph, tmp_path):
        written = write_templates(graph.synthesize(), tmp_path, "yaml")
        template = yaml.safe_load(written[1].read_text())
        assert template["Resources"]["Cluster"]["Properties"]["ClusterName"] == "demo-cluster"
