"""The fixed three-unit deployment: registries, foundation, service topology."""

from ecsdeploy.graph.evaluator import DeploymentGraph
from ecsdeploy.units.foundation import FoundationProvisioner
from ecsdeploy.units.registry import RegistryProvisioner
from ecsdeploy.units.topology import ServiceTopologyProvisioner


def build_deployment_graph(deployment: str) -> DeploymentGraph:
    """
    Register every unit for ``deployment`` with its ordering edges.

    Registry and foundation are independent of each other; topology runs
    after both.
    """
    graph = DeploymentGraph(deployment)
    registry = graph.register(RegistryProvisioner(graph.deployment))
    foundation = graph.register(FoundationProvisioner(graph.deployment))
    topology = graph.register(ServiceTopologyProvisioner(graph.deployment))

    graph.add_dependency(topology.name, registry.name)
    graph.add_dependency(topology.name, foundation.name)
    return graph


__all__ = [
    "FoundationProvisioner",
    "RegistryProvisioner",
    "ServiceTopologyProvisioner",
    "build_deployment_graph",
]
