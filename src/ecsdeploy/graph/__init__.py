"""Desired-state graph: units, resources, tokens and their ordering."""

from ecsdeploy.graph.models import (
    CrossUnitParameter,
    DeletionPolicy,
    DeploymentUnit,
    Output,
    Resource,
)
from ecsdeploy.graph.ordering import topological_order

__all__ = [
    "CrossUnitParameter",
    "DeletionPolicy",
    "DeploymentUnit",
    "Output",
    "Resource",
    "topological_order",
]
