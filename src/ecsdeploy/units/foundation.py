"""
Foundation unit.

Shared network (VPC, two public subnets, internet routing) and the ECS
cluster every service runs on. Handles are exported so the topology unit
imports them rather than referencing this unit's resources directly.
"""

from __future__ import annotations

from ecsdeploy.graph.context import EvaluationContext, UnitBuild
from ecsdeploy.graph.models import DeploymentUnit, Resource
from ecsdeploy.graph.tokens import GetAZs, ImportValue, Join, Select, Split
from ecsdeploy.naming import (
    get_cluster_name,
    get_export_name,
    get_stack_name,
    validate_deployment_name,
)
from ecsdeploy.units.models import ANY_IPV4, NetworkFoundation

UNIT_NAME = "foundation"
STACK_SUFFIX = "infra"

VPC_CIDR = "10.0.0.0/16"
PUBLIC_SUBNET_CIDRS = ("10.0.0.0/24", "10.0.1.0/24")


class FoundationProvisioner:
    """Declares the network and cluster substrate; no service resources."""

    def __init__(self, deployment: str) -> None:
        self.deployment = validate_deployment_name(deployment)

    @property
    def name(self) -> str:
        return UNIT_NAME

    @property
    def stack_name(self) -> str:
        return get_stack_name(self.deployment, STACK_SUFFIX)

    def build(self, ctx: EvaluationContext) -> UnitBuild:
        unit = DeploymentUnit(
            name=self.name,
            stack_name=self.stack_name,
            description=f"Network and cluster for {self.deployment}",
        )
        tags = [{"Key": "Name", "Value": self.stack_name}]

        vpc = unit.add(
            Resource(
                "Vpc",
                "AWS::EC2::VPC",
                {
                    "CidrBlock": VPC_CIDR,
                    "EnableDnsHostnames": True,
                    "EnableDnsSupport": True,
                    "Tags": tags,
                },
            )
        )
        gateway = unit.add(Resource("InternetGateway", "AWS::EC2::InternetGateway", {"Tags": tags}))
        attachment = unit.add(
            Resource(
                "GatewayAttachment",
                "AWS::EC2::VPCGatewayAttachment",
                {"VpcId": vpc.ref(), "InternetGatewayId": gateway.ref()},
            )
        )
        route_table = unit.add(
            Resource("PublicRouteTable", "AWS::EC2::RouteTable", {"VpcId": vpc.ref(), "Tags": tags})
        )
        unit.add(
            Resource(
                "PublicDefaultRoute",
                "AWS::EC2::Route",
                {
                    "RouteTableId": route_table.ref(),
                    "DestinationCidrBlock": ANY_IPV4,
                    "GatewayId": gateway.ref(),
                },
                depends_on=[attachment.logical_id],
            )
        )

        subnets = []
        for index, cidr in enumerate(PUBLIC_SUBNET_CIDRS):
            subnet = unit.add(
                Resource(
                    f"PublicSubnet{index + 1}",
                    "AWS::EC2::Subnet",
                    {
                        "VpcId": vpc.ref(),
                        "CidrBlock": cidr,
                        "AvailabilityZone": Select(index, GetAZs()),
                        "MapPublicIpOnLaunch": True,
                        "Tags": tags,
                    },
                )
            )
            unit.add(
                Resource(
                    f"PublicSubnet{index + 1}RouteTableAssociation",
                    "AWS::EC2::SubnetRouteTableAssociation",
                    {"SubnetId": subnet.ref(), "RouteTableId": route_table.ref()},
                )
            )
            subnets.append(subnet)

        cluster = unit.add(
            Resource(
                "Cluster",
                "AWS::ECS::Cluster",
                {"ClusterName": get_cluster_name(self.deployment)},
            )
        )

        vpc_export = get_export_name(self.stack_name, "VpcId")
        subnets_export = get_export_name(self.stack_name, "PublicSubnetIds")
        cluster_export = get_export_name(self.stack_name, "ClusterName")

        unit.add_output("VpcId", vpc.ref(), "Shared VPC", export_name=vpc_export)
        unit.add_output(
            "PublicSubnetIds",
            Join(",", tuple(s.ref() for s in subnets)),
            "Public subnets, comma separated",
            export_name=subnets_export,
        )
        unit.add_output(
            "ClusterName", cluster.ref(), "Shared ECS cluster", export_name=cluster_export
        )

        return UnitBuild(unit=unit, handle=foundation_exports(self.deployment))


def foundation_exports(deployment: str) -> NetworkFoundation:
    """Handle for an already deployed foundation, built from its export names."""
    stack_name = get_stack_name(validate_deployment_name(deployment), STACK_SUFFIX)
    return NetworkFoundation(
        vpc_id=ImportValue(get_export_name(stack_name, "VpcId")),
        subnet_ids=Split(",", ImportValue(get_export_name(stack_name, "PublicSubnetIds"))),
        cluster_name=ImportValue(get_export_name(stack_name, "ClusterName")),
    )
