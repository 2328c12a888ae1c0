"""
Service topology unit.

Assembles the two services into an internet-reachable topology. The
dependency (world) service and its front door are declared first; the
primary (hello) service is only declared once the world front door's
address exists in the graph, because that address is baked into hello's
environment rather than discovered at runtime.
"""

from __future__ import annotations

from typing import Any, Dict, List

import structlog

from ecsdeploy.graph.context import EvaluationContext, UnitBuild, step
from ecsdeploy.graph.models import DeletionPolicy, DeploymentUnit, Resource
from ecsdeploy.graph.tokens import GetAtt, Join, Ref, Sub
from ecsdeploy.naming import (
    DEPENDENCY,
    PRIMARY,
    get_parameter_key,
    get_stack_name,
    logical_id,
    validate_deployment_name,
)
from ecsdeploy.units.foundation import UNIT_NAME as FOUNDATION_UNIT
from ecsdeploy.units.models import (
    AccessBoundary,
    ExposureEndpoint,
    HealthCheck,
    IngressRule,
    NetworkFoundation,
    ServiceDescriptor,
    ServiceTopology,
)
from ecsdeploy.units.telemetry import SidecarSettings, attach_application_signals

logger = structlog.get_logger()

UNIT_NAME = "topology"
STACK_SUFFIX = "app"

SERVICE_PORT = 8080
FRONT_DOOR_PORT = 80
LOG_RETENTION_DAYS = 7
WORLD_SERVICE_NAME = "world-service"

EXECUTION_ROLE_ID = "ExecutionRole"
TASK_ROLE_ID = "TaskRole"
SECURITY_GROUP_ID = "ServiceSecurityGroup"

_ASSUME_ECS_TASKS = {
    "Version": "2012-10-17",
    "Statement": [
        {
            "Effect": "Allow",
            "Principal": {"Service": "ecs-tasks.amazonaws.com"},
            "Action": "sts:AssumeRole",
        }
    ],
}


def managed_policy(name: str) -> Sub:
    return Sub(f"arn:${{AWS::Partition}}:iam::aws:policy/{name}")


def image_uri(registry_name: str, tag: str = "latest") -> Sub:
    """Image reference in a same-account registry."""
    return Sub(
        "${AWS::AccountId}.dkr.ecr.${AWS::Region}.${AWS::URLSuffix}/"
        f"{registry_name}:{tag}"
    )


def shared_access_boundary(vpc_id: Any) -> AccessBoundary:
    """Inbound service and front-door ports from anywhere, all outbound."""
    return AccessBoundary(
        logical_id=SECURITY_GROUP_ID,
        vpc_id=vpc_id,
        ingress=(
            IngressRule("tcp", SERVICE_PORT, description="Allow hello app traffic"),
            IngressRule("tcp", FRONT_DOOR_PORT, description="Allow ALB traffic"),
        ),
        allow_all_outbound=True,
        description="Security group for hello and world services",
    )


class ServiceTopologyProvisioner:
    """
    Declares identities, the shared access boundary, both front doors and
    both services, in a fixed order.

    Any failing step aborts the build; the step name is attached to the
    raised error.
    """

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
            description=f"Hello and world services for {self.deployment}",
        )
        topology = ServiceTopology()
        log = logger.bind(deployment=self.deployment, unit=self.name)

        with step(self.name, "resolve_foundation"):
            foundation: NetworkFoundation = ctx.handle(FOUNDATION_UNIT)

        with step(self.name, "resolve_registries"):
            registries = {
                role: ctx.resolver.resolve(get_parameter_key(self.deployment, role))
                for role in (DEPENDENCY, PRIMARY)
            }
            log.debug("registries_resolved", registries=registries)

        with step(self.name, "identities"):
            self._identities(unit)

        with step(self.name, "access_boundary"):
            boundary = shared_access_boundary(foundation.vpc_id)
            self._security_group(unit, boundary)

        with step(self.name, "front_doors"):
            world_alb = self._front_door(unit, "WorldALB", foundation)
            hello_alb = self._front_door(unit, "HelloALB", foundation)

        world = ServiceDescriptor(
            role=DEPENDENCY,
            image=image_uri(registries[DEPENDENCY]),
            container_port=SERVICE_PORT,
            environment={
                "SERVER_PORT": str(SERVICE_PORT),
                "SPRING_APPLICATION_NAME": DEPENDENCY,
            },
            boundary=boundary,
            telemetry=True,
            log_stream_prefix="world-app",
        )
        with step(self.name, "world_service"):
            self._service(unit, world, foundation)
        topology.services[DEPENDENCY] = world

        with step(self.name, "world_endpoint"):
            world_endpoint = self._expose(unit, world, world_alb, foundation)
            unit.add_output(
                world_endpoint.dns_output,
                world_alb.get_att("DNSName"),
                "DNS name of the world service load balancer",
            )
        topology.endpoints[DEPENDENCY] = world_endpoint

        hello = ServiceDescriptor(
            role=PRIMARY,
            image=image_uri(registries[PRIMARY]),
            container_port=SERVICE_PORT,
            environment={
                "SERVER_PORT": str(SERVICE_PORT),
                "SPRING_APPLICATION_NAME": PRIMARY,
                "WORLD_SERVICE_URL": Join("", ("http://", world_alb.get_att("DNSName"))),
            },
            boundary=boundary,
            log_stream_prefix="hello-app",
        )
        with step(self.name, "hello_service"):
            # World must be reachable before hello's configuration is final
            self._service(
                unit, hello, foundation, after=[world_endpoint.listener_id, world.service_id]
            )
        topology.services[PRIMARY] = hello

        with step(self.name, "hello_endpoint"):
            hello_endpoint = self._expose(unit, hello, hello_alb, foundation)
        topology.endpoints[PRIMARY] = hello_endpoint

        with step(self.name, "outputs"):
            unit.add_output(
                hello_endpoint.dns_output,
                hello_alb.get_att("DNSName"),
                "DNS name of the hello service load balancer",
            )

        log.debug("topology_declared", resources=len(unit.resources))
        return UnitBuild(unit=unit, handle=topology)

    def _identities(self, unit: DeploymentUnit) -> None:
        unit.add(
            Resource(
                EXECUTION_ROLE_ID,
                "AWS::IAM::Role",
                {
                    "AssumeRolePolicyDocument": _ASSUME_ECS_TASKS,
                    "ManagedPolicyArns": [
                        managed_policy("service-role/AmazonECSTaskExecutionRolePolicy")
                    ],
                    "Policies": [
                        {
                            "PolicyName": "ecs-cwagent-parameter",
                            "PolicyDocument": {
                                "Version": "2012-10-17",
                                "Statement": [
                                    {
                                        "Effect": "Allow",
                                        "Action": ["ssm:GetParameters", "ssm:GetParameter"],
                                        "Resource": Sub(
                                            "arn:${AWS::Partition}:ssm:${AWS::Region}:"
                                            "${AWS::AccountId}:parameter/ecs-cwagent"
                                        ),
                                    }
                                ],
                            },
                        }
                    ],
                },
            )
        )
        # Runtime identity may only emit telemetry
        unit.add(
            Resource(
                TASK_ROLE_ID,
                "AWS::IAM::Role",
                {
                    "AssumeRolePolicyDocument": _ASSUME_ECS_TASKS,
                    "ManagedPolicyArns": [managed_policy("CloudWatchAgentServerPolicy")],
                },
            )
        )

    def _security_group(self, unit: DeploymentUnit, boundary: AccessBoundary) -> Resource:
        return unit.add(
            Resource(
                boundary.logical_id,
                "AWS::EC2::SecurityGroup",
                {
                    "GroupDescription": boundary.description,
                    "VpcId": boundary.vpc_id,
                    "SecurityGroupIngress": [rule.to_properties() for rule in boundary.ingress],
                    "SecurityGroupEgress": boundary.egress_properties(),
                },
            )
        )

    def _front_door(
        self, unit: DeploymentUnit, front_door_id: str, foundation: NetworkFoundation
    ) -> Resource:
        return unit.add(
            Resource(
                front_door_id,
                "AWS::ElasticLoadBalancingV2::LoadBalancer",
                {
                    "Type": "application",
                    "Scheme": "internet-facing",
                    "Subnets": foundation.subnet_ids,
                    "SecurityGroups": [Ref(SECURITY_GROUP_ID)],
                },
            )
        )

    def _service(
        self,
        unit: DeploymentUnit,
        service: ServiceDescriptor,
        foundation: NetworkFoundation,
        after: List[str] | None = None,
    ) -> Resource:
        """Declare log group, task definition and Fargate service for one role."""
        log_group = unit.add(
            Resource(
                logical_id(service.role, "log-group"),
                "AWS::Logs::LogGroup",
                {"RetentionInDays": LOG_RETENTION_DAYS},
                deletion_policy=DeletionPolicy.RETAIN,
            )
        )
        log_configuration = {
            "LogDriver": "awslogs",
            "Options": {
                "awslogs-group": log_group.ref(),
                "awslogs-region": Ref("AWS::Region"),
                "awslogs-stream-prefix": service.log_stream_prefix,
            },
        }
        container_name = logical_id(service.role, "container")
        task_properties: Dict[str, Any] = {
            "Family": f"{self.deployment}-{service.role}",
            "Cpu": str(service.cpu),
            "Memory": str(service.memory_mib),
            "NetworkMode": "awsvpc",
            "RequiresCompatibilities": ["FARGATE"],
            "ExecutionRoleArn": GetAtt(EXECUTION_ROLE_ID, "Arn"),
            "TaskRoleArn": GetAtt(TASK_ROLE_ID, "Arn"),
            "ContainerDefinitions": [
                {
                    "Name": container_name,
                    "Image": service.image,
                    "Essential": True,
                    "PortMappings": [{"ContainerPort": service.container_port, "Protocol": "tcp"}],
                    "Environment": [
                        {"Name": key, "Value": value} for key, value in service.environment.items()
                    ],
                    "LogConfiguration": log_configuration,
                }
            ],
        }
        if service.telemetry:
            attach_application_signals(
                task_properties,
                container_name,
                WORLD_SERVICE_NAME,
                log_configuration,
                SidecarSettings(),
            )

        task_definition = unit.add(
            Resource(
                logical_id(service.role, "task-definition"),
                "AWS::ECS::TaskDefinition",
                task_properties,
                depends_on=list(after or []),
            )
        )

        resource = unit.add(
            Resource(
                logical_id(service.role, "service"),
                "AWS::ECS::Service",
                {
                    "Cluster": foundation.cluster_name,
                    "TaskDefinition": task_definition.ref(),
                    "LaunchType": "FARGATE",
                    "DesiredCount": service.desired_count,
                    "DeploymentConfiguration": {
                        "MinimumHealthyPercent": service.min_healthy_percent,
                        "MaximumPercent": 200,
                    },
                    "NetworkConfiguration": {
                        "AwsvpcConfiguration": {
                            "AssignPublicIp": "ENABLED",
                            "SecurityGroups": [Ref(service.boundary.logical_id)],
                            "Subnets": foundation.subnet_ids,
                        }
                    },
                },
            )
        )
        service.service_id = resource.logical_id
        return resource

    def _expose(
        self,
        unit: DeploymentUnit,
        service: ServiceDescriptor,
        front_door: Resource,
        foundation: NetworkFoundation,
    ) -> ExposureEndpoint:
        """Target group, listener and load balancer mapping for one service."""
        endpoint = ExposureEndpoint(
            role=service.role,
            front_door_id=front_door.logical_id,
            target_group_id=logical_id(service.role, "target-group"),
            listener_id=logical_id(service.role, "listener"),
            listener_port=FRONT_DOOR_PORT,
            health_check=HealthCheck(path="/", matcher="200"),
            dns_output=f"{front_door.logical_id}DNS",
        )

        target_group = unit.add(
            Resource(
                endpoint.target_group_id,
                "AWS::ElasticLoadBalancingV2::TargetGroup",
                {
                    "Port": service.container_port,
                    "Protocol": "HTTP",
                    "TargetType": "ip",
                    "VpcId": foundation.vpc_id,
                    "HealthCheckEnabled": True,
                    "HealthCheckPath": endpoint.health_check.path,
                    "HealthCheckProtocol": endpoint.health_check.protocol,
                    "Matcher": {"HttpCode": endpoint.health_check.matcher},
                },
            )
        )
        listener = unit.add(
            Resource(
                endpoint.listener_id,
                "AWS::ElasticLoadBalancingV2::Listener",
                {
                    "LoadBalancerArn": front_door.ref(),
                    "Port": endpoint.listener_port,
                    "Protocol": "HTTP",
                    "DefaultActions": [{"Type": "forward", "TargetGroupArn": target_group.ref()}],
                },
            )
        )

        # Targets register only once the target group is attached to a listener
        service_resource = unit.resource(service.service_id)
        service_resource.properties["LoadBalancers"] = [
            {
                "ContainerName": logical_id(service.role, "container"),
                "ContainerPort": service.container_port,
                "TargetGroupArn": target_group.ref(),
            }
        ]
        service_resource.properties["HealthCheckGracePeriodSeconds"] = 60
        service_resource.depends_on.append(listener.logical_id)
        return endpoint
