"""Compute Component - Autoscaled Fargate service for the streaming server."""

import json

import pulumi
import pulumi_aws as aws

from grpc_stack.errors import ConfigurationError, TopologyError
from grpc_stack.scaling import ScalingPolicy

ECS_TASKS_ASSUME_ROLE_POLICY = json.dumps(
    {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Action": "sts:AssumeRole",
                "Principal": {"Service": "ecs-tasks.amazonaws.com"},
                "Effect": "Allow",
            }
        ],
    }
)


class ComputeService(pulumi.ComponentResource):
    """ECS Fargate service running one container on a fixed port.

    The task definition, roles and logging are created up front. The ECS
    service itself is created by ``bind`` once a target group with a listener
    exists, because ECS registers tasks with the target group at creation.
    """

    def __init__(
        self,
        name: str,
        environment: str,
        subnet_ids: pulumi.Input[list[str]],
        security_group_id: pulumi.Input[str],
        image_ref: str,
        container_port: int,
        scaling: ScalingPolicy,
        cpu: int = 1024,
        memory: int = 2048,
        cpu_architecture: str = "ARM64",
        container_name: str = "grpc-server",
        task_actions: list[str] | None = None,
        log_level: str = "INFO",
        region: str = "us-east-1",
        log_retention_days: int = 7,
        stabilization_timeout: str = "20m",
        tags: dict | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        if not image_ref:
            raise ConfigurationError("Container image reference is required")

        super().__init__("grpcstack:compute:Service", name, None, opts)

        self.resource_name = name
        self.tags = tags or {}
        self.environment = environment
        self.subnet_ids = subnet_ids
        self.security_group_id = security_group_id
        self.container_name = container_name
        self.container_port = container_port
        self.scaling = scaling
        self.stabilization_timeout = stabilization_timeout
        self.service: aws.ecs.Service | None = None

        self.cluster = aws.ecs.Cluster(
            f"{name}-cluster",
            settings=[aws.ecs.ClusterSettingArgs(name="containerInsights", value="enabled")],
            tags=self.tags,
            opts=pulumi.ResourceOptions(parent=self),
        )

        self.log_group = aws.cloudwatch.LogGroup(
            f"{name}-logs",
            name=f"/ecs/{name}",
            retention_in_days=log_retention_days,
            tags=self.tags,
            opts=pulumi.ResourceOptions(parent=self),
        )

        # IAM Role for Task Execution (pulling images, writing logs)
        self.execution_role = aws.iam.Role(
            f"{name}-exec-role",
            assume_role_policy=ECS_TASKS_ASSUME_ROLE_POLICY,
            tags=self.tags,
            opts=pulumi.ResourceOptions(parent=self),
        )

        aws.iam.RolePolicyAttachment(
            f"{name}-exec-policy",
            role=self.execution_role.name,
            policy_arn="arn:aws:iam::aws:policy/service-role/AmazonECSTaskExecutionRolePolicy",
            opts=pulumi.ResourceOptions(parent=self),
        )

        # IAM Role for Task - only the actions the container calls
        self.task_role = aws.iam.Role(
            f"{name}-task-role",
            assume_role_policy=ECS_TASKS_ASSUME_ROLE_POLICY,
            tags=self.tags,
            opts=pulumi.ResourceOptions(parent=self),
        )

        self.task_actions = sorted(set(task_actions or []))
        if self.task_actions:
            aws.iam.RolePolicy(
                f"{name}-task-policy",
                role=self.task_role.id,
                policy=json.dumps(
                    {
                        "Version": "2012-10-17",
                        "Statement": [
                            {
                                "Effect": "Allow",
                                "Action": self.task_actions,
                                "Resource": "*",
                            }
                        ],
                    }
                ),
                opts=pulumi.ResourceOptions(parent=self),
            )

        self.task_definition = aws.ecs.TaskDefinition(
            f"{name}-task",
            family=f"{name}-server",
            cpu=str(cpu),
            memory=str(memory),
            network_mode="awsvpc",
            requires_compatibilities=["FARGATE"],
            runtime_platform=aws.ecs.TaskDefinitionRuntimePlatformArgs(
                operating_system_family="LINUX",
                cpu_architecture=cpu_architecture,
            ),
            execution_role_arn=self.execution_role.arn,
            task_role_arn=self.task_role.arn,
            container_definitions=self.log_group.name.apply(
                lambda log_group_name: json.dumps(
                    [
                        {
                            "name": container_name,
                            "image": image_ref,
                            "essential": True,
                            "portMappings": [
                                {
                                    "containerPort": container_port,
                                    "hostPort": container_port,
                                    "protocol": "tcp",
                                }
                            ],
                            "logConfiguration": {
                                "logDriver": "awslogs",
                                "options": {
                                    "awslogs-group": log_group_name,
                                    "awslogs-region": region,
                                    "awslogs-stream-prefix": container_name,
                                },
                            },
                            "environment": [
                                {"name": "LOG_LEVEL", "value": log_level},
                                {"name": "PORT", "value": str(container_port)},
                            ],
                        }
                    ]
                )
            ),
            tags=self.tags,
            opts=pulumi.ResourceOptions(parent=self, depends_on=[self.log_group]),
        )

    def bind(
        self,
        target_group_arn: pulumi.Input[str],
        depends_on: list[pulumi.Resource] | None = None,
    ) -> aws.ecs.Service:
        """Create the service registered with a target group, plus autoscaling.

        Args:
            target_group_arn: Target group forwarding to ``container_port``
            depends_on: Resources that must exist first (the listener)

        Raises:
            TopologyError: If the service is already bound.
        """
        if self.service is not None:
            raise TopologyError(f"Service '{self.resource_name}' is already bound")

        name = self.resource_name
        self.service = aws.ecs.Service(
            f"{name}-service",
            cluster=self.cluster.arn,
            task_definition=self.task_definition.arn,
            desired_count=self.scaling.desired_count,
            launch_type="FARGATE",
            network_configuration=aws.ecs.ServiceNetworkConfigurationArgs(
                subnets=self.subnet_ids,
                security_groups=[self.security_group_id],
                assign_public_ip=False,
            ),
            load_balancers=[
                aws.ecs.ServiceLoadBalancerArgs(
                    target_group_arn=target_group_arn,
                    container_name=self.container_name,
                    container_port=self.container_port,
                )
            ],
            health_check_grace_period_seconds=60,
            wait_for_steady_state=True,
            tags=self.tags,
            opts=pulumi.ResourceOptions(
                parent=self,
                depends_on=depends_on or [],
                # The autoscaler owns the running count after creation
                ignore_changes=["desiredCount"],
                custom_timeouts=pulumi.CustomTimeouts(
                    create=self.stabilization_timeout,
                    update=self.stabilization_timeout,
                ),
            ),
        )

        self.scaling_target = aws.appautoscaling.Target(
            f"{name}-scaling-target",
            min_capacity=self.scaling.min_capacity,
            max_capacity=self.scaling.max_capacity,
            resource_id=pulumi.Output.concat(
                "service/", self.cluster.name, "/", self.service.name
            ),
            scalable_dimension="ecs:service:DesiredCount",
            service_namespace="ecs",
            opts=pulumi.ResourceOptions(parent=self),
        )

        self.scaling_policy = aws.appautoscaling.Policy(
            f"{name}-cpu-scaling",
            policy_type="TargetTrackingScaling",
            resource_id=self.scaling_target.resource_id,
            scalable_dimension=self.scaling_target.scalable_dimension,
            service_namespace=self.scaling_target.service_namespace,
            target_tracking_scaling_policy_configuration=aws.appautoscaling.PolicyTargetTrackingScalingPolicyConfigurationArgs(
                predefined_metric_specification=aws.appautoscaling.PolicyTargetTrackingScalingPolicyConfigurationPredefinedMetricSpecificationArgs(
                    predefined_metric_type="ECSServiceAverageCPUUtilization",
                ),
                target_value=self.scaling.target_cpu_utilization,
                scale_in_cooldown=self.scaling.scale_in_cooldown,
                scale_out_cooldown=self.scaling.scale_out_cooldown,
            ),
            opts=pulumi.ResourceOptions(parent=self),
        )

        self.register_outputs(
            {
                "cluster_name": self.cluster.name,
                "service_name": self.service.name,
                "task_definition_arn": self.task_definition.arn,
                "log_group_name": self.log_group.name,
            }
        )
        return self.service
