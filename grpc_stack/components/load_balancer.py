"""Load Balancer Component - TLS front door for the gRPC service.

Creates, in order:
- Internet-facing Application Load Balancer on the public subnets
- Target group speaking gRPC (HTTP/2) with a gRPC status-code health check
- HTTPS listener bound to the validated certificate
- Ingress on the listener port, then binds the service to the target group

Every port here comes from the one ``port`` argument, which must equal the
service's container port.
"""

import re

import pulumi
import pulumi_aws as aws

from grpc_stack.components.certificate import TlsCertificate
from grpc_stack.components.compute import ComputeService
from grpc_stack.components.network import ANY_IPV4, NetworkContext
from grpc_stack.errors import ConfigurationError, TopologyError

# Path the ALB polls for gRPC health checks
GRPC_HEALTH_CHECK_PATH = "/AWS.ALB/healthcheck"

_GRPC_CODES_RE = re.compile(r"^\d{1,2}(-\d{1,2})?(,\d{1,2}(-\d{1,2})?)*$")


def validate_grpc_codes(codes: str) -> str:
    """Check a target-group matcher is a gRPC status-code set.

    Accepts a single code, a comma-separated list, or ranges, all within 0-99
    (e.g. ``"12"``, ``"0,12"``, ``"0-99"``). HTTP status codes are rejected.

    Raises:
        ConfigurationError: If the matcher is not a gRPC code set.
    """
    codes = codes.replace(" ", "")
    if not _GRPC_CODES_RE.match(codes):
        raise ConfigurationError(
            f"Healthy codes must be gRPC status codes (0-99), got '{codes}'"
        )
    for part in codes.split(","):
        low, _, high = part.partition("-")
        if high and int(low) > int(high):
            raise ConfigurationError(f"Invalid gRPC code range '{part}'")
    return codes


class LoadBalancerFront(pulumi.ComponentResource):
    """Public ALB terminating TLS and forwarding gRPC to the service."""

    def __init__(
        self,
        name: str,
        network: NetworkContext,
        certificate: TlsCertificate,
        service: ComputeService,
        port: int,
        healthy_grpc_codes: str = "12",
        idle_timeout: int = 60,
        ssl_policy: str = "ELBSecurityPolicy-TLS13-1-2-2021-06",
        tags: dict | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        if port != service.container_port:
            raise TopologyError(
                f"Listener port {port} does not match container port "
                f"{service.container_port}"
            )
        matcher = validate_grpc_codes(healthy_grpc_codes)

        super().__init__("grpcstack:edge:LoadBalancer", name, None, opts)

        self.tags = tags or {}
        self.port = port
        child_opts = pulumi.ResourceOptions(parent=self)

        # (a) Load balancer
        self.load_balancer = aws.lb.LoadBalancer(
            f"{name}-alb",
            internal=False,
            load_balancer_type="application",
            subnets=network.public_subnet_ids,
            security_groups=[network.ingress_group.id],
            idle_timeout=idle_timeout,
            tags={**self.tags, "Name": f"{name}-alb"},
            opts=child_opts,
        )

        # (b) Target group
        self.target_group = aws.lb.TargetGroup(
            f"{name}-tg",
            port=port,
            protocol="HTTP",
            protocol_version="GRPC",
            target_type="ip",
            vpc_id=network.network_id,
            health_check=aws.lb.TargetGroupHealthCheckArgs(
                enabled=True,
                protocol="HTTP",
                port="traffic-port",
                path=GRPC_HEALTH_CHECK_PATH,
                matcher=matcher,
                healthy_threshold=2,
                unhealthy_threshold=3,
                timeout=5,
                interval=30,
            ),
            tags={**self.tags, "Name": f"{name}-tg"},
            opts=child_opts,
        )

        # (c) TLS listener; certificate_arn resolves only once validated
        self.listener = aws.lb.Listener(
            f"{name}-listener",
            load_balancer_arn=self.load_balancer.arn,
            port=port,
            protocol="HTTPS",
            ssl_policy=ssl_policy,
            certificate_arn=certificate.certificate_arn,
            default_actions=[
                aws.lb.ListenerDefaultActionArgs(
                    type="forward",
                    target_group_arn=self.target_group.arn,
                )
            ],
            tags=self.tags,
            opts=child_opts,
        )

        # (d) Open the listener port to everyone, and the task port to the ALB
        self.public_ingress = network.allow_ingress(
            network.ingress_group,
            port,
            cidr_blocks=[ANY_IPV4],
            description=f"gRPC over TLS on {port}",
        )
        self.service_ingress = network.allow_ingress(
            network.service_group,
            port,
            source_security_group=network.ingress_group,
            description=f"gRPC from load balancer on {port}",
        )

        service.bind(self.target_group.arn, depends_on=[self.listener])

        self.dns_name = self.load_balancer.dns_name
        self.zone_id = self.load_balancer.zone_id

        self.register_outputs(
            {
                "load_balancer_arn": self.load_balancer.arn,
                "dns_name": self.dns_name,
                "target_group_arn": self.target_group.arn,
                "listener_arn": self.listener.arn,
            }
        )
