"""gRPC Endpoint Infrastructure - Main Entry Point.

Provisions a TLS-terminated, autoscaled gRPC service on AWS using Pulumi.

Architecture:
- Network: VPC with public/private subnets and NAT
- Certificate: ACM, validated through the domain's Route 53 zone
- Compute: ECS Fargate service with CPU target-tracking autoscaling
- Edge: Application Load Balancer with an HTTPS listener and gRPC target group
- DNS: Route 53 alias record <subdomain>.<domain> -> load balancer
"""

import logging

import pulumi

from grpc_stack.config import DeploymentSettings
from grpc_stack.orchestrator import Orchestrator

# Get configuration (stack config over environment / .env)
settings = DeploymentSettings.from_pulumi_config(
    pulumi.Config(),
    environment=pulumi.get_stack(),
)

logging.basicConfig(level=settings.log_level, format="%(levelname)s: %(message)s")

deployment = Orchestrator(settings).run()

# =============================================================================
# Stack Outputs
# =============================================================================

# Published endpoint
pulumi.export("target", deployment.endpoint)

# Network outputs
pulumi.export("vpc_id", deployment.network.network_id)
pulumi.export("public_subnet_ids", deployment.network.public_subnet_ids)
pulumi.export("private_subnet_ids", deployment.network.private_subnet_ids)

# Certificate outputs
pulumi.export("certificate_arn", deployment.certificate.cert_handle)
pulumi.export("hosted_zone_id", deployment.certificate.zone_handle)

# Edge outputs
pulumi.export("load_balancer_arn", deployment.load_balancer.lb_handle)
pulumi.export("load_balancer_dns_name", deployment.load_balancer.dns_target)

# Compute outputs
pulumi.export("cluster_name", deployment.compute.service.cluster.name)
pulumi.export("service_name", deployment.compute.service.service.name)
