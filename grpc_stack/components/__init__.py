"""Components package for the gRPC endpoint stack.

- NetworkContext: VPC, subnets and owned security groups
- TlsCertificate: DNS-validated ACM certificate and its hosted zone
- ComputeService: Autoscaled ECS Fargate service
- LoadBalancerFront: ALB, gRPC target group and TLS listener
- DnsBinding: Alias record publishing the endpoint
"""

from grpc_stack.components.certificate import TlsCertificate
from grpc_stack.components.compute import ComputeService
from grpc_stack.components.dns import DnsBinding
from grpc_stack.components.load_balancer import LoadBalancerFront
from grpc_stack.components.network import NetworkContext

__all__ = [
    "ComputeService",
    "DnsBinding",
    "LoadBalancerFront",
    "NetworkContext",
    "TlsCertificate",
]
