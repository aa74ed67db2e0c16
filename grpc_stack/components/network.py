"""Network Component - Isolated network for the streaming service.

Creates a VPC with public and private subnets across multiple availability zones.
- Public subnets: For the load balancer and NAT gateways
- Private subnets: For the Fargate tasks
Owns the security groups for the public entry point and the tasks; downstream
components open ports through ``allow_ingress``.
"""

import re

import pulumi
import pulumi_aws as aws

from grpc_stack.config import carve_subnets
from grpc_stack.errors import ConfigurationError, TopologyError

ANY_IPV4 = "0.0.0.0/0"


class NetworkContext(pulumi.ComponentResource):
    """VPC, subnets and security groups for one deployment."""

    def __init__(
        self,
        name: str,
        environment: str,
        cidr_block: str = "10.0.0.0/16",
        availability_zones: int = 2,
        tags: dict | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        if availability_zones < 2:
            raise ConfigurationError(
                f"A load balancer needs at least 2 availability zones, got {availability_zones}"
            )
        try:
            public_blocks, private_blocks = carve_subnets(cidr_block, availability_zones)
        except ValueError as e:
            raise ConfigurationError(str(e)) from e

        super().__init__("grpcstack:network:NetworkContext", name, None, opts)

        self.resource_name = name
        self.tags = tags or {}
        self.environment = environment

        # Get available AZs in the region
        available_azs = aws.get_availability_zones(
            state="available", opts=pulumi.InvokeOptions(parent=self)
        )
        if len(available_azs.names) < availability_zones:
            raise TopologyError(
                f"Region has {len(available_azs.names)} available zones, "
                f"{availability_zones} requested"
            )
        az_names = available_azs.names[:availability_zones]

        self.vpc = aws.ec2.Vpc(
            f"{name}-vpc",
            cidr_block=cidr_block,
            enable_dns_hostnames=True,
            enable_dns_support=True,
            tags={**self.tags, "Name": f"{name}-vpc"},
            opts=pulumi.ResourceOptions(parent=self),
        )

        # Internet Gateway for public subnets
        self.igw = aws.ec2.InternetGateway(
            f"{name}-igw",
            vpc_id=self.vpc.id,
            tags={**self.tags, "Name": f"{name}-igw"},
            opts=pulumi.ResourceOptions(parent=self),
        )

        self.public_subnets: list[aws.ec2.Subnet] = []
        self.private_subnets: list[aws.ec2.Subnet] = []
        self.nat_gateways: list[aws.ec2.NatGateway] = []

        for i, az in enumerate(az_names):
            public_subnet = aws.ec2.Subnet(
                f"{name}-public-{i}",
                vpc_id=self.vpc.id,
                cidr_block=public_blocks[i],
                availability_zone=az,
                map_public_ip_on_launch=True,
                tags={**self.tags, "Name": f"{name}-public-{az}", "Tier": "public"},
                opts=pulumi.ResourceOptions(parent=self),
            )
            self.public_subnets.append(public_subnet)

            private_subnet = aws.ec2.Subnet(
                f"{name}-private-{i}",
                vpc_id=self.vpc.id,
                cidr_block=private_blocks[i],
                availability_zone=az,
                tags={**self.tags, "Name": f"{name}-private-{az}", "Tier": "private"},
                opts=pulumi.ResourceOptions(parent=self),
            )
            self.private_subnets.append(private_subnet)

            # One NAT gateway in dev, one per AZ elsewhere
            if environment != "dev" or i == 0:
                eip = aws.ec2.Eip(
                    f"{name}-eip-{i}",
                    domain="vpc",
                    tags={**self.tags, "Name": f"{name}-nat-eip-{az}"},
                    opts=pulumi.ResourceOptions(parent=self),
                )

                nat = aws.ec2.NatGateway(
                    f"{name}-nat-{i}",
                    subnet_id=public_subnet.id,
                    allocation_id=eip.id,
                    tags={**self.tags, "Name": f"{name}-nat-{az}"},
                    opts=pulumi.ResourceOptions(parent=self, depends_on=[self.igw]),
                )
                self.nat_gateways.append(nat)

        self.public_rt = aws.ec2.RouteTable(
            f"{name}-public-rt",
            vpc_id=self.vpc.id,
            routes=[
                aws.ec2.RouteTableRouteArgs(
                    cidr_block=ANY_IPV4,
                    gateway_id=self.igw.id,
                ),
            ],
            tags={**self.tags, "Name": f"{name}-public-rt"},
            opts=pulumi.ResourceOptions(parent=self),
        )

        for i, subnet in enumerate(self.public_subnets):
            aws.ec2.RouteTableAssociation(
                f"{name}-public-rta-{i}",
                subnet_id=subnet.id,
                route_table_id=self.public_rt.id,
                opts=pulumi.ResourceOptions(parent=self),
            )

        for i, subnet in enumerate(self.private_subnets):
            nat = self.nat_gateways[min(i, len(self.nat_gateways) - 1)]
            private_rt = aws.ec2.RouteTable(
                f"{name}-private-rt-{i}",
                vpc_id=self.vpc.id,
                routes=[
                    aws.ec2.RouteTableRouteArgs(
                        cidr_block=ANY_IPV4,
                        nat_gateway_id=nat.id,
                    ),
                ],
                tags={**self.tags, "Name": f"{name}-private-rt-{i}"},
                opts=pulumi.ResourceOptions(parent=self),
            )

            aws.ec2.RouteTableAssociation(
                f"{name}-private-rta-{i}",
                subnet_id=subnet.id,
                route_table_id=private_rt.id,
                opts=pulumi.ResourceOptions(parent=self),
            )

        # Security groups owned by this network; ingress is added per rule
        self.ingress_group = aws.ec2.SecurityGroup(
            f"{name}-ingress-sg",
            vpc_id=self.vpc.id,
            description="Public entry point for the streaming endpoint",
            tags={**self.tags, "Name": f"{name}-ingress-sg"},
            opts=pulumi.ResourceOptions(parent=self),
        )
        self.service_group = aws.ec2.SecurityGroup(
            f"{name}-service-sg",
            vpc_id=self.vpc.id,
            description="Streaming service tasks",
            tags={**self.tags, "Name": f"{name}-service-sg"},
            opts=pulumi.ResourceOptions(parent=self),
        )
        self.security_groups = {
            "ingress": self.ingress_group,
            "service": self.service_group,
        }

        for role, group in self.security_groups.items():
            aws.ec2.SecurityGroupRule(
                f"{name}-{role}-egress",
                type="egress",
                security_group_id=group.id,
                protocol="-1",
                from_port=0,
                to_port=0,
                cidr_blocks=[ANY_IPV4],
                description="Allow all outbound",
                opts=pulumi.ResourceOptions(parent=self),
            )

        # (group role, protocol, port, source) -> rule
        self.ingress_rules: dict[tuple[str, str, int, str], aws.ec2.SecurityGroupRule] = {}

        self.network_id = self.vpc.id
        self.public_subnet_ids = pulumi.Output.all(
            *[s.id for s in self.public_subnets]
        ).apply(lambda ids: list(ids))

        self.private_subnet_ids = pulumi.Output.all(
            *[s.id for s in self.private_subnets]
        ).apply(lambda ids: list(ids))

        self.register_outputs(
            {
                "vpc_id": self.vpc.id,
                "public_subnet_ids": self.public_subnet_ids,
                "private_subnet_ids": self.private_subnet_ids,
                "ingress_group_id": self.ingress_group.id,
                "service_group_id": self.service_group.id,
            }
        )

    def _role_of(self, security_group: aws.ec2.SecurityGroup) -> str:
        for role, group in self.security_groups.items():
            if group is security_group:
                return role
        raise TopologyError(
            f"Security group is not owned by network '{self.resource_name}'"
        )

    def allow_ingress(
        self,
        security_group: aws.ec2.SecurityGroup,
        port: int,
        protocol: str = "tcp",
        cidr_blocks: list[str] | None = None,
        source_security_group: aws.ec2.SecurityGroup | None = None,
        description: str | None = None,
    ) -> aws.ec2.SecurityGroupRule:
        """Open a port on one of this network's security groups.

        Exactly one of ``cidr_blocks`` or ``source_security_group`` must be
        given. Adding a rule that already exists returns the existing rule.

        Raises:
            TopologyError: If either group is not owned by this network, or
                the source is ambiguous.
        """
        if (cidr_blocks is None) == (source_security_group is None):
            raise TopologyError(
                "Ingress needs exactly one source: cidr_blocks or source_security_group"
            )

        role = self._role_of(security_group)
        if source_security_group is not None:
            source = f"sg-{self._role_of(source_security_group)}"
        else:
            source = ",".join(sorted(cidr_blocks))

        key = (role, protocol, port, source)
        if key in self.ingress_rules:
            return self.ingress_rules[key]

        label = "any" if source == ANY_IPV4 else re.sub(r"[^a-z0-9]+", "-", source)
        rule = aws.ec2.SecurityGroupRule(
            f"{self.resource_name}-{role}-{protocol}-{port}-from-{label}",
            type="ingress",
            security_group_id=security_group.id,
            protocol=protocol,
            from_port=port,
            to_port=port,
            cidr_blocks=cidr_blocks,
            source_security_group_id=(
                source_security_group.id if source_security_group is not None else None
            ),
            description=description or f"{protocol.upper()} {port} from {source}",
            opts=pulumi.ResourceOptions(parent=self),
        )
        self.ingress_rules[key] = rule
        return rule
