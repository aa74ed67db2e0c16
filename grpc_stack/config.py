"""Deployment configuration using Pydantic Settings."""

import ipaddress
import logging
import re
from typing import Any

import pulumi
from pydantic import Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from grpc_stack.errors import ConfigurationError
from grpc_stack.scaling import ScalingPolicy

# Well-known gRPC port
STREAMING_PORT = 50051

_FQDN_RE = re.compile(
    r"^(?=.{1,253}$)([a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?\.)+([a-z]{2,63}|xn--[a-z0-9-]{1,59})$",
    re.IGNORECASE,
)
_LABEL_RE = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$", re.IGNORECASE)
# [registry[:port]/]path[:tag][@digest]
_IMAGE_RE = re.compile(
    r"^[a-z0-9]+([._-][a-z0-9]+)*(:[0-9]+)?"
    r"(/[a-z0-9]+([._-][a-z0-9]+)*)*"
    r"(:[\w][\w.-]{0,127})?"
    r"(@sha256:[a-f0-9]{64})?$"
)
_TIMEOUT_RE = re.compile(r"^\d+[smh]$")
_ACTION_RE = re.compile(r"^[a-z0-9-]+:[A-Za-z0-9]+$")

# Smallest subnet AWS accepts
MIN_SUBNET_PREFIX = 28


def is_fqdn(name: str) -> bool:
    """Check that a name is a fully-qualified domain name."""
    return bool(_FQDN_RE.match(name.rstrip(".")))


def is_dns_label(label: str) -> bool:
    """Check that a string is a single DNS label (no dots)."""
    return bool(_LABEL_RE.match(label))


def carve_subnets(cidr_block: str, count: int) -> tuple[list[str], list[str]]:
    """Split a VPC block into ``count`` public and ``count`` private subnets.

    The block is halved into a public and a private range, and each half is
    cut into equal power-of-two slices, one per availability zone.

    Raises:
        ValueError: If the block is not an IPv4 network, has host bits set, or
            is too small to give every subnet at least a /28.
    """
    if count < 1:
        raise ValueError(f"Need at least one subnet per tier, got {count}")
    try:
        network = ipaddress.IPv4Network(cidr_block, strict=True)
    except ValueError as e:
        raise ValueError(f"Invalid VPC CIDR '{cidr_block}': {e}") from e

    new_prefix = network.prefixlen + 1 + max(1, (count - 1).bit_length())
    if new_prefix > MIN_SUBNET_PREFIX:
        raise ValueError(
            f"VPC CIDR '{cidr_block}' is too small for {count} subnets per tier "
            f"(subnets must be /{MIN_SUBNET_PREFIX} or larger)"
        )

    public_half, private_half = network.subnets(prefixlen_diff=1)
    public = [str(s) for s in public_half.subnets(new_prefix=new_prefix)][:count]
    private = [str(s) for s in private_half.subnets(new_prefix=new_prefix)][:count]
    return public, private


class DeploymentSettings(BaseSettings):
    """Deployment settings loaded from environment variables.

    Read once at startup and passed into the Orchestrator. Pulumi stack
    configuration overrides the environment (see ``from_pulumi_config``).
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    environment: str = "dev"
    aws_region: str = "us-east-1"
    log_level: str = "INFO"

    # Public endpoint
    domain_name: str = ""  # Required: apex of an existing hosted zone
    subdomain: str = "grpc"

    # Container
    image_ref: str = ""  # Required: e.g. registry/svc:1
    container_name: str = "grpc-server"
    container_port: int = STREAMING_PORT
    cpu: int = 1024
    memory: int = 2048
    cpu_architecture: str = "ARM64"
    task_actions: list[str] = []  # e.g. ["transcribe:StartStreamTranscription"]

    # Network
    vpc_cidr: str = "10.0.0.0/16"
    az_count: int = Field(default=2, ge=2)  # ALB needs two or more

    # Scaling
    desired_count: int = 1
    max_capacity: int = 10
    target_cpu_utilization: float = 50.0

    # Load balancer
    healthy_grpc_codes: str = "12"
    idle_timeout: int = 60

    log_retention_days: int = 7

    # Convergence bounds
    certificate_validation_timeout: str = "45m"
    service_stabilization_timeout: str = "20m"

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {value}")
        return level

    @field_validator("container_port")
    @classmethod
    def _check_port(cls, value: int) -> int:
        if not 1 <= value <= 65535:
            raise ValueError(f"container_port must be 1-65535, got {value}")
        return value

    @field_validator("certificate_validation_timeout", "service_stabilization_timeout")
    @classmethod
    def _check_timeout(cls, value: str) -> str:
        if not _TIMEOUT_RE.match(value):
            raise ValueError(f"Timeout must look like '45m', got '{value}'")
        return value

    @field_validator("task_actions")
    @classmethod
    def _check_task_actions(cls, value: list[str]) -> list[str]:
        for action in value:
            if not _ACTION_RE.match(action):
                raise ValueError(
                    f"Task action '{action}' must be a single 'service:Action' "
                    "(wildcards are not allowed)"
                )
        return value

    @model_validator(mode="after")
    def _check_scaling(self) -> "DeploymentSettings":
        ScalingPolicy(
            min_capacity=1,
            max_capacity=self.max_capacity,
            desired_count=self.desired_count,
            target_cpu_utilization=self.target_cpu_utilization,
        )
        return self

    @model_validator(mode="after")
    def _check_network(self) -> "DeploymentSettings":
        carve_subnets(self.vpc_cidr, self.az_count)
        return self

    @classmethod
    def from_pulumi_config(
        cls, config: pulumi.Config | None = None, **overrides: Any
    ) -> "DeploymentSettings":
        """Build settings with Pulumi stack config layered over the environment."""
        config = config or pulumi.Config()
        values: dict[str, Any] = {}
        for field_name, field in cls.model_fields.items():
            if field.annotation == list[str]:
                value = config.get_object(field_name)
            else:
                value = config.get(field_name)
            if value is not None:
                values[field_name] = value
        values.update(overrides)
        return load_settings(**values)

    @property
    def scaling(self) -> ScalingPolicy:
        return ScalingPolicy(
            min_capacity=1,
            max_capacity=self.max_capacity,
            desired_count=self.desired_count,
            target_cpu_utilization=self.target_cpu_utilization,
        )

    @property
    def endpoint(self) -> str:
        """Published endpoint name."""
        return f"{self.subdomain}.{self.domain_name.rstrip('.')}"

    @property
    def tags(self) -> dict[str, str]:
        return {
            "Project": "grpc-stack",
            "Environment": self.environment,
            "ManagedBy": "pulumi",
        }

    def require_deployable(self) -> None:
        """Check the operator-supplied inputs before anything is provisioned.

        Raises:
            ConfigurationError: If the domain, subdomain or image is missing
                or invalid.
        """
        if not self.domain_name:
            raise ConfigurationError("DOMAIN_NAME is required")
        if not is_fqdn(self.domain_name):
            raise ConfigurationError(
                f"DOMAIN_NAME must be a fully-qualified name, got '{self.domain_name}'"
            )
        if not is_dns_label(self.subdomain):
            raise ConfigurationError(
                f"SUBDOMAIN must be a single DNS label, got '{self.subdomain}'"
            )
        if not self.image_ref:
            raise ConfigurationError("IMAGE_REF is required")
        if not _IMAGE_RE.match(self.image_ref):
            raise ConfigurationError(
                f"IMAGE_REF is not a valid image reference: '{self.image_ref}'"
            )


def load_settings(**overrides: Any) -> DeploymentSettings:
    """Create settings, reporting validation failures as ConfigurationError."""
    try:
        return DeploymentSettings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
