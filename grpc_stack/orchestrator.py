"""Provisioning pipeline for the streaming endpoint.

Five stages run in a fixed order, each taking the typed outputs of the
stages it depends on:

    NETWORK -> CERTIFICATE -> COMPUTE -> LOAD_BALANCER -> DNS

Configuration is checked before the first stage, so invalid input never
reaches the backend. A failing stage stops the pipeline; resources from
earlier stages stay in place and are reported in ``StageFailedError``.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

import pulumi

from grpc_stack.components.certificate import TlsCertificate
from grpc_stack.components.compute import ComputeService
from grpc_stack.components.dns import DnsBinding
from grpc_stack.components.load_balancer import LoadBalancerFront
from grpc_stack.components.network import NetworkContext
from grpc_stack.config import DeploymentSettings
from grpc_stack.errors import BackendRejectionError, ProvisioningError, StageFailedError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Stage(str, Enum):
    NETWORK = "network"
    CERTIFICATE = "certificate"
    COMPUTE = "compute"
    LOAD_BALANCER = "load_balancer"
    DNS = "dns"


@dataclass(frozen=True)
class NetworkOutputs:
    context: NetworkContext
    network_id: pulumi.Output[str]
    public_subnet_ids: pulumi.Output[list[str]]
    private_subnet_ids: pulumi.Output[list[str]]
    ingress_group_id: pulumi.Output[str]


@dataclass(frozen=True)
class CertificateOutputs:
    certificate: TlsCertificate
    cert_handle: pulumi.Output[str]
    zone_handle: pulumi.Output[str]
    domain_name: str


@dataclass(frozen=True)
class ComputeOutputs:
    service: ComputeService
    container_port: int


@dataclass(frozen=True)
class LoadBalancerOutputs:
    front: LoadBalancerFront
    lb_handle: pulumi.Output[str]
    dns_target: pulumi.Output[str]
    dns_zone_id: pulumi.Output[str]


@dataclass(frozen=True)
class DnsOutputs:
    binding: DnsBinding
    fqdn: pulumi.Output[str]


@dataclass(frozen=True)
class DeploymentOutputs:
    network: NetworkOutputs
    certificate: CertificateOutputs
    compute: ComputeOutputs
    load_balancer: LoadBalancerOutputs
    dns: DnsOutputs

    @property
    def endpoint(self) -> pulumi.Output[str]:
        return self.dns.fqdn


class Orchestrator:
    """Runs the five provisioning stages for one deployment."""

    def __init__(self, settings: DeploymentSettings, name: str | None = None):
        self.settings = settings
        self.name = name or settings.environment
        self.completed: list[Stage] = []

    def run(self) -> DeploymentOutputs:
        """Provision every stage and return their outputs.

        Raises:
            ConfigurationError: Before any stage, if the settings are invalid.
            StageFailedError: If a stage fails; later stages are not started.
        """
        self.settings.require_deployable()
        self.completed = []

        network = self._run_stage(Stage.NETWORK, self.provision_network)
        certificate = self._run_stage(Stage.CERTIFICATE, self.provision_certificate)
        compute = self._run_stage(Stage.COMPUTE, self.provision_compute, network)
        load_balancer = self._run_stage(
            Stage.LOAD_BALANCER,
            self.provision_load_balancer,
            network,
            certificate,
            compute,
        )
        dns = self._run_stage(Stage.DNS, self.provision_dns, certificate, load_balancer)

        logger.info("Endpoint %s declared", self.settings.endpoint)
        return DeploymentOutputs(
            network=network,
            certificate=certificate,
            compute=compute,
            load_balancer=load_balancer,
            dns=dns,
        )

    def _run_stage(self, stage: Stage, provision: Callable[..., T], *inputs: Any) -> T:
        logger.info("Provisioning %s", stage.value)
        try:
            outputs = provision(*inputs)
        except ProvisioningError as e:
            e.stage = e.stage or stage.value
            raise StageFailedError(stage.value, self._completed_names(), e) from e
        except Exception as e:
            cause = BackendRejectionError(str(e), stage=stage.value)
            raise StageFailedError(stage.value, self._completed_names(), cause) from e
        self.completed.append(stage)
        logger.debug("Provisioned %s", stage.value)
        return outputs

    def _completed_names(self) -> tuple[str, ...]:
        return tuple(s.value for s in self.completed)

    def provision_network(self) -> NetworkOutputs:
        context = NetworkContext(
            f"{self.name}-network",
            environment=self.settings.environment,
            cidr_block=self.settings.vpc_cidr,
            availability_zones=self.settings.az_count,
            tags=self.settings.tags,
        )
        return NetworkOutputs(
            context=context,
            network_id=context.network_id,
            public_subnet_ids=context.public_subnet_ids,
            private_subnet_ids=context.private_subnet_ids,
            ingress_group_id=context.ingress_group.id,
        )

    def provision_certificate(self) -> CertificateOutputs:
        certificate = TlsCertificate(
            f"{self.name}-certificate",
            domain_name=self.settings.domain_name,
            validation_timeout=self.settings.certificate_validation_timeout,
            tags=self.settings.tags,
        )
        return CertificateOutputs(
            certificate=certificate,
            cert_handle=certificate.certificate_arn,
            zone_handle=certificate.zone_id,
            domain_name=certificate.domain_name,
        )

    def provision_compute(self, network: NetworkOutputs) -> ComputeOutputs:
        settings = self.settings
        service = ComputeService(
            f"{self.name}-compute",
            environment=settings.environment,
            subnet_ids=network.private_subnet_ids,
            security_group_id=network.context.service_group.id,
            image_ref=settings.image_ref,
            container_port=settings.container_port,
            scaling=settings.scaling,
            cpu=settings.cpu,
            memory=settings.memory,
            cpu_architecture=settings.cpu_architecture,
            container_name=settings.container_name,
            task_actions=settings.task_actions,
            log_level=settings.log_level,
            region=settings.aws_region,
            log_retention_days=settings.log_retention_days,
            stabilization_timeout=settings.service_stabilization_timeout,
            tags=settings.tags,
        )
        return ComputeOutputs(service=service, container_port=service.container_port)

    def provision_load_balancer(
        self,
        network: NetworkOutputs,
        certificate: CertificateOutputs,
        compute: ComputeOutputs,
    ) -> LoadBalancerOutputs:
        front = LoadBalancerFront(
            f"{self.name}-edge",
            network=network.context,
            certificate=certificate.certificate,
            service=compute.service,
            port=compute.container_port,
            healthy_grpc_codes=self.settings.healthy_grpc_codes,
            idle_timeout=self.settings.idle_timeout,
            tags=self.settings.tags,
        )
        return LoadBalancerOutputs(
            front=front,
            lb_handle=front.load_balancer.arn,
            dns_target=front.dns_name,
            dns_zone_id=front.zone_id,
        )

    def provision_dns(
        self,
        certificate: CertificateOutputs,
        load_balancer: LoadBalancerOutputs,
    ) -> DnsOutputs:
        binding = DnsBinding(
            f"{self.name}-dns",
            zone_id=certificate.zone_handle,
            zone_name=certificate.domain_name,
            record_name=self.settings.subdomain,
            alias_name=load_balancer.dns_target,
            alias_zone_id=load_balancer.dns_zone_id,
            # Publish only after the certificate is on the listener
            depends_on=[load_balancer.front.listener],
        )
        return DnsOutputs(binding=binding, fqdn=binding.fqdn)
