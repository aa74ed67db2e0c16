"""Certificate Component - ACM certificate validated through Route 53."""

import pulumi
import pulumi_aws as aws

from grpc_stack.config import is_fqdn
from grpc_stack.errors import ConfigurationError


class TlsCertificate(pulumi.ComponentResource):
    """DNS-validated certificate for a domain and its first-level subdomains.

    ``certificate_arn`` comes from the validation resource, so anything that
    consumes it waits until ACM reports the certificate as issued.
    """

    def __init__(
        self,
        name: str,
        domain_name: str,
        validation_timeout: str = "45m",
        tags: dict | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        """
        Create a validated certificate.

        Args:
            name: Resource name prefix
            domain_name: Apex domain of an existing public hosted zone
            validation_timeout: Upper bound on the wait for validation
            tags: Common tags to apply
            opts: Pulumi resource options

        Raises:
            ConfigurationError: If the domain is empty or not fully qualified.
                Raised before anything is registered.
        """
        if not domain_name:
            raise ConfigurationError("Domain Name is required")
        if not is_fqdn(domain_name):
            raise ConfigurationError(
                f"Domain name must be fully qualified, got '{domain_name}'"
            )

        super().__init__("grpcstack:tls:Certificate", name, None, opts)

        self.domain_name = domain_name.rstrip(".")
        self.tags = tags or {}
        child_opts = pulumi.ResourceOptions(parent=self)

        # Pre-existing public zone that owns the domain
        self.zone = aws.route53.get_zone_output(
            name=self.domain_name,
            private_zone=False,
            opts=pulumi.InvokeOptions(parent=self),
        )
        self.zone_id = self.zone.zone_id
        self.zone_name = self.domain_name

        self.certificate = aws.acm.Certificate(
            f"{name}-cert",
            domain_name=self.domain_name,
            subject_alternative_names=[f"*.{self.domain_name}"],
            validation_method="DNS",
            tags={**self.tags, "Name": f"{name}-cert"},
            opts=child_opts,
        )

        # The apex and the wildcard share one validation record
        validation_option = self.certificate.domain_validation_options.apply(
            lambda options: options[0]
        )
        self.validation_record = aws.route53.Record(
            f"{name}-validation-record",
            zone_id=self.zone_id,
            name=validation_option.apply(lambda o: o.resource_record_name),
            type=validation_option.apply(lambda o: o.resource_record_type),
            records=[validation_option.apply(lambda o: o.resource_record_value)],
            ttl=60,
            allow_overwrite=True,
            opts=child_opts,
        )

        self.validation = aws.acm.CertificateValidation(
            f"{name}-validation",
            certificate_arn=self.certificate.arn,
            validation_record_fqdns=[self.validation_record.fqdn],
            opts=pulumi.ResourceOptions(
                parent=self,
                custom_timeouts=pulumi.CustomTimeouts(create=validation_timeout),
            ),
        )

        self.certificate_arn = self.validation.certificate_arn

        self.register_outputs(
            {
                "certificate_arn": self.certificate_arn,
                "zone_id": self.zone_id,
            }
        )
