"""DNS Component - Alias record publishing the endpoint."""

import pulumi
import pulumi_aws as aws

from grpc_stack.config import is_dns_label
from grpc_stack.errors import ConfigurationError


class DnsBinding(pulumi.ComponentResource):
    """A record aliasing ``<record_name>.<zone_name>`` to the load balancer.

    The record keeps the same logical name across runs and may overwrite an
    existing record, so re-applying updates it in place.
    """

    def __init__(
        self,
        name: str,
        zone_id: pulumi.Input[str],
        zone_name: str,
        record_name: str,
        alias_name: pulumi.Input[str],
        alias_zone_id: pulumi.Input[str],
        evaluate_target_health: bool = True,
        depends_on: list[pulumi.Resource] | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ):
        # A single label keeps the name inside the zone and under its wildcard cert
        if not is_dns_label(record_name):
            raise ConfigurationError(
                f"Record name must be a single DNS label, got '{record_name}'"
            )

        super().__init__("grpcstack:dns:AliasRecord", name, None, opts)

        self.record = aws.route53.Record(
            f"{name}-{record_name}",
            zone_id=zone_id,
            name=f"{record_name}.{zone_name.rstrip('.')}",
            type="A",
            aliases=[
                aws.route53.RecordAliasArgs(
                    name=alias_name,
                    zone_id=alias_zone_id,
                    evaluate_target_health=evaluate_target_health,
                )
            ],
            allow_overwrite=True,
            opts=pulumi.ResourceOptions(parent=self, depends_on=depends_on or []),
        )

        self.fqdn = self.record.name

        self.register_outputs({"fqdn": self.fqdn})
