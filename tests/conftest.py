"""Pytest configuration and fixtures.

Pulumi's mock monitor stands in for the AWS backend: every resource
registration and provider invoke is recorded so tests can assert on what the
program asked the backend to create.
"""

import os

# Keep a developer's .env or shell from leaking into settings under test
for _var in ("DOMAIN_NAME", "IMAGE_REF", "LOG_LEVEL", "ENVIRONMENT"):
    os.environ.pop(_var, None)

import pulumi
import pytest

from grpc_stack.config import DeploymentSettings

ZONE_ID = "Z0123456789TEST"
ALB_ZONE_ID = "Z35SXDOTRQ7X7K"


class StackMocks(pulumi.runtime.Mocks):
    """Records registrations; resource types in ``fail_on`` are rejected."""

    def __init__(self, fail_on: set[str] | None = None):
        self.resources: list[pulumi.runtime.MockResourceArgs] = []
        self.calls: list[pulumi.runtime.MockCallArgs] = []
        self.fail_on = fail_on or set()

    def new_resource(self, args: pulumi.runtime.MockResourceArgs):
        if args.typ in self.fail_on:
            raise Exception(f"{args.typ} {args.name} did not converge")
        self.resources.append(args)

        resource_id = f"{args.name}-id"
        state = dict(args.inputs)
        state.setdefault("arn", f"arn:aws:mock:us-east-1:123456789012:{args.name}")

        if args.typ == "aws:acm/certificate:Certificate":
            domain = args.inputs["domainName"]
            state["domainValidationOptions"] = [
                {
                    "domainName": name,
                    "resourceRecordName": f"_abc123.{domain}.",
                    "resourceRecordType": "CNAME",
                    "resourceRecordValue": "_xyz789.acm-validations.aws.",
                }
                for name in [domain, *args.inputs.get("subjectAlternativeNames", [])]
            ]
        elif args.typ == "aws:lb/loadBalancer:LoadBalancer":
            state["dnsName"] = f"{args.name}-123456.us-east-1.elb.amazonaws.com"
            state["zoneId"] = ALB_ZONE_ID
        elif args.typ == "aws:route53/record:Record":
            state["fqdn"] = args.inputs["name"].rstrip(".")
        elif args.typ in ("aws:ecs/cluster:Cluster", "aws:ecs/service:Service", "aws:iam/role:Role"):
            state.setdefault("name", args.name)

        return resource_id, state

    def call(self, args: pulumi.runtime.MockCallArgs):
        self.calls.append(args)
        if args.token == "aws:index/getAvailabilityZones:getAvailabilityZones":
            return {
                "names": ["us-east-1a", "us-east-1b", "us-east-1c"],
                "zoneIds": ["use1-az1", "use1-az2", "use1-az3"],
            }
        if args.token == "aws:route53/getZone:getZone":
            return {"id": ZONE_ID, "zoneId": ZONE_ID, "name": args.args["name"]}
        return {}

    def of_type(self, typ: str) -> list[pulumi.runtime.MockResourceArgs]:
        return [r for r in self.resources if r.typ == typ]

    def one(self, typ: str) -> pulumi.runtime.MockResourceArgs:
        found = self.of_type(typ)
        assert len(found) == 1, f"expected one {typ}, found {len(found)}"
        return found[0]


@pytest.fixture
def mocks():
    """Install fresh Pulumi mocks for one test."""
    stack_mocks = StackMocks()
    pulumi.runtime.set_mocks(stack_mocks, project="grpc-stack", stack="test", preview=False)
    return stack_mocks


@pytest.fixture
def failing_mocks():
    """Factory installing mocks that reject the given resource types."""

    def install(*types: str) -> StackMocks:
        stack_mocks = StackMocks(fail_on=set(types))
        pulumi.runtime.set_mocks(stack_mocks, project="grpc-stack", stack="test", preview=False)
        return stack_mocks

    return install


@pytest.fixture
def settings():
    """Deployable settings for the example.org scenario."""
    return DeploymentSettings(
        _env_file=None,
        environment="test",
        domain_name="example.org",
        image_ref="registry/svc:1",
        max_capacity=10,
    )


def _run_program(program):
    result = {}

    @pulumi.runtime.test
    def run():
        value = program()
        result["value"] = value
        if isinstance(value, pulumi.Output):
            return value.apply(lambda v: result.__setitem__("resolved", v))
        return None

    run()
    return result


@pytest.fixture
def run_program():
    """Run a callable inside the Pulumi test runtime.

    Returns a dict with the callable's return value under ``"value"`` and,
    for Outputs, the resolved value under ``"resolved"``. Blocks until every
    registration has reached the mocks.
    """
    return _run_program
