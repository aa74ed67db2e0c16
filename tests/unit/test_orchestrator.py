"""Unit tests for the provisioning pipeline."""

import json

import pulumi
import pytest

from grpc_stack.config import DeploymentSettings, load_settings
from grpc_stack.errors import (
    BackendRejectionError,
    ConfigurationError,
    StageFailedError,
)
from grpc_stack.orchestrator import Orchestrator, Stage

SG_RULE = "aws:ec2/securityGroupRule:SecurityGroupRule"
RECORD = "aws:route53/record:Record"
LISTENER = "aws:lb/listener:Listener"
TARGET_GROUP = "aws:lb/targetGroup:TargetGroup"
SERVICE = "aws:ecs/service:Service"


def alias_records(resources):
    return [r for r in resources if r.typ == RECORD and r.inputs["type"] == "A"]


class TestEndToEnd:
    """The example.org scenario."""

    def test_publishes_endpoint_and_wires_every_stage(self, mocks, run_program, settings):
        orchestrator = Orchestrator(settings)
        result = run_program(lambda: orchestrator.run().endpoint)

        assert result["resolved"] == "grpc.example.org"
        assert orchestrator.completed == [
            Stage.NETWORK,
            Stage.CERTIFICATE,
            Stage.COMPUTE,
            Stage.LOAD_BALANCER,
            Stage.DNS,
        ]

        tg = mocks.one(TARGET_GROUP)
        assert tg.inputs["protocolVersion"] == "GRPC"
        assert tg.inputs["healthCheck"]["matcher"] == "12"

        public = [
            r.inputs
            for r in mocks.of_type(SG_RULE)
            if r.inputs["type"] == "ingress" and r.inputs.get("cidrBlocks") == ["0.0.0.0/0"]
        ]
        assert len(public) == 1
        assert public[0]["fromPort"] == public[0]["toPort"] == 50051

        scaling = mocks.one("aws:appautoscaling/target:Target")
        assert scaling.inputs["minCapacity"] == 1
        assert scaling.inputs["maxCapacity"] == 10

        task = mocks.one("aws:ecs/taskDefinition:TaskDefinition")
        (container,) = json.loads(task.inputs["containerDefinitions"])
        assert container["image"] == "registry/svc:1"

    @pytest.mark.parametrize("port", [50051, 443, 8443, 9090])
    def test_container_target_group_and_listener_ports_agree(self, mocks, run_program, port):
        settings = DeploymentSettings(
            _env_file=None,
            domain_name="example.org",
            image_ref="registry/svc:1",
            container_port=port,
        )
        run_program(lambda: Orchestrator(settings).run())

        task = mocks.one("aws:ecs/taskDefinition:TaskDefinition")
        (container,) = json.loads(task.inputs["containerDefinitions"])
        (mapping,) = container["portMappings"]
        (lb,) = mocks.one(SERVICE).inputs["loadBalancers"]

        assert (
            mapping["containerPort"]
            == lb["containerPort"]
            == mocks.one(TARGET_GROUP).inputs["port"]
            == mocks.one(LISTENER).inputs["port"]
            == port
        )


class TestConfigurationErrors:
    """Configuration problems never reach the backend."""

    @pytest.mark.parametrize("domain", ["", "nodot"])
    def test_bad_domain_makes_zero_backend_calls(self, mocks, run_program, domain):
        settings = DeploymentSettings(
            _env_file=None, domain_name=domain, image_ref="registry/svc:1"
        )
        orchestrator = Orchestrator(settings)

        with pytest.raises(ConfigurationError):
            run_program(orchestrator.run)

        assert mocks.resources == []
        assert mocks.calls == []
        assert orchestrator.completed == []

    @pytest.mark.parametrize(
        "overrides",
        [{"vpc_cidr": "10.0.0.1/16"}, {"vpc_cidr": "10.0.0.0/30"}, {"az_count": 1}],
    )
    def test_bad_network_settings_make_zero_backend_calls(
        self, mocks, run_program, overrides
    ):
        def program():
            settings = load_settings(
                _env_file=None,
                domain_name="example.org",
                image_ref="registry/svc:1",
                **overrides,
            )
            return Orchestrator(settings).run()

        with pytest.raises(ConfigurationError):
            run_program(program)

        assert mocks.resources == []
        assert mocks.calls == []

    def test_missing_image_makes_zero_backend_calls(self, mocks, run_program):
        settings = DeploymentSettings(_env_file=None, domain_name="example.org")

        with pytest.raises(ConfigurationError, match="IMAGE_REF"):
            run_program(Orchestrator(settings).run)

        assert mocks.resources == []
        assert mocks.calls == []


class TestIdempotence:
    """Re-applying identical inputs."""

    def test_second_apply_does_not_duplicate_alias_record(self, mocks, run_program, settings):
        run_program(lambda: Orchestrator(settings).run())
        first = alias_records(mocks.resources)
        registered = len(mocks.resources)

        # Second `pulumi up` of the same program against the same stack
        pulumi.runtime.set_mocks(mocks, project="grpc-stack", stack="test", preview=False)
        run_program(lambda: Orchestrator(settings).run())
        second = alias_records(mocks.resources[registered:])

        assert len(first) == len(second) == 1
        assert first[0].name == second[0].name
        assert first[0].inputs["name"] == second[0].inputs["name"] == "grpc.example.org"
        assert second[0].inputs["allowOverwrite"] is True


class TestStageFailures:
    """A failing stage halts the pipeline and reports what exists."""

    def test_failure_stops_later_stages(self, mocks, run_program, settings, monkeypatch):
        def broken(self, network):
            raise RuntimeError("CannotPullContainerError: registry/svc:1 not found")

        monkeypatch.setattr(Orchestrator, "provision_compute", broken)
        orchestrator = Orchestrator(settings)

        with pytest.raises(StageFailedError) as exc_info:
            run_program(orchestrator.run)

        error = exc_info.value
        assert error.stage == "compute"
        assert error.completed == ("network", "certificate")
        assert isinstance(error.cause, BackendRejectionError)
        assert str(error.cause) == "CannotPullContainerError: registry/svc:1 not found"
        assert orchestrator.completed == [Stage.NETWORK, Stage.CERTIFICATE]

        # Earlier stages stay in place; nothing later is started
        assert mocks.of_type("aws:ec2/vpc:Vpc")
        assert mocks.of_type("aws:acm/certificate:Certificate")
        assert mocks.of_type("aws:lb/loadBalancer:LoadBalancer") == []
        assert alias_records(mocks.resources) == []

    def test_provisioning_error_keeps_its_type(self, mocks, run_program):
        settings = DeploymentSettings(
            _env_file=None,
            domain_name="example.org",
            image_ref="registry/svc:1",
            healthy_grpc_codes="200",
        )

        with pytest.raises(StageFailedError) as exc_info:
            run_program(Orchestrator(settings).run)

        error = exc_info.value
        assert error.stage == "load_balancer"
        assert isinstance(error.cause, ConfigurationError)
        assert error.cause.stage == "load_balancer"
        assert "already provisioned: network, certificate, compute" in str(error)

    def test_unvalidated_certificate_halts_before_listener(
        self, failing_mocks, run_program, settings
    ):
        mocks = failing_mocks("aws:acm/certificateValidation:CertificateValidation")

        with pytest.raises(Exception, match="did not converge"):
            run_program(lambda: Orchestrator(settings).run().endpoint)

        assert mocks.of_type("aws:acm/certificate:Certificate")
        assert mocks.of_type(LISTENER) == []
        assert mocks.of_type(SERVICE) == []
        assert alias_records(mocks.resources) == []
