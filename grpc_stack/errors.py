"""Error taxonomy for the provisioning pipeline.

- ConfigurationError: invalid or missing configuration, raised before any
  resource is declared.
- TopologyError: resources that disagree with each other (ports, security
  group ownership, double binding).
- BackendRejectionError: a stage failed with something outside this
  taxonomy; the underlying message is kept verbatim.
- StageFailedError: a stage failed after earlier stages were provisioned.
  Those resources stay in place for the operator.
"""


class ProvisioningError(Exception):
    """Base class for all provisioning failures."""

    def __init__(self, message: str, stage: str | None = None):
        super().__init__(message)
        self.stage = stage


class ConfigurationError(ProvisioningError):
    """Configuration is missing or invalid."""


class TopologyError(ProvisioningError):
    """Cross-resource invariant violated while wiring the graph."""


class BackendRejectionError(ProvisioningError):
    """A stage was rejected; the message is the backend's own."""


class StageFailedError(ProvisioningError):
    """A pipeline stage failed and the pipeline halted.

    Attributes:
        stage: The stage that failed.
        completed: Stages provisioned before the failure, in order.
        cause: The underlying ProvisioningError.
    """

    def __init__(
        self,
        stage: str,
        completed: tuple[str, ...],
        cause: ProvisioningError,
    ):
        done = ", ".join(completed) if completed else "none"
        super().__init__(
            f"Stage '{stage}' failed: {cause} (already provisioned: {done})",
            stage=stage,
        )
        self.completed = completed
        self.cause = cause
