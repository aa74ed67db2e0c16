"""Autoscaling policy for the compute service.

The policy is declared to Application Auto Scaling as CPU target tracking;
the backend runs the control loop. ``desired_count_for`` projects where that
loop settles so the bounds can be reasoned about offline.
"""

import math

from pydantic import BaseModel, ConfigDict, Field, model_validator


class ScalingPolicy(BaseModel):
    """Task count bounds and the CPU utilization trigger."""

    model_config = ConfigDict(frozen=True)

    min_capacity: int = Field(default=1, ge=1)
    max_capacity: int = Field(default=10, ge=1)
    desired_count: int = Field(default=1, ge=1)
    target_cpu_utilization: float = Field(default=50.0, gt=0, le=100)
    scale_in_cooldown: int = Field(default=60, ge=0)
    scale_out_cooldown: int = Field(default=60, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self) -> "ScalingPolicy":
        if self.max_capacity < self.min_capacity:
            raise ValueError(
                f"max_capacity ({self.max_capacity}) must be >= "
                f"min_capacity ({self.min_capacity})"
            )
        if not self.min_capacity <= self.desired_count <= self.max_capacity:
            raise ValueError(
                f"desired_count ({self.desired_count}) must be within "
                f"[{self.min_capacity}, {self.max_capacity}]"
            )
        return self

    def clamp(self, count: int) -> int:
        """Bound a task count to the policy's capacity range."""
        return max(self.min_capacity, min(self.max_capacity, count))

    def desired_count_for(self, current: int, utilization: float) -> int:
        """Task count target tracking converges on for a utilization signal.

        Args:
            current: Running task count.
            utilization: Average CPU utilization in percent. Values outside
                0-100 are treated as the nearest bound.

        Returns:
            The projected task count, always within the capacity range.
        """
        utilization = min(max(utilization, 0.0), 100.0)
        current = self.clamp(current)
        return self.clamp(math.ceil(current * utilization / self.target_cpu_utilization))
