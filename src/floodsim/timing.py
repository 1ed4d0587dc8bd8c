"""Adaptive time step control driven by the saturation change per step."""

import logging
import math
import typing
from collections import deque

import attrs

from floodsim.constants import c
from floodsim.errors import TimingError, ValidationError

__all__ = ["StepMetrics", "TimeStepController"]

logger = logging.getLogger(__name__)


@attrs.frozen(slots=True)
class StepMetrics:
    """Metrics for a single time step."""

    step_number: int
    step_size: float
    max_saturation_change: float
    pressure_iterations: typing.Optional[int] = None
    success: bool = True


@attrs.define
class TimeStepController:
    """
    Simulation time and step size manager.

    Every step begins by capping the step size (`begin_step`). Once the step is done,
    `adjust` advances the simulation time by the step size that was used and proposes
    the next one from the largest saturation change of the step:

    - above `cutback_threshold`, the step size is multiplied by `backoff_factor`;
    - below `growth_threshold`, it is multiplied by `ramp_up_factor`;
    - otherwise it is left alone.

    The result is always clamped into `[min_step_size, max_step_size]`.
    """

    initial_step_size: float = attrs.field(converter=float)
    """Initial time step size in days."""
    max_step_size: float = attrs.field(factory=lambda: c.MAXIMUM_TIME_STEP_SIZE)
    """Maximum allowable time step size in days."""
    min_step_size: float = attrs.field(factory=lambda: c.MINIMUM_TIME_STEP_SIZE)
    """Minimum allowable time step size in days."""
    step_start_cap: float = attrs.field(factory=lambda: c.STEP_START_TIME_STEP_CAP)
    """Hard cap applied to the step size at the start of every step (days)."""
    cutback_threshold: float = attrs.field(
        factory=lambda: c.SATURATION_CHANGE_CUTBACK_THRESHOLD
    )
    growth_threshold: float = attrs.field(
        factory=lambda: c.SATURATION_CHANGE_GROWTH_THRESHOLD
    )
    backoff_factor: float = attrs.field(factory=lambda: c.TIME_STEP_CUTBACK_FACTOR)
    """Factor by which to reduce the step size after a large saturation change."""
    ramp_up_factor: float = attrs.field(factory=lambda: c.TIME_STEP_GROWTH_FACTOR)
    """Factor by which to grow the step size after a small saturation change."""
    metrics_history_size: int = 10
    """Number of recent steps to track for diagnostics."""

    # State variables
    elapsed_time: float = attrs.field(init=False, default=0.0)
    """Current simulation time in days (sum of all completed steps)."""
    step_size: float = attrs.field(init=False, default=0.0)
    """Proposed step size (days) for the next step, before the start-of-step cap."""
    step: int = attrs.field(init=False, default=0)
    """Number of completed steps."""
    recent_metrics: deque = attrs.field(init=False)
    """Recent step metrics."""
    _step_in_progress: bool = attrs.field(init=False, default=False)
    _current_step_size: float = attrs.field(init=False, default=0.0)

    def __attrs_post_init__(self) -> None:
        if not self.min_step_size > 0.0 or self.min_step_size > self.max_step_size:
            raise ValidationError(
                f"Invalid step size bounds [{self.min_step_size}, {self.max_step_size}]."
            )
        self.recent_metrics = deque(maxlen=self.metrics_history_size)
        self.set_step_size(self.initial_step_size)

    def _clamp(self, step_size: float) -> float:
        return max(self.min_step_size, min(step_size, self.max_step_size))

    def set_step_size(self, step_size: float) -> float:
        """
        Set the step size for the next step, clamped into bounds.

        :param step_size: Requested step size (days).
        :return: The step size actually set.
        """
        step_size = float(step_size)
        if not math.isfinite(step_size):
            raise ValidationError(f"Time step size must be finite, got {step_size}.")
        clamped = self._clamp(step_size)
        if clamped != step_size:
            logger.debug(f"Requested time step size {step_size} clamped to {clamped}.")
        self.step_size = clamped
        return clamped

    def begin_step(self) -> float:
        """
        Start a step, capping its size at `step_start_cap`.

        The proposed `step_size` is not modified until the step completes in `adjust`.

        :return: The step size (days) to use for this step.
        """
        self._current_step_size = min(self.step_size, self.step_start_cap)
        self._step_in_progress = True
        return self._current_step_size

    def abort_step(self) -> None:
        """Abandon the step in progress, leaving time and the proposed step size as they were."""
        self._step_in_progress = False
        self._current_step_size = 0.0

    def adjust(
        self,
        max_saturation_change: float,
        pressure_iterations: typing.Optional[int] = None,
        success: bool = True,
    ) -> float:
        """
        Complete the current step and propose the next step size.

        :param max_saturation_change: Largest absolute saturation change of the step.
        :param pressure_iterations: Pressure solver sweeps used, for diagnostics.
        :param success: Whether the pressure solve converged, for diagnostics.
        :return: The step size for the next step.
        :raises TimingError: If no step is in progress.
        """
        if not self._step_in_progress:
            raise TimingError("`adjust` called without a preceding `begin_step`.")

        used_step_size = self._current_step_size
        self.elapsed_time += used_step_size
        self.step += 1
        self._step_in_progress = False
        self.recent_metrics.append(
            StepMetrics(
                step_number=self.step,
                step_size=used_step_size,
                max_saturation_change=max_saturation_change,
                pressure_iterations=pressure_iterations,
                success=success,
            )
        )

        next_step_size = used_step_size
        if max_saturation_change > self.cutback_threshold:
            next_step_size *= self.backoff_factor
            logger.debug(
                f"Max saturation change {max_saturation_change:.4f} above "
                f"{self.cutback_threshold}. Reducing step size to {next_step_size:.4f} days."
            )
        elif max_saturation_change < self.growth_threshold:
            next_step_size *= self.ramp_up_factor

        self.step_size = self._clamp(next_step_size)
        return self.step_size

    def reset(self, initial_step_size: typing.Optional[float] = None) -> None:
        """Reset time, step count and metrics."""
        if initial_step_size is not None:
            self.initial_step_size = float(initial_step_size)
        self.elapsed_time = 0.0
        self.step = 0
        self._step_in_progress = False
        self.recent_metrics.clear()
        self.set_step_size(self.initial_step_size)
