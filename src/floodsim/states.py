import logging
import threading
import typing
from collections import deque

import attrs
import numpy as np

from floodsim.errors import ValidationError
from floodsim.grids import Grid, as_2D
from floodsim.types import OneDimensionalGrid

logger = logging.getLogger(__name__)


__all__ = ["Snapshot", "History", "DEFAULT_HISTORY_SIZE"]

DEFAULT_HISTORY_SIZE = 500


@attrs.frozen(slots=True, eq=False)
class Snapshot:
    """
    The state of the reservoir at the end of a time step.

    Field arrays are copies owned by the snapshot; later steps never alter them.
    """

    step: int
    """Number of completed steps."""
    time: float
    """Simulation time (days)."""
    time_step_size: float
    """Size of the step that produced this state (days). 0.0 before the first step."""
    grid: Grid
    """The grid the fields are defined on."""
    pressure_grid: OneDimensionalGrid
    """Flat array of cell pressures (psi)."""
    water_saturation_grid: OneDimensionalGrid
    """Flat array of water saturations (fraction)."""
    recovery_factor: float
    """Cumulative oil production over original oil in place (percent)."""
    cumulative_oil_production: float
    """Cumulative oil production (STB)."""
    original_oil_in_place: float
    """Original oil in place (STB)."""
    oil_production_rate: float = 0.0
    """Field oil production rate over the step (STB/day)."""
    water_production_rate: float = 0.0
    """Field water production rate over the step (STB/day)."""
    pressure_iterations: int = 0
    """SOR sweeps used by the pressure solve of the step."""
    pressure_converged: bool = True
    """Whether the pressure solve of the step converged."""

    @property
    def average_pressure(self) -> float:
        return float(np.mean(self.pressure_grid))

    @property
    def average_water_saturation(self) -> float:
        return float(np.mean(self.water_saturation_grid))

    @property
    def oil_saturation_grid(self) -> OneDimensionalGrid:
        return 1.0 - self.water_saturation_grid

    @property
    def water_cut(self) -> float:
        """Produced water fraction of the total liquid rate."""
        total_rate = self.oil_production_rate + self.water_production_rate
        if total_rate <= 0.0:
            return 0.0
        return self.water_production_rate / total_rate

    def pressure_2D(self) -> np.ndarray:
        """Pressure field as an array indexed `[j, i]`."""
        return as_2D(self.pressure_grid, self.grid)

    def water_saturation_2D(self) -> np.ndarray:
        """Water saturation field as an array indexed `[j, i]`."""
        return as_2D(self.water_saturation_grid, self.grid)


class History:
    """
    Bounded, thread-safe record of snapshots for time series plots.

    Once `max_size` snapshots are held, the oldest is dropped for each new one.
    """

    def __init__(self, max_size: int = DEFAULT_HISTORY_SIZE) -> None:
        if max_size < 1:
            raise ValidationError(f"History size must be at least 1, got {max_size}")
        self._snapshots: typing.Deque[Snapshot] = deque(maxlen=max_size)
        self._lock = threading.Lock()

    @property
    def max_size(self) -> int:
        return self._snapshots.maxlen  # type: ignore[return-value]

    def append(self, snapshot: Snapshot) -> None:
        with self._lock:
            self._snapshots.append(snapshot)

    def clear(self) -> None:
        with self._lock:
            self._snapshots.clear()

    def snapshots(self) -> typing.List[Snapshot]:
        """A copy of the recorded snapshots, oldest first."""
        with self._lock:
            return list(self._snapshots)

    @property
    def latest(self) -> typing.Optional[Snapshot]:
        with self._lock:
            return self._snapshots[-1] if self._snapshots else None

    def __len__(self) -> int:
        return len(self._snapshots)

    def __iter__(self) -> typing.Iterator[Snapshot]:
        return iter(self.snapshots())

    def __getitem__(self, index: int) -> Snapshot:
        with self._lock:
            return self._snapshots[index]

    def _series(self, getter: typing.Callable[[Snapshot], float]) -> np.ndarray:
        return np.array([getter(snapshot) for snapshot in self.snapshots()], dtype=np.float64)

    @property
    def times(self) -> np.ndarray:
        return self._series(lambda snapshot: snapshot.time)

    @property
    def average_pressures(self) -> np.ndarray:
        return self._series(lambda snapshot: snapshot.average_pressure)

    @property
    def average_water_saturations(self) -> np.ndarray:
        return self._series(lambda snapshot: snapshot.average_water_saturation)

    @property
    def recovery_factors(self) -> np.ndarray:
        return self._series(lambda snapshot: snapshot.recovery_factor)
