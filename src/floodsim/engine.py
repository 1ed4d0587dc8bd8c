"""IMPES reservoir engine: lifecycle, step orchestration and hot parameter updates."""

import logging
import math
import typing

import attrs
import numpy as np

from floodsim.balance import MaterialBalanceTracker
from floodsim.config import Config
from floodsim.constants import c
from floodsim.diffusivity import (
    build_face_transmissibility_grid,
    evolve_pressure_implicitly,
    evolve_saturation_explicitly,
)
from floodsim.errors import SimulationError, SolverError, ValidationError
from floodsim.geology import generate_rock_properties
from floodsim.grids import Grid, build_uniform_grid
from floodsim.models import FluidProperties, PVTProperties, RockProperties
from floodsim.states import Snapshot
from floodsim.timing import TimeStepController
from floodsim.types import EngineState, TwoDimensions, WellType
from floodsim.wells import Well, Wells, build_pressure_source_grid

logger = logging.getLogger(__name__)

__all__ = ["ReservoirEngine", "RESET_OPTIONS"]

RESET_OPTIONS = frozenset(
    {
        "nx",
        "ny",
        "dx",
        "dy",
        "dz",
        "geology_model",
        "seed",
        "initial_pressure",
        "initial_water_saturation",
    }
)
"""Configuration options whose change requires a full reinitialisation."""

_PVT_OPTIONS = (
    "oil_viscosity",
    "water_viscosity",
    "total_compressibility",
    "oil_formation_volume_factor",
    "water_formation_volume_factor",
)


@attrs.frozen(slots=True)
class _LastStep:
    time_step_size: float = 0.0
    oil_production_rate: float = 0.0
    water_production_rate: float = 0.0
    pressure_iterations: int = 0
    pressure_converged: bool = True


class ReservoirEngine:
    """
    Two-phase (oil/water) 2D reservoir engine using the IMPES scheme.

    Each `step` solves the pressure equation implicitly with SOR, then transports water
    saturation explicitly with upstream weighting, accumulates oil production and adapts
    the time step size.

    Rock fields and the grid are fixed between resets. PVT properties, wells, the time
    step size and the average rock properties may be changed between steps. A change of
    average rock properties is stored and only takes effect when the rock fields are next
    generated, on `reset`.

    Example:
    ```python
    engine = ReservoirEngine(Config(seed=42))
    engine.initialize()
    for _ in range(10):
        snapshot = engine.step()
    print(snapshot.recovery_factor)
    ```
    """

    def __init__(
        self,
        config: typing.Optional[Config] = None,
        rng: typing.Optional[np.random.Generator] = None,
    ) -> None:
        """
        :param config: Engine configuration. Defaults to `Config()`.
        :param rng: Random number generator for geology generation. When not given,
            a generator seeded with `config.seed` is created on every (re)initialisation.
        """
        self._config = config if config is not None else Config()
        self._rng = rng
        self._state = EngineState.UNINITIALIZED
        self._load_parameters(self._config)

        self._grid: typing.Optional[Grid] = None
        self._rock_properties: typing.Optional[RockProperties] = None
        self._fluid_properties: typing.Optional[FluidProperties] = None
        self._spare_fluid_properties: typing.Optional[FluidProperties] = None
        self._connectivity: typing.Optional[np.ndarray] = None
        self._transmissibility_grid: typing.Optional[np.ndarray] = None
        self._balance: typing.Optional[MaterialBalanceTracker] = None
        self._last_step = _LastStep()

    def _load_parameters(self, config: Config) -> None:
        self._pvt = config.pvt
        self._wells = Wells(config.wells)
        self._average_permeability = config.permeability
        self._average_porosity = config.porosity
        self._timer = TimeStepController(initial_step_size=config.time_step_size)

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def is_initialized(self) -> bool:
        return self._state is EngineState.READY

    def _require_initialized(self) -> None:
        if self._state is not EngineState.READY:
            raise SimulationError(
                "Engine is not initialized. Call `initialize()` before stepping."
            )

    @property
    def config(self) -> Config:
        """
        The engine configuration with all hot updates folded in.

        `reset()` without arguments reinitialises from this configuration.
        """
        return self._config.evolve(
            permeability=self._average_permeability,
            porosity=self._average_porosity,
            wells=tuple(self._wells),
            **{name: getattr(self._pvt, name) for name in _PVT_OPTIONS},
        )

    def initialize(self) -> "ReservoirEngine":
        """
        Build the grid, generate the rock fields, set the uniform initial state and
        compute the original oil in place.

        :return: The engine itself.
        :raises ValidationError: If a well lies outside the grid.
        """
        return self._initialize(
            config=self._config,
            pvt=self._pvt,
            wells=self._wells,
            average_permeability=self._average_permeability,
            average_porosity=self._average_porosity,
        )

    def _initialize(
        self,
        config: Config,
        pvt: PVTProperties,
        wells: Wells,
        average_permeability: float,
        average_porosity: float,
    ) -> "ReservoirEngine":
        """
        Build a complete reservoir state from the given parameters and install it.

        The engine is left untouched if any part of the build fails.
        """
        grid = config.grid
        wells.bind(grid)

        rng = self._rng if self._rng is not None else np.random.default_rng(config.seed)
        with config.constants():
            rock_properties = generate_rock_properties(
                grid=grid,
                average_permeability=average_permeability,
                average_porosity=average_porosity,
                model=config.geology_model,
                rng=rng,
            )
            connectivity = grid.get_connectivity()
            transmissibility_grid = build_face_transmissibility_grid(
                grid=grid,
                permeability_grid=rock_properties.permeability_grid,
                darcy_constant=c.DARCY_CONSTANT,
                epsilon=c.HARMONIC_MEAN_EPSILON,
                connectivity=connectivity,
            )
            fluid_properties = FluidProperties(
                pressure_grid=build_uniform_grid(grid, config.initial_pressure),
                water_saturation_grid=build_uniform_grid(
                    grid, config.initial_water_saturation
                ),
            )
            balance = MaterialBalanceTracker.from_initial_state(
                grid=grid,
                porosity_grid=rock_properties.porosity_grid,
                water_saturation_grid=fluid_properties.water_saturation_grid,
                oil_formation_volume_factor=pvt.oil_formation_volume_factor,
            )
            timer = TimeStepController(initial_step_size=config.time_step_size)

        self._config = config
        self._pvt = pvt
        self._wells = wells
        self._average_permeability = average_permeability
        self._average_porosity = average_porosity
        self._timer = timer
        self._grid = grid
        self._rock_properties = rock_properties
        self._fluid_properties = fluid_properties
        self._spare_fluid_properties = fluid_properties.copy()
        self._connectivity = connectivity
        self._transmissibility_grid = transmissibility_grid
        self._balance = balance
        self._last_step = _LastStep()
        self._state = EngineState.READY
        logger.info(
            f"Initialized {grid.cell_count_x}x{grid.cell_count_y} "
            f"'{config.geology_model}' reservoir with {len(wells)} wells. "
            f"OOIP: {balance.original_oil_in_place:.6g} STB"
        )
        return self

    def reset(self, config: typing.Optional[Config] = None) -> "ReservoirEngine":
        """
        Fully reinitialise the engine, discarding all fields and accumulated results.

        The new state is built completely before the old one is discarded, so a
        rejected configuration leaves the engine as it was.

        :param config: New configuration. Defaults to the current `config`, so hot
            updates made so far (including stored rock averages) are kept.
        :return: The engine itself.
        :raises ValidationError: If a well of the new configuration lies outside its grid.
        """
        config = config if config is not None else self.config
        logger.info("Resetting reservoir engine...")
        return self._initialize(
            config=config,
            pvt=config.pvt,
            wells=Wells(config.wells),
            average_permeability=config.permeability,
            average_porosity=config.porosity,
        )

    def step(self) -> Snapshot:
        """
        Advance the reservoir by one time step.

        :return: A snapshot of the state at the end of the step.
        :raises SimulationError: If the engine is not initialized.
        :raises SolverError: If the pressure solve does not converge and
            `config.raise_on_pressure_divergence` is set. The engine state, including the
            proposed step size, is left unchanged in that case.
        """
        self._require_initialized()
        grid = self._grid
        rock_properties = self._rock_properties
        fluid_properties = self._fluid_properties
        spare_fluid_properties = self._spare_fluid_properties
        balance = self._balance
        config = self._config
        pvt = self._pvt
        assert grid is not None and rock_properties is not None
        assert fluid_properties is not None and spare_fluid_properties is not None
        assert balance is not None

        with config.constants():
            time_step_size = self._timer.begin_step()
            next_step = self._timer.step + 1
            logger.debug(f"Time step {next_step} with Δt = {time_step_size:.4f} days")

            source_grid = build_pressure_source_grid(grid=grid, wells=self._wells, pvt=pvt)
            pressure_result = evolve_pressure_implicitly(
                grid=grid,
                rock_properties=rock_properties,
                fluid_properties=fluid_properties,
                pvt=pvt,
                source_grid=source_grid,
                time_step_size=time_step_size,
                transmissibility_grid=self._transmissibility_grid,
                connectivity=self._connectivity,
                relaxation_factor=config.relaxation_factor,
                max_iterations=config.max_iterations,
                convergence_tolerance=config.convergence_tolerance,
                out=spare_fluid_properties.pressure_grid,
            )
            pressure_solution = pressure_result.value
            if not pressure_result.success:
                logger.warning(f"Time step {next_step}: {pressure_result.message}")
                if config.raise_on_pressure_divergence:
                    self._timer.abort_step()
                    raise SolverError(pressure_result.message)
            else:
                logger.debug(pressure_result.message)

            saturation_result = evolve_saturation_explicitly(
                grid=grid,
                rock_properties=rock_properties,
                fluid_properties=fluid_properties,
                pressure_grid=pressure_solution.pressure_grid,
                pvt=pvt,
                well_arrays=self._wells.to_arrays(grid),
                time_step_size=time_step_size,
                transmissibility_grid=self._transmissibility_grid,
                connectivity=self._connectivity,
                out=spare_fluid_properties.water_saturation_grid,
            )
            saturation_solution = saturation_result.value
            balance.accumulate(saturation_solution.oil_production_rate, time_step_size)

            # Swap buffers; the old state becomes the scratch space of the next step
            self._fluid_properties = spare_fluid_properties
            self._spare_fluid_properties = fluid_properties

            next_step_size = self._timer.adjust(
                saturation_solution.max_saturation_change,
                pressure_iterations=pressure_solution.iterations,
                success=pressure_solution.converged,
            )

        self._last_step = _LastStep(
            time_step_size=time_step_size,
            oil_production_rate=saturation_solution.oil_production_rate,
            water_production_rate=saturation_solution.water_production_rate,
            pressure_iterations=pressure_solution.iterations,
            pressure_converged=pressure_solution.converged,
        )
        logger.debug(
            f"Time step {self._timer.step} completed at t = {self._timer.elapsed_time:.4f} days: "
            f"{pressure_solution.iterations} SOR sweeps, "
            f"max ΔSw = {saturation_solution.max_saturation_change:.4e}, "
            f"RF = {balance.recovery_factor:.4f}%, next Δt = {next_step_size:.4f} days"
        )
        return self.snapshot()

    def snapshot(self) -> Snapshot:
        """
        The current state as an independent snapshot.

        :raises SimulationError: If the engine is not initialized.
        """
        self._require_initialized()
        assert self._grid is not None and self._fluid_properties is not None
        assert self._balance is not None
        last_step = self._last_step
        return Snapshot(
            step=self._timer.step,
            time=self._timer.elapsed_time,
            time_step_size=last_step.time_step_size,
            grid=self._grid,
            pressure_grid=self._fluid_properties.pressure_grid.copy(),
            water_saturation_grid=self._fluid_properties.water_saturation_grid.copy(),
            recovery_factor=self._balance.recovery_factor,
            cumulative_oil_production=self._balance.cumulative_oil_production,
            original_oil_in_place=self._balance.original_oil_in_place,
            oil_production_rate=last_step.oil_production_rate,
            water_production_rate=last_step.water_production_rate,
            pressure_iterations=last_step.pressure_iterations,
            pressure_converged=last_step.pressure_converged,
        )

    @property
    def grid(self) -> Grid:
        self._require_initialized()
        return self._grid  # type: ignore[return-value]

    @property
    def rock_properties(self) -> RockProperties:
        self._require_initialized()
        return self._rock_properties  # type: ignore[return-value]

    @property
    def time(self) -> float:
        """Simulation time (days)."""
        return self._timer.elapsed_time

    @property
    def step_count(self) -> int:
        return self._timer.step

    @property
    def timer(self) -> TimeStepController:
        return self._timer

    @property
    def recovery_factor(self) -> float:
        self._require_initialized()
        return self._balance.recovery_factor  # type: ignore[union-attr]

    @property
    def original_oil_in_place(self) -> float:
        self._require_initialized()
        return self._balance.original_oil_in_place  # type: ignore[union-attr]

    @property
    def cumulative_oil_production(self) -> float:
        self._require_initialized()
        return self._balance.cumulative_oil_production  # type: ignore[union-attr]

    @property
    def pvt(self) -> PVTProperties:
        """
        Live PVT properties. Attribute assignments are validated and take effect on the
        next step.
        """
        return self._pvt

    @pvt.setter
    def pvt(self, value: PVTProperties) -> None:
        if not isinstance(value, PVTProperties):
            raise ValidationError(f"Expected `PVTProperties`, got {type(value).__name__}")
        self._pvt = value

    @property
    def wells(self) -> Wells:
        """
        Live well collection. Changes take effect on the next step.

        Once initialized, the collection is bound to the grid, so wells placed on it directly
        are checked just like those placed with `place_well`.
        """
        return self._wells

    @property
    def time_step_size(self) -> float:
        """Step size (days) proposed for the next step."""
        return self._timer.step_size

    @time_step_size.setter
    def time_step_size(self, value: float) -> None:
        self._timer.set_step_size(value)

    @property
    def average_permeability(self) -> float:
        return self._average_permeability

    @property
    def average_porosity(self) -> float:
        return self._average_porosity

    def set_rock_averages(
        self,
        permeability: typing.Optional[float] = None,
        porosity: typing.Optional[float] = None,
    ) -> None:
        """
        Store new average rock properties for the next geology generation.

        The current rock fields are left untouched; the values are used on the next `reset`.
        Values are floored at 0.1 mD and 0.01 respectively.

        :raises ValidationError: If a value is not finite. Neither value is stored then.
        """
        for name, value in (("permeability", permeability), ("porosity", porosity)):
            if value is not None and not math.isfinite(value):
                raise ValidationError(f"Average {name} must be finite, got {value!r}")
        if permeability is not None:
            self._average_permeability = max(float(permeability), c.MINIMUM_AVERAGE_PERMEABILITY)
        if porosity is not None:
            self._average_porosity = max(float(porosity), c.MINIMUM_AVERAGE_POROSITY)
        logger.debug(
            f"Average rock properties set to k = {self._average_permeability} mD, "
            f"φ = {self._average_porosity}. They take effect on the next reset."
        )

    def _check_well(self, well: Well) -> None:
        grid = self._grid if self._grid is not None else self._config.grid
        well.check_location(grid)

    def place_well(
        self,
        i: typing.Union[int, Well],
        j: typing.Optional[int] = None,
        type: typing.Union[WellType, str] = WellType.PRODUCER,
        rate: float = 500.0,
        name: typing.Optional[str] = None,
    ) -> Well:
        """
        Place a well, replacing any well at the same cell.

        Accepts either a `Well` or its `i, j, type, rate` components.

        :return: The placed well.
        :raises ValidationError: If the cell lies outside the grid.
        """
        if isinstance(i, Well):
            well = i
        else:
            if j is None:
                raise ValidationError("Well placement requires both `i` and `j`.")
            well = Well(i=i, j=j, type=type, rate=rate, name=name)
        self._check_well(well)
        self._wells.place(well)
        logger.debug(f"Placed {well.type.value} at {well.location} with rate {well.rate}")
        return well

    def remove_well(self, location: TwoDimensions) -> Well:
        """Remove the well at `location`."""
        well = self._wells.remove(location)
        logger.debug(f"Removed {well.type.value} at {well.location}")
        return well

    def set_well_rate(self, location: TwoDimensions, rate: float) -> Well:
        """Change the rate of the well at `location`."""
        return self._wells.set_rate(location, rate)

    def apply_config(self, config: Config) -> bool:
        """
        Apply a new configuration.

        Changes to the grid, geology model, seed or initial conditions require a full
        reset. Any other change is applied in place: average rock properties are stored for
        the next reset, and PVT properties, wells, solver settings and the time step size
        (when it differs from the current configuration) take effect on the next step.

        :param config: The new configuration.
        :return: True if the engine was fully reset.
        """
        current = self._config
        if not self.is_initialized or any(
            getattr(config, name) != getattr(current, name) for name in RESET_OPTIONS
        ):
            self.reset(config)
            return True

        wells = Wells(config.wells, grid=self.grid)
        self._wells = wells
        self._pvt = config.pvt
        self.set_rock_averages(config.permeability, config.porosity)
        if config.time_step_size != current.time_step_size:
            self.time_step_size = config.time_step_size
        self._config = config
        logger.debug("Applied configuration update without reset.")
        return False
