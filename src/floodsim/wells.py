"""Wells and their mapping onto per-cell source/sink terms."""

import logging
import math
import typing

import attrs
import numba
import numpy as np

from floodsim._precision import get_dtype
from floodsim.errors import ValidationError
from floodsim.grids import Grid, build_uniform_grid
from floodsim.models import PVTProperties
from floodsim.relperm import compute_water_fractional_flow
from floodsim.types import OneDimensionalGrid, TwoDimensions, WellType

logger = logging.getLogger(__name__)

__all__ = [
    "Well",
    "Wells",
    "injection_well",
    "production_well",
    "WellArrays",
    "build_pressure_source_grid",
    "compute_saturation_source_grids",
]


def _non_negative_rate(instance, attribute, value) -> None:
    if not (value >= 0.0 and math.isfinite(value)):
        raise ValidationError(
            f"Well rate must be a finite, non-negative magnitude, got {value}. "
            "Flow direction is implied by the well type."
        )


@attrs.frozen(slots=True)
class Well:
    """
    A vertical well completed in a single cell.

    `rate` is a non-negative magnitude (STB/day); injectors add water, producers withdraw fluid.
    """

    i: int
    """Cell index in the x direction."""
    j: int
    """Cell index in the y direction."""
    type: WellType = attrs.field(converter=WellType)
    """Whether the well injects or produces."""
    rate: float = attrs.field(default=500.0, converter=float, validator=_non_negative_rate)
    """Rate magnitude (STB/day)."""
    name: typing.Optional[str] = None
    """Optional display name."""

    @property
    def location(self) -> TwoDimensions:
        """The `(i, j)` cell the well occupies."""
        return self.i, self.j

    @property
    def is_injector(self) -> bool:
        return self.type is WellType.INJECTOR

    @property
    def is_producer(self) -> bool:
        return self.type is WellType.PRODUCER

    def check_location(self, grid: Grid) -> None:
        """
        Check that the well lies inside the grid.

        :raises ValidationError: If the well's cell is out of bounds.
        """
        if not grid.contains(self.i, self.j):
            raise ValidationError(
                f"Well {self.name or self.location!r} at cell {self.location} is outside the "
                f"{grid.cell_count_x}x{grid.cell_count_y} grid."
            )

    @classmethod
    def from_dict(cls, data: typing.Mapping[str, typing.Any]) -> "Well":
        """Build a well from a `{"i", "j", "type", "rate"}` mapping."""
        try:
            return cls(
                i=int(data["i"]),
                j=int(data["j"]),
                type=data["type"],
                rate=data.get("rate", 500.0),
                name=data.get("name"),
            )
        except KeyError as exc:
            raise ValidationError(f"Well definition is missing {exc.args[0]!r}: {data!r}") from exc

    def to_dict(self) -> typing.Dict[str, typing.Any]:
        data = {"i": self.i, "j": self.j, "type": self.type.value, "rate": self.rate}
        if self.name is not None:
            data["name"] = self.name
        return data


def injection_well(i: int, j: int, rate: float, name: typing.Optional[str] = None) -> Well:
    """
    Constructs an injection well.

    :param i: Cell index in the x direction.
    :param j: Cell index in the y direction.
    :param rate: Water injection rate (STB/day).
    :param name: Optional display name.
    """
    return Well(i=i, j=j, type=WellType.INJECTOR, rate=rate, name=name)


def production_well(i: int, j: int, rate: float, name: typing.Optional[str] = None) -> Well:
    """
    Constructs a production well.

    :param i: Cell index in the x direction.
    :param j: Cell index in the y direction.
    :param rate: Total liquid production rate (STB/day).
    :param name: Optional display name.
    """
    return Well(i=i, j=j, type=WellType.PRODUCER, rate=rate, name=name)


@attrs.frozen(slots=True)
class WellArrays:
    """Flat, solver-ready view of a well list."""

    cells: np.ndarray
    """Linear cell index of each well (int64)."""
    is_injector: np.ndarray
    """Boolean flag per well."""
    rates: np.ndarray
    """Rate magnitude per well (STB/day)."""


class Wells:
    """
    Ordered collection of wells keyed by location.

    At most one well occupies a cell: placing a well at an occupied cell replaces the
    existing well in place, keeping its position in the ordering.

    Once bound to a grid (see `bind`), every placed well is checked against it.
    """

    __slots__ = ("_wells", "_grid")

    def __init__(
        self, wells: typing.Iterable[Well] = (), grid: typing.Optional[Grid] = None
    ) -> None:
        self._wells: typing.Dict[TwoDimensions, Well] = {}
        self._grid = grid
        for well in wells:
            self.place(well)

    @property
    def grid(self) -> typing.Optional[Grid]:
        """The grid placed wells are checked against, if bound."""
        return self._grid

    def bind(self, grid: Grid) -> None:
        """
        Check all wells against `grid` and check every later placement against it too.

        :raises ValidationError: If any well lies outside `grid`. The binding is unchanged.
        """
        self.check_location(grid)
        self._grid = grid

    def place(self, well: Well) -> typing.Optional[Well]:
        """
        Place a well, replacing any well already at its location.

        :param well: The well to place.
        :return: The replaced well, if any.
        :raises ValidationError: If the collection is bound to a grid the well lies outside.
        """
        if self._grid is not None:
            well.check_location(self._grid)
        replaced = self._wells.get(well.location)
        self._wells[well.location] = well
        if replaced is not None:
            logger.debug(f"Replaced well at {well.location}: {replaced} -> {well}")
        return replaced

    def remove(self, location: TwoDimensions) -> Well:
        """
        Remove the well at `location`.

        :raises ValidationError: If there is no well at `location`.
        """
        try:
            return self._wells.pop(tuple(location))  # type: ignore[arg-type]
        except KeyError:
            raise ValidationError(f"No well at cell {location}.") from None

    def set_rate(self, location: TwoDimensions, rate: float) -> Well:
        """
        Change the rate of the well at `location`.

        :return: The updated well.
        :raises ValidationError: If there is no well at `location` or the rate is negative.
        """
        location = tuple(location)  # type: ignore[assignment]
        if location not in self._wells:
            raise ValidationError(f"No well at cell {location}.")
        updated = attrs.evolve(self._wells[location], rate=rate)
        self._wells[location] = updated
        return updated

    def get(self, location: TwoDimensions) -> typing.Optional[Well]:
        return self._wells.get(tuple(location))  # type: ignore[arg-type]

    def __getitem__(self, location: TwoDimensions) -> Well:
        well = self.get(location)
        if well is None:
            raise KeyError(location)
        return well

    def __contains__(self, location: object) -> bool:
        return isinstance(location, tuple) and location in self._wells

    def __iter__(self) -> typing.Iterator[Well]:
        return iter(list(self._wells.values()))

    def __len__(self) -> int:
        return len(self._wells)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Wells):
            return NotImplemented
        return list(self._wells.values()) == list(other._wells.values())

    def __repr__(self) -> str:
        return f"{type(self).__name__}({list(self._wells.values())!r})"

    @property
    def injectors(self) -> typing.List[Well]:
        return [well for well in self._wells.values() if well.is_injector]

    @property
    def producers(self) -> typing.List[Well]:
        return [well for well in self._wells.values() if well.is_producer]

    def copy(self) -> "Wells":
        return type(self)(self._wells.values(), grid=self._grid)

    def check_location(self, grid: Grid) -> None:
        """
        Check that all wells lie inside the grid.

        :raises ValidationError: If any well is out of bounds.
        """
        for well in self._wells.values():
            well.check_location(grid)

    def to_arrays(self, grid: Grid) -> WellArrays:
        """
        Flatten the wells into solver-ready arrays.

        :param grid: The grid the wells are placed on.
        """
        wells = list(self._wells.values())
        return WellArrays(
            cells=np.array([grid.index(well.i, well.j) for well in wells], dtype=np.int64),
            is_injector=np.array([well.is_injector for well in wells], dtype=np.bool_),
            rates=np.array([well.rate for well in wells], dtype=np.float64),
        )


def build_pressure_source_grid(
    grid: Grid, wells: Wells, pvt: PVTProperties
) -> OneDimensionalGrid:
    """
    Volumetric source terms for the pressure equation.

    Injectors contribute `+rate * B_w`. Producers withdraw `rate * (B_o + B_w) / 2`,
    a simplified total withdrawal at the average formation volume factor.

    :param grid: The reservoir grid.
    :param wells: Wells to map.
    :param pvt: Current PVT properties.
    :return: Flat array of source terms (bbl/day).
    """
    source_grid = build_uniform_grid(grid, 0.0)
    for well in wells:
        cell = grid.index(well.i, well.j)
        if well.is_injector:
            source_grid[cell] = well.rate * pvt.water_formation_volume_factor
        else:
            source_grid[cell] = -well.rate * pvt.average_formation_volume_factor
    return source_grid


@numba.njit(cache=True)
def _map_saturation_sources(
    well_cells: np.ndarray,
    well_is_injector: np.ndarray,
    well_rates: np.ndarray,
    water_saturation_grid: OneDimensionalGrid,
    water_viscosity: float,
    oil_viscosity: float,
    water_formation_volume_factor: float,
    fractional_flow_epsilon: float,
    water_source_grid: OneDimensionalGrid,
    oil_rate_grid: OneDimensionalGrid,
) -> None:
    for well_index in range(well_cells.shape[0]):
        cell = well_cells[well_index]
        rate = well_rates[well_index]
        if well_is_injector[well_index]:
            water_source_grid[cell] = rate * water_formation_volume_factor
            oil_rate_grid[cell] = 0.0
        else:
            water_fractional_flow = compute_water_fractional_flow(
                water_saturation_grid[cell],
                water_viscosity,
                oil_viscosity,
                fractional_flow_epsilon,
            )
            water_source_grid[cell] = (
                -rate * water_fractional_flow * water_formation_volume_factor
            )
            oil_rate_grid[cell] = rate * (1.0 - water_fractional_flow)


def compute_saturation_source_grids(
    grid: Grid,
    well_arrays: WellArrays,
    water_saturation_grid: OneDimensionalGrid,
    pvt: PVTProperties,
    fractional_flow_epsilon: float = 1e-10,
) -> typing.Tuple[OneDimensionalGrid, OneDimensionalGrid]:
    """
    Well source terms for the water saturation equation.

    Injectors add `rate * B_w` of water. Producers split their rate by the current water
    fractional flow `fw`: water `-rate * fw * B_w` leaves the cell and `rate * (1 - fw)`
    of oil is reported as produced.

    :param grid: The reservoir grid.
    :param well_arrays: Flattened wells (see `Wells.to_arrays`).
    :param water_saturation_grid: Current (pre-step) water saturations.
    :param pvt: Current PVT properties.
    :param fractional_flow_epsilon: Additive guard in the fractional flow denominator.
    :return: (water_source_grid (bbl/day), oil_rate_grid (STB/day))
    """
    dtype = get_dtype()
    water_source_grid = np.zeros(grid.cell_count, dtype=dtype)
    oil_rate_grid = np.zeros(grid.cell_count, dtype=dtype)
    _map_saturation_sources(
        well_cells=well_arrays.cells,
        well_is_injector=well_arrays.is_injector,
        well_rates=well_arrays.rates,
        water_saturation_grid=water_saturation_grid,
        water_viscosity=pvt.water_viscosity,
        oil_viscosity=pvt.oil_viscosity,
        water_formation_volume_factor=pvt.water_formation_volume_factor,
        fractional_flow_epsilon=fractional_flow_epsilon,
        water_source_grid=water_source_grid,
        oil_rate_grid=oil_rate_grid,
    )
    return water_source_grid, oil_rate_grid
