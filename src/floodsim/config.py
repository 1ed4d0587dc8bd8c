import math
import typing

import attrs

from floodsim.constants import Constants, c
from floodsim.errors import ValidationError
from floodsim.geology import get_geology_model
from floodsim.grids import Grid
from floodsim.models import PVTProperties
from floodsim.wells import Well, injection_well, production_well

__all__ = ["Config"]


def _finite(value: typing.Any, name: str) -> float:
    value = float(value)
    if not math.isfinite(value):
        raise ValidationError(f"{name} must be finite, got {value!r}")
    return value


def _floor_permeability(value: typing.Any) -> float:
    return max(_finite(value, "permeability"), c.MINIMUM_AVERAGE_PERMEABILITY)


def _floor_porosity(value: typing.Any) -> float:
    return max(_finite(value, "porosity"), c.MINIMUM_AVERAGE_POROSITY)


def _to_wells(value: typing.Iterable[typing.Any]) -> typing.Tuple[Well, ...]:
    wells = []
    for well in value:
        if isinstance(well, Well):
            wells.append(well)
        elif isinstance(well, typing.Mapping):
            wells.append(Well.from_dict(well))
        else:
            raise ValidationError(f"Invalid well definition: {well!r}")
    return tuple(wells)


def _default_wells() -> typing.Tuple[Well, ...]:
    return (
        injection_well(i=4, j=4, rate=500.0, name="INJ-1"),
        production_well(i=15, j=15, rate=500.0, name="PROD-1"),
    )


def _registered_geology_model(instance, attribute, value) -> None:
    get_geology_model(value)


def _check_positive(instance, attribute, value) -> None:
    if not (value > 0 and math.isfinite(value)):
        raise ValidationError(f"{attribute.name} must be positive and finite, got {value!r}")


def _check_relaxation_factor(instance, attribute, value) -> None:
    if not 0.0 < value < 2.0:
        raise ValidationError(
            f"{attribute.name} must lie in (0, 2) for the iteration to converge, got {value!r}"
        )


def _check_unit_interval(instance, attribute, value) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValidationError(f"{attribute.name} must lie in [0, 1], got {value!r}")


def _check_count(instance, attribute, value) -> None:
    if not value >= 1:
        raise ValidationError(f"{attribute.name} must be at least 1, got {value!r}")


@attrs.frozen
class Config:
    """Reservoir engine configuration and parameters."""

    # Grid
    nx: int = attrs.field(default=20, converter=int, validator=_check_count)
    """Number of cells in the x direction."""
    ny: int = attrs.field(default=20, converter=int, validator=_check_count)
    """Number of cells in the y direction."""
    dx: float = attrs.field(default=100.0, converter=float, validator=_check_positive)
    """Cell extent in the x direction (ft)."""
    dy: float = attrs.field(default=100.0, converter=float, validator=_check_positive)
    """Cell extent in the y direction (ft)."""
    dz: float = attrs.field(default=50.0, converter=float, validator=_check_positive)
    """Cell thickness (ft)."""

    # Rock
    permeability: float = attrs.field(default=100.0, converter=_floor_permeability)
    """Average permeability (mD). Floored at 0.1 mD."""
    porosity: float = attrs.field(default=0.2, converter=_floor_porosity)
    """Average porosity (fraction). Floored at 0.01."""
    geology_model: str = attrs.field(default="homogeneous", validator=_registered_geology_model)
    """Spatial pattern for the rock fields: 'homogeneous', 'layered', 'channel', 'random'."""
    seed: typing.Optional[int] = None
    """
    Seed for the geology random number generator.

    With a seed, the same configuration always produces the same rock fields.
    Without one, fresh entropy is drawn on every (re)initialisation.
    """

    # Fluids
    oil_viscosity: float = attrs.field(default=2.0, converter=float, validator=_check_positive)
    """Oil viscosity (cP)."""
    water_viscosity: float = attrs.field(default=1.0, converter=float, validator=_check_positive)
    """Water viscosity (cP)."""
    total_compressibility: float = attrs.field(
        default=1e-5, converter=float, validator=_check_positive
    )
    """Total compressibility (1/psi)."""
    oil_formation_volume_factor: float = attrs.field(
        default=1.2, converter=float, validator=_check_positive
    )
    """Oil formation volume factor (bbl/STB)."""
    water_formation_volume_factor: float = attrs.field(
        default=1.0, converter=float, validator=_check_positive
    )
    """Water formation volume factor (bbl/STB)."""

    # Initial conditions
    initial_pressure: float = attrs.field(default=3000.0, converter=float, validator=_check_positive)
    """Initial reservoir pressure (psi), uniform."""
    initial_water_saturation: float = attrs.field(
        default=0.2, converter=float, validator=_check_unit_interval
    )
    """Initial water saturation (fraction), uniform."""

    # Time stepping
    time_step_size: float = attrs.field(default=0.1, converter=float, validator=_check_positive)
    """Initial time step size (days). Clamped into the allowed step size range."""

    # Wells
    wells: typing.Tuple[Well, ...] = attrs.field(factory=_default_wells, converter=_to_wells)
    """Wells to place on initialisation. Later entries replace earlier ones at the same cell."""

    # Pressure solver
    relaxation_factor: float = attrs.field(
        default=1.2, converter=float, validator=_check_relaxation_factor
    )
    """SOR relaxation factor, ω."""
    max_iterations: int = attrs.field(default=50, converter=int, validator=_check_count)
    """Maximum number of SOR sweeps per pressure solve."""
    convergence_tolerance: float = attrs.field(
        default=1e-3, converter=float, validator=_check_positive
    )
    """Convergence threshold on the largest pressure update in a sweep (psi)."""
    raise_on_pressure_divergence: bool = False
    """
    Whether to raise `SolverError` when the pressure solve does not converge.

    By default the best available pressure field is used and a warning is logged.
    """

    constants: Constants = attrs.field(factory=Constants, eq=False)
    """Physical and conversion constants used in the simulation."""

    @property
    def grid(self) -> Grid:
        return Grid(
            cell_count_x=self.nx,
            cell_count_y=self.ny,
            cell_size_x=self.dx,
            cell_size_y=self.dy,
            cell_size_z=self.dz,
        )

    @property
    def pvt(self) -> PVTProperties:
        """A fresh, mutable `PVTProperties` built from the fluid options."""
        return PVTProperties(
            oil_viscosity=self.oil_viscosity,
            water_viscosity=self.water_viscosity,
            total_compressibility=self.total_compressibility,
            oil_formation_volume_factor=self.oil_formation_volume_factor,
            water_formation_volume_factor=self.water_formation_volume_factor,
        )

    def evolve(self, **changes: typing.Any) -> "Config":
        """Return a copy of this configuration with `changes` applied."""
        return attrs.evolve(self, **_resolve_aliases(changes))

    @classmethod
    def from_dict(cls, data: typing.Mapping[str, typing.Any]) -> "Config":
        """
        Build a configuration from a mapping of options.

        Accepts both the attribute names and the short names used by interactive
        front ends (`geoModel`, `mu_o`, `mu_w`, `ct`, `B_o`, `B_w`, `initialPressure`,
        `initialSw`, `dt`). Wells may be given as `{"i", "j", "type", "rate"}` mappings.

        :raises ValidationError: On unknown options or invalid values.
        """
        return cls(**_resolve_aliases(data))

    def to_dict(self) -> typing.Dict[str, typing.Any]:
        data = attrs.asdict(
            self,
            recurse=False,
            filter=lambda attribute, _: attribute.name != "constants",
        )
        data["wells"] = [well.to_dict() for well in self.wells]
        return data


_OPTION_ALIASES = {
    "geoModel": "geology_model",
    "mu_o": "oil_viscosity",
    "mu_w": "water_viscosity",
    "ct": "total_compressibility",
    "B_o": "oil_formation_volume_factor",
    "B_w": "water_formation_volume_factor",
    "initialPressure": "initial_pressure",
    "initialSw": "initial_water_saturation",
    "dt": "time_step_size",
}


def _resolve_aliases(options: typing.Mapping[str, typing.Any]) -> typing.Dict[str, typing.Any]:
    known = {attribute.name for attribute in attrs.fields(Config)}
    resolved: typing.Dict[str, typing.Any] = {}
    for key, value in options.items():
        name = _OPTION_ALIASES.get(key, key)
        if name not in known:
            raise ValidationError(f"Unknown configuration option: {key!r}")
        if name in resolved:
            raise ValidationError(f"Configuration option {name!r} given more than once.")
        resolved[name] = value
    return resolved
