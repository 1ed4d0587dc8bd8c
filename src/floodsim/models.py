"""Rock, fluid and PVT data models for a 2D reservoir."""

import math

import attrs
import numpy as np
from typing_extensions import Self

from floodsim.errors import ValidationError
from floodsim.types import OneDimensionalGrid


__all__ = ["RockProperties", "FluidProperties", "PVTProperties"]


def _positive(instance, attribute, value) -> None:
    if not (value > 0.0 and math.isfinite(value)):
        raise ValidationError(f"{attribute.name} must be positive and finite, got {value}")


@attrs.frozen(slots=True)
class RockProperties:
    """
    Rock properties of the reservoir.

    These properties remain constant for the life of an engine instance and are only
    regenerated on a full reset.
    """

    permeability_grid: OneDimensionalGrid
    """Flat array of absolute permeabilities (mD)."""
    porosity_grid: OneDimensionalGrid
    """Flat array of porosities (fraction, in (0, 1])."""

    def __attrs_post_init__(self) -> None:
        if self.permeability_grid.shape != self.porosity_grid.shape:
            raise ValidationError(
                "Permeability and porosity grids must have the same shape, got "
                f"{self.permeability_grid.shape} and {self.porosity_grid.shape}."
            )
        if not np.all(self.permeability_grid > 0.0):
            raise ValidationError("Permeability must be positive in every cell.")
        if not np.all((self.porosity_grid > 0.0) & (self.porosity_grid <= 1.0)):
            raise ValidationError("Porosity must lie in (0, 1] in every cell.")

    def pore_volume_grid(self, cell_volume: float) -> OneDimensionalGrid:
        """
        Pore volume of every cell.

        :param cell_volume: Bulk volume of a cell (ft³).
        :return: Flat array of pore volumes (ft³).
        """
        return cell_volume * self.porosity_grid


@attrs.define(slots=True)
class FluidProperties:
    """
    Fluid state of the reservoir.

    The authoritative current state. Buffers are owned by the engine and mutated
    (swapped) every step; hand out copies, never the buffers themselves.
    """

    pressure_grid: OneDimensionalGrid
    """Flat array of cell pressures (psi)."""
    water_saturation_grid: OneDimensionalGrid
    """Flat array of water saturations (fraction, clamped to [0, 1])."""

    @property
    def oil_saturation_grid(self) -> OneDimensionalGrid:
        """Oil saturation, `1 - Sw` (two-phase system)."""
        return 1.0 - self.water_saturation_grid

    def copy(self) -> Self:
        return type(self)(
            pressure_grid=self.pressure_grid.copy(),
            water_saturation_grid=self.water_saturation_grid.copy(),
        )


@attrs.define(slots=True)
class PVTProperties:
    """
    Scalar fluid (PVT) properties.

    Hot-swappable between steps; assignments are validated.
    """

    oil_viscosity: float = attrs.field(default=2.0, validator=_positive)
    """Oil viscosity, mu_o (cP)."""
    water_viscosity: float = attrs.field(default=1.0, validator=_positive)
    """Water viscosity, mu_w (cP)."""
    total_compressibility: float = attrs.field(default=1e-5, validator=_positive)
    """Total (rock + fluid) compressibility, ct (1/psi)."""
    oil_formation_volume_factor: float = attrs.field(default=1.2, validator=_positive)
    """Oil formation volume factor, B_o (bbl/STB)."""
    water_formation_volume_factor: float = attrs.field(default=1.0, validator=_positive)
    """Water formation volume factor, B_w (bbl/STB)."""

    @property
    def average_formation_volume_factor(self) -> float:
        """Arithmetic mean of the oil and water formation volume factors."""
        return (self.oil_formation_volume_factor + self.water_formation_volume_factor) / 2.0
