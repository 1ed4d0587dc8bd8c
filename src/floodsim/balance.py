"""Original oil in place and cumulative production accounting."""

import logging

import attrs
import numpy as np

from floodsim.constants import c
from floodsim.errors import ValidationError
from floodsim.grids import Grid
from floodsim.types import OneDimensionalGrid

__all__ = ["compute_original_oil_in_place", "MaterialBalanceTracker"]

logger = logging.getLogger(__name__)


def compute_original_oil_in_place(
    grid: Grid,
    porosity_grid: OneDimensionalGrid,
    water_saturation_grid: OneDimensionalGrid,
    oil_formation_volume_factor: float,
) -> float:
    """
    Stock tank oil originally in place,

        OOIP = Σ V·φ·(1 - Sw) · 0.1781076 / B_o

    :param grid: The reservoir grid
    :param porosity_grid: Flat array of porosities
    :param water_saturation_grid: Initial water saturations
    :param oil_formation_volume_factor: Oil formation volume factor (bbl/STB)
    :return: OOIP (STB)
    """
    hydrocarbon_pore_volume = float(
        np.sum(grid.cell_volume * porosity_grid * (1.0 - water_saturation_grid))
    )
    return hydrocarbon_pore_volume * c.CUBIC_FEET_TO_BARRELS / oil_formation_volume_factor


@attrs.define
class MaterialBalanceTracker:
    """Tracks cumulative oil production against the original oil in place."""

    original_oil_in_place: float = attrs.field(validator=attrs.validators.ge(0.0))
    """OOIP (STB), fixed at initialisation."""
    cumulative_oil_production: float = attrs.field(init=False, default=0.0)
    """Cumulative oil produced (STB). Never decreases."""

    @classmethod
    def from_initial_state(
        cls,
        grid: Grid,
        porosity_grid: OneDimensionalGrid,
        water_saturation_grid: OneDimensionalGrid,
        oil_formation_volume_factor: float,
    ) -> "MaterialBalanceTracker":
        ooip = compute_original_oil_in_place(
            grid=grid,
            porosity_grid=porosity_grid,
            water_saturation_grid=water_saturation_grid,
            oil_formation_volume_factor=oil_formation_volume_factor,
        )
        logger.debug(f"Original oil in place: {ooip:.6g} STB")
        return cls(original_oil_in_place=ooip)

    def accumulate(self, oil_production_rate: float, time_step_size: float) -> float:
        """
        Add `oil_production_rate * time_step_size` to the cumulative production.

        :param oil_production_rate: Field oil production rate over the step (STB/day)
        :param time_step_size: Step size (days)
        :return: The updated cumulative production (STB)
        :raises ValidationError: If the increment is negative.
        """
        increment = oil_production_rate * time_step_size
        if increment < 0.0:
            raise ValidationError(
                f"Cumulative oil production cannot decrease (increment {increment})."
            )
        self.cumulative_oil_production += increment
        return self.cumulative_oil_production

    @property
    def recovery_factor(self) -> float:
        """Recovery factor in percent, 0.0 when there is no oil in place."""
        if self.original_oil_in_place <= 0.0:
            return 0.0
        return self.cumulative_oil_production / self.original_oil_in_place * 100.0

    def reset(self, original_oil_in_place: float) -> None:
        self.original_oil_in_place = original_oil_in_place
        self.cumulative_oil_production = 0.0
