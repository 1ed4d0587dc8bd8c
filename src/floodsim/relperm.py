"""
Corey-type oil/water relative permeability and derived mobility functions.

Endpoints are fixed: irreducible water saturation Swirr = 0.2 and residual oil
saturation Sor = 0.2. With the normalized saturation

    Swn = (Sw - Swirr) / (1 - Swirr - Sor)

the curves are

    krw = 0.3 * Swn²            kro = 0.8 * (1 - Swn)²

inside the mobile range. Outside it, krw = 0, kro = 1 for Sw <= Swirr and
krw = 1, kro = 0 for Sw >= 1 - Sor. There is no hysteresis and no capillary pressure.
"""

import typing

import numba
import numpy as np

from floodsim.types import OneDimensionalGrid


__all__ = [
    "IRREDUCIBLE_WATER_SATURATION",
    "RESIDUAL_OIL_SATURATION",
    "compute_normalized_water_saturation",
    "compute_water_relative_permeability",
    "compute_oil_relative_permeability",
    "compute_relative_permeabilities",
    "compute_total_mobility",
    "compute_water_fractional_flow",
    "compute_total_mobility_grid",
    "compute_water_fractional_flow_grid",
    "krw",
    "kro",
]

IRREDUCIBLE_WATER_SATURATION = 0.2
RESIDUAL_OIL_SATURATION = 0.2
WATER_ENDPOINT_RELATIVE_PERMEABILITY = 0.3
OIL_ENDPOINT_RELATIVE_PERMEABILITY = 0.8
COREY_EXPONENT = 2.0


@numba.njit(cache=True)
def compute_normalized_water_saturation(water_saturation: float) -> float:
    """
    Normalized (mobile) water saturation, Swn = (Sw - Swirr) / (1 - Swirr - Sor).

    Not clipped; callers handle the end-point regions.
    """
    return (water_saturation - IRREDUCIBLE_WATER_SATURATION) / (
        1.0 - IRREDUCIBLE_WATER_SATURATION - RESIDUAL_OIL_SATURATION
    )


@numba.njit(cache=True)
def compute_water_relative_permeability(water_saturation: float) -> float:
    """
    Water relative permeability, krw(Sw).

    :param water_saturation: Water saturation (fraction).
    :return: krw in [0, 1].
    """
    if water_saturation <= IRREDUCIBLE_WATER_SATURATION:
        return 0.0
    if water_saturation >= 1.0 - RESIDUAL_OIL_SATURATION:
        return 1.0
    normalized_saturation = compute_normalized_water_saturation(water_saturation)
    return WATER_ENDPOINT_RELATIVE_PERMEABILITY * normalized_saturation**COREY_EXPONENT


@numba.njit(cache=True)
def compute_oil_relative_permeability(water_saturation: float) -> float:
    """
    Oil relative permeability, kro(Sw).

    :param water_saturation: Water saturation (fraction).
    :return: kro in [0, 1].
    """
    if water_saturation <= IRREDUCIBLE_WATER_SATURATION:
        return 1.0
    if water_saturation >= 1.0 - RESIDUAL_OIL_SATURATION:
        return 0.0
    normalized_saturation = compute_normalized_water_saturation(water_saturation)
    return OIL_ENDPOINT_RELATIVE_PERMEABILITY * (
        1.0 - normalized_saturation
    ) ** COREY_EXPONENT


krw = compute_water_relative_permeability  # Alias for convenience
kro = compute_oil_relative_permeability  # Alias for convenience


@numba.njit(cache=True)
def compute_total_mobility(
    water_saturation: float, water_viscosity: float, oil_viscosity: float
) -> float:
    """
    Total relative mobility, λt = krw/mu_w + kro/mu_o (1/cP).
    """
    return (
        compute_water_relative_permeability(water_saturation) / water_viscosity
        + compute_oil_relative_permeability(water_saturation) / oil_viscosity
    )


@numba.njit(cache=True)
def compute_water_fractional_flow(
    water_saturation: float,
    water_viscosity: float,
    oil_viscosity: float,
    epsilon: float = 1e-10,
) -> float:
    """
    Water fractional flow, fw = Mw / (Mw + Mo + ε).

    :param water_saturation: Water saturation (fraction).
    :param water_viscosity: Water viscosity (cP).
    :param oil_viscosity: Oil viscosity (cP).
    :param epsilon: Additive guard against a vanishing total mobility.
    :return: fw in [0, 1).
    """
    water_mobility = compute_water_relative_permeability(water_saturation) / water_viscosity
    oil_mobility = compute_oil_relative_permeability(water_saturation) / oil_viscosity
    return water_mobility / (water_mobility + oil_mobility + epsilon)


@numba.njit(cache=True)
def compute_relative_permeabilities(
    water_saturation_grid: OneDimensionalGrid,
) -> typing.Tuple[OneDimensionalGrid, OneDimensionalGrid]:
    """
    Water and oil relative permeabilities for every cell.

    :param water_saturation_grid: Flat array of water saturations.
    :return: (krw_grid, kro_grid)
    """
    cell_count = water_saturation_grid.shape[0]
    water_relative_permeability_grid = np.empty(cell_count, dtype=np.float64)
    oil_relative_permeability_grid = np.empty(cell_count, dtype=np.float64)
    for cell in range(cell_count):
        water_saturation = water_saturation_grid[cell]
        water_relative_permeability_grid[cell] = compute_water_relative_permeability(
            water_saturation
        )
        oil_relative_permeability_grid[cell] = compute_oil_relative_permeability(
            water_saturation
        )
    return water_relative_permeability_grid, oil_relative_permeability_grid


@numba.njit(cache=True)
def compute_total_mobility_grid(
    water_saturation_grid: OneDimensionalGrid,
    water_viscosity: float,
    oil_viscosity: float,
) -> OneDimensionalGrid:
    """Total relative mobility for every cell (1/cP)."""
    cell_count = water_saturation_grid.shape[0]
    total_mobility_grid = np.empty(cell_count, dtype=np.float64)
    for cell in range(cell_count):
        total_mobility_grid[cell] = compute_total_mobility(
            water_saturation_grid[cell], water_viscosity, oil_viscosity
        )
    return total_mobility_grid


@numba.njit(cache=True)
def compute_water_fractional_flow_grid(
    water_saturation_grid: OneDimensionalGrid,
    water_viscosity: float,
    oil_viscosity: float,
    epsilon: float = 1e-10,
) -> OneDimensionalGrid:
    """Water fractional flow for every cell."""
    cell_count = water_saturation_grid.shape[0]
    fractional_flow_grid = np.empty(cell_count, dtype=np.float64)
    for cell in range(cell_count):
        fractional_flow_grid[cell] = compute_water_fractional_flow(
            water_saturation_grid[cell], water_viscosity, oil_viscosity, epsilon
        )
    return fractional_flow_grid
