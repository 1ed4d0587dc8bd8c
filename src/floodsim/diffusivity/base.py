import typing

import attrs
import numba
import numpy as np

from floodsim.grids import Grid
from floodsim.types import IndexGrid, OneDimensionalGrid

__all__ = [
    "EvolutionResult",
    "compute_harmonic_mean",
    "compute_face_transmissibility_grid",
    "build_face_transmissibility_grid",
]

T = typing.TypeVar("T")
M = typing.TypeVar("M")


@attrs.frozen
class EvolutionResult(typing.Generic[T, M]):
    """
    Result of a single evolution step in the simulation.
    """

    value: T
    """The evolved value. Always populated, even when `success` is False."""
    scheme: typing.Literal["implicit", "explicit"]
    """The numerical scheme used for the evolution step."""
    success: bool = True
    """Indicates if the evolution step was successful."""
    message: typing.Optional[str] = None
    """A message providing additional information about the result."""
    metadata: typing.Optional[M] = None
    """Optional metadata related to the evolution step."""


@numba.njit(cache=True)
def compute_harmonic_mean(value1: float, value2: float, epsilon: float = 1e-10) -> float:
    """
    Computes the harmonic mean of two values, `2·v1·v2 / (v1 + v2 + ε)`.

    The additive epsilon keeps the denominator away from zero. The mean is symmetric in
    its arguments and approximately equal to `v` when both arguments are `v`.

    :param value1: First value (e.g., permeability)
    :param value2: Second value (e.g., permeability)
    :param epsilon: Additive guard in the denominator
    :return: Harmonic mean of the two values
    """
    return (2.0 * value1 * value2) / (value1 + value2 + epsilon)


@numba.njit(cache=True)
def compute_face_transmissibility_grid(
    permeability_grid: OneDimensionalGrid,
    connectivity: IndexGrid,
    cell_size_x: float,
    cell_size_y: float,
    cell_size_z: float,
    darcy_constant: float,
    epsilon: float,
) -> np.ndarray:
    """
    Geometric transmissibility of every cell face, `α·k_harm·area/length`.

    Column `d` of row `cell` holds the transmissibility towards the neighbour in direction
    `d` (west, east, south, north), or 0.0 where there is no neighbour.

    :param permeability_grid: Flat array of permeabilities (mD)
    :param connectivity: Neighbour table from `build_connectivity`
    :param cell_size_x: Cell extent in x (ft)
    :param cell_size_y: Cell extent in y (ft)
    :param cell_size_z: Cell thickness (ft)
    :param darcy_constant: Unit conversion factor, α
    :param epsilon: Additive guard in the harmonic mean
    :return: Array of shape (cell_count, 4)
    """
    cell_count = connectivity.shape[0]
    transmissibility_grid = np.zeros((cell_count, 4), dtype=np.float64)
    x_geometric_factor = cell_size_y * cell_size_z / cell_size_x
    y_geometric_factor = cell_size_x * cell_size_z / cell_size_y
    for cell in range(cell_count):
        for direction in range(4):
            neighbour = connectivity[cell, direction]
            if neighbour < 0:
                continue

            geometric_factor = x_geometric_factor if direction < 2 else y_geometric_factor
            harmonic_permeability = compute_harmonic_mean(
                permeability_grid[cell], permeability_grid[neighbour], epsilon
            )
            transmissibility_grid[cell, direction] = (
                darcy_constant * harmonic_permeability * geometric_factor
            )
    return transmissibility_grid


def build_face_transmissibility_grid(
    grid: Grid,
    permeability_grid: OneDimensionalGrid,
    darcy_constant: float,
    epsilon: float = 1e-10,
    connectivity: typing.Optional[IndexGrid] = None,
) -> np.ndarray:
    """
    Face transmissibilities for `grid`. See `compute_face_transmissibility_grid`.

    :param grid: The reservoir grid
    :param permeability_grid: Flat array of permeabilities (mD)
    :param darcy_constant: Unit conversion factor, α
    :param epsilon: Additive guard in the harmonic mean
    :param connectivity: Precomputed neighbour table. Built from `grid` if not provided.
    """
    if connectivity is None:
        connectivity = grid.get_connectivity()
    return compute_face_transmissibility_grid(
        permeability_grid=np.ascontiguousarray(permeability_grid, dtype=np.float64),
        connectivity=connectivity,
        cell_size_x=float(grid.cell_size_x),
        cell_size_y=float(grid.cell_size_y),
        cell_size_z=float(grid.cell_size_z),
        darcy_constant=darcy_constant,
        epsilon=epsilon,
    )
