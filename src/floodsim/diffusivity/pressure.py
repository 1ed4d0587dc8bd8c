"""Implicit pressure evolution by successive over-relaxation."""

import logging
import typing

import attrs
import numba
import numpy as np
from scipy.sparse import csr_matrix, lil_matrix  # type: ignore[import-untyped]

from floodsim._precision import get_dtype
from floodsim.constants import c
from floodsim.diffusivity.base import EvolutionResult
from floodsim.grids import Grid
from floodsim.models import FluidProperties, PVTProperties, RockProperties
from floodsim.relperm import compute_total_mobility_grid
from floodsim.types import IndexGrid, OneDimensionalGrid

logger = logging.getLogger(__name__)

__all__ = [
    "PressureSolution",
    "evolve_pressure_implicitly",
    "solve_pressure_sor",
    "compute_accumulation_grid",
    "build_pressure_system",
]


@attrs.frozen
class PressureSolution:
    pressure_grid: OneDimensionalGrid
    """Best available pressure field (psi), converged or not."""
    iterations: int
    """Number of SOR sweeps performed."""
    max_update: float
    """Largest absolute pressure update in the final sweep (psi)."""
    converged: bool


def compute_accumulation_grid(
    grid: Grid,
    porosity_grid: OneDimensionalGrid,
    total_compressibility: float,
    time_step_size: float,
) -> OneDimensionalGrid:
    """
    Accumulation coefficient of every cell, `Vp·ct/dt`.

    :param grid: The reservoir grid
    :param porosity_grid: Flat array of porosities
    :param total_compressibility: Total compressibility (1/psi)
    :param time_step_size: Time step size (days)
    :return: Flat array of accumulation coefficients
    """
    pore_volume_grid = grid.cell_volume * np.asarray(porosity_grid, dtype=np.float64)
    return pore_volume_grid * total_compressibility / time_step_size


@numba.njit(cache=True)
def solve_pressure_sor(
    old_pressure_grid: OneDimensionalGrid,
    new_pressure_grid: OneDimensionalGrid,
    accumulation_grid: OneDimensionalGrid,
    transmissibility_grid: np.ndarray,
    total_mobility_grid: OneDimensionalGrid,
    connectivity: IndexGrid,
    source_grid: OneDimensionalGrid,
    relaxation_factor: float,
    max_iterations: int,
    convergence_tolerance: float,
    diagonal_threshold: float,
) -> typing.Tuple[int, float]:
    """
    Gauss-Seidel sweeps with over-relaxation over the pressure equation.

    For each cell, in linear index order:

        diag = acc + Σ T·λt
        p* = (Σ T·λt·p_nb + acc·p_old + q) / diag
        p ← (1 - ω)·p + ω·p*

    `new_pressure_grid` is updated in place and must hold the initial guess on entry.
    Neighbour values are read from it as they are updated. Cells whose diagonal is smaller
    than `diagonal_threshold` keep their current value.

    :return: (iterations, max_update) where `max_update` is the largest absolute update
        in the last sweep.
    """
    cell_count = connectivity.shape[0]
    iterations = 0
    max_update = 0.0
    for _ in range(max_iterations):
        iterations += 1
        max_update = 0.0
        for cell in range(cell_count):
            total_mobility = total_mobility_grid[cell]
            diagonal = 0.0
            off_diagonal_sum = 0.0
            for direction in range(4):
                neighbour = connectivity[cell, direction]
                if neighbour < 0:
                    continue
                effective_transmissibility = (
                    transmissibility_grid[cell, direction] * total_mobility
                )
                off_diagonal_sum += effective_transmissibility * new_pressure_grid[neighbour]
                diagonal += effective_transmissibility

            accumulation = accumulation_grid[cell]
            diagonal += accumulation
            rhs = accumulation * old_pressure_grid[cell] + source_grid[cell]

            current_pressure = new_pressure_grid[cell]
            if abs(diagonal) < diagonal_threshold:
                target_pressure = current_pressure
            else:
                target_pressure = (off_diagonal_sum + rhs) / diagonal

            updated_pressure = (
                1.0 - relaxation_factor
            ) * current_pressure + relaxation_factor * target_pressure
            update = abs(updated_pressure - current_pressure)
            if update > max_update:
                max_update = update
            new_pressure_grid[cell] = updated_pressure

        if max_update < convergence_tolerance:
            break
    return iterations, max_update


def evolve_pressure_implicitly(
    grid: Grid,
    rock_properties: RockProperties,
    fluid_properties: FluidProperties,
    pvt: PVTProperties,
    source_grid: OneDimensionalGrid,
    time_step_size: float,
    transmissibility_grid: np.ndarray,
    connectivity: IndexGrid,
    relaxation_factor: float = 1.2,
    max_iterations: int = 50,
    convergence_tolerance: float = 1e-3,
    out: typing.Optional[OneDimensionalGrid] = None,
) -> EvolutionResult[PressureSolution, None]:
    """
    Solve the pressure equation for the next time level.

    Total mobility is evaluated from the pre-step water saturation. The iteration starts
    from the current pressure field. The best available field is always returned; when
    the sweep limit is reached before convergence the result has `success=False`.

    :param grid: The reservoir grid
    :param rock_properties: Permeability and porosity fields
    :param fluid_properties: Current (pre-step) pressure and saturation fields
    :param pvt: Current PVT properties
    :param source_grid: Well source terms (see `build_pressure_source_grid`)
    :param time_step_size: Time step size (days)
    :param transmissibility_grid: Face transmissibilities (see `build_face_transmissibility_grid`)
    :param connectivity: Neighbour table of the grid
    :param relaxation_factor: SOR relaxation factor, ω
    :param max_iterations: Maximum number of sweeps
    :param convergence_tolerance: Convergence threshold on the largest update in a sweep (psi)
    :param out: Optional buffer to write the new pressure field into
    :return: `EvolutionResult` holding a `PressureSolution`
    """
    old_pressure_grid = fluid_properties.pressure_grid
    if out is None:
        out = np.empty_like(old_pressure_grid)
    out[:] = old_pressure_grid

    accumulation_grid = compute_accumulation_grid(
        grid=grid,
        porosity_grid=rock_properties.porosity_grid,
        total_compressibility=pvt.total_compressibility,
        time_step_size=time_step_size,
    )
    total_mobility_grid = compute_total_mobility_grid(
        np.asarray(fluid_properties.water_saturation_grid, dtype=np.float64),
        pvt.water_viscosity,
        pvt.oil_viscosity,
    )
    new_pressure_grid = np.asarray(out, dtype=np.float64)
    iterations, max_update = solve_pressure_sor(
        old_pressure_grid=np.asarray(old_pressure_grid, dtype=np.float64),
        new_pressure_grid=new_pressure_grid,
        accumulation_grid=accumulation_grid,
        transmissibility_grid=transmissibility_grid,
        total_mobility_grid=total_mobility_grid,
        connectivity=connectivity,
        source_grid=np.asarray(source_grid, dtype=np.float64),
        relaxation_factor=relaxation_factor,
        max_iterations=max_iterations,
        convergence_tolerance=convergence_tolerance,
        diagonal_threshold=c.ISOLATED_CELL_DIAGONAL_THRESHOLD,
    )
    if new_pressure_grid is not out:
        out[:] = new_pressure_grid

    converged = bool(max_update < convergence_tolerance)
    solution = PressureSolution(
        pressure_grid=out,
        iterations=int(iterations),
        max_update=float(max_update),
        converged=converged,
    )
    if not converged:
        return EvolutionResult(
            value=solution,
            scheme="implicit",
            success=False,
            message=(
                f"Pressure solve did not converge in {iterations} iterations "
                f"(max update {max_update:.4e} psi, tolerance {convergence_tolerance:.1e} psi)."
            ),
        )
    return EvolutionResult(
        value=solution,
        scheme="implicit",
        success=True,
        message=f"Pressure solve converged in {iterations} iterations.",
    )


def build_pressure_system(
    grid: Grid,
    rock_properties: RockProperties,
    fluid_properties: FluidProperties,
    pvt: PVTProperties,
    source_grid: OneDimensionalGrid,
    time_step_size: float,
    transmissibility_grid: np.ndarray,
    connectivity: IndexGrid,
) -> typing.Tuple[csr_matrix, np.ndarray]:
    """
    Assemble the pressure equation as a sparse linear system `A·p = b`.

    This is the system the SOR sweeps iterate on, for direct solves and residual checks.
    Cells with a vanishing diagonal are pinned to their current pressure.

    :return: (A, b) with `A` in CSR format.
    """
    dtype = get_dtype()
    cell_count = grid.cell_count
    accumulation_grid = compute_accumulation_grid(
        grid=grid,
        porosity_grid=rock_properties.porosity_grid,
        total_compressibility=pvt.total_compressibility,
        time_step_size=time_step_size,
    )
    total_mobility_grid = compute_total_mobility_grid(
        np.asarray(fluid_properties.water_saturation_grid, dtype=np.float64),
        pvt.water_viscosity,
        pvt.oil_viscosity,
    )
    old_pressure_grid = fluid_properties.pressure_grid
    diagonal_threshold = c.ISOLATED_CELL_DIAGONAL_THRESHOLD

    A = lil_matrix((cell_count, cell_count), dtype=dtype)
    b = np.zeros(cell_count, dtype=dtype)
    for cell in range(cell_count):
        diagonal = accumulation_grid[cell]
        off_diagonals = []
        for direction in range(4):
            neighbour = connectivity[cell, direction]
            if neighbour < 0:
                continue
            effective_transmissibility = (
                transmissibility_grid[cell, direction] * total_mobility_grid[cell]
            )
            off_diagonals.append((neighbour, effective_transmissibility))
            diagonal += effective_transmissibility

        if abs(diagonal) < diagonal_threshold:
            A[cell, cell] = 1.0
            b[cell] = old_pressure_grid[cell]
            continue

        A[cell, cell] = diagonal
        for neighbour, effective_transmissibility in off_diagonals:
            A[cell, neighbour] = -effective_transmissibility
        b[cell] = accumulation_grid[cell] * old_pressure_grid[cell] + source_grid[cell]
    return A.tocsr(), b
