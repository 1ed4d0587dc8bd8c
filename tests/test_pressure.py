import numpy as np
import pytest
from scipy.sparse.linalg import spsolve

from floodsim import (
    FluidProperties,
    Grid,
    PVTProperties,
    Wells,
    build_face_transmissibility_grid,
    build_pressure_source_grid,
    build_pressure_system,
    build_uniform_grid,
    compute_harmonic_mean,
    evolve_pressure_implicitly,
    generate_rock_properties,
    injection_well,
    production_well,
)


@pytest.mark.parametrize("value1, value2", [(1.0, 3.0), (100.0, 0.5), (1e-3, 250.0), (42.0, 42.0)])
def test_harmonic_mean_symmetry(value1, value2):
    assert compute_harmonic_mean(value1, value2) == compute_harmonic_mean(value2, value1)


@pytest.mark.parametrize("value", [0.1, 1.0, 100.0, 5000.0])
def test_harmonic_mean_identity(value):
    assert compute_harmonic_mean(value, value) == pytest.approx(value, rel=1e-9)


def test_harmonic_mean_of_zero_is_zero():
    assert compute_harmonic_mean(0.0, 0.0) == 0.0
    assert compute_harmonic_mean(0.0, 10.0) == 0.0


def _setup(grid, wells, water_saturation=0.2, model="homogeneous", pvt=None, seed=5):
    pvt = pvt if pvt is not None else PVTProperties()
    rock = generate_rock_properties(grid, 100.0, 0.2, model=model, rng=np.random.default_rng(seed))
    fluid = FluidProperties(
        pressure_grid=build_uniform_grid(grid, 3000.0),
        water_saturation_grid=build_uniform_grid(grid, water_saturation),
    )
    connectivity = grid.get_connectivity()
    transmissibility_grid = build_face_transmissibility_grid(
        grid, rock.permeability_grid, darcy_constant=0.001127, connectivity=connectivity
    )
    source_grid = build_pressure_source_grid(grid, wells, pvt)
    return dict(
        grid=grid,
        rock_properties=rock,
        fluid_properties=fluid,
        pvt=pvt,
        source_grid=source_grid,
        transmissibility_grid=transmissibility_grid,
        connectivity=connectivity,
    )


def test_transmissibility_matches_geometry(small_grid):
    permeability_grid = build_uniform_grid(small_grid, 100.0)
    transmissibility_grid = build_face_transmissibility_grid(
        small_grid, permeability_grid, darcy_constant=0.001127
    )
    expected = 0.001127 * compute_harmonic_mean(100.0, 100.0) * (100.0 * 50.0) / 100.0
    assert transmissibility_grid[0, 1] == pytest.approx(expected)
    assert transmissibility_grid[0, 3] == pytest.approx(expected)
    # missing west and south neighbours
    assert transmissibility_grid[0, 0] == 0.0
    assert transmissibility_grid[0, 2] == 0.0
    # faces see the same transmissibility from both sides
    assert transmissibility_grid[0, 1] == transmissibility_grid[1, 0]


def test_pressure_stays_uniform_without_wells(small_grid):
    system = _setup(small_grid, Wells())
    result = evolve_pressure_implicitly(time_step_size=0.1, **system)

    assert result.success
    assert result.scheme == "implicit"
    assert result.value.converged
    assert result.value.iterations == 1
    np.testing.assert_allclose(result.value.pressure_grid, 3000.0, rtol=1e-12)


def test_injection_raises_and_production_lowers_pressure(small_grid):
    wells = Wells([injection_well(0, 0, rate=100.0), production_well(4, 4, rate=100.0)])
    system = _setup(small_grid, wells)
    pressure_grid = evolve_pressure_implicitly(time_step_size=0.1, **system).value.pressure_grid

    assert pressure_grid[small_grid.index(0, 0)] > 3000.0
    assert pressure_grid[small_grid.index(4, 4)] < 3000.0
    assert pressure_grid.argmax() == small_grid.index(0, 0)
    assert pressure_grid.argmin() == small_grid.index(4, 4)


@pytest.mark.parametrize("model", ["homogeneous", "layered", "random"])
def test_sor_agrees_with_direct_sparse_solve(small_grid, model):
    wells = Wells([injection_well(0, 0, rate=500.0), production_well(4, 4, rate=300.0)])
    system = _setup(small_grid, wells, model=model)
    result = evolve_pressure_implicitly(
        time_step_size=0.5,
        relaxation_factor=1.2,
        max_iterations=20_000,
        convergence_tolerance=1e-10,
        **system,
    )
    assert result.success

    A, b = build_pressure_system(time_step_size=0.5, **system)
    direct_solution = spsolve(A, b)
    np.testing.assert_allclose(result.value.pressure_grid, direct_solution, rtol=0, atol=1e-5)

    residual = A @ result.value.pressure_grid - b
    assert np.abs(residual).max() < 1e-3


def test_iteration_limit_reports_non_convergence(small_grid):
    wells = Wells([injection_well(0, 0, rate=500.0), production_well(4, 4, rate=500.0)])
    system = _setup(small_grid, wells)
    result = evolve_pressure_implicitly(time_step_size=0.1, max_iterations=1, **system)

    assert not result.success
    assert not result.value.converged
    assert result.value.iterations == 1
    assert result.value.max_update > 1e-3
    assert "did not converge" in result.message
    # best available field is still returned
    assert np.all(np.isfinite(result.value.pressure_grid))


def test_writes_into_provided_buffer_and_leaves_old_field_alone(small_grid):
    wells = Wells([injection_well(2, 2, rate=500.0)])
    system = _setup(small_grid, wells)
    out = np.zeros(small_grid.cell_count)
    result = evolve_pressure_implicitly(time_step_size=0.1, out=out, **system)

    assert result.value.pressure_grid is out
    np.testing.assert_array_equal(system["fluid_properties"].pressure_grid, 3000.0)


def test_vanishing_diagonal_freezes_cell():
    grid = Grid(cell_count_x=1, cell_count_y=1, cell_size_x=1.0, cell_size_y=1.0, cell_size_z=1.0)
    pvt = PVTProperties(total_compressibility=1e-30)
    wells = Wells([injection_well(0, 0, rate=1000.0)])
    system = _setup(grid, wells, pvt=pvt)
    result = evolve_pressure_implicitly(time_step_size=1.0, **system)

    assert result.success
    assert result.value.pressure_grid[0] == 3000.0
