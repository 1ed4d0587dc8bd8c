import logging

import numpy as np
import pytest

from floodsim import (
    Config,
    EngineState,
    ReservoirEngine,
    SimulationError,
    SolverError,
    ValidationError,
    injection_well,
    production_well,
)


def test_step_before_initialize_is_rejected(small_config):
    engine = ReservoirEngine(small_config)
    assert engine.state is EngineState.UNINITIALIZED
    with pytest.raises(SimulationError):
        engine.step()
    with pytest.raises(SimulationError):
        engine.snapshot()


def test_single_step_scenario(small_config):
    engine = ReservoirEngine(small_config).initialize()
    assert engine.state is EngineState.READY
    snapshot = engine.step()
    grid = engine.grid

    assert snapshot.time == small_config.time_step_size
    assert snapshot.step == 1
    assert snapshot.time_step_size == small_config.time_step_size
    assert snapshot.water_saturation_grid[grid.index(0, 0)] >= small_config.initial_water_saturation
    assert snapshot.water_saturation_grid[grid.index(4, 4)] <= small_config.initial_water_saturation
    assert snapshot.pressure_grid[grid.index(0, 0)] > small_config.initial_pressure
    assert snapshot.pressure_grid[grid.index(4, 4)] < small_config.initial_pressure
    assert snapshot.recovery_factor > 0.0


def test_initial_state(small_config):
    engine = ReservoirEngine(small_config).initialize()
    snapshot = engine.snapshot()

    assert snapshot.step == 0
    assert snapshot.time == 0.0
    assert snapshot.recovery_factor == 0.0
    assert np.all(snapshot.pressure_grid == 3000.0)
    assert np.all(snapshot.water_saturation_grid == 0.2)
    assert np.all(engine.rock_properties.permeability_grid == 100.0)
    assert np.all(engine.rock_properties.porosity_grid == 0.2)
    expected_ooip = 25 * (100.0 * 100.0 * 50.0) * 0.2 * 0.8 * 0.1781076 / 1.2
    assert engine.original_oil_in_place == pytest.approx(expected_ooip)


@pytest.mark.parametrize("geology_model", ["homogeneous", "layered", "channel", "random"])
def test_invariants_hold_over_many_steps(geology_model):
    config = Config(geology_model=geology_model, seed=21)
    engine = ReservoirEngine(config).initialize()
    previous_cumulative = 0.0
    for _ in range(25):
        snapshot = engine.step()
        saturation = snapshot.water_saturation_grid
        assert np.all((saturation >= 0.0) & (saturation <= 1.0))
        assert snapshot.cumulative_oil_production >= previous_cumulative
        assert snapshot.recovery_factor >= 0.0
        assert 0.001 <= engine.time_step_size <= 10.0
        previous_cumulative = snapshot.cumulative_oil_production
    assert previous_cumulative > 0.0


def test_pressure_stays_at_initial_level_without_wells():
    config = Config(nx=8, ny=6, geology_model="layered", seed=2, wells=[])
    engine = ReservoirEngine(config).initialize()
    for _ in range(10):
        snapshot = engine.step()
    np.testing.assert_allclose(snapshot.pressure_grid, 3000.0, atol=1e-6)
    np.testing.assert_allclose(snapshot.water_saturation_grid, 0.2)
    assert snapshot.cumulative_oil_production == 0.0


def test_large_saturation_change_halves_next_step_size():
    config = Config(
        nx=1,
        ny=1,
        dx=10.0,
        dy=10.0,
        dz=10.0,
        wells=[injection_well(0, 0, rate=500.0)],
        time_step_size=0.1,
    )
    engine = ReservoirEngine(config).initialize()
    engine.step()
    assert engine.time_step_size == pytest.approx(0.05)
    # ΔSw = 2.5·dt here, so the step size settles once ΔSw drops to 0.05 or below
    for _ in range(20):
        engine.step()
        assert 0.001 <= engine.time_step_size <= 10.0
    assert engine.time_step_size == pytest.approx(0.0125)


def test_snapshots_are_copies(small_config):
    engine = ReservoirEngine(small_config).initialize()
    first = engine.step()
    first_pressure = first.pressure_grid.copy()
    first_saturation = first.water_saturation_grid.copy()

    first.pressure_grid[:] = -1.0
    assert np.all(engine.snapshot().pressure_grid > 0.0)

    first.pressure_grid[:] = first_pressure
    second = engine.step()
    third = engine.step()
    np.testing.assert_array_equal(first.pressure_grid, first_pressure)
    np.testing.assert_array_equal(first.water_saturation_grid, first_saturation)
    assert not np.shares_memory(second.pressure_grid, third.pressure_grid)
    assert not np.shares_memory(second.water_saturation_grid, third.water_saturation_grid)


def test_seeded_engines_are_reproducible():
    config = Config(geology_model="random", seed=99)
    first = ReservoirEngine(config).initialize()
    second = ReservoirEngine(config).initialize()
    np.testing.assert_array_equal(
        first.rock_properties.permeability_grid, second.rock_properties.permeability_grid
    )
    for _ in range(3):
        first_snapshot = first.step()
        second_snapshot = second.step()
    np.testing.assert_array_equal(first_snapshot.pressure_grid, second_snapshot.pressure_grid)
    np.testing.assert_array_equal(
        first_snapshot.water_saturation_grid, second_snapshot.water_saturation_grid
    )


def test_injected_rng_is_used():
    config = Config(geology_model="random", seed=None)
    first = ReservoirEngine(config, rng=np.random.default_rng(5)).initialize()
    second = ReservoirEngine(config, rng=np.random.default_rng(5)).initialize()
    np.testing.assert_array_equal(
        first.rock_properties.permeability_grid, second.rock_properties.permeability_grid
    )


def test_wells_outside_grid_are_rejected(small_config):
    with pytest.raises(ValidationError):
        ReservoirEngine(Config(nx=5, ny=5)).initialize()

    engine = ReservoirEngine(small_config).initialize()
    with pytest.raises(ValidationError):
        engine.place_well(5, 5, type="producer", rate=10.0)


def test_well_editing(small_config):
    engine = ReservoirEngine(small_config).initialize()
    engine.place_well(4, 4, type="injector", rate=50.0)
    assert len(engine.wells) == 2
    assert engine.wells[(4, 4)].is_injector

    engine.set_well_rate((0, 0), 75.0)
    assert engine.wells[(0, 0)].rate == 75.0

    engine.remove_well((4, 4))
    engine.place_well(production_well(2, 2, rate=20.0))
    assert [well.location for well in engine.wells] == [(0, 0), (2, 2)]
    assert [well.location for well in engine.config.wells] == [(0, 0), (2, 2)]


def test_hot_pvt_update_takes_effect_next_step(small_config):
    engine = ReservoirEngine(small_config).initialize()
    engine.pvt.oil_viscosity = 10.0
    assert engine.config.oil_viscosity == 10.0
    with pytest.raises(ValidationError):
        engine.pvt.water_viscosity = 0.0

    reference = ReservoirEngine(small_config.evolve(oil_viscosity=10.0)).initialize()
    np.testing.assert_array_equal(engine.step().pressure_grid, reference.step().pressure_grid)


def test_rock_average_change_applies_on_reset(small_config):
    engine = ReservoirEngine(small_config).initialize()
    engine.step()
    engine.set_rock_averages(permeability=250.0, porosity=0.0)
    assert np.all(engine.rock_properties.permeability_grid == 100.0)
    assert engine.average_porosity == 0.01

    engine.reset()
    assert engine.time == 0.0
    assert engine.cumulative_oil_production == 0.0
    assert np.all(engine.rock_properties.permeability_grid == 250.0)
    assert np.all(engine.rock_properties.porosity_grid == 0.01)


def test_apply_config_routes_between_hot_update_and_reset(small_config):
    engine = ReservoirEngine(small_config).initialize()
    engine.step()
    engine.step()
    time_before = engine.time

    was_reset = engine.apply_config(
        small_config.evolve(
            mu_o=4.0,
            B_w=1.05,
            permeability=500.0,
            dt=0.3,
            wells=[production_well(2, 2, rate=10.0)],
        )
    )
    assert not was_reset
    assert engine.time == time_before
    assert engine.pvt.oil_viscosity == 4.0
    assert engine.pvt.water_formation_volume_factor == 1.05
    assert engine.time_step_size == 0.3
    assert [well.location for well in engine.wells] == [(2, 2)]
    assert np.all(engine.rock_properties.permeability_grid == 100.0)
    assert engine.average_permeability == 500.0

    for change in ({"nx": 6}, {"ny": 4}, {"geoModel": "layered"}):
        engine.step()
        assert engine.apply_config(engine.config.evolve(**change))
        assert engine.time == 0.0
        assert engine.step_count == 0

    assert engine.grid.shape == (6, 4)
    assert np.all(engine.rock_properties.permeability_grid > 0.0)


def test_apply_config_keeps_adaptive_step_size_when_dt_unchanged(small_config):
    engine = ReservoirEngine(small_config).initialize()
    engine.step()
    adapted_step_size = engine.time_step_size
    assert adapted_step_size != small_config.time_step_size

    engine.apply_config(small_config.evolve(mu_w=0.8))
    assert engine.time_step_size == adapted_step_size


def test_hot_time_step_size_is_clamped(small_config):
    engine = ReservoirEngine(small_config).initialize()
    engine.time_step_size = 50.0
    assert engine.time_step_size == 10.0
    snapshot = engine.step()
    assert snapshot.time == 5.0


def test_pressure_divergence_is_reported(small_config, caplog):
    config = small_config.evolve(max_iterations=1)
    engine = ReservoirEngine(config).initialize()
    with caplog.at_level(logging.WARNING, logger="floodsim.engine"):
        snapshot = engine.step()
    assert not snapshot.pressure_converged
    assert snapshot.pressure_iterations == 1
    assert any("did not converge" in record.getMessage() for record in caplog.records)


def test_pressure_divergence_can_raise(small_config):
    config = small_config.evolve(max_iterations=1, raise_on_pressure_divergence=True)
    engine = ReservoirEngine(config).initialize()
    with pytest.raises(SolverError):
        engine.step()
    assert engine.time == 0.0
    snapshot = engine.snapshot()
    assert np.all(snapshot.pressure_grid == 3000.0)
    assert np.all(snapshot.water_saturation_grid == 0.2)


def test_reset_with_new_config(small_config):
    engine = ReservoirEngine(small_config).initialize()
    engine.step()
    engine.reset(Config(nx=3, ny=3, wells=[injection_well(1, 1, rate=10.0)]))
    assert engine.grid.cell_count == 9
    assert engine.step_count == 0
    assert engine.snapshot().recovery_factor == 0.0


def test_rejected_reset_keeps_running_state():
    engine = ReservoirEngine(Config(seed=1)).initialize()
    for _ in range(3):
        engine.step()
    before = engine.snapshot()
    grid = engine.grid

    # the default producer at (15, 15) does not fit a 10x20 grid
    with pytest.raises(ValidationError):
        engine.apply_config(engine.config.evolve(nx=10))
    with pytest.raises(ValidationError):
        engine.reset(engine.config.evolve(ny=10))

    assert engine.state is EngineState.READY
    assert engine.grid is grid
    assert engine.time == before.time
    assert engine.step_count == 3
    assert engine.config.nx == 20
    after = engine.snapshot()
    np.testing.assert_array_equal(after.pressure_grid, before.pressure_grid)
    np.testing.assert_array_equal(after.water_saturation_grid, before.water_saturation_grid)
    assert after.cumulative_oil_production == before.cumulative_oil_production

    assert engine.step().step == 4
    engine.reset()
    assert engine.step_count == 0
    assert engine.grid.shape == (20, 20)


def test_pressure_divergence_error_leaves_step_size_unchanged(small_config):
    config = small_config.evolve(
        time_step_size=8.0, max_iterations=1, raise_on_pressure_divergence=True
    )
    engine = ReservoirEngine(config).initialize()
    with pytest.raises(SolverError):
        engine.step()
    assert engine.time_step_size == 8.0
    assert engine.time == 0.0
    assert engine.step_count == 0


def test_live_wells_are_checked_against_the_grid(small_config):
    engine = ReservoirEngine(small_config).initialize()
    with pytest.raises(ValidationError):
        engine.wells.place(production_well(9, 9, rate=10.0))
    assert [well.location for well in engine.wells] == [(0, 0), (4, 4)]
    assert engine.step().step == 1

    engine.apply_config(small_config.evolve(mu_o=3.0))
    with pytest.raises(ValidationError):
        engine.wells.place(production_well(5, 0, rate=10.0))


def test_non_finite_rock_averages_are_rejected(small_config):
    engine = ReservoirEngine(small_config).initialize()
    with pytest.raises(ValidationError):
        engine.set_rock_averages(permeability=250.0, porosity=float("inf"))
    assert engine.average_permeability == 100.0
    assert engine.average_porosity == 0.2
