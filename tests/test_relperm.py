import numpy as np
import pytest

from floodsim.relperm import (
    compute_relative_permeabilities,
    compute_total_mobility,
    compute_total_mobility_grid,
    compute_water_fractional_flow,
    compute_water_fractional_flow_grid,
    kro,
    krw,
)


def test_endpoint_laws():
    assert krw(0.2) == 0.0
    assert krw(0.8) == 1.0
    assert kro(0.2) == 1.0
    assert kro(0.8) == 0.0


def test_outside_mobile_range():
    assert krw(0.0) == 0.0
    assert kro(0.0) == 1.0
    assert krw(1.0) == 1.0
    assert kro(1.0) == 0.0


def test_corey_curves_inside_mobile_range():
    # Swn = 0.5 at Sw = 0.5
    assert krw(0.5) == pytest.approx(0.3 * 0.25)
    assert kro(0.5) == pytest.approx(0.8 * 0.25)


def test_curves_are_monotonic():
    saturations = np.linspace(0.2, 0.8, 61)
    water, oil = compute_relative_permeabilities(saturations)
    assert np.all(np.diff(water[:-1]) >= 0.0)
    assert np.all(np.diff(oil[:-1]) <= 0.0)


def test_total_mobility():
    assert compute_total_mobility(0.2, 1.0, 2.0) == pytest.approx(0.5)
    assert compute_total_mobility(0.5, 1.0, 2.0) == pytest.approx(0.075 + 0.1)


def test_fractional_flow():
    assert compute_water_fractional_flow(0.2, 1.0, 2.0) == 0.0
    assert compute_water_fractional_flow(0.8, 1.0, 2.0) == pytest.approx(1.0)
    fw = compute_water_fractional_flow(0.5, 1.0, 2.0)
    assert fw == pytest.approx(0.075 / (0.075 + 0.1), rel=1e-8)


def test_grid_forms_match_scalar_forms():
    saturations = np.array([0.0, 0.2, 0.35, 0.5, 0.65, 0.8, 1.0])
    water, oil = compute_relative_permeabilities(saturations)
    mobility = compute_total_mobility_grid(saturations, 1.0, 2.0)
    fractional_flow = compute_water_fractional_flow_grid(saturations, 1.0, 2.0)
    for index, saturation in enumerate(saturations):
        assert water[index] == krw(saturation)
        assert oil[index] == kro(saturation)
        assert mobility[index] == compute_total_mobility(saturation, 1.0, 2.0)
        assert fractional_flow[index] == compute_water_fractional_flow(saturation, 1.0, 2.0)
