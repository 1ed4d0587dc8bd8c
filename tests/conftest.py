import numpy as np
import pytest

from floodsim import Config, Grid, injection_well, production_well


@pytest.fixture
def small_config() -> Config:
    """5x5 homogeneous reservoir with an injector and a producer in opposite corners."""
    return Config(
        nx=5,
        ny=5,
        geology_model="homogeneous",
        wells=[
            injection_well(0, 0, rate=100.0),
            production_well(4, 4, rate=100.0),
        ],
        seed=11,
    )


@pytest.fixture
def small_grid() -> Grid:
    return Grid(
        cell_count_x=5,
        cell_count_y=5,
        cell_size_x=100.0,
        cell_size_y=100.0,
        cell_size_z=50.0,
    )


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(1234)
