import numpy as np
import pytest

from floodsim import (
    Direction,
    Grid,
    ValidationError,
    as_2D,
    build_uniform_grid,
    get_dtype,
    use_32bit_precision,
    use_64bit_precision,
)


def test_linear_indexing(small_grid):
    assert small_grid.cell_count == 25
    assert small_grid.index(0, 0) == 0
    assert small_grid.index(3, 2) == 2 * 5 + 3
    assert small_grid.coordinates(13) == (3, 2)
    for index in range(small_grid.cell_count):
        assert small_grid.index(*small_grid.coordinates(index)) == index


def test_out_of_grid_cells_are_rejected(small_grid):
    assert not small_grid.contains(5, 0)
    assert not small_grid.contains(0, -1)
    with pytest.raises(ValidationError):
        small_grid.index(5, 0)
    with pytest.raises(ValidationError):
        small_grid.coordinates(25)


def test_invalid_dimensions():
    with pytest.raises(ValueError):
        Grid(cell_count_x=0, cell_count_y=3, cell_size_x=1.0, cell_size_y=1.0, cell_size_z=1.0)
    with pytest.raises(ValueError):
        Grid(cell_count_x=3, cell_count_y=3, cell_size_x=-1.0, cell_size_y=1.0, cell_size_z=1.0)


def test_connectivity_edges_and_interior(small_grid):
    connectivity = small_grid.get_connectivity()
    assert connectivity.shape == (25, 4)

    # corner (0, 0): only east and north neighbours
    assert list(connectivity[0]) == [-1, 1, -1, 5]
    # corner (4, 4)
    assert list(connectivity[24]) == [23, -1, 19, -1]
    # interior (2, 2)
    cell = small_grid.index(2, 2)
    assert connectivity[cell, Direction.WEST] == cell - 1
    assert connectivity[cell, Direction.EAST] == cell + 1
    assert connectivity[cell, Direction.SOUTH] == cell - 5
    assert connectivity[cell, Direction.NORTH] == cell + 5


def test_no_wrap_around():
    grid = Grid(cell_count_x=3, cell_count_y=1, cell_size_x=1.0, cell_size_y=1.0, cell_size_z=1.0)
    connectivity = grid.get_connectivity()
    assert list(connectivity[2]) == [1, -1, -1, -1]
    assert list(connectivity[0]) == [-1, 1, -1, -1]


def test_flow_geometry():
    grid = Grid(cell_count_x=2, cell_count_y=2, cell_size_x=10.0, cell_size_y=20.0, cell_size_z=5.0)
    assert grid.flow_geometry(Direction.EAST) == (100.0, 10.0)
    assert grid.flow_geometry(Direction.NORTH) == (50.0, 20.0)
    assert grid.cell_volume == 1000.0


def test_uniform_buffers_and_2D_view(small_grid):
    field = build_uniform_grid(small_grid, 3000.0)
    assert field.shape == (25,)
    assert np.all(field == 3000.0)

    field[small_grid.index(3, 1)] = 1.0
    view = as_2D(field, small_grid)
    assert view.shape == (5, 5)
    assert view[1, 3] == 1.0

    with pytest.raises(ValidationError):
        as_2D(np.zeros(24), small_grid)


def test_global_precision_switch(small_grid):
    use_32bit_precision()
    try:
        assert get_dtype() == np.float32
        assert build_uniform_grid(small_grid, 1.5).dtype == np.float32
    finally:
        use_64bit_precision()
    assert get_dtype() == np.float64
    assert build_uniform_grid(small_grid, 1.5).dtype == np.float64
