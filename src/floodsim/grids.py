"""Structured 2D cartesian grid, linear indexing and field buffers."""

import typing

import attrs
import numba
import numpy as np

from floodsim._precision import get_dtype
from floodsim.errors import ValidationError
from floodsim.types import Direction, IndexGrid, OneDimensionalGrid

__all__ = [
    "Grid",
    "build_uniform_grid",
    "uniform_grid",
    "build_connectivity",
    "as_2D",
]


@attrs.frozen(slots=True)
class Grid:
    """
    Immutable 2D cartesian grid of `cell_count_x` × `cell_count_y` cells.

    Cells are addressed by `(i, j)` with `0 <= i < cell_count_x` and `0 <= j < cell_count_y`.
    Field buffers are flat arrays indexed by the linear index `j * cell_count_x + i`.
    """

    cell_count_x: int = attrs.field(validator=attrs.validators.ge(1))
    """Number of cells in the x direction (nx)."""
    cell_count_y: int = attrs.field(validator=attrs.validators.ge(1))
    """Number of cells in the y direction (ny)."""
    cell_size_x: float = attrs.field(validator=attrs.validators.gt(0))
    """Cell extent in the x direction (ft)."""
    cell_size_y: float = attrs.field(validator=attrs.validators.gt(0))
    """Cell extent in the y direction (ft)."""
    cell_size_z: float = attrs.field(validator=attrs.validators.gt(0))
    """Cell thickness (ft)."""

    @property
    def shape(self) -> typing.Tuple[int, int]:
        """Grid shape as (nx, ny)."""
        return self.cell_count_x, self.cell_count_y

    @property
    def cell_count(self) -> int:
        """Total number of cells."""
        return self.cell_count_x * self.cell_count_y

    @property
    def cell_volume(self) -> float:
        """Bulk volume of a single cell (ft³)."""
        return self.cell_size_x * self.cell_size_y * self.cell_size_z

    def contains(self, i: int, j: int) -> bool:
        """Check whether `(i, j)` lies inside the grid."""
        return 0 <= i < self.cell_count_x and 0 <= j < self.cell_count_y

    def index(self, i: int, j: int) -> int:
        """
        Linear index of cell `(i, j)`.

        :raises ValidationError: If the cell lies outside the grid.
        """
        if not self.contains(i, j):
            raise ValidationError(
                f"Cell ({i}, {j}) is outside the {self.cell_count_x}x{self.cell_count_y} grid."
            )
        return j * self.cell_count_x + i

    def coordinates(self, index: int) -> typing.Tuple[int, int]:
        """Cell coordinates `(i, j)` for a linear index."""
        if not 0 <= index < self.cell_count:
            raise ValidationError(
                f"Index {index} is outside the grid of {self.cell_count} cells."
            )
        j, i = divmod(index, self.cell_count_x)
        return i, j

    def flow_geometry(self, direction: Direction) -> typing.Tuple[float, float]:
        """
        Face area and centre-to-centre distance for flow in the given direction.

        :param direction: Neighbour direction.
        :return: (flow_area, flow_length) in (ft², ft).
        """
        if direction in (Direction.WEST, Direction.EAST):
            return self.cell_size_y * self.cell_size_z, self.cell_size_x
        return self.cell_size_x * self.cell_size_z, self.cell_size_y

    def get_connectivity(self) -> IndexGrid:
        """Neighbour table of shape (cell_count, 4). See `build_connectivity`."""
        return build_connectivity(self.cell_count_x, self.cell_count_y)


@numba.njit(cache=True)
def build_connectivity(cell_count_x: int, cell_count_y: int) -> IndexGrid:
    """
    Build the neighbour table for a 2D grid.

    Row `j * cell_count_x + i` holds the linear indices of the west, east, south and north
    neighbours of cell `(i, j)`, or -1 where the neighbour lies outside the grid.
    Missing neighbours implement the no-flow boundary.

    :param cell_count_x: Number of cells in the x direction.
    :param cell_count_y: Number of cells in the y direction.
    :return: Integer array of shape (cell_count_x * cell_count_y, 4).
    """
    neighbours = np.full((cell_count_x * cell_count_y, 4), -1, dtype=np.int64)
    for j in range(cell_count_y):
        for i in range(cell_count_x):
            cell = j * cell_count_x + i
            if i > 0:
                neighbours[cell, 0] = cell - 1
            if i < cell_count_x - 1:
                neighbours[cell, 1] = cell + 1
            if j > 0:
                neighbours[cell, 2] = cell - cell_count_x
            if j < cell_count_y - 1:
                neighbours[cell, 3] = cell + cell_count_x
    return neighbours


def build_uniform_grid(grid: Grid, value: float = 0.0) -> OneDimensionalGrid:
    """
    Constructs a flat field buffer for `grid` filled with `value`.

    :param grid: The grid the buffer belongs to.
    :param value: Initial value to fill the buffer with.
    :return: Numpy array of length `grid.cell_count`.
    """
    return np.full(grid.cell_count, fill_value=value, dtype=get_dtype(), order="C")  # type: ignore


uniform_grid = build_uniform_grid  # Alias for convenience


def as_2D(field: np.ndarray, grid: Grid) -> np.ndarray:
    """
    View a flat field buffer as a 2D array indexed `[j, i]`.

    :param field: Flat buffer of length `grid.cell_count`.
    :param grid: The grid the buffer belongs to.
    :return: Array of shape (cell_count_y, cell_count_x).
    """
    if field.shape != (grid.cell_count,):
        raise ValidationError(
            f"Field of shape {field.shape} does not match grid with {grid.cell_count} cells."
        )
    return field.reshape(grid.cell_count_y, grid.cell_count_x)
