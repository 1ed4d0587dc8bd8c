import enum
import typing

import numpy as np
from typing_extensions import TypeAlias


__all__ = [
    "TwoDimensions",
    "OneDimensionalGrid",
    "IndexGrid",
    "WellType",
    "Direction",
    "EngineState",
]

TwoDimensions: TypeAlias = typing.Tuple[int, int]
"""2D cell indices (i, j)"""

OneDimensionalGrid = np.ndarray[typing.Tuple[int], np.dtype[np.floating]]
"""Dense field buffer of length `nx * ny`, addressed by the linear index `j * nx + i`."""
IndexGrid = np.ndarray[typing.Tuple[int, int], np.dtype[np.int64]]
"""Integer connectivity table of shape (`nx * ny`, 4)."""


class WellType(enum.Enum):
    """Enum representing the role of a well."""

    INJECTOR = "injector"
    PRODUCER = "producer"


class Direction(enum.IntEnum):
    """
    Neighbour directions, in the column order used by connectivity tables.

    West/east neighbours are x-direction faces, south/north are y-direction faces.
    """

    WEST = 0
    EAST = 1
    SOUTH = 2
    NORTH = 3


class EngineState(enum.Enum):
    """Lifecycle state of a `ReservoirEngine`."""

    UNINITIALIZED = "uninitialized"
    READY = "ready"
