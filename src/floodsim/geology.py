"""Permeability and porosity field generation from named spatial patterns."""

import logging
import threading
import typing

import numpy as np

from floodsim._precision import get_dtype
from floodsim.errors import ValidationError
from floodsim.grids import Grid, build_uniform_grid
from floodsim.models import RockProperties
from floodsim.types import OneDimensionalGrid

logger = logging.getLogger(__name__)

__all__ = [
    "GeologyModelFunc",
    "geology_model",
    "get_geology_model",
    "list_geology_models",
    "generate_rock_properties",
    "build_homogeneous_fields",
    "build_layered_fields",
    "build_channel_fields",
    "build_random_fields",
    "standard_normal_samples",
]

GeologyModelFunc = typing.Callable[
    [Grid, float, float, np.random.Generator],
    typing.Tuple[OneDimensionalGrid, OneDimensionalGrid],
]
"""
Callable `(grid, average_permeability, average_porosity, rng) -> (permeability_grid, porosity_grid)`.
"""

CHANNEL_HALF_WIDTH = 3
"""Cells strictly closer than this many columns to the channel centre belong to the channel."""


def _cell_coordinates(grid: Grid) -> typing.Tuple[np.ndarray, np.ndarray]:
    """Per-cell `i` and `j` coordinates in linear index order."""
    j_grid, i_grid = np.divmod(np.arange(grid.cell_count), grid.cell_count_x)
    return i_grid, j_grid


def standard_normal_samples(rng: np.random.Generator, size: int) -> np.ndarray:
    """
    Draw standard normal samples with the Box-Muller transform.

    Z = sqrt(-2 ln U1) * cos(2π U2), with U1 drawn from (0, 1] so the logarithm stays finite.

    :param rng: Random number generator.
    :param size: Number of samples.
    :return: Array of standard normal samples.
    """
    first_uniform = 1.0 - rng.random(size)
    second_uniform = rng.random(size)
    return np.sqrt(-2.0 * np.log(first_uniform)) * np.cos(2.0 * np.pi * second_uniform)


def build_homogeneous_fields(
    grid: Grid,
    average_permeability: float,
    average_porosity: float,
    rng: np.random.Generator,
) -> typing.Tuple[OneDimensionalGrid, OneDimensionalGrid]:
    """Every cell gets the average values, unmodified."""
    return (
        build_uniform_grid(grid, average_permeability),
        build_uniform_grid(grid, average_porosity),
    )


def build_layered_fields(
    grid: Grid,
    average_permeability: float,
    average_porosity: float,
    rng: np.random.Generator,
) -> typing.Tuple[OneDimensionalGrid, OneDimensionalGrid]:
    """
    High permeability streaks every fifth row.

    Rows with `j % 5 == 0` get permeability × 5.0, all other rows × 0.5, both further scaled
    by a uniform factor in [0.8, 1.2]. Porosity is scaled by a uniform factor in [0.9, 1.1].
    """
    _, j_grid = _cell_coordinates(grid)
    layer_factor = np.where(j_grid % 5 == 0, 5.0, 0.5)
    permeability_noise = rng.uniform(0.8, 1.2, size=grid.cell_count)
    porosity_noise = rng.uniform(0.9, 1.1, size=grid.cell_count)
    return (
        average_permeability * layer_factor * permeability_noise,
        average_porosity * porosity_noise,
    )


def build_channel_fields(
    grid: Grid,
    average_permeability: float,
    average_porosity: float,
    rng: np.random.Generator,
) -> typing.Tuple[OneDimensionalGrid, OneDimensionalGrid]:
    """
    A sinuous high permeability channel.

    The channel centre at row `j` is `nx/2 + (nx/4) * sin(j/5)`. Cells closer than
    3 columns to it get permeability × 10 and porosity × 1.2; all other cells get
    permeability × 0.1 and porosity × 0.8.
    """
    i_grid, j_grid = _cell_coordinates(grid)
    cell_count_x = grid.cell_count_x
    channel_centre = cell_count_x / 2 + (cell_count_x / 4) * np.sin(j_grid / 5)
    in_channel = np.abs(i_grid - channel_centre) < CHANNEL_HALF_WIDTH
    return (
        np.where(in_channel, average_permeability * 10.0, average_permeability * 0.1),
        np.where(in_channel, average_porosity * 1.2, average_porosity * 0.8),
    )


def build_random_fields(
    grid: Grid,
    average_permeability: float,
    average_porosity: float,
    rng: np.random.Generator,
) -> typing.Tuple[OneDimensionalGrid, OneDimensionalGrid]:
    """
    Log-normal permeability, `k = k_avg * exp(0.5 * Z)` with `Z ~ N(0, 1)`.

    Porosity is scaled by a uniform factor in [0.85, 1.15].
    """
    standard_normal = standard_normal_samples(rng, grid.cell_count)
    porosity_noise = rng.uniform(0.85, 1.15, size=grid.cell_count)
    return (
        average_permeability * np.exp(0.5 * standard_normal),
        average_porosity * porosity_noise,
    )


_geology_registry_lock = threading.Lock()
_GEOLOGY_MODELS: typing.Dict[str, GeologyModelFunc] = {
    "homogeneous": build_homogeneous_fields,
    "layered": build_layered_fields,
    "channel": build_channel_fields,
    "random": build_random_fields,
}
"""Registered geology model functions."""


@typing.overload
def geology_model(func: GeologyModelFunc) -> GeologyModelFunc: ...


@typing.overload
def geology_model(
    func: None = None,
    name: typing.Optional[str] = None,
    override: bool = False,
) -> typing.Callable[[GeologyModelFunc], GeologyModelFunc]: ...


def geology_model(
    func: typing.Optional[GeologyModelFunc] = None,
    name: typing.Optional[str] = None,
    override: bool = False,
) -> typing.Union[
    GeologyModelFunc,
    typing.Callable[[GeologyModelFunc], GeologyModelFunc],
]:
    """
    Decorator to register a geology model function.

    :param func: The geology model function to decorate.
    :param name: Optional name to register the model under. Defaults to the function's `__name__`.
    :param override: If True, allows overriding an existing model with the same name.
    :return: The original function, unmodified.
    """

    def decorator(func: GeologyModelFunc) -> GeologyModelFunc:
        with _geology_registry_lock:
            key = name or getattr(func, "__name__", None)
            if not key:
                raise ValidationError(
                    "Geology model must have a `__name__` attribute or a name must be provided."
                )
            if not override and key in _GEOLOGY_MODELS:
                raise ValidationError(
                    f"Geology model {key!r} is already registered. Use `override=True` to replace it."
                )
            _GEOLOGY_MODELS[key] = func
        return func

    if func is not None:
        return decorator(func)
    return decorator


def list_geology_models() -> typing.List[str]:
    """List the names of all registered geology models."""
    with _geology_registry_lock:
        return list(_GEOLOGY_MODELS.keys())


def get_geology_model(name: str) -> GeologyModelFunc:
    """
    Get a registered geology model by name.

    :param name: Name of the geology model.
    :return: The geology model function.
    :raises ValidationError: If the model is unknown.
    """
    with _geology_registry_lock:
        if name not in _GEOLOGY_MODELS:
            raise ValidationError(
                f"Unknown geology model: {name!r}. "
                f"Available models: {list(_GEOLOGY_MODELS.keys())}"
            )
        return _GEOLOGY_MODELS[name]


def generate_rock_properties(
    grid: Grid,
    average_permeability: float,
    average_porosity: float,
    model: str = "homogeneous",
    rng: typing.Optional[np.random.Generator] = None,
) -> RockProperties:
    """
    Generate permeability and porosity fields for `grid` from a named pattern.

    :param grid: The grid to populate.
    :param average_permeability: Average permeability (mD).
    :param average_porosity: Average porosity (fraction).
    :param model: Name of a registered geology model.
    :param rng: Random number generator. A freshly seeded generator is used if not provided,
        so pass a seeded one for reproducible fields.
    :return: `RockProperties` holding the generated fields.
    """
    model_func = get_geology_model(model)
    rng = rng if rng is not None else np.random.default_rng()
    permeability_grid, porosity_grid = model_func(
        grid, average_permeability, average_porosity, rng
    )

    dtype = get_dtype()
    permeability_grid = np.asarray(permeability_grid, dtype=dtype)
    porosity_grid = np.asarray(porosity_grid, dtype=dtype)
    if np.any(porosity_grid > 1.0):
        logger.debug(
            f"Geology model {model!r} produced porosities above 1.0. Clipping to 1.0."
        )
        porosity_grid = np.minimum(porosity_grid, 1.0)

    logger.debug(
        f"Generated {model!r} geology on {grid.cell_count_x}x{grid.cell_count_y} grid: "
        f"permeability [{permeability_grid.min():.4g}, {permeability_grid.max():.4g}] mD, "
        f"porosity [{porosity_grid.min():.4g}, {porosity_grid.max():.4g}]"
    )
    return RockProperties(permeability_grid=permeability_grid, porosity_grid=porosity_grid)
