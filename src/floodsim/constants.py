"""Physical constants, conversion factors and numerical safeguards"""

from contextvars import ContextVar
import typing

import attrs


__all__ = ["Constant", "Constants", "c", "ConstantsContext", "get_constant"]


@attrs.frozen(slots=True)
class Constant:
    """
    A constant value with optional description and unit.
    """

    value: typing.Any
    """The actual value of the constant."""

    description: typing.Optional[str] = None
    """Optional description of what this constant represents."""

    unit: typing.Optional[str] = None
    """Optional unit of measurement for this constant."""

    def __str__(self) -> str:
        return f"{self.value}{self.unit or ''}"


DEFAULT_CONSTANTS: typing.Dict[str, typing.Union[typing.Any, Constant]] = {
    # Unit conversions
    "DARCY_CONSTANT": Constant(
        value=0.001127,
        description="Darcy flow conversion for field units (mD·ft²/(cP·ft) to bbl/day/psi basis)",
        unit="dimensionless",
    ),
    "CUBIC_FEET_TO_BARRELS": Constant(
        value=0.1781076, description="Cubic feet to reservoir barrels", unit="bbl/ft³"
    ),
    # Numerical safeguards
    "HARMONIC_MEAN_EPSILON": Constant(
        value=1e-10,
        description="Additive epsilon in the harmonic mean denominator",
    ),
    "FRACTIONAL_FLOW_EPSILON": Constant(
        value=1e-10,
        description="Additive epsilon in the fractional flow denominator",
    ),
    "MINIMUM_PORE_VOLUME": Constant(
        value=1e-10,
        description="Floor applied to pore volumes before division",
        unit="ft³",
    ),
    "ISOLATED_CELL_DIAGONAL_THRESHOLD": Constant(
        value=1e-15,
        description="Pressure equation diagonals below this magnitude freeze the cell",
    ),
    # Rock floors
    "MINIMUM_AVERAGE_PERMEABILITY": Constant(
        value=0.1, description="Floor on configured average permeability", unit="mD"
    ),
    "MINIMUM_AVERAGE_POROSITY": Constant(
        value=0.01, description="Floor on configured average porosity", unit="fraction"
    ),
    # Time stepping
    "MINIMUM_TIME_STEP_SIZE": Constant(
        value=0.001, description="Lower bound on the time step size", unit="days"
    ),
    "MAXIMUM_TIME_STEP_SIZE": Constant(
        value=10.0, description="Upper bound on the time step size", unit="days"
    ),
    "STEP_START_TIME_STEP_CAP": Constant(
        value=5.0,
        description="Hard cap applied to the time step size at the start of every step",
        unit="days",
    ),
    "SATURATION_CHANGE_CUTBACK_THRESHOLD": Constant(
        value=0.05,
        description="Maximum saturation change above which the next step is halved",
        unit="fraction",
    ),
    "SATURATION_CHANGE_GROWTH_THRESHOLD": Constant(
        value=0.01,
        description="Maximum saturation change below which the next step grows",
        unit="fraction",
    ),
    "TIME_STEP_CUTBACK_FACTOR": 0.5,
    "TIME_STEP_GROWTH_FACTOR": 1.2,
}


class Constants:
    """
    Physical constants and conversion factors used by the engine.

    Use attribute access for values and item access for the `Constant` objects.
    Constants can be modified at runtime if needed.
    """

    __slots__ = ("_store",)

    def __new__(cls) -> "Constants":
        instance = super().__new__(cls)
        instance._store = {}
        return instance

    def __init__(self) -> None:
        for name, value in DEFAULT_CONSTANTS.items():
            self[name] = value

    def __getattr__(self, name: str) -> typing.Any:
        if name.startswith("_"):
            return object.__getattribute__(self, name)

        try:
            return self._store[name].value
        except KeyError:
            raise AttributeError(
                f"'{type(self).__name__}' object has no attribute '{name}'"
            ) from None

    def __getitem__(self, name: str) -> Constant:
        return self._store[name]

    def __setattr__(self, name: str, value: typing.Any) -> None:
        if name.startswith("_"):
            object.__setattr__(self, name, value)
        else:
            self[name] = value

    def __setitem__(self, name: str, value: typing.Any) -> None:
        self._store[name] = value if isinstance(value, Constant) else Constant(value)

    def __contains__(self, name: str) -> bool:
        return name in self._store

    def __len__(self) -> int:
        return len(self._store)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(constants={len(self._store)})"

    def get_constant(
        self, name: str, default: typing.Optional[Constant] = None
    ) -> typing.Optional[Constant]:
        """Get a `Constant` object with a default fallback.

        :param name: Name of the constant
        :param default: Default `Constant` if constant doesn't exist
        :return: `Constant` object or default
        """
        return self._store.get(name, default)

    def __call__(self) -> "ConstantsContext":
        """
        Create a context manager that temporarily makes this instance the one
        served by the global proxy `floodsim.c`.
        """
        return ConstantsContext(self)


_constants_context: ContextVar[Constants] = ContextVar(
    "constants_context", default=Constants()
)


class ConstantsContext:
    """Context manager for temporary global `Constants` overrides."""

    def __init__(self, constants: Constants) -> None:
        self._new_constants = constants
        self._token = None

    def __enter__(self) -> Constants:
        self._token = _constants_context.set(self._new_constants)
        return self._new_constants

    def __exit__(self, exc_type, exc_value, traceback) -> None:
        if self._token is not None:
            _constants_context.reset(self._token)


class _ConstantsProxy:
    """Proxy to the current context's `Constants` instance."""

    @property
    def _constants(self) -> Constants:
        return _constants_context.get()

    def __getattr__(self, name: str) -> typing.Any:
        return getattr(self._constants, name)

    def __getitem__(self, name: str) -> Constant:
        return self._constants[name]


c = _ConstantsProxy()
"""Global proxy to access physical constants and conversion factors."""


def get_constant(name: str) -> typing.Optional[Constant]:
    """Get a `Constant` object by name from the global constants.

    :param name: Name of the constant
    :return: `Constant` object or None if not found
    """
    return c._constants.get_constant(name)
