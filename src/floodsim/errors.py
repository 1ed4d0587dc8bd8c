class FloodSimError(Exception):
    """Base class for all floodsim errors."""

    pass


class ValidationError(FloodSimError, ValueError):
    """Raised when input data fails validation checks."""

    pass


class SolverError(FloodSimError):
    """Raised when the pressure solver fails to converge and failures are not tolerated."""

    pass


class SimulationError(FloodSimError):
    """Base class for simulation-related errors."""

    pass


class TimingError(SimulationError):
    """Raised when there is an error related to simulation timing."""

    pass
