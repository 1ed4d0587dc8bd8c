from contextlib import contextmanager
from contextvars import ContextVar

import numpy as np


__all__ = [
    "get_dtype",
    "set_dtype",
    "with_precision",
    "use_64bit_precision",
    "use_32bit_precision",
]

_floodsim_dtype: ContextVar[np.typing.DTypeLike] = ContextVar(
    "_floodsim_dtype", default=np.float64
)


def get_dtype() -> np.typing.DTypeLike:
    """
    Get the data type used for field buffers in floodsim.

    :return: The current data type.
    """
    return _floodsim_dtype.get()


def set_dtype(dtype: np.typing.DTypeLike) -> None:
    """
    Set the data type used for field buffers in the current context.

    :param dtype: The data type to set as default.
    """
    _floodsim_dtype.set(dtype)


@contextmanager
def with_precision(dtype: np.typing.DTypeLike):
    """
    Context manager to temporarily set the data type, and hence the precision, of field buffers.

    Only engines (re)initialized inside the context pick up the new precision.

    :param dtype: The data type to set within the context.
    """
    token = _floodsim_dtype.set(dtype)
    try:
        yield
    finally:
        _floodsim_dtype.reset(token)


def use_64bit_precision() -> None:
    """
    Set the default data type to float64.

    Default precision for floodsim.
    """
    set_dtype(np.float64)


def use_32bit_precision() -> None:
    """Set the default data type to float32."""
    set_dtype(np.float32)
