"""
*FLOODSIM*

2D two-phase (oil/water) IMPES reservoir simulation engine for waterflood what-if studies.
"""

from ._precision import *  # noqa
from .errors import *  # noqa
from .constants import *  # noqa
from .types import *  # noqa
from .grids import *  # noqa
from .models import *  # noqa
from .relperm import *  # noqa
from .geology import *  # noqa
from .wells import *  # noqa
from .diffusivity import *  # noqa
from .timing import *  # noqa
from .balance import *  # noqa
from .config import *  # noqa
from .states import *  # noqa
from .engine import *  # noqa
from .runner import *  # noqa
