from .base import *  # noqa
from .pressure import *  # noqa
from .saturation import *  # noqa
