"""
dronerunner - drive a drone through a fixed sequence of timed steps
"""

__version__ = "0.1.0"

from .runner import *
from .device import *
from .flight import *
from .config import *
