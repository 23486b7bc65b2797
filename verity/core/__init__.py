"""
Core infrastructure modules for errors and hashing utilities.
"""

from .exceptions import *
from .utils import *
