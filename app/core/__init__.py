"""
Core infrastructure modules for errors, utilities and the reference store.
"""

from .errors import *
from .utils import *
from .reference_store import *
from .database import *
