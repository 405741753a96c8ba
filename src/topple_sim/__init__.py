"""
Topple Simulation Library - Symmetric Sunflower Engine

This package provides a hypercubic toppling automaton stored on the
fundamental domain of its symmetry group:
- SunflowerSimulator: Sunflower toppling in any dimension, int64 or bigint
- SymmetricDomain: Growable storage for canonical coordinates
- checkpoint: Exact suspend / resume of a running simulation
"""

from .config import ConfigurationError, RandomRegion, SingleSource, SunflowerConfig
from .domain import BIGINT, INT64, SymmetricDomain
from .state import SunflowerState
from .sunflower import SunflowerSimulator, ToppleOverflowError
from .symmetry import HYPEROCTAHEDRAL, REFLECTIVE
from . import checkpoint
from . import utils

__all__ = [
    # Simulators
    "SunflowerSimulator",
    "SunflowerState",
    "SymmetricDomain",
    # Configuration classes
    "SunflowerConfig",
    "SingleSource",
    "RandomRegion",
    "HYPEROCTAHEDRAL",
    "REFLECTIVE",
    "INT64",
    "BIGINT",
    # Errors
    "ConfigurationError",
    "ToppleOverflowError",
    # Utilities
    "checkpoint",
    "utils",
]
