from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

import numpy as np

from . import utils
from .config import RandomRegion, SingleSource, SunflowerConfig
from .domain import BIGINT, SIMPLEX, SymmetricDomain, position_count

# Smallest side that holds the spill of the first topples from the origin
SINGLE_SOURCE_SIDE = 3
RANDOM_REGION_MARGIN = 2


@dataclass
class SunflowerState:
    """Everything a running simulation needs to continue exactly."""

    config: SunflowerConfig
    domain: SymmetricDomain
    step: int = 0
    bounds_reached: bool = False
    changed: Optional[bool] = None

    @property
    def background(self) -> int:
        return self.config.initial.background


def build_initial_state(config: SunflowerConfig) -> SunflowerState:
    initial = config.initial
    if isinstance(initial, SingleSource):
        domain = SymmetricDomain.filled(
            config.dimension,
            SINGLE_SOURCE_SIDE,
            initial.background,
            config.symmetry,
            config.value_type,
        )
        domain.set((0,) * config.dimension, initial.value)
    elif isinstance(initial, RandomRegion):
        domain = _random_region_domain(config, initial)
    else:  # pragma: no cover - rejected by SunflowerConfig
        raise TypeError(f"Unsupported initial configuration {initial!r}")
    return SunflowerState(config=config, domain=domain)


def _random_region_domain(config: SunflowerConfig, initial: RandomRegion) -> SymmetricDomain:
    dimension = config.dimension
    domain = SymmetricDomain(
        dimension,
        initial.side + RANDOM_REGION_MARGIN,
        config.symmetry,
        value_type=config.value_type,
    )
    if initial.seed is not None:
        utils.set_seed(initial.seed)
    count = position_count(dimension, initial.side, config.symmetry)
    draws = np.random.randint(
        initial.min_value, initial.max_value + 1, size=count, dtype=np.int64
    )
    if config.value_type == BIGINT:
        draws = draws.astype(object)
    if domain.layout == SIMPLEX:
        # positions inside the region come first in the simplex order
        domain.values[:count] = draws
    else:
        cube = domain.values.reshape((domain.side,) * dimension)
        cube[(slice(0, initial.side),) * dimension] = draws.reshape((initial.side,) * dimension)
    return domain


__all__ = ["SunflowerState", "build_initial_state"]
