"""
Numba-based Sunflower toppling engine.

At every step each cell of the lattice whose magnitude reaches the divisor
``N`` (``2D + 1``, or ``2D`` for the variant without self-retention) gives
``trunc(value / N)`` to each of its 2·D axis neighbors, keeps the remainder
(plus one share when retaining) and receives the shares of its neighbors.

Key Algorithmic Features:
1.  **Fundamental Domain:** Only canonical coordinates are stored
    (see ``domain.py``). Neighbor values are read by folding.
2.  **Halo Enumeration:** The kernel visits the canonical simplex plus the
    one-cell halo of non-canonical positions around it, and only writes to
    canonical destinations. Every unfolded neighbor of every stored cell is
    visited exactly once, so cells on the boundary of the fundamental domain
    receive 2x, 4x, ... shares without per-case multiplicity constants.
3.  **Equal-Neighbor Merging:** Two adjacent cells holding the same value
    exchange identical shares, so both keep theirs instead. A cell equal to
    all of its neighbors is copied through untouched.
4.  **Growth:** A transfer touching the outer shell flags the domain to grow
    by one before the next step. The outer shell therefore always holds the
    background value when a step starts.
5.  **Exact Integers:** ``int64`` runs in a compiled kernel with overflow
    detection; ``bigint`` runs the same kernel as plain Python over Python
    ints and cannot overflow.
"""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Any, Optional, Sequence

import numpy as np
from numba import njit

from . import checkpoint
from .config import RandomRegion, SunflowerConfig
from .domain import INT64, SymmetricDomain, _flat_index, _locate
from .state import SunflowerState, build_initial_state
from .symmetry import _is_canonical, _max_coordinate

INT64_MIN = np.iinfo(np.int64).min

STATUS_OK = 0
STATUS_OVERFLOW = 1
STATUS_OUT_OF_RANGE = 2


class ToppleOverflowError(OverflowError):
    """An ``int64`` simulation produced a value that does not fit in 64 bits."""


###############################################################################
# Step kernel
###############################################################################


def _topple_step(
    values: np.ndarray,
    next_values: np.ndarray,
    dimension: int,
    side: int,
    symmetry: int,
    binom: np.ndarray,
    background,
    divisor: int,
    retain_share: bool,
    fixed_width: bool,
):
    """
    Accumulates one step of toppling from ``values`` into ``next_values``
    (zero-filled, same side).

    Returns ``(changed, bounds_reached, status)``. ``status`` is one of the
    ``STATUS_*`` codes; on error ``next_values`` is partial and must be
    dropped.
    """
    pos = np.full(dimension, -1, dtype=np.int64)
    buf = np.empty(dimension, dtype=np.int64)
    equal = np.zeros(2 * dimension, dtype=np.bool_)
    changed = False
    bounds_reached = False

    while True:
        idx = _locate(pos, buf, side, symmetry, binom)
        # halo positions folding outside the domain only see background cells
        if idx >= 0:
            value = values[idx]
            if value != 0:
                here_max = _max_coordinate(buf)
                is_here_canonical = _is_canonical(pos, symmetry)
                if fixed_width and value == INT64_MIN:
                    return changed, bounds_reached, STATUS_OVERFLOW
                keep = value
                magnitude = abs(value)
                if magnitude >= divisor:
                    share = magnitude // divisor
                    if value < 0:
                        share = -share
                    all_equal = True
                    for k in range(2 * dimension):
                        axis = k >> 1
                        direction = 1 - 2 * (k & 1)
                        pos[axis] += direction
                        n_idx = _locate(pos, buf, side, symmetry, binom)
                        pos[axis] -= direction
                        if n_idx >= 0:
                            equal[k] = values[n_idx] == value
                        else:
                            equal[k] = background == value
                        if not equal[k]:
                            all_equal = False
                    if not all_equal:
                        changed = True
                        if here_max >= side - 2:
                            bounds_reached = True
                        keep = value - divisor * share
                        if retain_share:
                            keep += share
                        for k in range(2 * dimension):
                            if equal[k]:
                                keep += share
                                continue
                            axis = k >> 1
                            direction = 1 - 2 * (k & 1)
                            pos[axis] += direction
                            if _is_canonical(pos, symmetry):
                                if _max_coordinate(pos) >= side:
                                    return changed, bounds_reached, STATUS_OUT_OF_RANGE
                                j = _flat_index(pos, side, symmetry, binom)
                                old = next_values[j]
                                new = old + share
                                if fixed_width and ((share > 0 and new < old) or (share < 0 and new > old)):
                                    return changed, bounds_reached, STATUS_OVERFLOW
                                next_values[j] = new
                            pos[axis] -= direction
                if is_here_canonical:
                    old = next_values[idx]
                    new = old + keep
                    if fixed_width and ((keep > 0 and new < old) or (keep < 0 and new > old)):
                        return changed, bounds_reached, STATUS_OVERFLOW
                    next_values[idx] = new

        # odometer over -1 <= c[0] < side, -1 <= c[i] <= c[i-1] + 1
        axis = dimension - 1
        while axis >= 0:
            if axis == 0 or symmetry != 0:
                limit = side - 1
            else:
                limit = pos[axis - 1] + 1
            if pos[axis] < limit:
                pos[axis] += 1
                for rest in range(axis + 1, dimension):
                    pos[rest] = -1
                break
            axis -= 1
        if axis < 0:
            break

    return changed, bounds_reached, STATUS_OK


_topple_step_compiled = njit(cache=True, boundscheck=False)(_topple_step)


###############################################################################
# Simulator
###############################################################################


class SunflowerSimulator:
    """
    The Manager Class.

    Responsibilities:
    1. Build the initial state, or take a restored one.
    2. Grow the domain and swap in each new generation.
    3. Interface with the Numba kernel.
    """

    def __init__(
        self,
        config: SunflowerConfig | None = None,
        *,
        state: Optional[SunflowerState] = None,
    ) -> None:
        if state is None:
            state = build_initial_state(config or SunflowerConfig())
        elif config is not None and config != state.config:
            raise ValueError("config does not match the configuration of the given state")
        self.state = state
        self._step_lock = threading.Lock()

    @classmethod
    def restore(cls, path: str | os.PathLike[str], **expected: Any) -> "SunflowerSimulator":
        """
        Resumes a simulation from a file written by :meth:`back_up`.

        Keyword arguments are identity fields the checkpoint must match,
        e.g. ``restore(path, dimension=3)``.
        """
        return cls(state=checkpoint.read_checkpoint(path, expected or None))

    def back_up(self, path: str | os.PathLike[str]) -> Path:
        return checkpoint.write_checkpoint(path, self.state)

    # ------------------------------------------------------------------ info
    @property
    def config(self) -> SunflowerConfig:
        return self.state.config

    @property
    def domain(self) -> SymmetricDomain:
        return self.state.domain

    @property
    def dimension(self) -> int:
        return self.state.config.dimension

    @property
    def side(self) -> int:
        return self.state.domain.side

    @property
    def max_coordinate(self) -> int:
        """Largest coordinate magnitude inside the stored domain."""
        return self.state.domain.side - 1

    @property
    def divisor(self) -> int:
        return self.state.config.divisor

    @property
    def background_value(self) -> int:
        return self.state.background

    @property
    def initial_value(self) -> Optional[int]:
        initial = self.state.config.initial
        return None if isinstance(initial, RandomRegion) else initial.value

    @property
    def name(self) -> str:
        return "Sunflower"

    @property
    def subfolder_path(self) -> str:
        initial = self.state.config.initial
        base = f"{self.name}/{self.dimension}D"
        if isinstance(initial, RandomRegion):
            return (
                f"{base}/random/{initial.side}_{initial.min_value}_"
                f"{initial.max_value}_{initial.seed}"
            )
        return f"{base}/{initial.value}/{initial.background}"

    def get_step(self) -> int:
        return self.state.step

    def is_changed(self) -> Optional[bool]:
        """Whether the last step changed anything; ``None`` before the first step."""
        return self.state.changed

    def get_from_position(self, coord: Sequence[int]) -> int:
        return self.state.domain.read(coord, self.background_value)

    def get_from_canonical(self, canonical: Sequence[int]) -> int:
        return self.state.domain.get(canonical)

    # ------------------------------------------------------------------ public
    def next_step(self) -> bool:
        """Advances one step and returns whether any cell changed."""
        if not self._step_lock.acquire(blocking=False):
            raise RuntimeError("A step is already in progress on this simulator")
        try:
            return self._next_step()
        finally:
            self._step_lock.release()

    def _next_step(self) -> bool:
        state = self.state
        background = state.background
        if state.bounds_reached:
            # the grown domain reads the same as the old one everywhere
            state.domain = state.domain.grow_by(1, background)
            state.bounds_reached = False
        domain = state.domain
        next_domain = SymmetricDomain(
            domain.dimension, domain.side, domain.symmetry, value_type=domain.value_type
        )

        if domain.value_type == INT64:
            changed, bounds_reached, status = _topple_step_compiled(
                domain.values,
                next_domain.values,
                domain.dimension,
                domain.side,
                domain.symmetry_code,
                domain.binomials,
                np.int64(background),
                self.divisor,
                state.config.retain_share,
                True,
            )
        else:
            changed, bounds_reached, status = _topple_step(
                domain.values,
                next_domain.values,
                domain.dimension,
                domain.side,
                domain.symmetry_code,
                domain.binomials,
                background,
                self.divisor,
                state.config.retain_share,
                False,
            )

        if status == STATUS_OVERFLOW:
            raise ToppleOverflowError(
                f"int64 overflow while computing step {state.step + 1}; "
                f"use value_type='bigint' for this configuration"
            )
        if status == STATUS_OUT_OF_RANGE:
            raise RuntimeError(
                f"Step {state.step + 1} wrote outside a domain of side {domain.side}"
            )

        # publish the new generation
        state.domain = next_domain
        state.bounds_reached = bool(bounds_reached)
        state.step += 1
        state.changed = bool(changed)
        return state.changed

    def run(self, steps: int, *, until_stable: bool = False) -> int:
        """
        Runs ``steps`` steps, or fewer if ``until_stable`` and a step leaves
        the lattice unchanged. Returns the number of steps executed.
        """
        print(
            f"Running {self.name} {self.dimension}D: steps={steps}, "
            f"step={self.get_step()}, side={self.side}"
        )
        executed = 0
        while executed < steps:
            changed = self.next_step()
            executed += 1
            if until_stable and not changed:
                break
        return executed


__all__ = ["SunflowerSimulator", "ToppleOverflowError"]


if __name__ == "__main__":
    # Standalone execution for testing
    sim = SunflowerSimulator(SunflowerConfig(dimension=2))
    sim.run(200, until_stable=True)
    print(f"step={sim.get_step()} side={sim.side} changed={sim.is_changed()}")
