"""
Canonical coordinate folding and neighbor enumeration.

The Sunflower automaton started from a symmetric configuration stays symmetric
forever, so only one representative per symmetry orbit has to be stored:

-   **hyperoctahedral**: sign flips and axis permutations. The representative
    is ``sort_descending(abs(coord))``.
-   **reflective**: sign flips only. The representative is ``abs(coord)``.

The pure-Python helpers are the public API. The ``_*`` numba helpers at the
bottom work in place on ``int64`` buffers and are what the step kernel calls.
"""

from __future__ import annotations

import itertools
import math
from collections import Counter
from dataclasses import dataclass
from typing import Iterator, List, Sequence, Tuple

import numpy as np
from numba import njit

HYPEROCTAHEDRAL = "hyperoctahedral"
REFLECTIVE = "reflective"
SYMMETRIES = (HYPEROCTAHEDRAL, REFLECTIVE)

# Integer codes handed to the numba kernels
SYMMETRY_CODES = {HYPEROCTAHEDRAL: 0, REFLECTIVE: 1}

Coordinate = Tuple[int, ...]


@dataclass(frozen=True)
class Folding:
    """
    Result of folding a coordinate onto its canonical representative.

    ``coord[permutation[i]] == signs[permutation[i]] * canonical[i]`` for every
    axis ``i``, which is what :func:`unfold` inverts.
    """

    canonical: Coordinate
    signs: Coordinate
    permutation: Coordinate


@dataclass(frozen=True)
class Neighbor:
    axis: int
    direction: int
    position: Coordinate
    canonical: Coordinate
    # another neighbor of the same cell folds onto the same canonical cell
    shared_destination: bool


def check_symmetry(symmetry: str) -> str:
    if symmetry not in SYMMETRIES:
        raise ValueError(
            f"Unknown symmetry '{symmetry}', expected one of {SYMMETRIES}"
        )
    return symmetry


def fold(coord: Sequence[int], symmetry: str = HYPEROCTAHEDRAL) -> Folding:
    check_symmetry(symmetry)
    coord = tuple(int(c) for c in coord)
    signs = tuple(-1 if c < 0 else 1 for c in coord)
    magnitudes = [abs(c) for c in coord]
    if symmetry == HYPEROCTAHEDRAL:
        # stable sort keeps the permutation deterministic for repeated entries
        permutation = tuple(
            sorted(range(len(coord)), key=lambda axis: -magnitudes[axis])
        )
    else:
        permutation = tuple(range(len(coord)))
    canonical = tuple(magnitudes[axis] for axis in permutation)
    return Folding(canonical=canonical, signs=signs, permutation=permutation)


def unfold(folding: Folding) -> Coordinate:
    """Exact inverse of :func:`fold`."""
    coord = [0] * len(folding.canonical)
    for i, axis in enumerate(folding.permutation):
        coord[axis] = folding.signs[axis] * folding.canonical[i]
    return tuple(coord)


def canonicalize(coord: Sequence[int], symmetry: str = HYPEROCTAHEDRAL) -> Coordinate:
    magnitudes = tuple(abs(int(c)) for c in coord)
    if check_symmetry(symmetry) == HYPEROCTAHEDRAL:
        return tuple(sorted(magnitudes, reverse=True))
    return magnitudes


def is_canonical(coord: Sequence[int], symmetry: str = HYPEROCTAHEDRAL) -> bool:
    if any(c < 0 for c in coord):
        return False
    if check_symmetry(symmetry) == HYPEROCTAHEDRAL:
        return all(coord[i] >= coord[i + 1] for i in range(len(coord) - 1))
    return True


def neighbors(canonical: Sequence[int], symmetry: str = HYPEROCTAHEDRAL) -> List[Neighbor]:
    """
    The 2·D axis neighbors of a canonical coordinate, ``+1`` before ``-1`` on
    each axis.

    ``shared_destination`` marks neighbors whose canonical cell is also the
    canonical cell of another neighbor. In 2D all four neighbors of ``(0, 0)``
    fold onto ``(1, 0)``, and ``(1, 1)`` / ``(1, -1)`` both fold onto
    ``(1, 1)`` when seen from ``(1, 0)``.
    """
    base = canonicalize(canonical, symmetry)
    positions = []
    for axis in range(len(base)):
        for direction in (1, -1):
            position = list(base)
            position[axis] += direction
            positions.append((axis, direction, tuple(position)))
    folded = [canonicalize(position, symmetry) for _, _, position in positions]
    counts = Counter(folded)
    return [
        Neighbor(
            axis=axis,
            direction=direction,
            position=position,
            canonical=destination,
            shared_destination=counts[destination] > 1,
        )
        for (axis, direction, position), destination in zip(positions, folded)
    ]


def destination_counts(canonical: Sequence[int], symmetry: str = HYPEROCTAHEDRAL) -> Counter:
    """How many of the cell's unfolded neighbors land on each canonical cell."""
    return Counter(n.canonical for n in neighbors(canonical, symmetry))


def orbit(canonical: Sequence[int], symmetry: str = HYPEROCTAHEDRAL) -> Iterator[Coordinate]:
    """Every lattice coordinate that folds onto ``canonical``."""
    check_symmetry(symmetry)
    canonical = tuple(canonical)
    if symmetry == HYPEROCTAHEDRAL:
        arrangements = sorted(set(itertools.permutations(canonical)))
    else:
        arrangements = [canonical]
    for arrangement in arrangements:
        choices = [(c,) if c == 0 else (c, -c) for c in arrangement]
        yield from itertools.product(*choices)


def orbit_size(canonical: Sequence[int], symmetry: str = HYPEROCTAHEDRAL) -> int:
    check_symmetry(symmetry)
    size = 2 ** sum(1 for c in canonical if c != 0)
    if symmetry == HYPEROCTAHEDRAL:
        size *= math.factorial(len(canonical))
        for count in Counter(canonical).values():
            size //= math.factorial(count)
    return size


###############################################################################
# Numba helpers (int64 coordinate buffers)
###############################################################################


@njit(cache=True)
def _fold_into(pos: np.ndarray, out: np.ndarray, symmetry: int) -> None:
    """Writes the canonical form of ``pos`` into ``out`` (abs + insertion sort)."""
    n = pos.shape[0]
    for i in range(n):
        out[i] = abs(pos[i])
    if symmetry == 0:
        for i in range(1, n):
            value = out[i]
            j = i - 1
            while j >= 0 and out[j] < value:
                out[j + 1] = out[j]
                j -= 1
            out[j + 1] = value


@njit(cache=True)
def _is_canonical(pos: np.ndarray, symmetry: int) -> bool:
    n = pos.shape[0]
    for i in range(n):
        if pos[i] < 0:
            return False
    if symmetry == 0:
        for i in range(1, n):
            if pos[i] > pos[i - 1]:
                return False
    return True


@njit(cache=True)
def _max_coordinate(pos: np.ndarray) -> int:
    result = pos[0]
    for i in range(1, pos.shape[0]):
        if pos[i] > result:
            result = pos[i]
    return result
