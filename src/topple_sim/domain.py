"""
Growable storage for the fundamental domain of a symmetric lattice.

Only canonical coordinates are stored, in a flat numpy array:

-   **simplex** layout (hyperoctahedral symmetry): positions
    ``side > c[0] >= c[1] >= ... >= c[D-1] >= 0``. The flat index of a
    position is ``sum_i C(c[i] + D - i - 1, D - i)``, i.e. the number of
    positions that precede it in lexicographic order. It does not depend on
    ``side``, so a bigger domain is the old array followed by a new tail.
-   **hypercubic** layout (reflective symmetry): positions with every
    ``0 <= c[i] < side`` stored row-major.

Values are ``int64`` or, for the ``bigint`` value type, Python ints in an
object array.
"""

from __future__ import annotations

import itertools
import math
from functools import lru_cache
from typing import Iterator, Optional, Sequence, Tuple

import numpy as np
from numba import njit

from .symmetry import (
    HYPEROCTAHEDRAL,
    SYMMETRY_CODES,
    _fold_into,
    _max_coordinate,
    canonicalize,
    check_symmetry,
    is_canonical,
    orbit_size,
)

INT64 = "int64"
BIGINT = "bigint"
VALUE_TYPES = (INT64, BIGINT)
INT64_MIN = int(np.iinfo(np.int64).min)
INT64_MAX = int(np.iinfo(np.int64).max)

SIMPLEX = "simplex"
HYPERCUBIC = "hypercubic"


def storage_layout(symmetry: str) -> str:
    return SIMPLEX if check_symmetry(symmetry) == HYPEROCTAHEDRAL else HYPERCUBIC


def value_dtype(value_type: str) -> np.dtype:
    if value_type == INT64:
        return np.dtype(np.int64)
    if value_type == BIGINT:
        return np.dtype(object)
    raise ValueError(f"Unknown value type '{value_type}', expected one of {VALUE_TYPES}")


def position_count(dimension: int, side: int, symmetry: str = HYPEROCTAHEDRAL) -> int:
    """Number of canonical positions with every coordinate below ``side``."""
    if storage_layout(symmetry) == SIMPLEX:
        return math.comb(side + dimension - 1, dimension)
    return side ** dimension


@lru_cache(maxsize=16)
def binomial_table(dimension: int, side: int) -> np.ndarray:
    """
    ``table[n, k] == C(n, k)`` for every ``n < side + dimension``, ``k <= dimension``.
    Cached and read-only, every domain of the same shape shares one table.
    """
    rows = side + dimension
    table = np.zeros((rows, dimension + 1), dtype=np.int64)
    for n in range(rows):
        for k in range(min(n, dimension) + 1):
            table[n, k] = math.comb(n, k)
    table.setflags(write=False)
    return table


def _descending_positions(dimension: int, upper: int) -> Iterator[Tuple[int, ...]]:
    if dimension == 0:
        yield ()
        return
    for first in range(upper):
        for rest in _descending_positions(dimension - 1, first + 1):
            yield (first,) + rest


###############################################################################
# Numba helpers
###############################################################################


@njit(cache=True)
def _flat_index(canon: np.ndarray, side: int, symmetry: int, binom: np.ndarray) -> int:
    """Flat index of a canonical position already known to be inside ``side``."""
    n = canon.shape[0]
    index = 0
    if symmetry == 0:
        for i in range(n):
            k = n - i
            index += binom[canon[i] + k - 1, k]
    else:
        for i in range(n):
            index = index * side + canon[i]
    return index


@njit(cache=True)
def _locate(pos: np.ndarray, buf: np.ndarray, side: int, symmetry: int, binom: np.ndarray) -> int:
    """
    Folds ``pos`` (any lattice position) into ``buf`` and returns its flat
    index, or -1 when it lies outside the stored side.
    """
    _fold_into(pos, buf, symmetry)
    if _max_coordinate(buf) >= side:
        return -1
    return _flat_index(buf, side, symmetry, binom)


###############################################################################
# Domain
###############################################################################


class SymmetricDomain:
    """
    One value per canonical coordinate inside a hypercube of side ``side``.

    Two accessor modes: ``get`` / ``set`` / ``add_and_get`` take canonical
    coordinates and reject anything else, ``read`` folds an arbitrary lattice
    coordinate and falls back to a background value outside the domain.
    """

    def __init__(
        self,
        dimension: int,
        side: int,
        symmetry: str = HYPEROCTAHEDRAL,
        values: Optional[np.ndarray] = None,
        *,
        value_type: str = INT64,
    ) -> None:
        if dimension < 1:
            raise ValueError(f"Dimension must be at least 1, got {dimension}")
        if side < 1:
            raise ValueError(f"Side must be at least 1, got {side}")
        self.dimension = int(dimension)
        self.side = int(side)
        self.symmetry = check_symmetry(symmetry)
        self.layout = storage_layout(symmetry)
        count = position_count(self.dimension, self.side, self.symmetry)
        if values is None:
            values = np.zeros(count, dtype=value_dtype(value_type))
        else:
            values = np.asarray(values)
            if values.dtype != value_dtype(value_type):
                values = values.astype(value_dtype(value_type))
            if values.shape != (count,):
                raise ValueError(
                    f"Expected {count} values for a {self.dimension}D {self.layout} "
                    f"domain of side {self.side}, got shape {values.shape}"
                )
        self.values = values
        self.value_type = value_type

    @classmethod
    def filled(
        cls,
        dimension: int,
        side: int,
        background: int = 0,
        symmetry: str = HYPEROCTAHEDRAL,
        value_type: str = INT64,
    ) -> "SymmetricDomain":
        count = position_count(dimension, side, symmetry)
        values = np.full(count, background, dtype=value_dtype(value_type))
        return cls(dimension, side, symmetry, values, value_type=value_type)

    # ------------------------------------------------------------------ layout
    @property
    def symmetry_code(self) -> int:
        return SYMMETRY_CODES[self.symmetry]

    @property
    def binomials(self) -> np.ndarray:
        # only the simplex layout needs it, but the kernels always take a table
        return binomial_table(self.dimension, self.side)

    def __len__(self) -> int:
        return self.values.shape[0]

    def contains(self, canonical: Sequence[int]) -> bool:
        return (
            len(canonical) == self.dimension
            and is_canonical(canonical, self.symmetry)
            and max(canonical) < self.side
        )

    def index_of(self, canonical: Sequence[int]) -> int:
        if not self.contains(canonical):
            raise IndexError(
                f"{tuple(canonical)} is not a canonical position of a "
                f"{self.dimension}D {self.symmetry} domain of side {self.side}"
            )
        if self.layout == SIMPLEX:
            index = 0
            for i, c in enumerate(canonical):
                k = self.dimension - i
                index += math.comb(c + k - 1, k)
            return index
        index = 0
        for c in canonical:
            index = index * self.side + c
        return index

    def positions(self) -> Iterator[Tuple[int, ...]]:
        """Canonical positions in storage order."""
        if self.layout == SIMPLEX:
            return _descending_positions(self.dimension, self.side)
        return itertools.product(range(self.side), repeat=self.dimension)

    def items(self) -> Iterator[Tuple[Tuple[int, ...], int]]:
        for position, value in zip(self.positions(), self.values):
            yield position, int(value)

    # ------------------------------------------------------------------ access
    def get(self, canonical: Sequence[int]) -> int:
        return int(self.values[self.index_of(canonical)])

    def set(self, canonical: Sequence[int], value: int) -> None:
        self.values[self.index_of(canonical)] = value

    def add_and_get(self, canonical: Sequence[int], delta: int) -> int:
        index = self.index_of(canonical)
        old = self.values[index]
        if self.value_type == INT64:
            new = int(old) + int(delta)
            if not INT64_MIN <= new <= INT64_MAX:
                raise OverflowError(
                    f"{int(old)} + {int(delta)} at {tuple(canonical)} does not fit in int64"
                )
            self.values[index] = new
        else:
            self.values[index] = old + delta
        return int(self.values[index])

    def read(self, coord: Sequence[int], background: int = 0) -> int:
        canonical = canonicalize(coord, self.symmetry)
        if len(canonical) != self.dimension:
            raise ValueError(
                f"Expected a {self.dimension}D coordinate, got {tuple(coord)}"
            )
        if max(canonical) >= self.side:
            return background
        return self.get(canonical)

    # ------------------------------------------------------------------ growth
    def grow_by(self, k: int, background: int = 0) -> "SymmetricDomain":
        """
        Returns a domain of side ``side + k`` holding every current value, the
        new cells set to ``background``. ``self`` is left untouched.
        """
        if k < 0:
            raise ValueError(f"A domain cannot shrink (grow_by({k}))")
        new_side = self.side + k
        dtype = self.values.dtype
        if self.layout == SIMPLEX:
            values = np.empty(position_count(self.dimension, new_side, self.symmetry), dtype=dtype)
            old_count = self.values.shape[0]
            values[:old_count] = self.values
            values[old_count:] = background
        else:
            cube = np.full((new_side,) * self.dimension, background, dtype=dtype)
            cube[(slice(0, self.side),) * self.dimension] = self.values.reshape(
                (self.side,) * self.dimension
            )
            values = cube.ravel()
        return SymmetricDomain(
            self.dimension, new_side, self.symmetry, values, value_type=self.value_type
        )

    def copy(self) -> "SymmetricDomain":
        return SymmetricDomain(
            self.dimension,
            self.side,
            self.symmetry,
            self.values.copy(),
            value_type=self.value_type,
        )

    # ------------------------------------------------------------------ views
    def to_dense(self) -> np.ndarray:
        """
        The unfolded lattice as an array of shape ``(2*side - 1,) * D`` with
        the origin at the center.
        """
        radius = self.side - 1
        grids = np.abs(np.indices((2 * self.side - 1,) * self.dimension) - radius)
        if self.layout == SIMPLEX:
            grids = -np.sort(-grids, axis=0)
            binom = self.binomials
            index = np.zeros(grids.shape[1:], dtype=np.int64)
            for i in range(self.dimension):
                k = self.dimension - i
                index += binom[grids[i] + k - 1, k]
        else:
            index = np.ravel_multi_index(tuple(grids), (self.side,) * self.dimension)
        return self.values[index]

    def total(self) -> int:
        """Sum of the values of every lattice cell the domain covers."""
        return sum(
            orbit_size(position, self.symmetry) * value for position, value in self.items()
        )

    def min_max(self) -> Tuple[int, int]:
        return int(self.values.min()), int(self.values.max())

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SymmetricDomain):
            return NotImplemented
        return (
            self.dimension == other.dimension
            and self.side == other.side
            and self.symmetry == other.symmetry
            and self.value_type == other.value_type
            and np.array_equal(self.values, other.values)
        )

    def __repr__(self) -> str:
        return (
            f"SymmetricDomain(dimension={self.dimension}, side={self.side}, "
            f"symmetry={self.symmetry!r}, value_type={self.value_type!r})"
        )


__all__ = [
    "BIGINT",
    "HYPERCUBIC",
    "INT64",
    "SIMPLEX",
    "SymmetricDomain",
    "VALUE_TYPES",
    "binomial_table",
    "position_count",
    "storage_layout",
    "value_dtype",
]
