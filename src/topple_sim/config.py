from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional, Union

from .domain import BIGINT, INT64, INT64_MAX, INT64_MIN, VALUE_TYPES
from .symmetry import HYPEROCTAHEDRAL, SYMMETRIES

SINGLE_SOURCE_AT_ORIGIN = "single_source_at_origin"
RANDOM_REGION = "random_region"


class ConfigurationError(ValueError):
    """Raised for an initial configuration or engine setup that cannot be built."""


def _check_int64(name: str, value: int) -> None:
    if not INT64_MIN <= value <= INT64_MAX:
        raise ConfigurationError(
            f"{name}={value} does not fit the int64 value type; use value_type='{BIGINT}'"
        )


@dataclass(frozen=True)
class SingleSource:
    """A single value at the origin, every other cell holding ``background``."""

    value: int = 1000
    background: int = 0

    kind = SINGLE_SOURCE_AT_ORIGIN

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RandomRegion:
    """
    Random integers in ``[min_value, max_value]`` on every cell whose
    coordinates all have magnitude below ``side``; zero elsewhere.

    Values are drawn per canonical cell, so the unfolded configuration has the
    engine's symmetry.
    """

    side: int = 5
    min_value: int = -100
    max_value: int = 100
    seed: Optional[int] = None

    kind = RANDOM_REGION

    @property
    def background(self) -> int:
        return 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


InitialConfiguration = Union[SingleSource, RandomRegion]


def initial_configuration_from_dict(kind: str, data: Dict[str, Any]) -> InitialConfiguration:
    if kind == SINGLE_SOURCE_AT_ORIGIN:
        return SingleSource(**data)
    if kind == RANDOM_REGION:
        return RandomRegion(**data)
    raise ConfigurationError(f"Unknown initial configuration type '{kind}'")


@dataclass(frozen=True)
class SunflowerConfig:
    """Defines the lattice, the toppling rule and the starting configuration."""

    dimension: int = 2
    initial: InitialConfiguration = field(default_factory=SingleSource)
    symmetry: str = HYPEROCTAHEDRAL
    value_type: str = INT64
    # keep one share on the toppling cell (divisor 2D+1) or not (divisor 2D)
    retain_share: bool = True

    def __post_init__(self) -> None:
        if self.dimension < 1:
            raise ConfigurationError(f"Dimension must be at least 1, got {self.dimension}")
        if self.symmetry not in SYMMETRIES:
            raise ConfigurationError(
                f"Unknown symmetry '{self.symmetry}', expected one of {SYMMETRIES}"
            )
        if self.value_type not in VALUE_TYPES:
            raise ConfigurationError(
                f"Unknown value type '{self.value_type}', expected one of {VALUE_TYPES}"
            )
        if isinstance(self.initial, SingleSource):
            self._validate_single_source(self.initial)
        elif isinstance(self.initial, RandomRegion):
            self._validate_random_region(self.initial)
        else:
            raise ConfigurationError(
                f"Unsupported initial configuration {type(self.initial).__name__}"
            )

    @property
    def divisor(self) -> int:
        return 2 * self.dimension + 1 if self.retain_share else 2 * self.dimension

    def _validate_single_source(self, initial: SingleSource) -> None:
        if self.value_type == INT64:
            _check_int64("value", initial.value)
            _check_int64("background", initial.background)

    def _validate_random_region(self, initial: RandomRegion) -> None:
        if initial.side < 1:
            raise ConfigurationError(
                f"Random region side cannot be smaller than one, got {initial.side}"
            )
        if initial.min_value > initial.max_value:
            raise ConfigurationError(
                f"Min value ({initial.min_value}) cannot be greater than "
                f"max value ({initial.max_value})"
            )
        # values are drawn with numpy, whatever the value type
        _check_int64("min_value", initial.min_value)
        _check_int64("max_value", initial.max_value)
        if self.value_type == INT64:
            actual_min = min(initial.min_value, 0)
            actual_max = max(initial.max_value, 0)
            spread = actual_min + ((actual_max - actual_min) // 2) * self.divisor
            if spread > INT64_MAX:
                raise ConfigurationError(
                    f"The range between the actual min and max values "
                    f"([{actual_min}, {actual_max}]) is too big."
                )


__all__ = [
    "ConfigurationError",
    "InitialConfiguration",
    "RANDOM_REGION",
    "RandomRegion",
    "SINGLE_SOURCE_AT_ORIGIN",
    "SingleSource",
    "SunflowerConfig",
    "initial_configuration_from_dict",
]
