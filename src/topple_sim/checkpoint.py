"""
Checkpoint codec: suspend a simulation and resume it exactly.

A checkpoint is a compressed numpy ``.npz`` container:

-   ``meta``: 0-d string array holding a JSON document with the model identity
    (model, format version, dimension, symmetry, storage layout, value type,
    toppling variant, initial configuration, bounds-tracking scheme) and the
    state scalars (side, step, bounds reached, changed).
-   ``values``: the ``int64`` domain values, or
-   ``values_decimal``: the ``bigint`` domain values as decimal strings, so no
    pickling is ever needed to load a checkpoint.

Restoring distinguishes a payload that cannot be read
(:class:`CheckpointCorruptError`) from a readable checkpoint of another
model or shape (:class:`CheckpointMismatchError`).
"""

from __future__ import annotations

import io
import json
import os
import zipfile
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import numpy as np

from . import utils
from .config import ConfigurationError, SunflowerConfig, initial_configuration_from_dict
from .domain import BIGINT, INT64, SymmetricDomain, storage_layout
from .state import SunflowerState

MODEL = "sunflower"
FORMAT_VERSION = 1
BOUNDS_REACHED_BOOLEAN = "bounds_reached_boolean"

IDENTITY_FIELDS = (
    "model",
    "format_version",
    "dimension",
    "symmetry",
    "storage_layout",
    "value_type",
    "retain_share",
    "initial_configuration_type",
    "initial_configuration",
    "coordinate_bounds_type",
)
STATE_FIELDS = ("side", "step", "bounds_reached", "changed")


class CheckpointError(ValueError):
    """Base class for checkpoints that cannot be restored."""


class CheckpointCorruptError(CheckpointError):
    """The payload is not a readable checkpoint."""


class CheckpointMismatchError(CheckpointError):
    """The checkpoint is readable but belongs to another model or shape."""


def identity(state: SunflowerState) -> Dict[str, Any]:
    config = state.config
    return {
        "model": MODEL,
        "format_version": FORMAT_VERSION,
        "dimension": config.dimension,
        "symmetry": config.symmetry,
        "storage_layout": storage_layout(config.symmetry),
        "value_type": config.value_type,
        "retain_share": config.retain_share,
        "initial_configuration_type": config.initial.kind,
        "initial_configuration": config.initial.to_dict(),
        "coordinate_bounds_type": BOUNDS_REACHED_BOOLEAN,
    }


def save(state: SunflowerState) -> bytes:
    meta = identity(state)
    meta.update(
        side=state.domain.side,
        step=state.step,
        bounds_reached=state.bounds_reached,
        changed=state.changed,
    )
    arrays: Dict[str, np.ndarray] = {"meta": np.array(json.dumps(meta, sort_keys=True))}
    if state.config.value_type == BIGINT:
        arrays["values_decimal"] = np.array([str(int(v)) for v in state.domain.values])
    else:
        arrays["values"] = np.ascontiguousarray(state.domain.values, dtype=np.int64)
    buffer = io.BytesIO()
    np.savez_compressed(buffer, **arrays)
    return buffer.getvalue()


def load(payload: bytes, expected: Optional[Mapping[str, Any]] = None) -> SunflowerState:
    """
    Rebuilds the state saved by :func:`save`.

    ``expected`` maps identity fields (see ``IDENTITY_FIELDS``) to the values
    the caller requires, e.g. ``{"dimension": 2}``.
    """
    try:
        with np.load(io.BytesIO(payload), allow_pickle=False) as data:
            meta = json.loads(str(data["meta"][()]))
            if "values_decimal" in data.files:
                raw_values = data["values_decimal"]
            else:
                raw_values = data["values"]
    except (OSError, ValueError, KeyError, EOFError, zipfile.BadZipFile) as exc:
        raise CheckpointCorruptError(f"Unreadable checkpoint: {exc}") from exc
    if not isinstance(meta, dict):
        raise CheckpointCorruptError("Checkpoint metadata is not a JSON object")

    _check_identity(meta, expected)
    _check_state_fields(meta)

    try:
        initial = initial_configuration_from_dict(
            meta["initial_configuration_type"], meta["initial_configuration"]
        )
        config = SunflowerConfig(
            dimension=meta["dimension"],
            initial=initial,
            symmetry=meta["symmetry"],
            value_type=meta["value_type"],
            retain_share=meta["retain_share"],
        )
    except (ConfigurationError, TypeError) as exc:
        raise CheckpointCorruptError(f"Invalid checkpoint configuration: {exc}") from exc

    if config.value_type == BIGINT:
        if raw_values.dtype.kind != "U":
            raise CheckpointCorruptError("bigint checkpoint values must be decimal strings")
        try:
            values = np.array([int(v) for v in raw_values], dtype=object)
        except ValueError as exc:
            raise CheckpointCorruptError(f"Invalid bigint value: {exc}") from exc
    else:
        if raw_values.dtype != np.int64:
            raise CheckpointCorruptError(
                f"int64 checkpoint values have dtype {raw_values.dtype}"
            )
        values = raw_values

    try:
        domain = SymmetricDomain(
            config.dimension,
            meta["side"],
            config.symmetry,
            values,
            value_type=config.value_type,
        )
    except (TypeError, ValueError) as exc:
        raise CheckpointCorruptError(f"Invalid checkpoint domain: {exc}") from exc

    return SunflowerState(
        config=config,
        domain=domain,
        step=meta["step"],
        bounds_reached=meta["bounds_reached"],
        changed=meta["changed"],
    )


def _check_identity(meta: Dict[str, Any], expected: Optional[Mapping[str, Any]]) -> None:
    if meta.get("model") != MODEL:
        raise CheckpointMismatchError(
            f"The checkpoint contains a different model ({meta.get('model')!r})."
        )
    if meta.get("format_version") != FORMAT_VERSION:
        raise CheckpointMismatchError(
            f"Unsupported checkpoint format version {meta.get('format_version')!r}, "
            f"expected {FORMAT_VERSION}."
        )
    missing = [key for key in IDENTITY_FIELDS + STATE_FIELDS if key not in meta]
    if missing:
        raise CheckpointCorruptError(f"Checkpoint metadata is missing {missing}")
    if meta["coordinate_bounds_type"] != BOUNDS_REACHED_BOOLEAN:
        raise CheckpointMismatchError(
            f"Unsupported coordinate bounds type {meta['coordinate_bounds_type']!r}."
        )
    if meta["value_type"] not in (INT64, BIGINT):
        raise CheckpointMismatchError(f"Unsupported value type {meta['value_type']!r}.")
    try:
        layout = storage_layout(meta["symmetry"])
    except ValueError as exc:
        raise CheckpointMismatchError(str(exc)) from exc
    if meta["storage_layout"] != layout:
        raise CheckpointMismatchError(
            f"Storage layout {meta['storage_layout']!r} does not match "
            f"symmetry {meta['symmetry']!r}."
        )
    for key, value in (expected or {}).items():
        if key not in IDENTITY_FIELDS:
            raise KeyError(f"'{key}' is not a checkpoint identity field")
        if meta[key] != value:
            raise CheckpointMismatchError(
                f"The checkpoint's {key} is {meta[key]!r}, expected {value!r}."
            )


def _check_state_fields(meta: Dict[str, Any]) -> None:
    for key in ("side", "step"):
        value = meta[key]
        if isinstance(value, bool) or not isinstance(value, int):
            raise CheckpointCorruptError(f"Checkpoint {key} must be an integer, got {value!r}")
        if value < 0:
            raise CheckpointCorruptError(f"Checkpoint {key} cannot be negative, got {value}")
    if not isinstance(meta["bounds_reached"], bool):
        raise CheckpointCorruptError(
            f"Checkpoint bounds_reached must be a boolean, got {meta['bounds_reached']!r}"
        )
    if meta["changed"] is not None and not isinstance(meta["changed"], bool):
        raise CheckpointCorruptError(
            f"Checkpoint changed must be a boolean or null, got {meta['changed']!r}"
        )


def write_checkpoint(path: str | os.PathLike[str], state: SunflowerState) -> Path:
    return utils.atomic_write_bytes(path, save(state))


def read_checkpoint(
    path: str | os.PathLike[str], expected: Optional[Mapping[str, Any]] = None
) -> SunflowerState:
    return load(Path(path).read_bytes(), expected)


__all__ = [
    "CheckpointCorruptError",
    "CheckpointError",
    "CheckpointMismatchError",
    "IDENTITY_FIELDS",
    "identity",
    "load",
    "read_checkpoint",
    "save",
    "write_checkpoint",
]
