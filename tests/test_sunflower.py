# tests/test_sunflower.py
import numpy as np
import pytest

from topple_sim import (
    BIGINT,
    HYPEROCTAHEDRAL,
    REFLECTIVE,
    RandomRegion,
    SingleSource,
    SunflowerConfig,
    SunflowerSimulator,
    ToppleOverflowError,
)
from topple_sim.config import INT64_MIN
from topple_sim.state import build_initial_state


def _reference_step(grid, background, divisor, retain_share):
    """One step on a plain dense lattice; cells beyond the array hold ``background``."""
    grid = np.pad(grid, 1, constant_values=background)
    padded = np.pad(grid, 1, constant_values=background)
    out = np.zeros_like(grid)
    for idx in np.ndindex(grid.shape):
        value = int(grid[idx])
        if abs(value) < divisor:
            out[idx] += value
            continue
        share = abs(value) // divisor
        if value < 0:
            share = -share
        keep = value - divisor * share + (share if retain_share else 0)
        for axis in range(grid.ndim):
            for direction in (1, -1):
                n = list(idx)
                n[axis] += direction
                if padded[tuple(c + 1 for c in n)] == value:
                    keep += share
                else:
                    out[tuple(n)] += share
        out[idx] += keep
    return out


def _embed(dense, radius, background):
    pad = radius - dense.shape[0] // 2
    return np.pad(dense, pad, constant_values=background)


def _assert_matches_reference(config, steps):
    sim = SunflowerSimulator(config)
    background = sim.background_value
    grid = sim.domain.to_dense()
    for _ in range(steps):
        sim.next_step()
        grid = _reference_step(grid, background, config.divisor, config.retain_share)
        dense = sim.domain.to_dense()
        radius = max(grid.shape[0], dense.shape[0]) // 2
        assert np.array_equal(
            _embed(grid, radius, background), _embed(dense, radius, background)
        ), f"step {sim.get_step()} differs"


def test_one_dimensional_trajectory():
    sim = SunflowerSimulator(SunflowerConfig(dimension=1, initial=SingleSource(10)))
    expected = [
        [3, 4, 3],
        [1, 2, 4, 2, 1],
        [1, 3, 2, 3, 1],
        [2, 1, 4, 1, 2],
        [2, 2, 2, 2, 2],
    ]
    for row in expected:
        assert sim.next_step() is True
        radius = len(row) // 2
        assert [sim.get_from_position((x,)) for x in range(-radius, radius + 1)] == row
    assert sim.get_from_canonical((0,)) == 2
    assert sim.get_from_position((7,)) == 0


def test_first_step_values():
    sim = SunflowerSimulator(SunflowerConfig(dimension=1, initial=SingleSource(10)))
    sim.next_step()
    assert sim.domain.get((0,)) == 4
    assert sim.domain.get((1,)) == 3
    assert sim.get_step() == 1


def test_growth_is_triggered_by_the_outer_cells():
    sim = SunflowerSimulator(SunflowerConfig(dimension=1, initial=SingleSource(10)))
    assert sim.side == 3
    sim.next_step()
    assert sim.side == 3
    assert not sim.state.bounds_reached
    sim.next_step()
    assert sim.state.bounds_reached
    assert sim.side == 3
    sim.next_step()
    assert sim.side == 4
    assert sim.get_from_position((3,)) == 0


def test_run_until_stable():
    sim = SunflowerSimulator(SunflowerConfig(dimension=1, initial=SingleSource(10)))
    assert sim.is_changed() is None
    executed = sim.run(100, until_stable=True)
    assert executed == 6
    assert sim.get_step() == 6
    assert sim.is_changed() is False
    assert sim.run(3) == 3
    assert sim.is_changed() is False


def test_small_values_never_topple():
    sim = SunflowerSimulator(SunflowerConfig(dimension=3, initial=SingleSource(6)))
    assert sim.next_step() is False
    assert sim.get_from_position((0, 0, 0)) == 6
    assert sim.side == 3


@pytest.mark.parametrize("dimension", [1, 2, 3, 4])
def test_total_is_conserved(dimension):
    sim = SunflowerSimulator(SunflowerConfig(dimension=dimension, initial=SingleSource(-5000)))
    for _ in range(12):
        sim.next_step()
        assert sim.domain.total() == -5000


@pytest.mark.parametrize(
    "config, steps",
    [
        (SunflowerConfig(dimension=1, initial=SingleSource(1000)), 25),
        (SunflowerConfig(dimension=2, initial=SingleSource(1000)), 12),
        (SunflowerConfig(dimension=2, initial=SingleSource(-777), symmetry=REFLECTIVE), 10),
        (SunflowerConfig(dimension=2, initial=SingleSource(500), retain_share=False), 10),
        (SunflowerConfig(dimension=2, initial=SingleSource(-300, background=7)), 6),
        (SunflowerConfig(dimension=2, initial=SingleSource(400, background=-20)), 6),
        (SunflowerConfig(dimension=3, initial=SingleSource(3000)), 6),
        (SunflowerConfig(dimension=3, initial=SingleSource(900), symmetry=REFLECTIVE), 5),
        (SunflowerConfig(dimension=2, initial=RandomRegion(side=3, seed=4)), 8),
        (
            SunflowerConfig(
                dimension=2, initial=RandomRegion(side=3, seed=9), symmetry=REFLECTIVE
            ),
            8,
        ),
    ],
)
def test_matches_dense_reference(config, steps):
    _assert_matches_reference(config, steps)


def test_symmetries_agree_on_symmetric_input():
    octa = SunflowerSimulator(SunflowerConfig(dimension=3, initial=SingleSource(2000)))
    refl = SunflowerSimulator(
        SunflowerConfig(dimension=3, initial=SingleSource(2000), symmetry=REFLECTIVE)
    )
    for _ in range(8):
        octa.next_step()
        refl.next_step()
        assert octa.side == refl.side
        assert np.array_equal(octa.domain.to_dense(), refl.domain.to_dense())


def test_bigint_matches_int64():
    small = SunflowerSimulator(SunflowerConfig(dimension=2, initial=SingleSource(12345)))
    big = SunflowerSimulator(
        SunflowerConfig(dimension=2, initial=SingleSource(12345), value_type=BIGINT)
    )
    for _ in range(10):
        assert small.next_step() == big.next_step()
    assert small.side == big.side
    assert [int(v) for v in small.domain.values] == list(big.domain.values)


def test_bigint_beyond_int64():
    value = 2**70 + 3
    sim = SunflowerSimulator(
        SunflowerConfig(dimension=2, initial=SingleSource(value), value_type=BIGINT)
    )
    for _ in range(4):
        sim.next_step()
    assert sim.domain.total() == value
    assert sim.get_from_position((0, 0)) > 2**64


def test_int64_min_overflows_and_keeps_the_state():
    sim = SunflowerSimulator(SunflowerConfig(dimension=2, initial=SingleSource(INT64_MIN)))
    before = sim.domain.copy()
    with pytest.raises(ToppleOverflowError):
        sim.next_step()
    assert sim.get_step() == 0
    assert sim.domain == before
    assert sim.is_changed() is None


def test_overflow_after_growth_keeps_the_grown_domain():
    config = SunflowerConfig(dimension=2, initial=SingleSource(INT64_MIN))
    state = build_initial_state(config)
    state.bounds_reached = True
    sim = SunflowerSimulator(state=state)
    before = sim.domain.to_dense()
    with pytest.raises(ToppleOverflowError):
        sim.next_step()
    assert sim.get_step() == 0
    assert sim.side == 4
    assert not sim.state.bounds_reached
    assert np.array_equal(sim.domain.to_dense()[1:-1, 1:-1], before)
    assert sim.get_from_position((3, -3)) == 0
    assert sim.get_from_position((0, 0)) == INT64_MIN


def test_random_region_is_reproducible():
    config = SunflowerConfig(dimension=2, initial=RandomRegion(side=4, min_value=-9, max_value=9, seed=3))
    first = SunflowerSimulator(config)
    second = SunflowerSimulator(config)
    assert first.domain == second.domain
    assert first.side == 6
    low, high = first.domain.min_max()
    assert -9 <= low and high <= 9
    assert first.get_from_position((4, 0)) == 0
    assert first.initial_value is None


def test_simulator_info():
    sim = SunflowerSimulator(
        SunflowerConfig(dimension=3, initial=SingleSource(77, background=-2))
    )
    assert sim.name == "Sunflower"
    assert sim.subfolder_path == "Sunflower/3D/77/-2"
    assert sim.dimension == 3
    assert sim.divisor == 7
    assert sim.background_value == -2
    assert sim.initial_value == 77
    assert sim.max_coordinate == 2
    assert sim.config.symmetry == HYPEROCTAHEDRAL
    random_sim = SunflowerSimulator(
        SunflowerConfig(dimension=2, initial=RandomRegion(side=2, min_value=-1, max_value=5, seed=8))
    )
    assert random_sim.subfolder_path == "Sunflower/2D/random/2_-1_5_8"


def test_steps_do_not_overlap():
    sim = SunflowerSimulator(SunflowerConfig(dimension=2))
    sim._step_lock.acquire()
    try:
        with pytest.raises(RuntimeError):
            sim.next_step()
    finally:
        sim._step_lock.release()
    assert sim.next_step() is True
