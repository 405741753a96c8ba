#!/usr/bin/env python3
"""
Sunflower Simulation Runner

Runs a symmetric Sunflower toppling simulation for a number of steps, backing
it up periodically, or resumes one from a backup file.
"""

import argparse
import sys
import time
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from topple_sim import (
    BIGINT,
    HYPEROCTAHEDRAL,
    INT64,
    REFLECTIVE,
    RandomRegion,
    SingleSource,
    SunflowerConfig,
    SunflowerSimulator,
    utils,
)


def build_config(args: argparse.Namespace, file_cfg: Dict[str, Any]) -> SunflowerConfig:
    """Command-line values, overridden by the parameter file where it sets them."""
    if file_cfg.get("random_side", args.random_side) is not None:
        initial = RandomRegion(
            side=file_cfg.get("random_side", args.random_side),
            min_value=file_cfg.get("min_value", args.min_value),
            max_value=file_cfg.get("max_value", args.max_value),
            seed=file_cfg.get("seed", args.seed),
        )
    else:
        initial = SingleSource(
            value=file_cfg.get("value", args.value),
            background=file_cfg.get("background", args.background),
        )
    big_int = file_cfg.get("big_int", args.big_int)
    return SunflowerConfig(
        dimension=file_cfg.get("dimension", args.dimension),
        initial=initial,
        symmetry=file_cfg.get("symmetry", args.symmetry),
        value_type=BIGINT if big_int else INT64,
        retain_share=not file_cfg.get("no_retain_share", args.no_retain_share),
    )


def backup_path(backup_dir: Path, simulator: SunflowerSimulator) -> Path:
    return backup_dir / simulator.subfolder_path / f"step_{simulator.get_step()}.npz"


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Run a Sunflower toppling simulation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--params", help="Optional JSON/TOML parameter file")
    parser.add_argument("--dimension", type=int, default=2, help="Lattice dimension (default: 2)")
    parser.add_argument("--value", type=int, default=1000, help="Value at the origin (default: 1000)")
    parser.add_argument("--background", type=int, default=0, help="Value of every other cell (default: 0)")
    parser.add_argument(
        "--random-side",
        type=int,
        default=None,
        help="Start from random values on a region of this side instead of a single source",
    )
    parser.add_argument("--min-value", type=int, default=-100, help="Random region minimum (default: -100)")
    parser.add_argument("--max-value", type=int, default=100, help="Random region maximum (default: 100)")
    parser.add_argument("--seed", type=int, default=None, help="Random region seed")
    parser.add_argument(
        "--symmetry",
        choices=[HYPEROCTAHEDRAL, REFLECTIVE],
        default=HYPEROCTAHEDRAL,
        help="Symmetry used to fold the lattice (default: hyperoctahedral)",
    )
    parser.add_argument("--big-int", action="store_true", help="Use arbitrary precision values")
    parser.add_argument(
        "--no-retain-share",
        action="store_true",
        help="Give the whole share away (divisor 2D instead of 2D+1)",
    )
    parser.add_argument("--steps", type=int, default=100, help="Number of steps to run (default: 100)")
    parser.add_argument("--until-stable", action="store_true", help="Stop at the first step that changes nothing")
    parser.add_argument(
        "--backup-every",
        type=int,
        default=0,
        help="Write a backup every this many steps (default: 0, only at the end)",
    )
    parser.add_argument("--backup-dir", default="results", help="Backup root directory (default: results)")
    parser.add_argument("--restore", default=None, help="Resume from this backup file")
    args = parser.parse_args(argv)

    file_cfg: Dict[str, Any] = {}
    if args.params:
        file_cfg = utils.load_params(args.params)

    if args.restore:
        simulator = SunflowerSimulator.restore(args.restore)
        print(f"Restored {args.restore} at step {simulator.get_step()}")
    else:
        simulator = SunflowerSimulator(build_config(args, file_cfg))

    steps = file_cfg.get("steps", args.steps)
    backup_every = file_cfg.get("backup_every", args.backup_every)
    until_stable = file_cfg.get("until_stable", args.until_stable)
    backup_dir = Path(file_cfg.get("backup_dir", args.backup_dir))

    print(
        f"Running {simulator.name} {simulator.dimension}D ({simulator.config.symmetry}, "
        f"{simulator.config.value_type}): steps={steps}, start step={simulator.get_step()}"
    )
    start_time = time.time()

    executed = 0
    while executed < steps:
        chunk = steps - executed
        if backup_every > 0:
            chunk = min(chunk, backup_every)
        done = simulator.run(chunk, until_stable=until_stable)
        executed += done
        if backup_every > 0 and executed < steps and done == chunk:
            path = simulator.back_up(backup_path(backup_dir, simulator))
            print(f"  step {simulator.get_step()}: side={simulator.side}, backup {path}")
        if done < chunk:
            break

    elapsed_time = time.time() - start_time
    low, high = simulator.domain.min_max()
    print(
        f"Finished at step {simulator.get_step()} in {elapsed_time:.2f}s: "
        f"side={simulator.side}, min={low}, max={high}, changed={simulator.is_changed()}"
    )

    path = simulator.back_up(backup_path(backup_dir, simulator))
    print(f"✅ Backup saved to {path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
