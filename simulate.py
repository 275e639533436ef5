#!/usr/bin/env python3
"""
Dice Reach - simulate.py

Estimates how often a roll of x six-sided dice can be combined with
+ - * / into at least one number from a target set.

For every dice count in [x_min, x_max] and every target set, rolls `trials`
times and asks reach.can_reach about each target until one succeeds. All
results go into one ResultStore that is loaded from disk at the start and
merged back at the end, so later runs get faster.

Usage:
    python simulate.py                          # 1-10 dice, all 9 target sets
    python simulate.py --x-max 5 --target-sets 3
    python simulate.py --trials 5000 --seed 42  # reproducible
    python simulate.py --workers 4              # spread cells over processes
    python simulate.py --no-cache               # don't read or write the cache
"""

from __future__ import annotations
from dataclasses import dataclass
from itertools import islice
from multiprocessing import Pool, cpu_count
from typing import Dict, List, Optional, Sequence, Tuple
from tqdm import tqdm
import argparse
import random

from reach import reach_any
from result_store import (
    ResultStore, load_store, save_store,
    STREAM_THRESHOLD, GREEN, YELLOW, RESET,
)

# ============================================================================ #
#                              CONFIGURATION                                   #
# ============================================================================ #

DEFAULT_TRIALS = 1000
DEFAULT_X_MIN = 1
DEFAULT_X_MAX = 10
DEFAULT_TARGET_SETS = 9
DICE_SIDES = 6

DEFAULT_CACHE_PATH = ".cache_reach.json.gz"

ALL_TARGETS: List[Tuple[int, ...]] = [
    (3, 5, 7),
    (11, 13, 17),
    (19, 23, 29),
    (31, 37, 41),
    (43, 47, 53),
    (59, 61, 67),
    (71, 73, 79),
    (83, 89, 97),
    (101, 103, 107),
]


# ============================================================================ #
#                              HELPERS                                         #
# ============================================================================ #

def progress(iterable, desc="", total=None):
    return tqdm(iterable, desc=desc, total=total, ascii=" ▖▘▝▗▚▞█",
                bar_format='{desc}: |{bar:20}| {n_fmt}/{total_fmt}')


def roll_dice(count: int, rng: random.Random) -> List[int]:
    return [rng.randint(1, DICE_SIDES) for _ in range(count)]


def select_target_sets(num_target_sets: int) -> List[Tuple[int, ...]]:
    if not 1 <= num_target_sets <= len(ALL_TARGETS):
        raise ValueError(f"target sets must be between 1 and {len(ALL_TARGETS)}, got {num_target_sets}")
    return ALL_TARGETS[:num_target_sets]


def format_targets(targets: Sequence[int]) -> str:
    return f"[{', '.join(str(t) for t in targets)}]"


# ============================================================================ #
#                              SIMULATION                                      #
# ============================================================================ #

@dataclass
class CellResult:
    dice: int
    targets: Tuple[int, ...]
    successes: int
    trials: int

    @property
    def probability(self) -> float:
        """Success rate as a percentage."""
        return self.successes / self.trials * 100 if self.trials else 0.0


def run_cell(dice: int, targets: Sequence[int], trials: int,
             rng: random.Random, store: Optional[ResultStore] = None) -> CellResult:
    """Roll `dice` dice `trials` times and count rolls that reach any target."""
    successes = 0
    for _ in range(trials):
        rolls = roll_dice(dice, rng)
        if reach_any(rolls, targets, store):
            successes += 1
    return CellResult(dice=dice, targets=tuple(targets), successes=successes, trials=trials)


# Per-process store for pool workers. Each worker starts from a copy of the
# loaded cache and hands back only the keys it added; the parent merges them.
_worker_store: Optional[ResultStore] = None


def _init_worker(entries: Dict[str, bool]):
    global _worker_store
    _worker_store = ResultStore(entries)


def _run_cell_worker(args: Tuple[int, Tuple[int, ...], int, int]) -> Tuple[CellResult, Dict[str, bool]]:
    """Worker function to simulate one (dice, targets) cell."""
    dice, targets, trials, seed = args
    before = len(_worker_store)
    result = run_cell(dice, targets, trials, random.Random(seed), _worker_store)
    # search only ever inserts new keys, so they sit at the end of the dict
    added = dict(islice(_worker_store.items(), before, None))
    return result, added


def _plan_cells(trials: int, x_min: int, x_max: int, num_target_sets: int,
                seed: Optional[int]) -> List[Tuple[int, Tuple[int, ...], int, int]]:
    rng = random.Random(seed)
    targets_list = select_target_sets(num_target_sets)
    return [
        (dice, targets, trials, rng.randrange(2 ** 32))
        for dice in range(x_min, x_max + 1)
        for targets in targets_list
    ]


def simulate(
    trials: int = DEFAULT_TRIALS,
    x_min: int = DEFAULT_X_MIN,
    x_max: int = DEFAULT_X_MAX,
    num_target_sets: int = DEFAULT_TARGET_SETS,
    store: Optional[ResultStore] = None,
    seed: Optional[int] = None,
    workers: int = 1,
) -> List[CellResult]:
    """
    Run the full (dice count x target set) grid.

    Every cell draws from its own generator seeded from `seed`, so the same
    seed gives the same numbers whether the grid runs serially or on a pool.
    With workers > 1 the new cache entries from each worker are merged into
    `store` as cells finish.
    """
    if trials < 1:
        raise ValueError(f"trials must be positive, got {trials}")
    if x_min < 1 or x_max < x_min:
        raise ValueError(f"invalid dice range {x_min}-{x_max}")
    if store is None:
        store = ResultStore()

    cells = _plan_cells(trials, x_min, x_max, num_target_sets, seed)

    if workers <= 1:
        return [
            run_cell(dice, targets, n, random.Random(cell_seed), store)
            for dice, targets, n, cell_seed in progress(cells, "Simulating")
        ]

    results = []
    with Pool(workers, initializer=_init_worker, initargs=(store.to_dict(),)) as pool:
        for result, added in progress(pool.imap(_run_cell_worker, cells), "Simulating", total=len(cells)):
            store.update(added)
            results.append(result)
    return results


# ============================================================================ #
#                              DISPLAY                                         #
# ============================================================================ #

def format_table(results: Sequence[CellResult], trials: int, x_min: int, x_max: int,
                 num_target_sets: int) -> str:
    """Render results as a Markdown report, one row per dice count."""
    targets_list = select_target_sets(num_target_sets)
    by_cell = {(r.dice, r.targets): r for r in results}

    lines = [
        "### Dice Arithmetic Success Probabilities",
        f"Trials per combination: **{trials}**",
        f"Dice tested: **{x_min}-{x_max}d{DICE_SIDES}**",
        f"Target sets used: **{num_target_sets}**",
        "",
    ]

    headers = ["x \\ Targets"] + [format_targets(t) for t in targets_list]
    lines.append(f"| {' | '.join(headers)} |")
    lines.append(f"| {' | '.join('---' for _ in headers)} |")

    for dice in range(x_min, x_max + 1):
        row = [f"**{dice}d{DICE_SIDES}**"]
        for targets in targets_list:
            entry = by_cell.get((dice, tuple(targets)))
            row.append(f"{entry.probability:.1f}%" if entry else "-")
        lines.append(f"| {' | '.join(row)} |")

    return '\n'.join(lines)


# ============================================================================ #
#                              MAIN                                            #
# ============================================================================ #

def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Dice arithmetic success probability simulator")
    parser.add_argument('--trials', type=int, default=DEFAULT_TRIALS,
                        help=f'Rolls per (dice, target set) combination (default: {DEFAULT_TRIALS})')
    parser.add_argument('--x-min', type=int, default=DEFAULT_X_MIN,
                        help=f'Lowest number of dice (default: {DEFAULT_X_MIN})')
    parser.add_argument('--x-max', type=int, default=DEFAULT_X_MAX,
                        help=f'Highest number of dice (default: {DEFAULT_X_MAX})')
    parser.add_argument('--target-sets', type=int, default=DEFAULT_TARGET_SETS,
                        help=f'How many target sets to use, from the top (default: {DEFAULT_TARGET_SETS})')
    parser.add_argument('--seed', type=int, default=None,
                        help='Random seed for reproducibility')
    parser.add_argument('--cache', default=DEFAULT_CACHE_PATH,
                        help=f'Path of the persistent result cache (default: {DEFAULT_CACHE_PATH})')
    parser.add_argument('--no-cache', action='store_true',
                        help="Don't load or save the persistent cache")
    parser.add_argument('--stream-threshold', type=int, default=STREAM_THRESHOLD,
                        help=f'Entry count at which the cache is streamed to disk (default: {STREAM_THRESHOLD})')
    parser.add_argument('--workers', type=int, default=1,
                        help=f'Worker processes (default: 1, this machine has {cpu_count()})')
    args = parser.parse_args(argv)

    if args.trials < 1:
        parser.error("--trials must be positive")
    if args.x_min < 1 or args.x_max < args.x_min:
        parser.error("--x-min must be >= 1 and <= --x-max")
    if not 1 <= args.target_sets <= len(ALL_TARGETS):
        parser.error(f"--target-sets must be between 1 and {len(ALL_TARGETS)}")
    if args.stream_threshold < 1:
        parser.error("--stream-threshold must be positive")
    if args.workers < 1:
        parser.error("--workers must be at least 1")
    return args


def main(argv=None):
    args = parse_args(argv)

    store = ResultStore() if args.no_cache else load_store(args.cache)
    cached_before = len(store)

    print(f"\nSimulating {args.x_min}-{args.x_max}d{DICE_SIDES} against {args.target_sets} target set(s), "
          f"{args.trials} trials each")
    results = simulate(
        trials=args.trials,
        x_min=args.x_min,
        x_max=args.x_max,
        num_target_sets=args.target_sets,
        store=store,
        seed=args.seed,
        workers=args.workers,
    )

    print()
    print(format_table(results, args.trials, args.x_min, args.x_max, args.target_sets))
    print(f"\nCache: {cached_before:,} -> {len(store):,} entries")

    if not args.no_cache:
        outcome = save_store(args.cache, store, stream_threshold=args.stream_threshold)
        if not outcome.saved:
            print(f"{YELLOW}Results above are complete; only the cache for future runs was lost.{RESET}")

    print(f"\n{GREEN}Simulation complete.{RESET}\n")


if __name__ == "__main__":
    main()
