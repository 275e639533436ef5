"""
Dice Reach - reach.py

Decides whether a multiset of numbers can be combined into a target.

Any two remaining values a, b may be replaced by one of
    a+b, a-b, b-a, a*b, a/b (b != 0), b/a (a != 0)
until a single value is left. The target is reached if that value is within
EPSILON of it.

Results are cached twice: a per-call memo dict that lives for one top-level
decision, and an optional ResultStore shared by the whole run (and saved to
disk by the caller). The search reads and inserts into the store but never
loads or saves it.
"""

from __future__ import annotations
from numbers import Real
from typing import Dict, Iterable, Optional, Sequence, Tuple
import math

from cache_key import CacheKeyEncoder, DEFAULT_ENCODER
from result_store import ResultStore

EPSILON = 1e-9


class InvalidInputError(ValueError):
    """Raised for queries that cannot be searched (empty, NaN, inf...)."""


# ============================================================================ #
#                              VALIDATION                                      #
# ============================================================================ #

def _check_values(values: Iterable[float]) -> Tuple[float, ...]:
    checked = []
    for v in values:
        if isinstance(v, bool) or not isinstance(v, Real):
            raise InvalidInputError(f"value {v!r} is not a number")
        if not math.isfinite(v):
            raise InvalidInputError(f"value {v!r} is not finite")
        checked.append(v)
    if not checked:
        raise InvalidInputError("cannot search an empty multiset")
    return tuple(sorted(checked))


def _check_target(target) -> int:
    if isinstance(target, bool) or not isinstance(target, Real):
        raise InvalidInputError(f"target {target!r} is not a number")
    if not math.isfinite(target):
        raise InvalidInputError(f"target {target!r} is not finite")
    if target != int(target):
        raise InvalidInputError(f"target {target!r} is not an integer")
    return int(target)


# ============================================================================ #
#                              SEARCH                                          #
# ============================================================================ #

def candidate_values(a: float, b: float) -> Iterable[float]:
    """Every value the ordered pair (a, b) can collapse into."""
    yield a + b
    yield a - b
    yield b - a
    yield a * b
    if b != 0:
        yield a / b
    if a != 0:
        yield b / a


def _record(key: str, result: bool, memo: Dict[str, bool], store: Optional[ResultStore]) -> bool:
    memo[key] = result
    if store is not None:
        store.set(key, result)
    return result


def search(
    values: Tuple[float, ...],
    target: int,
    memo: Dict[str, bool],
    store: Optional[ResultStore] = None,
    encoder: CacheKeyEncoder = DEFAULT_ENCODER,
) -> bool:
    """Recursive core. ``values`` must be a non-empty ascending tuple."""
    key = encoder.encode_sorted(values, target)

    if store is not None:
        cached = store.get(key)
        if cached is not None:
            return cached
    if key in memo:
        return memo[key]

    n = len(values)
    if n == 1:
        return _record(key, abs(values[0] - target) < EPSILON, memo, store)

    # Ordered pairs: subtraction and division are not commutative
    for i in range(n):
        for j in range(n):
            if i == j:
                continue
            a, b = values[i], values[j]
            rest = [values[k] for k in range(n) if k != i and k != j]
            for v in candidate_values(a, b):
                if search(tuple(sorted(rest + [v])), target, memo, store, encoder):
                    return _record(key, True, memo, store)

    return _record(key, False, memo, store)


def can_reach(
    values: Sequence[float],
    target: int,
    store: Optional[ResultStore] = None,
    encoder: CacheKeyEncoder = DEFAULT_ENCODER,
) -> bool:
    """True if ``values`` can be reduced to ``target``.

    Raises InvalidInputError before searching if the multiset is empty, a
    value is not a finite number, or the target is not a finite integer.
    """
    ordered = _check_values(values)
    goal = _check_target(target)
    memo: Dict[str, bool] = {}
    return search(ordered, goal, memo, store, encoder)


def reach_any(
    values: Sequence[float],
    targets: Iterable[int],
    store: Optional[ResultStore] = None,
    encoder: CacheKeyEncoder = DEFAULT_ENCODER,
) -> bool:
    """True if at least one of ``targets`` is reachable. Stops at the first hit."""
    for target in targets:
        if can_reach(values, target, store, encoder):
            return True
    return False
