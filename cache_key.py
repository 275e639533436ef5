"""
Dice Reach - cache_key.py

Canonical cache keys for (multiset, target) pairs.

Values are sorted numerically (so [10, 2] and [2, 10] agree, and 10 never
sorts before 2), formatted deterministically, then joined:  "1,2,3|6"

Integral values print as ints, so a rolled 2 and 6/3 share a key. Anything
else uses repr(), the shortest text that round-trips to the same float, so
two different values never share a key. The cost is that 0.1+0.2 and 0.3
get separate entries.
"""

from __future__ import annotations
from typing import Iterable, Optional, Sequence

VALUE_SEP = ','
TARGET_SEP = '|'


class CacheKeyEncoder:
    """Turns a multiset and a target into an order-independent string key.

    ``precision=None`` (the default) is lossless. A positive precision
    formats non-integral values with ``%.<precision>g`` instead, which merges
    near-equal values and can return a wrong cached answer for one of them.
    """

    def __init__(self, precision: Optional[int] = None) -> None:
        if precision is not None and precision < 1:
            raise ValueError(f"precision must be positive, got {precision}")
        self.precision = precision
        self._fmt = f"%.{precision}g" if precision is not None else None

    def format_value(self, value: float) -> str:
        if isinstance(value, int):
            return '%d' % value
        # -0.0 and 0.0 must not split the cache
        v = value + 0.0
        if v.is_integer():
            return '%d' % v
        if self._fmt is None:
            return repr(v)
        return self._fmt % v

    def encode_sorted(self, values: Sequence[float], target: int) -> str:
        """Encode values that are already in ascending order."""
        body = VALUE_SEP.join(self.format_value(v) for v in values)
        return f"{body}{TARGET_SEP}{int(target)}"

    def encode(self, values: Iterable[float], target: int) -> str:
        return self.encode_sorted(sorted(values), target)


DEFAULT_ENCODER = CacheKeyEncoder()


def encode_key(values: Iterable[float], target: int) -> str:
    return DEFAULT_ENCODER.encode(values, target)
