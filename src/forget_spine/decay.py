"""
Decay transform: exponential forgetting of counts over wall-clock time.

A distribution's counts shrink toward zero as time passes since its last
decay. Every field of a distribution is scaled by the same factor, so the
implied probabilities ``count / total`` are preserved when no new mass
arrives.

Law:
    ::

        steps  = max(now - last_update, 0) / interval
        factor = rate ** steps
        new    = floor(value * factor + 0.5)        # round half up

    ``interval`` is the number of seconds per decay step (one by default),
    ``rate`` the fraction of mass retained per step.

Properties:
    - identity when ``now == last_update``, when ``last_update`` is unset
      (``None`` or ``0``) and when the clock went backwards
    - ``new_count <= count`` and ``new_total <= total``
    - results are non-negative integers

Rounding:
    Half up: ``floor(value * factor + 0.5)``.

Examples:
    >>> decay(10, 10, last_update=100, rate=0.5, now=101)
    (5, 5)
    >>> decay(10, 10, last_update=100, rate=0.5, now=100)
    (10, 10)
"""

from __future__ import annotations

import math
import time


def unix_now() -> int:
    """Current wall-clock time in whole unix seconds."""
    return int(time.time())


def round_half_up(value: float) -> int:
    """Round a non-negative float to the nearest integer, ties upward."""
    return int(math.floor(value + 0.5))


def elapsed_seconds(last_update: int | None, now: int) -> int:
    """Seconds since ``last_update``; zero when unset or in the future."""
    if not last_update:
        return 0
    return max(now - last_update, 0)


def decay_factor(elapsed: float, rate: float, interval: float = 1.0) -> float:
    """Multiplier applied to every count after ``elapsed`` seconds."""
    if not 0 < rate <= 1:
        raise ValueError(f"rate must be in (0, 1], got {rate!r}")
    if interval <= 0:
        raise ValueError(f"interval must be positive, got {interval!r}")
    if elapsed <= 0 or rate == 1:
        return 1.0
    return rate ** (elapsed / interval)


def decay(
    count: int,
    total: int,
    last_update: int | None,
    rate: float,
    now: int,
    *,
    interval: float = 1.0,
) -> tuple[int, int]:
    """Decay one ``count`` and its distribution ``total``.

    Callers decaying a whole distribution recompute the total as the sum of
    the decayed counts instead of trusting the returned ``new_total``.

    Args:
        count: Raw count for a single field.
        total: Raw total mass of the distribution.
        last_update: Unix seconds of the previous decay, ``None``/``0`` if never.
        rate: Retention per decay step, in ``(0, 1]``.
        now: Current unix seconds.
        interval: Seconds per decay step.

    Returns:
        ``(new_count, new_total)``
    """
    factor = decay_factor(elapsed_seconds(last_update, now), rate, interval)
    if factor == 1.0:
        return count, total
    return round_half_up(max(count, 0) * factor), round_half_up(max(total, 0) * factor)


__all__ = ["decay", "decay_factor", "elapsed_seconds", "round_half_up", "unix_now"]
