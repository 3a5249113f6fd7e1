"""
Distribution entity: one named, decaying label → count mapping.

A ``Distribution`` is loaded on demand from the store (see
:func:`forget_spine.store.adapter.fill`), decayed in memory, and written back
only through the update pipeline. It is never cached across requests.

Stored layout (one hash per distribution name)::

    <label>  integer count
    _Z       total mass, recomputed on every load
    _T       unix seconds of the last decay
    _R       decay-rate override, written only out-of-band

Invariant:
    ``total == sum(data.values())`` immediately after any load or decay.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from forget_spine.decay import decay

TOTAL_KEY = "_Z"
UPDATED_KEY = "_T"
RATE_KEY = "_R"

RESERVED_KEYS = frozenset({TOTAL_KEY, UPDATED_KEY, RATE_KEY})


def is_reserved(key: str) -> bool:
    """True for metadata keys that can never be data labels."""
    return key in RESERVED_KEYS


@dataclass
class Distribution:
    """In-memory state of one distribution.

    Attributes:
        name: Unique identifier, also the store key.
        data: Label → non-negative count.
        total: Sum of ``data`` values (``Z``).
        last_update: Unix seconds of the last decay, ``None`` if never decayed.
        rate: Decay rate in ``(0, 1]``; the stored override or the default.
        revision: Raw ``(_Z, _T)`` values seen in the store when loaded.
            ``persist`` refuses to overwrite a record whose values moved on.
    """

    name: str
    data: dict[str, int] = field(default_factory=dict)
    total: int = 0
    last_update: int | None = None
    rate: float = 0.5
    revision: tuple[str | None, str | None] = (None, None)

    def recompute_total(self) -> int:
        self.total = sum(self.data.values())
        return self.total

    def decay(self, now: int, *, interval: float = 1.0) -> None:
        """Decay every field in place and stamp ``last_update = now``."""
        for label, count in self.data.items():
            self.data[label], _ = decay(
                count, self.total, self.last_update, self.rate, now, interval=interval
            )
        self.recompute_total()
        self.last_update = now

    def probability(self, label: str) -> float:
        """``count / total`` for ``label``; 0 for an empty distribution."""
        if self.total == 0:
            return 0.0
        return self.data.get(label, 0) / self.total

    def copy(self) -> Distribution:
        return Distribution(
            name=self.name,
            data=dict(self.data),
            total=self.total,
            last_update=self.last_update,
            rate=self.rate,
            revision=self.revision,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialise the public snapshot ``{distribution, Z, data, rate}``."""
        return {
            "distribution": self.name,
            "Z": self.total,
            "data": dict(self.data),
            "rate": self.rate,
        }


__all__ = [
    "Distribution",
    "RATE_KEY",
    "RESERVED_KEYS",
    "TOTAL_KEY",
    "UPDATED_KEY",
    "is_reserved",
]
