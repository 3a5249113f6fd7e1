"""
forget-spine: named frequency distributions that forget the past.

Counts live in Redis hashes and decay exponentially with wall-clock time.
Requests are answered from a synchronously decayed view; a background
update pipeline writes the decayed state back.
"""

__version__ = "0.1.0"

from forget_spine.decay import decay
from forget_spine.distribution import Distribution
from forget_spine.pipeline import Job, OverflowPolicy, UpdatePipeline
from forget_spine.service import DistributionService, FieldSnapshot

__all__ = [
    "Distribution",
    "DistributionService",
    "FieldSnapshot",
    "Job",
    "OverflowPolicy",
    "UpdatePipeline",
    "decay",
]
