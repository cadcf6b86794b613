# matrix.py
from __future__ import annotations

from typing import Iterable, List, Optional

from .model import Job, JobInstance


def expand(job: Job, axis_values: Optional[Iterable[str]] = None) -> List[JobInstance]:
    """
    One JobInstance per axis value; no axis (or an empty one) gives a single
    instance without an environment binding.

    Instances share the static Job (steps, needs) but nothing mutable.
    """
    values = list(job.matrix or []) if axis_values is None else list(axis_values)
    if not values:
        return [JobInstance(job=job)]

    if len(set(values)) != len(values):
        raise ValueError(f"Job '{job.name}' has duplicate matrix values: {values}")

    return [JobInstance(job=job, environment=v) for v in values]
