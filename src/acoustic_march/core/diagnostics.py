"""Periodic wavefield diagnostics."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

import numpy as np
from numpy.typing import NDArray

from .partition import SlabPartition


@dataclass(frozen=True)
class StepDiagnostics:
    """Summary of the wavefield after a diagnostic step.

    Attributes:
        step: 1-based step index
        num_steps: Total steps in the run
        time: Simulated time of the step, (step - 1) * dt
        max: Maximum of the solution
        min: Minimum of the solution
        norm: 2-norm of the solution
        elapsed: Wall-clock seconds since the loop started
        artifact: What the snapshot sink returned, if a snapshot was written
    """

    step: int
    num_steps: int
    time: float
    max: float
    min: float
    norm: float
    elapsed: float
    artifact: Any = None

    @property
    def is_finite(self) -> bool:
        return bool(np.isfinite(self.max) and np.isfinite(self.min) and np.isfinite(self.norm))


def reduce_field(
    u: NDArray[np.floating],
    partition: SlabPartition,
) -> tuple[float, float, float]:
    """Global (max, min, 2-norm) of a flat field, reduced slab by slab.

    Args:
        u: Flat field of length prod(partition.shape)
        partition: Slab decomposition

    Returns:
        Tuple (max, min, norm)
    """
    field = np.asarray(u).reshape(partition.shape)
    local_max = []
    local_min = []
    local_sumsq = []
    for rank in partition.ranks:
        xr = partition.local_ranges(rank)[0]
        block = field[xr.start : xr.stop]
        local_max.append(block.max())
        local_min.append(block.min())
        local_sumsq.append(np.sum(block * block))
    return float(max(local_max)), float(min(local_min)), float(np.sqrt(sum(local_sumsq)))
