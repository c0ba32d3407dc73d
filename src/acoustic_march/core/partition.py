"""Slab decomposition of the node grid.

Operator and right-hand side assembly are per-node computations that only
look at a node and its face neighbours, so they can be evaluated slab by slab.
``SlabPartition`` splits the grid along x into contiguous slabs and hands out
halo-padded views: each view carries one ghost layer on every side that has a
neighbouring slab, filled from the global field at the time of the request.

Example:
    >>> part = SlabPartition(shape=(25, 25, 25), num_parts=4)
    >>> part.local_ranges(1)
    (range(7, 13), range(0, 25), range(0, 25))
"""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray

from acoustic_march.errors import ConfigurationError


@dataclass(frozen=True)
class HaloView:
    """Local slab of a field plus ghost layers.

    Attributes:
        data: Field values including ghost layers
        offset: Global x index of data[0]
        ranges: Owned (non-ghost) global index ranges
    """

    data: NDArray[np.floating]
    offset: int
    ranges: tuple[range, range, range]

    def owned(self) -> NDArray[np.floating]:
        """Values of the owned nodes only."""
        start = self.ranges[0].start - self.offset
        return self.data[start : start + len(self.ranges[0])]


class SlabPartition:
    """Split a (nx, ny, nz) grid into ``num_parts`` slabs along x.

    Args:
        shape: Global node counts
        num_parts: Number of slabs (1 = whole grid)

    Raises:
        ConfigurationError: If num_parts is less than 1 or greater than nx
    """

    def __init__(self, shape: tuple[int, int, int], num_parts: int = 1):
        nx = shape[0]
        if num_parts < 1 or num_parts > nx:
            raise ConfigurationError(
                f"num_parts must be between 1 and nx={nx}, got {num_parts}"
            )
        self.shape = tuple(shape)
        self.num_parts = num_parts

        # Spread the remainder over the first slabs
        base, extra = divmod(nx, num_parts)
        bounds = [0]
        for rank in range(num_parts):
            bounds.append(bounds[-1] + base + (1 if rank < extra else 0))
        self._bounds = bounds

    @property
    def ranks(self) -> range:
        return range(self.num_parts)

    def local_ranges(self, rank: int) -> tuple[range, range, range]:
        """Global index ranges owned by ``rank``."""
        _, ny, nz = self.shape
        return (range(self._bounds[rank], self._bounds[rank + 1]), range(ny), range(nz))

    def refresh_halo(self, field: NDArray[np.floating], rank: int) -> HaloView:
        """Fetch the slab owned by ``rank`` with one ghost layer per neighbour.

        Args:
            field: Global field of shape (nx, ny, nz)
            rank: Slab index

        Returns:
            HaloView with a copy of the owned nodes and their ghosts
        """
        if field.shape != self.shape:
            raise ValueError(f"Field shape {field.shape} doesn't match partition shape {self.shape}")
        xr = self.local_ranges(rank)[0]
        lo = max(xr.start - 1, 0)
        hi = min(xr.stop + 1, self.shape[0])
        return HaloView(data=field[lo:hi].copy(), offset=lo, ranges=self.local_ranges(rank))

    def gather(self, pieces: list[NDArray[np.floating]]) -> NDArray[np.floating]:
        """Join per-slab arrays of shape (len(xr), ny, nz) into a global field."""
        return np.concatenate(pieces, axis=0)

    def __repr__(self) -> str:
        return f"SlabPartition(shape={self.shape}, num_parts={self.num_parts})"
