"""Right-hand side of the implicit acoustic update.

For interior nodes the right-hand side folds three previous time levels and
the point source into one vector:

    b = dx dy dz (5 u[n-1] - 4 u[n-2] + u[n-3]) + dt^2 / rho * fx   (source node)

Boundary nodes get zero. The result has its mean removed before it is handed
to the solver (projection off the constant vector).
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray

from acoustic_march.errors import AssemblyFailure, ConfigurationError

from .grid import GridModel
from .history import WavefieldHistory
from .partition import SlabPartition

# Weights on u[n-1], u[n-2], u[n-3]
HISTORY_WEIGHTS = (5.0, -4.0, 1.0)


def remove_constant_component(b: NDArray[np.float64]) -> NDArray[np.float64]:
    """Project ``b`` off the constant vector (subtract its mean).

    Projecting an already zero-mean vector returns it unchanged.
    """
    b = np.asarray(b, dtype=np.float64)
    return b - b.mean()


class RHSBuilder:
    """Build the per-step right-hand side vector.

    Args:
        grid: Grid with material set
        dt: Timestep in seconds
        source_location: Node (i, j, k) receiving the source force
        partition: Slab decomposition used for assembly (default: one slab)
        project_mean: Remove the constant component after assembly

    Example:
        >>> builder = RHSBuilder(grid, dt, source_location=(12, 12, 12))
        >>> b = builder.build(history, force=source.evaluate(step, dt))
    """

    def __init__(
        self,
        grid: GridModel,
        dt: float,
        source_location: tuple[int, int, int],
        partition: SlabPartition | None = None,
        project_mean: bool = True,
    ):
        self.grid = grid
        self.dt = float(dt)
        self.source_location = tuple(int(v) for v in source_location)
        if not grid.contains(*self.source_location):
            raise ConfigurationError(
                f"Source location {self.source_location} is outside grid of shape {grid.shape}"
            )
        self.partition = partition or SlabPartition(grid.shape, 1)
        self.project_mean = project_mean
        self._interior = ~grid.boundary_mask()

    def build(
        self,
        history: WavefieldHistory,
        force: tuple[float, float, float],
    ) -> NDArray[np.float64]:
        """Assemble b for the next solve.

        Args:
            history: Wavefield history; levels n-1, n-2, n-3 are read
            force: Source components (fx, fy, fz) for this step

        Returns:
            Flat right-hand side vector of length num_nodes
        """
        grid = self.grid
        if history.size != grid.num_nodes:
            raise AssemblyFailure(
                f"History length {history.size} doesn't match grid size {grid.num_nodes}"
            )
        density = grid.require_material().density
        w1, w2, w3 = HISTORY_WEIGHTS

        u1 = history.previous.reshape(grid.shape)
        u2 = history.previous2.reshape(grid.shape)
        u3 = history.previous3.reshape(grid.shape)

        pieces = []
        for rank in self.partition.ranks:
            xr = self.partition.local_ranges(rank)[0]
            h1 = self.partition.refresh_halo(u1, rank).owned()
            h2 = self.partition.refresh_halo(u2, rank).owned()
            h3 = self.partition.refresh_halo(u3, rank).owned()
            piece = grid.cell_volume * (w1 * h1 + w2 * h2 + w3 * h3)
            piece[~self._interior[xr.start : xr.stop]] = 0.0
            pieces.append(piece)

        b = self.partition.gather(pieces)

        i, j, k = self.source_location
        if not grid.is_boundary(i, j, k):
            fx = force[0]
            b[i, j, k] += self.dt**2 / density[i, j, k] * fx

        b = b.ravel()
        if not np.all(np.isfinite(b)):
            raise AssemblyFailure("Right-hand side contains non-finite values")

        if self.project_mean:
            b = remove_constant_component(b)
        return b
