"""Sparse 7-point operator for the implicit acoustic update.

Each grid node contributes one matrix row. With ``s = c * dt^2 / rho``
evaluated at the row node and face ratios ``rx = dy*dz/dx``,
``ry = dx*dz/dy``, ``rz = dx*dy/dz``:

    boundary node:  A[p, p] = 1                       (Dirichlet zero)
    interior node:  A[p, p] = 2 s (rx + ry + rz) + 2 dx dy dz
                    A[p, q] = -s r_axis               for each face neighbour q

A neighbour only couples when its index m on the varying axis satisfies
``0 < m < n - 1``, i.e. the neighbour itself is not a boundary node.

The matrix depends on spacing, material and dt only, so it is assembled once
and cached. Assembly is done slab by slab over a ``SlabPartition``.
"""

from __future__ import annotations

import numpy as np
from numpy.typing import NDArray
from scipy import sparse

from acoustic_march.errors import AssemblyFailure, ConfigurationError

from .grid import MIN_NODES_PER_AXIS, GridModel
from .partition import SlabPartition

# (axis, step) for the six face neighbours
STENCIL_OFFSETS: tuple[tuple[int, int], ...] = (
    (0, -1),
    (0, +1),
    (1, -1),
    (1, +1),
    (2, -1),
    (2, +1),
)


class OperatorBuilder:
    """Assemble and cache the stencil matrix for a grid and timestep.

    Args:
        grid: Grid with material set
        dt: Timestep in seconds
        partition: Slab decomposition used for assembly (default: one slab)

    Example:
        >>> builder = OperatorBuilder(grid, dt=grid.stable_timestep())
        >>> A = builder.operator        # assembled on first access
        >>> A is builder.operator       # reused afterwards
        True
    """

    def __init__(
        self,
        grid: GridModel,
        dt: float,
        partition: SlabPartition | None = None,
    ):
        self.grid = grid
        self.partition = partition or SlabPartition(grid.shape, 1)
        if self.partition.shape != grid.shape:
            raise ConfigurationError(
                f"Partition shape {self.partition.shape} doesn't match grid shape {grid.shape}"
            )
        self._dt = self._check_dt(dt)
        self._operator: sparse.csr_matrix | None = None
        self._built_for = None

    @staticmethod
    def _check_dt(dt: float) -> float:
        dt = float(dt)
        if not np.isfinite(dt) or dt <= 0:
            raise ConfigurationError(f"Timestep must be positive, got {dt}")
        return dt

    @property
    def dt(self) -> float:
        return self._dt

    def set_timestep(self, dt: float) -> None:
        """Change the timestep; the operator is rebuilt on next access."""
        self._dt = self._check_dt(dt)
        self.invalidate()

    def invalidate(self) -> None:
        """Drop the cached operator."""
        self._operator = None
        self._built_for = None

    @property
    def is_built(self) -> bool:
        return self._operator is not None

    @property
    def operator(self) -> sparse.csr_matrix:
        """Cached operator, rebuilt if the grid material was replaced."""
        if self._operator is None or self._built_for is not self.grid.material:
            self._operator = self.build()
            self._built_for = self.grid.material
        return self._operator

    def _coupling(self, stiffness: NDArray, density: NDArray) -> NDArray:
        return stiffness * self._dt**2 / density

    def _validate_grid(self) -> None:
        for axis, n in zip("xyz", self.grid.shape):
            if n < MIN_NODES_PER_AXIS:
                raise ConfigurationError(
                    f"n{axis} = {n}: at least {MIN_NODES_PER_AXIS} nodes required for assembly"
                )
        self.grid.require_material()

    def build(self) -> sparse.csr_matrix:
        """Assemble the full operator.

        Returns:
            CSR matrix of shape (num_nodes, num_nodes)

        Raises:
            ConfigurationError: If the grid is too small or has no material
            AssemblyFailure: If a stencil entry is out of range or not finite
        """
        self._validate_grid()
        material = self.grid.require_material()

        row_parts: list[NDArray[np.int64]] = []
        col_parts: list[NDArray[np.int64]] = []
        val_parts: list[NDArray[np.float64]] = []

        for rank in self.partition.ranks:
            stiffness = self.partition.refresh_halo(material.stiffness, rank)
            density = self.partition.refresh_halo(material.density, rank)
            rows, cols, vals = self._assemble_slab(rank, stiffness, density)
            row_parts.append(rows)
            col_parts.append(cols)
            val_parts.append(vals)

        rows = np.concatenate(row_parts)
        cols = np.concatenate(col_parts)
        vals = np.concatenate(val_parts)

        n = self.grid.num_nodes
        if not np.all(np.isfinite(vals)):
            raise AssemblyFailure("Operator assembly produced non-finite coefficients")

        return sparse.coo_matrix((vals, (rows, cols)), shape=(n, n)).tocsr()

    def _assemble_slab(self, rank, stiffness, density):
        """COO triplets for the rows owned by one slab."""
        shape = self.grid.shape
        xr, yr, zr = self.partition.local_ranges(rank)
        idx = np.meshgrid(
            np.arange(xr.start, xr.stop),
            np.arange(yr.start, yr.stop),
            np.arange(zr.start, zr.stop),
            indexing="ij",
        )
        rows = np.ravel_multi_index(tuple(idx), shape)

        boundary = np.zeros(idx[0].shape, dtype=bool)
        for axis, n in enumerate(shape):
            boundary |= (idx[axis] == 0) | (idx[axis] == n - 1)
        interior = ~boundary

        s = self._coupling(stiffness.owned(), density.owned())
        ratios = self.grid.face_ratios

        diag = np.where(
            boundary,
            1.0,
            2.0 * s * sum(ratios) + 2.0 * self.grid.cell_volume,
        )

        row_parts = [rows.ravel()]
        col_parts = [rows.ravel()]
        val_parts = [diag.ravel()]

        halo_lo = stiffness.offset
        halo_hi = stiffness.offset + stiffness.data.shape[0]

        for axis, step in STENCIL_OFFSETS:
            neighbour = idx[axis] + step
            couple = interior & (neighbour > 0) & (neighbour < shape[axis] - 1)
            if not np.any(couple):
                continue

            coords = [c[couple] for c in idx]
            coords[axis] = neighbour[couple]
            if axis == 0 and (coords[0].min() < halo_lo or coords[0].max() >= halo_hi):
                raise AssemblyFailure(
                    f"Stencil column outside halo of slab {rank} "
                    f"(x range {halo_lo}..{halo_hi - 1})"
                )
            try:
                cols = np.ravel_multi_index(tuple(coords), shape)
            except ValueError as e:
                raise AssemblyFailure(f"Invalid stencil index on axis {axis}: {e}") from e

            row_parts.append(rows[couple])
            col_parts.append(cols)
            val_parts.append(-s[couple] * ratios[axis])

        return (
            np.concatenate(row_parts).astype(np.int64),
            np.concatenate(col_parts).astype(np.int64),
            np.concatenate(val_parts),
        )

    def stencil_row(self, i: int, j: int, k: int) -> list[tuple[int, float]]:
        """Entries of the row for node (i, j, k) as (column, value) pairs.

        Evaluates one node directly, independent of the vectorized assembly.
        The diagonal entry comes first.
        """
        grid = self.grid
        if not grid.contains(i, j, k):
            raise AssemblyFailure(f"Node ({i}, {j}, {k}) is outside grid {grid.shape}")
        row = grid.index(i, j, k)
        if grid.is_boundary(i, j, k):
            return [(row, 1.0)]

        material = grid.require_material()
        s = float(self._coupling(material.stiffness[i, j, k], material.density[i, j, k]))
        ratios = grid.face_ratios
        entries = [(row, 2.0 * s * sum(ratios) + 2.0 * grid.cell_volume)]

        node = (i, j, k)
        for axis, step in STENCIL_OFFSETS:
            m = node[axis] + step
            if 0 < m < grid.shape[axis] - 1:
                neighbour = list(node)
                neighbour[axis] = m
                entries.append((grid.index(*neighbour), -s * ratios[axis]))
        return entries
