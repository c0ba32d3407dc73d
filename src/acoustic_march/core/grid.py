"""
Structured grid and material model for implicit acoustic time marching.

The grid is a uniform node lattice of ``(nx, ny, nz)`` points covering a
rectangular domain. Spacing along each axis is ``extent / node_count``.
Two node-valued material fields live on the grid: a stiffness coefficient
(which carries the wave speed in m/s) and a density.

Classes:
    MaterialField: Stiffness and density arrays co-located with nodes
    GridModel: Node counts, spacing, extents and material

Example:
    >>> from acoustic_march import GridModel
    >>> grid = GridModel(node_counts=(25, 25, 25), extents=(1000.0, 1000.0, 1000.0))
    >>> grid.set_material(stiffness=1800.0, density=1000.0)
    >>> grid.dx
    40.0
    >>> grid.max_wave_speed
    1800.0
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
from numpy.typing import ArrayLike, NDArray

from acoustic_march.errors import ConfigurationError

MIN_NODES_PER_AXIS = 3


@dataclass(frozen=True, eq=False)
class MaterialField:
    """Stiffness coefficient and density sampled at every grid node.

    Args:
        stiffness: Array of shape (nx, ny, nz), strictly positive
        density: Array of shape (nx, ny, nz), strictly positive
    """

    stiffness: NDArray[np.float64]
    density: NDArray[np.float64]

    @property
    def is_homogeneous(self) -> bool:
        """Whether both fields are constant over the grid."""
        return bool(
            np.all(self.stiffness == self.stiffness.flat[0])
            and np.all(self.density == self.density.flat[0])
        )


@dataclass
class GridModel:
    """Uniform 3D node grid with material fields.

    Args:
        node_counts: Number of nodes (nx, ny, nz), at least 3 per axis
        extents: Physical domain size (Lx, Ly, Lz)

    Attributes:
        shape: Node counts tuple
        dx, dy, dz: Node spacing per axis
        material: MaterialField, or None until set_material() is called

    Raises:
        ConfigurationError: If a node count is below 3 or an extent is not positive
    """

    node_counts: tuple[int, int, int]
    extents: tuple[float, float, float]
    material: MaterialField | None = field(default=None, init=False, repr=False, compare=False)

    def __post_init__(self):
        if len(self.node_counts) != 3 or len(self.extents) != 3:
            raise ConfigurationError(
                "node_counts and extents must both have exactly 3 entries"
            )
        counts = tuple(int(n) for n in self.node_counts)
        for axis, n in zip("xyz", counts):
            if n < MIN_NODES_PER_AXIS:
                raise ConfigurationError(
                    f"n{axis} = {n} is below the minimum of {MIN_NODES_PER_AXIS} nodes; "
                    "the 7-point stencil needs at least one interior node per axis"
                )
        extents = tuple(float(e) for e in self.extents)
        for axis, extent in zip("xyz", extents):
            if not np.isfinite(extent) or extent <= 0:
                raise ConfigurationError(f"{axis} extent must be positive, got {extent}")

        self.node_counts = counts
        self.extents = extents
        self._spacing = tuple(e / n for e, n in zip(extents, counts))

    @classmethod
    def initialize(
        cls,
        node_counts: tuple[int, int, int],
        domain_extents: tuple[float, float, float],
    ) -> GridModel:
        """Create a grid from node counts and physical extents."""
        return cls(node_counts=node_counts, extents=domain_extents)

    @property
    def shape(self) -> tuple[int, int, int]:
        """Node counts (nx, ny, nz)."""
        return self.node_counts

    @property
    def num_nodes(self) -> int:
        """Total number of nodes."""
        nx, ny, nz = self.node_counts
        return nx * ny * nz

    @property
    def dx(self) -> float:
        return self._spacing[0]

    @property
    def dy(self) -> float:
        return self._spacing[1]

    @property
    def dz(self) -> float:
        return self._spacing[2]

    @property
    def spacing(self) -> tuple[float, float, float]:
        """Node spacing (dx, dy, dz)."""
        return self._spacing

    @property
    def min_spacing(self) -> float:
        """Minimum node spacing, used for the CFL number."""
        return min(self._spacing)

    @property
    def cell_volume(self) -> float:
        """dx * dy * dz."""
        dx, dy, dz = self._spacing
        return dx * dy * dz

    @property
    def face_ratios(self) -> tuple[float, float, float]:
        """Face area over spacing for the x, y and z faces.

        Returns:
            (dy*dz/dx, dx*dz/dy, dx*dy/dz)
        """
        dx, dy, dz = self._spacing
        return (dy * dz / dx, dx * dz / dy, dx * dy / dz)

    def set_material(self, stiffness: float | ArrayLike, density: float | ArrayLike) -> None:
        """Assign the stiffness coefficient and density fields.

        Args:
            stiffness: Constant, or array of shape (nx, ny, nz)
            density: Constant, or array of shape (nx, ny, nz)

        Raises:
            ConfigurationError: If a field has the wrong shape or is not
                strictly positive and finite everywhere
        """
        self.material = MaterialField(
            stiffness=self._as_node_field(stiffness, "stiffness"),
            density=self._as_node_field(density, "density"),
        )

    def _as_node_field(self, values: float | ArrayLike, name: str) -> NDArray[np.float64]:
        arr = np.asarray(values, dtype=np.float64)
        if arr.ndim == 0:
            arr = np.full(self.shape, float(arr), dtype=np.float64)
        elif arr.shape != self.shape:
            raise ConfigurationError(
                f"{name} field shape {arr.shape} doesn't match grid shape {self.shape}"
            )
        else:
            arr = arr.copy()

        if not np.all(np.isfinite(arr)):
            raise ConfigurationError(f"{name} field contains non-finite values")
        if np.any(arr <= 0):
            raise ConfigurationError(
                f"{name} must be strictly positive everywhere (min = {arr.min():g})"
            )
        arr.setflags(write=False)
        return arr

    def require_material(self) -> MaterialField:
        """Return the material, failing if set_material() was never called."""
        if self.material is None:
            raise ConfigurationError("Material not set. Call set_material() first.")
        return self.material

    @property
    def max_wave_speed(self) -> float:
        """Maximum of the stiffness coefficient field."""
        return float(np.max(self.require_material().stiffness))

    @property
    def min_wave_speed(self) -> float:
        """Minimum of the stiffness coefficient field."""
        return float(np.min(self.require_material().stiffness))

    def cfl_number(self, dt: float) -> float:
        """max_wave_speed * dt / min_spacing."""
        return self.max_wave_speed * dt / self.min_spacing

    def stable_timestep(self) -> float:
        """Timestep giving a CFL number of exactly 1 on this grid.

        This is the default ``dt = dx / cmax`` used when no timestep is given.
        """
        return self.min_spacing / self.max_wave_speed

    def is_boundary(self, i: int, j: int, k: int) -> bool:
        """Whether node (i, j, k) lies on a face of the domain."""
        nx, ny, nz = self.shape
        return i in (0, nx - 1) or j in (0, ny - 1) or k in (0, nz - 1)

    def contains(self, i: int, j: int, k: int) -> bool:
        """Whether (i, j, k) is a valid node index."""
        nx, ny, nz = self.shape
        return 0 <= i < nx and 0 <= j < ny and 0 <= k < nz

    def index(self, i: int, j: int, k: int) -> int:
        """Flat vector index of node (i, j, k)."""
        return int(np.ravel_multi_index((i, j, k), self.shape))

    def boundary_mask(self) -> NDArray[np.bool_]:
        """Boolean array of shape (nx, ny, nz), True on boundary nodes."""
        mask = np.zeros(self.shape, dtype=bool)
        mask[0, :, :] = mask[-1, :, :] = True
        mask[:, 0, :] = mask[:, -1, :] = True
        mask[:, :, 0] = mask[:, :, -1] = True
        return mask

    def physical_extent(self) -> tuple[float, float, float]:
        """Physical domain size (Lx, Ly, Lz)."""
        return self.extents

    def __repr__(self) -> str:
        return (
            f"GridModel(shape={self.shape}, "
            f"spacing=({self.dx:.4g}, {self.dy:.4g}, {self.dz:.4g}), "
            f"extents={self.extents})"
        )
