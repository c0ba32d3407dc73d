"""HDF5 snapshot storage for time-marching runs.

One file holds the whole run:

    /metadata     attrs: created_at, package_version, runtime, ...
    /grid         attrs: shape, spacing, extents
    /material     datasets: stiffness, density
    /source       attrs: location, frequency, amplitude, angle, wavelet
    /simulation   attrs: timestep, num_steps, cfl_number, tmax
    /snapshots    one dataset per snapshot, named step_{step:06d}
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import h5py
import numpy as np
from numpy.typing import NDArray

from acoustic_march.core.grid import GridModel
from acoustic_march.core.source import SourceModel
from acoustic_march.errors import SnapshotIOFailure

SNAPSHOT_GROUP = "snapshots"


def snapshot_name(step: int) -> str:
    """Dataset name for a step's snapshot."""
    return f"step_{step:06d}"


class HDF5SnapshotWriter:
    """Streaming snapshot sink backed by a single HDF5 file.

    Example:
        >>> with HDF5SnapshotWriter("run.h5", grid, source, dt) as writer:
        ...     marcher = TimeMarcher(grid, source, snapshot_sink=writer)
        ...     marcher.run()
    """

    def __init__(
        self,
        filename: str | Path,
        grid: GridModel,
        source: SourceModel | None = None,
        dt: float | None = None,
        compression: str | None = "gzip",
        compression_level: int = 4,
    ):
        """Create the file and write run metadata.

        Args:
            filename: Output file path
            grid: Grid whose shape snapshots take
            source: Source description stored as attributes
            dt: Timestep, used for snapshot time attributes
            compression: Compression algorithm ('gzip', 'lzf', None)
            compression_level: Compression level (0-9 for gzip)

        Raises:
            SnapshotIOFailure: If the file cannot be created
        """
        self.filename = Path(filename)
        self.grid = grid
        self.dt = dt
        self.compression = compression
        self.compression_opts = compression_level if compression == "gzip" else None
        self.steps_written: list[int] = []

        try:
            self.file = h5py.File(self.filename, "w")
        except OSError as e:
            raise SnapshotIOFailure(
                f"Cannot create HDF5 file {self.filename}: {e}", path=self.filename
            ) from e

        try:
            self._write_metadata(source)
            self.file.create_group(SNAPSHOT_GROUP)
        except (OSError, ValueError) as e:
            self.file.close()
            raise SnapshotIOFailure(
                f"Cannot write metadata to {self.filename}: {e}", path=self.filename
            ) from e

    def _write_metadata(self, source: SourceModel | None):
        from acoustic_march import __version__

        grid = self.grid

        meta = self.file.create_group("metadata")
        meta.attrs["created_at"] = datetime.now(timezone.utc).isoformat()
        meta.attrs["package_version"] = __version__

        grid_group = self.file.create_group("grid")
        grid_group.attrs["shape"] = list(grid.shape)
        grid_group.attrs["spacing"] = list(grid.spacing)
        grid_group.attrs["extents"] = list(grid.extents)

        if grid.material is not None:
            material_group = self.file.create_group("material")
            for name in ("stiffness", "density"):
                material_group.create_dataset(
                    name,
                    data=getattr(grid.material, name),
                    compression=self.compression,
                    compression_opts=self.compression_opts,
                )

        if source is not None:
            src = self.file.create_group("source")
            src.attrs["location"] = list(source.location)
            src.attrs["frequency"] = source.frequency
            src.attrs["amplitude"] = source.amplitude
            src.attrs["angle"] = source.angle
            src.attrs["wavelet"] = source.wavelet

        sim_group = self.file.create_group("simulation")
        if self.dt is not None:
            sim_group.attrs["timestep"] = self.dt
            if grid.material is not None:
                sim_group.attrs["cfl_number"] = grid.cfl_number(self.dt)

    def write(self, vector: NDArray[np.floating], step: int) -> str:
        """Store one snapshot.

        Args:
            vector: Flat wavefield of length grid.num_nodes
            step: Step index, part of the dataset name

        Returns:
            Full dataset path inside the file

        Raises:
            SnapshotIOFailure: On shape mismatch, duplicate step, or I/O error
        """
        name = snapshot_name(step)
        try:
            field = np.asarray(vector, dtype=np.float64).reshape(self.grid.shape)
            dataset = self.file[SNAPSHOT_GROUP].create_dataset(
                name,
                data=field,
                chunks=True,
                compression=self.compression,
                compression_opts=self.compression_opts,
            )
            dataset.attrs["step"] = step
            if self.dt is not None:
                dataset.attrs["time"] = (step - 1) * self.dt
        except (OSError, ValueError) as e:
            raise SnapshotIOFailure(
                f"Cannot write snapshot {name} to {self.filename}: {e}",
                step=step,
                path=self.filename,
            ) from e

        self.steps_written.append(step)
        return f"/{SNAPSHOT_GROUP}/{name}"

    def finalize(self, runtime: float | None = None, **extra_metadata):
        """Write final metadata and close the file.

        Args:
            runtime: Total wall-clock runtime in seconds
            **extra_metadata: Additional metadata attributes
        """
        if not self.file:
            return

        sim_group = self.file["simulation"]
        sim_group.attrs["num_snapshots"] = len(self.steps_written)

        if runtime is not None:
            self.file["metadata"].attrs["total_runtime_seconds"] = runtime

        for key, value in extra_metadata.items():
            self.file["simulation"].attrs[key] = value

        self.file.flush()
        self.file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.finalize()


class HDF5SnapshotReader:
    """Read snapshots and metadata written by HDF5SnapshotWriter.

    Example:
        >>> with HDF5SnapshotReader("run.h5") as reader:
        ...     steps = reader.snapshot_steps()
        ...     u = reader.load_snapshot(steps[-1])
    """

    def __init__(self, filename: str | Path):
        self.filename = Path(filename)
        self.file = h5py.File(filename, "r")

    def get_metadata(self) -> dict[str, Any]:
        """All attribute groups as nested dicts."""
        metadata = {}
        for group in ("metadata", "grid", "source", "simulation"):
            if group in self.file:
                metadata[group] = dict(self.file[group].attrs)
        return metadata

    def snapshot_steps(self) -> list[int]:
        """Steps with a stored snapshot, ascending."""
        if SNAPSHOT_GROUP not in self.file:
            return []
        return sorted(int(ds.attrs["step"]) for ds in self.file[SNAPSHOT_GROUP].values())

    def load_snapshot(self, step: int) -> NDArray[np.floating]:
        """Snapshot for ``step`` as an (nx, ny, nz) array."""
        key = f"{SNAPSHOT_GROUP}/{snapshot_name(step)}"
        if key not in self.file:
            raise KeyError(f"No snapshot for step {step}. Available: {self.snapshot_steps()}")
        return self.file[key][:]

    def load_material(self) -> dict[str, NDArray[np.floating]]:
        """Stiffness and density arrays, empty dict if not stored."""
        if "material" not in self.file:
            return {}
        return {name: ds[:] for name, ds in self.file["material"].items()}

    def close(self):
        if self.file:
            self.file.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
