"""Run configuration.

A run is fully described by a :class:`SimulationConfig`. Values come from
defaults, a YAML file, and command-line overrides, in that order:

    nodes: [25, 25, 25]
    extents: [1000.0, 1000.0, 1000.0]
    stiffness: 1800.0
    density: 1000.0
    source:
      frequency: 70.0
      amplitude: 1.0e10
      angle: 90.0
      wavelet: ricker
    tmax: 1.0
    solver:
      method: gmres
      rtol: 1.0e-8
    output:
      format: matlab
      directory: out

``solver: direct`` is accepted as a shorthand for ``solver: {method: direct}``.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from acoustic_march.core.grid import GridModel
from acoustic_march.core.marcher import DEFAULT_DIAGNOSTIC_INTERVAL, TimeMarcher
from acoustic_march.core.partition import SlabPartition
from acoustic_march.core.solve import SOLVER_METHODS, LinearSolver
from acoustic_march.core.source import WAVELETS, SourceModel
from acoustic_march.errors import ConfigurationError
from acoustic_march.io.matlab import DEFAULT_PATTERN, MatlabSnapshotWriter

SNAPSHOT_FORMATS = ("matlab", "hdf5", "none")


def _broadcast(value):
    # A single number stands for the same value on all three axes
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (value,) * 3
    return value


def _describe(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        location = ".".join(str(item) for item in err["loc"])
        parts.append(f"{location}: {err['msg']}" if location else err["msg"])
    return "; ".join(parts)


class SourceConfig(BaseModel):
    """Point source parameters.

    Attributes:
        frequency: Dominant frequency f0 in Hz
        amplitude: Source amplitude
        angle: Force angle in degrees
        wavelet: Source time function name
        location: Source node; grid centre when None
    """

    frequency: float = 70.0
    amplitude: float = 1e10
    angle: float = 90.0
    wavelet: str = "ricker"
    location: tuple[int, int, int] | None = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("frequency")
    @classmethod
    def validate_frequency(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("frequency must be positive")
        return v

    @field_validator("wavelet")
    @classmethod
    def validate_wavelet(cls, v: str) -> str:
        if v not in WAVELETS:
            raise ValueError(f"Unknown wavelet '{v}'. Choose from: {', '.join(WAVELETS)}")
        return v

    @field_validator("location", mode="before")
    @classmethod
    def broadcast_location(cls, v):
        return _broadcast(v)


class SolverConfig(BaseModel):
    """Linear solver parameters."""

    method: str = "gmres"
    rtol: float = 1e-8
    maxiter: int = 1000

    model_config = ConfigDict(extra="forbid")

    @field_validator("method")
    @classmethod
    def validate_method(cls, v: str) -> str:
        if v not in SOLVER_METHODS:
            raise ValueError(f"Unknown solver '{v}'. Choose from: {', '.join(SOLVER_METHODS)}")
        return v

    @field_validator("rtol")
    @classmethod
    def validate_rtol(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("rtol must be positive")
        return v

    @field_validator("maxiter")
    @classmethod
    def validate_maxiter(cls, v: int) -> int:
        if v < 1:
            raise ValueError("maxiter must be at least 1")
        return v


class OutputConfig(BaseModel):
    """Diagnostics and snapshot output.

    Attributes:
        format: "matlab", "hdf5" or "none"
        directory: Directory for snapshot files
        pattern: MATLAB file name pattern
        interval: Report/snapshot every N steps
    """

    format: str = "matlab"
    directory: Path = Field(default_factory=lambda: Path("."))
    pattern: str = DEFAULT_PATTERN
    interval: int = DEFAULT_DIAGNOSTIC_INTERVAL

    model_config = ConfigDict(extra="forbid")

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        if v not in SNAPSHOT_FORMATS:
            raise ValueError(
                f"Unknown snapshot format '{v}'. Choose from: {', '.join(SNAPSHOT_FORMATS)}"
            )
        return v

    @field_validator("interval")
    @classmethod
    def validate_interval(cls, v: int) -> int:
        if v < 1:
            raise ValueError("interval must be at least 1")
        return v


class SimulationConfig(BaseModel):
    """All parameters of one run.

    Attributes:
        nodes: Node counts (nx, ny, nz)
        extents: Physical domain size per axis
        stiffness: Stiffness coefficient (wave speed), uniform
        density: Density, uniform
        tmax: Run duration in seconds
        dt: Timestep; derived from the CFL limit when None
        partitions: Number of slabs for assembly
        strict_cfl: Raise instead of warn when CFL > 1
        source: Source parameters
        solver: Linear solver parameters
        output: Snapshot and diagnostic output
    """

    nodes: tuple[int, int, int] = (25, 25, 25)
    extents: tuple[float, float, float] = (1000.0, 1000.0, 1000.0)
    stiffness: float = 1800.0
    density: float = 1000.0
    tmax: float = 1.0
    dt: float | None = None
    partitions: int = 1
    strict_cfl: bool = False
    source: SourceConfig = Field(default_factory=SourceConfig)
    solver: SolverConfig = Field(default_factory=SolverConfig)
    output: OutputConfig = Field(default_factory=OutputConfig)

    model_config = ConfigDict(extra="forbid")

    @field_validator("nodes", "extents", mode="before")
    @classmethod
    def broadcast_axes(cls, v):
        return _broadcast(v)

    @field_validator("stiffness", "density", "tmax")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("must be positive")
        return v

    @field_validator("dt")
    @classmethod
    def validate_dt(cls, v: float | None) -> float | None:
        if v is not None and v <= 0:
            raise ValueError("dt must be positive")
        return v

    @field_validator("partitions")
    @classmethod
    def validate_partitions(cls, v: int) -> int:
        if v < 1:
            raise ValueError("partitions must be at least 1")
        return v

    @field_validator("solver", mode="before")
    @classmethod
    def solver_shorthand(cls, v):
        if isinstance(v, str):
            return {"method": v}
        return v

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SimulationConfig:
        """Build from a nested mapping.

        Raises:
            ConfigurationError: On unknown keys or invalid values
        """
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration must be a mapping, got {type(data).__name__}")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigurationError(f"Invalid configuration: {_describe(e)}") from e

    @classmethod
    def from_yaml(cls, path: str | Path) -> SimulationConfig:
        """Load from a YAML file."""
        path = Path(path)
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except OSError as e:
            raise ConfigurationError(f"Cannot read config file {path}: {e}") from e
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
        return cls.from_dict(data or {})

    def override(self, **changes) -> SimulationConfig:
        """Copy with the given values replaced; None values are ignored.

        Section values are mappings merged into the current section, e.g.
        ``config.override(tmax=0.5, source={"frequency": 35.0})``.
        """
        data = self.model_dump()
        for key, value in changes.items():
            if isinstance(value, dict):
                section = {k: v for k, v in value.items() if v is not None}
                if section:
                    data[key] = {**data.get(key, {}), **section}
            elif value is not None:
                data[key] = value
        return self.from_dict(data)

    def build_grid(self) -> GridModel:
        grid = GridModel.initialize(self.nodes, self.extents)
        grid.set_material(stiffness=self.stiffness, density=self.density)
        return grid

    def build_source(self, grid: GridModel) -> SourceModel:
        src = self.source
        kwargs = dict(amplitude=src.amplitude, angle=src.angle, wavelet=src.wavelet)
        if src.location is None:
            return SourceModel.centered(grid, src.frequency, **kwargs)
        return SourceModel(location=src.location, frequency=src.frequency, **kwargs)

    def build_solver(self) -> LinearSolver:
        return LinearSolver(
            method=self.solver.method, rtol=self.solver.rtol, maxiter=self.solver.maxiter
        )

    def build_sink(self, grid: GridModel, source: SourceModel, dt: float | None = None):
        """Snapshot sink for the configured format, or None."""
        output = self.output
        if output.format == "matlab":
            return MatlabSnapshotWriter(output.directory, pattern=output.pattern)
        if output.format == "hdf5":
            from acoustic_march.io.hdf5 import HDF5SnapshotWriter

            output.directory.mkdir(parents=True, exist_ok=True)
            return HDF5SnapshotWriter(
                output.directory / "snapshots.h5", grid, source, dt=dt or self.resolved_dt(grid)
            )
        return None

    def resolved_dt(self, grid: GridModel) -> float:
        return grid.stable_timestep() if self.dt is None else self.dt

    def build(self, reporter=None, with_sink: bool = True) -> TimeMarcher:
        """Assemble grid, source, solver and sink into a TimeMarcher.

        Args:
            reporter: Passed to TimeMarcher for diagnostic records
            with_sink: Create the snapshot sink (False for dry runs)
        """
        grid = self.build_grid()
        source = self.build_source(grid)
        partition = SlabPartition(grid.shape, self.partitions)
        solver = self.build_solver()
        # Last, so nothing after it can fail and leave a file open
        sink = self.build_sink(grid, source) if with_sink else None
        return TimeMarcher(
            grid,
            source,
            tmax=self.tmax,
            dt=self.dt,
            solver=solver,
            snapshot_sink=sink,
            diagnostic_interval=self.output.interval,
            partition=partition,
            reporter=reporter,
            strict_cfl=self.strict_cfl,
        )

    def to_dict(self) -> dict[str, Any]:
        """Nested plain mapping in the layout ``from_dict`` reads."""
        return self.model_dump(mode="json")
