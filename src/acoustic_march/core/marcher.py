"""Time marching loop for the implicit acoustic scheme.

Each step:
    1. evaluate the source force at the step's time
    2. build the right-hand side from the wavefield history
    3. solve the (cached) operator against it
    4. rotate the history so the new solution becomes current
    5. every ``diagnostic_interval`` steps, reduce max/min/norm, report,
       and write a snapshot

Example:
    >>> from acoustic_march import GridModel, SourceModel, TimeMarcher
    >>> grid = GridModel((25, 25, 25), (1000.0, 1000.0, 1000.0))
    >>> grid.set_material(stiffness=1800.0, density=1000.0)
    >>> source = SourceModel.centered(grid, frequency=70.0, amplitude=1e10)
    >>> marcher = TimeMarcher(grid, source, tmax=1.0)
    >>> marcher.setup()
    >>> records = marcher.run()
"""

from __future__ import annotations

import re
import time
import warnings
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

import numpy as np
from numpy.typing import NDArray

from acoustic_march.errors import (
    CFLWarning,
    ConfigurationError,
    SimulationError,
    SnapshotIOFailure,
    SolveNonConvergence,
)

from .diagnostics import StepDiagnostics, reduce_field
from .grid import GridModel
from .history import WavefieldHistory
from .operator import OperatorBuilder
from .partition import SlabPartition
from .rhs import RHSBuilder
from .solve import LinearSolver
from .source import SourceModel

DEFAULT_DIAGNOSTIC_INTERVAL = 40


class SnapshotSink(Protocol):
    """Anything that can persist a wavefield vector for a step."""

    def write(self, vector: NDArray[np.float64], step: int) -> Any: ...


class MarcherState(Enum):
    UNINITIALIZED = "uninitialized"
    READY = "ready"
    STEPPING = "stepping"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class SimulationState:
    """Everything the marcher owns for one run.

    Attributes:
        grid: Grid and material
        source: Point source
        history: Wavefield history
        dt: Timestep in seconds
        num_steps: Number of steps in the run, int(tmax / dt)
        step: Steps completed so far
    """

    grid: GridModel
    source: SourceModel
    history: WavefieldHistory
    dt: float
    num_steps: int
    step: int = 0

    @property
    def time(self) -> float:
        """Simulated time of the last completed step."""
        return max(self.step - 1, 0) * self.dt

    @property
    def wavefield(self) -> NDArray[np.float64]:
        """Current solution reshaped to (nx, ny, nz)."""
        return self.history.current.reshape(self.grid.shape)


class TimeMarcher:
    """Drive the implicit time loop.

    Args:
        grid: Grid with material set
        source: Point source on an interior node
        tmax: Run duration in seconds
        dt: Timestep; defaults to ``grid.stable_timestep()`` (dx / cmax)
        solver: Linear solver (default: LinearSolver())
        snapshot_sink: Object with ``write(vector, step)``; optional
        diagnostic_interval: Report and snapshot every N steps (default 40)
        partition: Slab decomposition for assembly and reductions
        reporter: Called with a StepDiagnostics after each diagnostic step
        strict_cfl: Raise ConfigurationError instead of warning when the
            CFL number exceeds 1

    Attributes:
        state: Current MarcherState
        records: Diagnostics collected during run()
    """

    def __init__(
        self,
        grid: GridModel,
        source: SourceModel,
        tmax: float = 1.0,
        dt: float | None = None,
        solver: LinearSolver | None = None,
        snapshot_sink: SnapshotSink | None = None,
        diagnostic_interval: int = DEFAULT_DIAGNOSTIC_INTERVAL,
        partition: SlabPartition | None = None,
        reporter: Callable[[StepDiagnostics], None] | None = None,
        strict_cfl: bool = False,
    ):
        self.grid = grid
        self.source = source
        self.tmax = float(tmax)
        self._requested_dt = dt
        self.solver = solver or LinearSolver()
        self.snapshot_sink = snapshot_sink
        self.diagnostic_interval = int(diagnostic_interval)
        self.partition = partition or SlabPartition(grid.shape, 1)
        self.reporter = reporter
        self.strict_cfl = strict_cfl

        self.state = MarcherState.UNINITIALIZED
        self.sim: SimulationState | None = None
        self.operator_builder: OperatorBuilder | None = None
        self.rhs_builder: RHSBuilder | None = None
        self.records: list[StepDiagnostics] = []
        self.failure: SimulationError | None = None
        self.cfl_number: float | None = None
        self._start_time: float | None = None

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def setup(self) -> SimulationState:
        """Validate parameters, allocate history and assemble the operator.

        Returns:
            The SimulationState for this run

        Raises:
            ConfigurationError: On invalid grid, material, source or timing
            AssemblyFailure: If operator assembly fails
        """
        if self.state is not MarcherState.UNINITIALIZED:
            raise RuntimeError(f"setup() called in state {self.state.value}")
        try:
            return self._setup()
        except SimulationError as e:
            self.failure = e
            self.state = MarcherState.FAILED
            raise

    def _setup(self) -> SimulationState:
        grid = self.grid
        grid.require_material()
        self.source.validate_for(grid)

        if self.diagnostic_interval < 1:
            raise ConfigurationError(
                f"diagnostic_interval must be at least 1, got {self.diagnostic_interval}"
            )
        if not np.isfinite(self.tmax) or self.tmax <= 0:
            raise ConfigurationError(f"tmax must be positive, got {self.tmax}")

        dt = grid.stable_timestep() if self._requested_dt is None else float(self._requested_dt)
        if not np.isfinite(dt) or dt <= 0:
            raise ConfigurationError(f"Timestep must be positive, got {dt}")

        num_steps = int(self.tmax / dt)
        if num_steps < 1:
            raise ConfigurationError(
                f"tmax={self.tmax:g} is shorter than one timestep (dt={dt:g})"
            )

        self.cfl_number = grid.cfl_number(dt)
        if self.cfl_number > 1.0 and not np.isclose(self.cfl_number, 1.0):
            message = (
                f"CFL number {self.cfl_number:.3f} exceeds 1 "
                f"(max wave speed {grid.max_wave_speed:g}, dt {dt:g}, "
                f"min spacing {grid.min_spacing:g})"
            )
            if self.strict_cfl:
                raise ConfigurationError(message)
            warnings.warn(message, CFLWarning, stacklevel=3)

        self.operator_builder = OperatorBuilder(grid, dt, partition=self.partition)
        self.rhs_builder = RHSBuilder(
            grid, dt, source_location=self.source.location, partition=self.partition
        )
        # Step-invariant, assembled once here
        self.operator_builder.operator

        self.sim = SimulationState(
            grid=grid,
            source=self.source,
            history=WavefieldHistory.zeros(grid.num_nodes),
            dt=dt,
            num_steps=num_steps,
        )
        self.state = MarcherState.READY
        return self.sim

    @property
    def dt(self) -> float:
        if self.sim is None:
            raise RuntimeError("Marcher not set up. Call setup() first.")
        return self.sim.dt

    @property
    def num_steps(self) -> int:
        if self.sim is None:
            raise RuntimeError("Marcher not set up. Call setup() first.")
        return self.sim.num_steps

    @property
    def history(self) -> WavefieldHistory:
        if self.sim is None:
            raise RuntimeError("Marcher not set up. Call setup() first.")
        return self.sim.history

    # ------------------------------------------------------------------
    # Stepping
    # ------------------------------------------------------------------

    def step(self) -> StepDiagnostics | None:
        """Advance by one timestep.

        Returns:
            StepDiagnostics if this was a diagnostic step, else None

        Raises:
            SolveNonConvergence, SnapshotIOFailure, AssemblyFailure: The
                marcher moves to FAILED and the error is re-raised with the
                step index attached
        """
        if self.state is MarcherState.READY:
            self.state = MarcherState.STEPPING
            self._start_time = time.time()
        elif self.state is not MarcherState.STEPPING:
            raise RuntimeError(f"step() called in state {self.state.value}")

        sim = self.sim
        it = sim.step + 1
        try:
            record = self._advance(it)
        except SimulationError as e:
            self._fail(e, it)
            raise
        except Exception:
            self.state = MarcherState.FAILED
            raise

        sim.step = it
        if sim.step >= sim.num_steps:
            self.state = MarcherState.COMPLETED
        return record

    def _advance(self, it: int) -> StepDiagnostics | None:
        sim = self.sim
        force = self.source.evaluate(it, sim.dt)
        rhs = self.rhs_builder.build(sim.history, force)
        solution = self.solver.solve(self.operator_builder.operator, rhs)
        sim.history.rotate(solution)

        if it % self.diagnostic_interval != 0:
            return None
        return self._diagnose(it)

    def _diagnose(self, it: int) -> StepDiagnostics:
        sim = self.sim
        u_max, u_min, norm = reduce_field(sim.history.current, self.partition)
        artifact = None
        if self.snapshot_sink is not None:
            try:
                artifact = self.snapshot_sink.write(sim.history.current, it)
            except SnapshotIOFailure:
                raise
            except OSError as e:
                raise SnapshotIOFailure(
                    f"Snapshot write failed at step {it}: {e}", step=it
                ) from e

        record = StepDiagnostics(
            step=it,
            num_steps=sim.num_steps,
            time=self.source.time_at(it, sim.dt),
            max=u_max,
            min=u_min,
            norm=norm,
            elapsed=time.time() - self._start_time,
            artifact=artifact,
        )
        self.records.append(record)
        if self.reporter is not None:
            self.reporter(record)
        return record

    def _fail(self, error: SimulationError, it: int) -> None:
        if isinstance(error, (SolveNonConvergence, SnapshotIOFailure)) and error.step is None:
            error.step = it
        if not any(re.search(rf"\bstep {it}\b", str(arg)) for arg in error.args):
            error.args = (f"step {it}: {error.args[0] if error.args else error}",) + error.args[1:]
        self.failure = error
        self.state = MarcherState.FAILED

    def run(
        self,
        progress: bool = False,
        callback: Callable[[int], None] | None = None,
    ) -> list[StepDiagnostics]:
        """Run all remaining steps.

        Calls setup() first if needed.

        Args:
            progress: Show a tqdm progress bar
            callback: Called after each step with the 1-based step index

        Returns:
            Diagnostics recorded during the run
        """
        if self.state is MarcherState.UNINITIALIZED:
            self.setup()

        remaining = range(self.sim.step, self.sim.num_steps)
        if progress:
            from tqdm import tqdm

            iterator = tqdm(remaining, desc="Time marching")
        else:
            iterator = remaining

        for _ in iterator:
            self.step()
            if callback:
                callback(self.sim.step)

        return self.records
