"""Exception types raised by the simulation core.

Every error here is fatal for a run: the time marcher records the failing
step, moves to the FAILED state and re-raises. Nothing is retried.
"""

from __future__ import annotations


class SimulationError(Exception):
    """Base class for all acoustic-march errors."""

    pass


class ConfigurationError(SimulationError, ValueError):
    """Invalid grid, material, source, or run parameters."""

    pass


class AssemblyFailure(SimulationError, RuntimeError):
    """Operator or right-hand side assembly produced an invalid entry."""

    pass


class SolveNonConvergence(SimulationError, RuntimeError):
    """The linear solve did not reach tolerance within its iteration budget.

    Args:
        message: Human readable cause
        step: Time step at which the solve failed (None outside the loop)
        method: Name of the solver method
        info: Solver status code (iterations performed, or negative on breakdown)
    """

    def __init__(
        self,
        message: str,
        step: int | None = None,
        method: str | None = None,
        info: int | None = None,
    ):
        super().__init__(message)
        self.step = step
        self.method = method
        self.info = info


class SnapshotIOFailure(SimulationError, OSError):
    """A snapshot artifact could not be written.

    Args:
        message: Human readable cause
        step: Time step of the snapshot
        path: Target artifact path
    """

    def __init__(self, message: str, step: int | None = None, path=None):
        super().__init__(message)
        self.step = step
        self.path = path


class CFLWarning(UserWarning):
    """Emitted when max_wave_speed * dt / min_spacing exceeds 1."""

    pass
