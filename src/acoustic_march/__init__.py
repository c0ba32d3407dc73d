"""
Acoustic March - implicit time marching for 3D scalar acoustic waves.

Main exports:
- GridModel: Uniform node grid with stiffness and density fields
- SourceModel: Point force source with Ricker/Gaussian time functions
- OperatorBuilder: Sparse 7-point stencil operator
- RHSBuilder: History-dependent right-hand side with source injection
- WavefieldHistory: Current and three previous wavefields
- LinearSolver: scipy.sparse solve service (GMRES, BiCGSTAB, CG, LU)
- TimeMarcher: Setup, stepping loop, diagnostics and snapshots
- SimulationConfig: YAML-backed run configuration
- MatlabSnapshotWriter, HDF5SnapshotWriter: Snapshot sinks
"""

from acoustic_march.config import SimulationConfig
from acoustic_march.core.diagnostics import StepDiagnostics
from acoustic_march.core.grid import GridModel, MaterialField
from acoustic_march.core.history import WavefieldHistory
from acoustic_march.core.marcher import MarcherState, SimulationState, TimeMarcher
from acoustic_march.core.operator import OperatorBuilder
from acoustic_march.core.partition import SlabPartition
from acoustic_march.core.rhs import RHSBuilder, remove_constant_component
from acoustic_march.core.solve import LinearSolver
from acoustic_march.core.source import SourceModel
from acoustic_march.errors import (
    AssemblyFailure,
    CFLWarning,
    ConfigurationError,
    SimulationError,
    SnapshotIOFailure,
    SolveNonConvergence,
)
from acoustic_march.io import (
    HDF5SnapshotReader,
    HDF5SnapshotWriter,
    MatlabSnapshotWriter,
    load_matlab_snapshot,
)

__version__ = "0.1.0"

__all__ = [
    # Model
    "GridModel",
    "MaterialField",
    "SourceModel",
    "SlabPartition",
    # Assembly and solve
    "OperatorBuilder",
    "RHSBuilder",
    "remove_constant_component",
    "LinearSolver",
    # Marching
    "WavefieldHistory",
    "TimeMarcher",
    "MarcherState",
    "SimulationState",
    "StepDiagnostics",
    "SimulationConfig",
    # Snapshots
    "MatlabSnapshotWriter",
    "HDF5SnapshotWriter",
    "HDF5SnapshotReader",
    "load_matlab_snapshot",
    # Errors
    "SimulationError",
    "ConfigurationError",
    "AssemblyFailure",
    "SolveNonConvergence",
    "SnapshotIOFailure",
    "CFLWarning",
]
