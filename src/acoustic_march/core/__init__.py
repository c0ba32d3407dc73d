"""Discretization and time-marching engine."""

from acoustic_march.core.grid import GridModel, MaterialField
from acoustic_march.core.marcher import TimeMarcher
from acoustic_march.core.operator import OperatorBuilder
from acoustic_march.core.rhs import RHSBuilder
from acoustic_march.core.source import SourceModel

__all__ = [
    "GridModel",
    "MaterialField",
    "SourceModel",
    "OperatorBuilder",
    "RHSBuilder",
    "TimeMarcher",
]
