"""Pytest configuration for the acoustic-march test suite.

Shared fixtures build small grids so that assembly and solves stay fast.
The full 25³ setup is only used by the end-to-end marching tests.
"""

import pytest

from acoustic_march import GridModel, SourceModel


@pytest.fixture
def small_grid():
    """7³ homogeneous grid, 10 units spacing."""
    grid = GridModel((7, 7, 7), (70.0, 70.0, 70.0))
    grid.set_material(stiffness=1800.0, density=1000.0)
    return grid


@pytest.fixture
def anisotropic_grid():
    """Grid with different node counts and spacing on each axis."""
    grid = GridModel((6, 7, 8), (60.0, 140.0, 40.0))
    grid.set_material(stiffness=1500.0, density=1200.0)
    return grid


@pytest.fixture
def reference_grid():
    """25³ nodes over a 1000³ domain, stiffness 1800, density 1000."""
    grid = GridModel((25, 25, 25), (1000.0, 1000.0, 1000.0))
    grid.set_material(stiffness=1800.0, density=1000.0)
    return grid


@pytest.fixture
def reference_source(reference_grid):
    """70 Hz Ricker source at the centre of the reference grid."""
    return SourceModel.centered(reference_grid, frequency=70.0, amplitude=1e10, angle=90.0)


@pytest.fixture
def small_source(small_grid):
    return SourceModel.centered(small_grid, frequency=70.0, amplitude=1e10)
