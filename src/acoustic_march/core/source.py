"""Point force source with a transient time function.

The source injects a force at one interior grid node. Its time function is a
Ricker wavelet by default (second derivative of a Gaussian), delayed by
``t0 = 1.2 / f0`` so the pulse starts near zero:

    a = pi^2 f0^2
    w(t) = amplitude * (1 - 2 a (t - t0)^2) * exp(-a (t - t0)^2)

The scalar is split into force components using a fixed angle theta:

    fx = sin(theta) * w,  fy = cos(theta) * w,  fz = sin(theta) * w

Note that x and z share the same sin(theta) factor. This is kept as is;
``SourceModel.evaluate`` is what the right-hand side builder consumes, and
only ``fx`` enters the scalar equation.

Example:
    >>> source = SourceModel(location=(12, 12, 12), frequency=70.0, amplitude=1e10)
    >>> fx, fy, fz = source.evaluate(step_index=1, dt=0.0222)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import numpy as np
from numpy.typing import NDArray

from acoustic_march.errors import ConfigurationError

from .grid import GridModel

WaveletType = Literal["ricker", "gaussian", "gaussian_derivative"]

WAVELETS: tuple[str, ...] = ("ricker", "gaussian", "gaussian_derivative")

# Delay of the pulse centre in periods of f0
DELAY_PERIODS = 1.2


@dataclass(frozen=True)
class SourceModel:
    """Single point force source.

    Args:
        location: Node indices (i, j, k) of the injection point
        frequency: Dominant frequency f0 in Hz
        amplitude: Peak value of the time function
        angle: Force angle in degrees
        wavelet: Time function - "ricker" (default), "gaussian" or
            "gaussian_derivative"

    Example:
        >>> grid = GridModel((25, 25, 25), (1000.0, 1000.0, 1000.0))
        >>> source = SourceModel.centered(grid, frequency=70.0, amplitude=1e10)
        >>> source.location
        (12, 12, 12)
    """

    location: tuple[int, int, int]
    frequency: float
    amplitude: float = 1.0
    angle: float = 90.0
    wavelet: WaveletType = "ricker"

    def __post_init__(self):
        if len(self.location) != 3:
            raise ConfigurationError(f"Source location must be (i, j, k), got {self.location}")
        object.__setattr__(self, "location", tuple(int(v) for v in self.location))
        if not np.isfinite(self.frequency) or self.frequency <= 0:
            raise ConfigurationError(f"Source frequency must be positive, got {self.frequency}")
        if not np.isfinite(self.amplitude):
            raise ConfigurationError("Source amplitude must be finite")
        if self.wavelet not in WAVELETS:
            raise ConfigurationError(
                f"Unknown wavelet '{self.wavelet}'. Choose from: {', '.join(WAVELETS)}"
            )

    @classmethod
    def centered(cls, grid: GridModel, frequency: float, **kwargs) -> SourceModel:
        """Create a source at the grid centre node (nx//2, ny//2, nz//2)."""
        nx, ny, nz = grid.shape
        return cls(location=(nx // 2, ny // 2, nz // 2), frequency=frequency, **kwargs)

    @property
    def t0(self) -> float:
        """Time of the pulse centre, 1.2 / f0."""
        return DELAY_PERIODS / self.frequency

    @property
    def angle_radians(self) -> float:
        return np.deg2rad(self.angle)

    def validate_for(self, grid: GridModel) -> None:
        """Check that the source sits on an interior node of ``grid``.

        Raises:
            ConfigurationError: If the location is outside the grid or on a
                boundary node, where the injected force would be discarded.
        """
        i, j, k = self.location
        if not grid.contains(i, j, k):
            raise ConfigurationError(
                f"Source location {self.location} is outside grid of shape {grid.shape}"
            )
        if grid.is_boundary(i, j, k):
            raise ConfigurationError(
                f"Source location {self.location} is on the domain boundary; "
                "boundary nodes are held at zero and would discard the source"
            )

    def waveform(self, t: NDArray[np.floating] | float) -> NDArray[np.floating]:
        """Scalar time function at given times.

        Args:
            t: Time values in seconds

        Returns:
            Array of source values, scaled by amplitude
        """
        t = np.asarray(t, dtype=np.float64)
        a = np.pi**2 * self.frequency**2
        tau = t - self.t0
        gauss = np.exp(-a * tau**2)

        if self.wavelet == "ricker":
            # Second derivative of a Gaussian, peak value = amplitude at t0
            return self.amplitude * (1.0 - 2.0 * a * tau**2) * gauss
        if self.wavelet == "gaussian":
            return self.amplitude * gauss
        # First derivative of a Gaussian
        return -self.amplitude * 2.0 * a * tau * gauss

    def time_at(self, step_index: int, dt: float) -> float:
        """Simulated time for a 1-based step index, (step_index - 1) * dt."""
        return (step_index - 1) * dt

    def evaluate(self, step_index: int, dt: float) -> tuple[float, float, float]:
        """Force components (fx, fy, fz) at a given step.

        Args:
            step_index: 1-based step counter
            dt: Timestep in seconds

        Returns:
            Tuple (fx, fy, fz)
        """
        w = float(self.waveform(self.time_at(step_index, dt)))
        theta = self.angle_radians
        fx = np.sin(theta) * w
        fy = np.cos(theta) * w
        fz = np.sin(theta) * w
        return float(fx), float(fy), float(fz)

    def max_wavelength(self, grid: GridModel) -> float:
        """Longest wavelength in the model, max_wave_speed / f0."""
        return grid.max_wave_speed / self.frequency

    def points_per_wavelength(self, grid: GridModel) -> float:
        """Nodes per longest wavelength along the coarsest axis."""
        return self.max_wavelength(grid) / max(grid.spacing)
