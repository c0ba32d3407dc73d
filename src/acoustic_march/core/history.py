"""Wavefield history for the three-level time recurrence."""

from __future__ import annotations

from dataclasses import dataclass

import numpy as np
from numpy.typing import NDArray


@dataclass
class WavefieldHistory:
    """Current solution and the three previous time levels.

    All vectors are flat arrays of length ``num_nodes``. ``rotate`` shifts each
    level back by one slot (current -> n-1 -> n-2 -> n-3 -> discarded) and
    installs the freshly solved vector as current. Stored vectors are never
    written in place.

    Attributes:
        current: Latest solution
        previous: Level n-1
        previous2: Level n-2
        previous3: Level n-3
        rotations: Number of rotate() calls since allocation
    """

    current: NDArray[np.float64]
    previous: NDArray[np.float64]
    previous2: NDArray[np.float64]
    previous3: NDArray[np.float64]
    rotations: int = 0

    @classmethod
    def zeros(cls, num_nodes: int) -> WavefieldHistory:
        """Allocate a history of zero vectors."""
        return cls(
            current=np.zeros(num_nodes),
            previous=np.zeros(num_nodes),
            previous2=np.zeros(num_nodes),
            previous3=np.zeros(num_nodes),
        )

    @property
    def size(self) -> int:
        return self.current.shape[0]

    def rotate(self, solution: NDArray[np.float64]) -> None:
        """Shift history by one level and make ``solution`` current.

        Raises:
            ValueError: If ``solution`` does not have the history's length
        """
        solution = np.asarray(solution, dtype=np.float64)
        if solution.shape != self.current.shape:
            raise ValueError(
                f"Solution shape {solution.shape} doesn't match history shape {self.current.shape}"
            )
        self.previous3 = self.previous2
        self.previous2 = self.previous
        self.previous = solution
        self.current = solution
        self.rotations += 1

    def reset(self) -> None:
        """Zero all levels."""
        n = self.size
        self.current = np.zeros(n)
        self.previous = np.zeros(n)
        self.previous2 = np.zeros(n)
        self.previous3 = np.zeros(n)
        self.rotations = 0
