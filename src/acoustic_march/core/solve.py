"""Linear solve service for the time marcher.

``LinearSolver.solve(operator, rhs)`` returns the new wavefield. The operator
is the same object on every step of a run, so anything derived from it (an LU
factorization or a Jacobi preconditioner) is computed once and cached until a
different operator is passed in.

Methods:
    - "gmres": restarted GMRES with Jacobi preconditioning (default)
    - "bicgstab": BiCGSTAB with Jacobi preconditioning
    - "cg": conjugate gradients, valid while the operator stays symmetric
    - "direct": sparse LU factorization (SuperLU), reused across solves
"""

from __future__ import annotations

from typing import Literal

import numpy as np
from numpy.typing import NDArray
from scipy import sparse
from scipy.sparse import linalg as spla

from acoustic_march.errors import ConfigurationError, SolveNonConvergence

SolverMethod = Literal["gmres", "bicgstab", "cg", "direct"]

SOLVER_METHODS: tuple[str, ...] = ("gmres", "bicgstab", "cg", "direct")


class LinearSolver:
    """Solve A x = b with a configurable scipy method.

    Args:
        method: One of "gmres", "bicgstab", "cg", "direct"
        rtol: Relative residual tolerance for iterative methods
        maxiter: Iteration budget for iterative methods
        use_initial_guess: Start iterative methods from the previous solution

    Example:
        >>> solver = LinearSolver(method="direct")
        >>> x = solver.solve(A, b)
    """

    def __init__(
        self,
        method: SolverMethod = "gmres",
        rtol: float = 1e-8,
        maxiter: int = 1000,
        use_initial_guess: bool = True,
    ):
        if method not in SOLVER_METHODS:
            raise ConfigurationError(
                f"Unknown solver method '{method}'. Choose from: {', '.join(SOLVER_METHODS)}"
            )
        if rtol <= 0:
            raise ConfigurationError(f"rtol must be positive, got {rtol}")
        if maxiter < 1:
            raise ConfigurationError(f"maxiter must be at least 1, got {maxiter}")
        self.method = method
        self.rtol = rtol
        self.maxiter = maxiter
        self.use_initial_guess = use_initial_guess

        self._cached_operator = None
        self._factor = None
        self._preconditioner = None
        self._last_solution: NDArray[np.float64] | None = None
        self.num_solves = 0
        self.num_factorizations = 0

    def _prepare(self, operator: sparse.spmatrix) -> None:
        """Factorize or build the preconditioner for a new operator."""
        if operator is self._cached_operator:
            return

        if operator.shape[0] != operator.shape[1]:
            raise ConfigurationError(f"Operator must be square, got shape {operator.shape}")

        self._last_solution = None
        if self.method == "direct":
            try:
                self._factor = spla.splu(operator.tocsc())
            except RuntimeError as e:
                raise SolveNonConvergence(
                    f"LU factorization failed: {e}", method=self.method
                ) from e
            self.num_factorizations += 1
        else:
            diag = operator.diagonal()
            if np.any(diag == 0):
                raise SolveNonConvergence(
                    "Operator has zero diagonal entries; Jacobi preconditioner undefined",
                    method=self.method,
                )
            inv_diag = 1.0 / diag
            n = operator.shape[0]
            self._preconditioner = spla.LinearOperator(
                (n, n), matvec=lambda x: inv_diag * np.ravel(x), dtype=np.float64
            )
        self._cached_operator = operator

    def solve(
        self,
        operator: sparse.spmatrix,
        rhs: NDArray[np.float64],
    ) -> NDArray[np.float64]:
        """Solve ``operator @ x = rhs``.

        Args:
            operator: Square sparse matrix
            rhs: Right-hand side vector

        Returns:
            Solution vector (a new array)

        Raises:
            SolveNonConvergence: If the iteration budget is exhausted, the
                method breaks down, or the result is not finite
        """
        self._prepare(operator)
        rhs = np.asarray(rhs, dtype=np.float64)
        if rhs.shape != (operator.shape[0],):
            raise ConfigurationError(
                f"rhs shape {rhs.shape} doesn't match operator shape {operator.shape}"
            )

        if self.method == "direct":
            x = self._factor.solve(rhs)
        else:
            x = self._solve_iterative(operator, rhs)

        if not np.all(np.isfinite(x)):
            raise SolveNonConvergence(
                f"{self.method} produced non-finite values", method=self.method
            )

        self._last_solution = x
        self.num_solves += 1
        return x

    def _solve_iterative(self, operator, rhs):
        kernels = {
            "gmres": spla.gmres,
            "bicgstab": spla.bicgstab,
            "cg": spla.cg,
        }
        x0 = None
        if self.use_initial_guess and self._last_solution is not None:
            x0 = self._last_solution.copy()
        x, info = kernels[self.method](
            operator,
            rhs,
            x0=x0,
            rtol=self.rtol,
            atol=0.0,
            maxiter=self.maxiter,
            M=self._preconditioner,
        )
        if info > 0:
            raise SolveNonConvergence(
                f"{self.method} did not converge to rtol={self.rtol:g} "
                f"within {self.maxiter} iterations",
                method=self.method,
                info=info,
            )
        if info < 0:
            raise SolveNonConvergence(
                f"{self.method} broke down (info={info})", method=self.method, info=info
            )
        return x

    def reset(self) -> None:
        """Forget the cached operator and previous solution."""
        self._cached_operator = None
        self._factor = None
        self._preconditioner = None
        self._last_solution = None

    def __call__(self, operator, rhs):
        return self.solve(operator, rhs)

    def __repr__(self) -> str:
        return f"LinearSolver(method={self.method!r}, rtol={self.rtol:g}, maxiter={self.maxiter})"
