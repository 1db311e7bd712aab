"""
Nonlinear least-squares problem assembled from residual blocks.

Each block contributes a few residuals and their Jacobian with respect to
the full parameter vector. The problem stacks all blocks and minimises
0.5 * sum(residual**2) with scipy's trust-region reflective solver.
"""
from dataclasses import dataclass
from typing import List

import numpy as np
from scipy.optimize import least_squares

from thruster_controller.errors import SolverDivergence


class ResidualBlock:
    """A group of residuals sharing one evaluation."""

    size = 0

    def evaluate(self, x: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def jacobian(self, x: np.ndarray) -> np.ndarray:
        raise NotImplementedError


class ZeroForceConstraint(ResidualBlock):
    """
    Pins one parameter to zero: residual = weight * x[index].

    Used for disabled thrusters, which then cannot contribute to any
    minimum without the allocation matrix being touched. The weight must
    dominate the EOM residuals (accelerations, i.e. forces divided by mass
    or inertia) so the force stays at zero even when the remaining
    thrusters cannot reach the command.
    """

    size = 1

    def __init__(self, index: int, num_parameters: int, weight: float = 1.0):
        if not 0 <= index < num_parameters:
            raise ValueError(f"index {index} out of range for {num_parameters} parameters")
        if weight <= 0.0:
            raise ValueError("weight must be positive")
        self.index = index
        self.num_parameters = num_parameters
        self.weight = float(weight)

    def evaluate(self, x: np.ndarray) -> np.ndarray:
        return np.array([self.weight * x[self.index]], dtype=float)

    def jacobian(self, x: np.ndarray) -> np.ndarray:
        row = np.zeros((1, self.num_parameters), dtype=float)
        row[0, self.index] = self.weight
        return row


@dataclass(frozen=True)
class SolverOptions:
    """Iteration budget and termination tolerances."""
    max_iterations: int = 100
    function_tolerance: float = 1e-8
    gradient_tolerance: float = 1e-10
    parameter_tolerance: float = 1e-8
    constraint_weight: float = 1e6

    def __post_init__(self):
        if self.max_iterations <= 0:
            raise ValueError("max_iterations must be positive")
        for name in ('function_tolerance', 'gradient_tolerance', 'parameter_tolerance',
                     'constraint_weight'):
            if getattr(self, name) <= 0.0:
                raise ValueError(f"{name} must be positive")

    @classmethod
    def from_config(cls, section: dict) -> 'SolverOptions':
        """Build options from the 'solver' section of the vehicle YAML."""
        section = section or {}
        defaults = cls()
        return cls(
            max_iterations=int(section.get('max_iterations', defaults.max_iterations)),
            function_tolerance=float(section.get('function_tolerance', defaults.function_tolerance)),
            gradient_tolerance=float(section.get('gradient_tolerance', defaults.gradient_tolerance)),
            parameter_tolerance=float(section.get('parameter_tolerance', defaults.parameter_tolerance)),
            constraint_weight=float(section.get('constraint_weight', defaults.constraint_weight)),
        )


@dataclass(frozen=True)
class Summary:
    """Outcome of one least-squares solve."""
    x: np.ndarray
    residuals: np.ndarray
    cost: float
    converged: bool
    iterations: int
    message: str


class LeastSquaresProblem:
    """Stack of residual blocks over a shared parameter vector."""

    def __init__(self, num_parameters: int):
        if num_parameters <= 0:
            raise ValueError("num_parameters must be positive")
        self.num_parameters = num_parameters
        self._blocks: List[ResidualBlock] = []

    @property
    def residual_blocks(self) -> List[ResidualBlock]:
        return list(self._blocks)

    @property
    def num_residuals(self) -> int:
        return sum(block.size for block in self._blocks)

    def add_residual_block(self, block: ResidualBlock) -> None:
        self._blocks.append(block)

    def evaluate(self, x: np.ndarray) -> np.ndarray:
        return np.concatenate([np.asarray(b.evaluate(x), dtype=float).reshape(-1) for b in self._blocks])

    def jacobian(self, x: np.ndarray) -> np.ndarray:
        return np.vstack([np.asarray(b.jacobian(x), dtype=float).reshape(b.size, -1) for b in self._blocks])

    def solve(self, x0, options: SolverOptions = None) -> Summary:
        """
        Minimise the sum of squared residuals starting from x0.

        Args:
            x0: Initial guess, length num_parameters
            options: Tolerances and iteration budget

        Returns:
            Summary with the best iterate. `converged` is False when the
            iteration budget ran out before a tolerance was met.

        Raises:
            SolverDivergence: If the problem has no finite starting point or
                the solver returned a non-finite iterate
        """
        if not self._blocks:
            raise ValueError("Problem has no residual blocks")
        options = options or SolverOptions()
        x0 = np.asarray(x0, dtype=float).reshape(-1)
        if x0.shape != (self.num_parameters,):
            raise ValueError(f"x0 must have length {self.num_parameters}, got {x0.shape[0]}")
        if not np.all(np.isfinite(x0)):
            raise SolverDivergence("Initial guess is not finite")
        if not np.all(np.isfinite(self.evaluate(x0))):
            raise SolverDivergence("Residuals are not finite at the initial guess")

        result = least_squares(
            self.evaluate,
            x0,
            jac=self.jacobian,
            method='trf',
            tr_solver='exact',
            ftol=options.function_tolerance,
            xtol=options.parameter_tolerance,
            gtol=options.gradient_tolerance,
            max_nfev=options.max_iterations,
        )

        if not np.all(np.isfinite(result.x)) or not np.all(np.isfinite(result.fun)):
            raise SolverDivergence(f"Solver produced a non-finite iterate: {result.message}")

        return Summary(
            x=result.x,
            residuals=result.fun,
            cost=float(result.cost),
            converged=bool(result.status > 0),
            iterations=int(result.nfev),
            message=str(result.message),
        )
