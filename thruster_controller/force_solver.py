"""
Thruster force solver.

Each control cycle builds a least-squares problem with one six-residual EOM
block over all thruster forces and one force-equals-zero block per disabled
thruster, then solves it warm-started from the previous accepted solution.

No thrust bounds are imposed. Capping one thruster shifts the balance among
the coupled axes and makes the solver spin up other thrusters to compensate
(e.g. surge and sway kicking in when heave is capped), so limits are left to
the output layer.
"""
import logging
from dataclasses import dataclass

import numpy as np

from thruster_controller.eom import ThrusterForceBlock, make_parameters
from thruster_controller.errors import SolverDivergence
from thruster_controller.problem import LeastSquaresProblem, SolverOptions, ZeroForceConstraint


@dataclass(frozen=True)
class SolveResult:
    """
    Solved thruster forces with diagnostics.

    Attributes:
        forces: Signed force per thruster [N]
        residuals: Per-axis EOM residual at the solution
        converged: False if the iteration budget ran out
        cost: 0.5 * sum of squared residuals (including constraints)
        iterations: Residual evaluations used
        message: Solver termination message
    """
    forces: np.ndarray
    residuals: np.ndarray
    converged: bool
    cost: float
    iterations: int
    message: str = ''

    @classmethod
    def zeros(cls, num_thrusters: int) -> 'SolveResult':
        """All-stop output held until the first good solve."""
        return cls(
            forces=np.zeros(num_thrusters),
            residuals=np.zeros(6),
            converged=False,
            cost=0.0,
            iterations=0,
            message='no solution yet',
        )


class ForceSolver:
    """
    Solves for thruster forces given the vehicle state.

    Owns the warm start: the previous accepted solution seeds the next solve.
    """

    def __init__(self, options: SolverOptions = None, logger: logging.Logger = None):
        """
        Args:
            options: Solver tolerances and iteration budget
            logger: Optional logger for debugging
        """
        self.options = options or SolverOptions()
        self.logger = logger or logging.getLogger(__name__)
        self._warm_start = None

    @property
    def warm_start(self):
        return None if self._warm_start is None else self._warm_start.copy()

    def build_problem(self, state, properties):
        """
        Assemble the residual blocks for one cycle.

        Returns:
            (problem, eom_block)
        """
        n = properties.num_thrusters
        problem = LeastSquaresProblem(n)
        eom_block = ThrusterForceBlock(make_parameters(state, properties), properties.center_of_buoyancy)
        problem.add_residual_block(eom_block)
        for j, enabled in enumerate(properties.enabled_mask):
            if not enabled:
                problem.add_residual_block(ZeroForceConstraint(j, n, self.options.constraint_weight))
        return problem, eom_block

    def solve(self, state, properties) -> SolveResult:
        """
        Solve for thruster forces.

        Args:
            state: VehicleState snapshot
            properties: VehicleProperties (geometry and enabled flags)

        Returns:
            SolveResult with the best iterate, even if not converged

        Raises:
            SolverDivergence: If no finite iterate could be produced
        """
        if not state.is_finite():
            raise SolverDivergence("Vehicle state is not finite")
        problem, eom_block = self.build_problem(state, properties)

        x0 = self._warm_start
        if x0 is None or x0.shape != (properties.num_thrusters,):
            x0 = np.zeros(properties.num_thrusters)

        summary = problem.solve(x0, self.options)
        result = SolveResult(
            forces=summary.x,
            residuals=eom_block.evaluate(summary.x),
            converged=summary.converged,
            cost=summary.cost,
            iterations=summary.iterations,
            message=summary.message,
        )
        self.logger.debug(
            f"Force solve: cost={result.cost:.3e}, iterations={result.iterations}, "
            f"converged={result.converged}"
        )
        return result

    def accept(self, result: SolveResult) -> None:
        """Commit a result as the next warm start."""
        self._warm_start = np.array(result.forces, dtype=float)

    def reset(self) -> None:
        """Forget the warm start; the next solve starts from zero thrust."""
        self._warm_start = None
