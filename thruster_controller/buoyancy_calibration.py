"""
Center of buoyancy calibration.

Assumes the vehicle is roughly stationary, trying to hold a target
orientation, and failing to reach it because the buoyancy moment is not yet
in the angular equations. With the thruster forces fixed at the values
currently commanded and zero angular acceleration, the roll/pitch/yaw
residuals are minimised over the center of buoyancy.

The component of the offset along the buoyant force produces no moment and
cannot be observed from a single attitude; it is left at the initial guess.
"""
import logging
from dataclasses import dataclass

import numpy as np

from thruster_controller.eom import CenterOfBuoyancyBlock, make_parameters
from thruster_controller.errors import SolverDivergence
from thruster_controller.problem import LeastSquaresProblem, SolverOptions


@dataclass(frozen=True)
class CalibrationResult:
    """
    Estimated center of buoyancy.

    Attributes:
        center_of_buoyancy: Offset from the center of mass [m]
        residuals: Roll, pitch, yaw residuals at the estimate
        converged: False if the iteration budget ran out
        cost: 0.5 * sum of squared residuals
        precondition_ok: False if the vehicle was turning or not submerged
        message: Solver termination message
    """
    center_of_buoyancy: np.ndarray
    residuals: np.ndarray
    converged: bool
    cost: float
    precondition_ok: bool
    message: str = ''


class BuoyancyCalibrator:
    """Estimates the center of buoyancy from the residual angular imbalance."""

    def __init__(
        self,
        options: SolverOptions = None,
        angular_velocity_tolerance: float = 0.05,
        logger: logging.Logger = None
    ):
        """
        Args:
            options: Solver tolerances and iteration budget
            angular_velocity_tolerance: Largest |w| [rad/s] still treated as stationary
            logger: Optional logger for debugging
        """
        if angular_velocity_tolerance <= 0.0:
            raise ValueError("angular_velocity_tolerance must be positive")
        self.options = options or SolverOptions()
        self.angular_velocity_tolerance = float(angular_velocity_tolerance)
        self.logger = logger or logging.getLogger(__name__)

    def check_precondition(self, state, properties) -> bool:
        """Warn if the stationary/submerged assumption does not hold. Never raises."""
        ok = True
        rate = float(np.linalg.norm(state.angular_velocity))
        if rate > self.angular_velocity_tolerance:
            self.logger.warning(
                f"Buoyancy calibration while turning (|w|={rate:.3f} rad/s > "
                f"{self.angular_velocity_tolerance:.3f}); estimate is unreliable"
            )
            ok = False
        if not properties.is_buoyant(state.depth):
            self.logger.warning(
                f"Buoyancy calibration above the buoyancy depth threshold "
                f"(depth={state.depth:.2f} m); estimate is unreliable"
            )
            ok = False
        return ok

    def build_problem(self, state, properties, forces):
        """Assemble the three-residual problem over the center of buoyancy."""
        params = make_parameters(state, properties, command=np.zeros(6), buoyant=True)
        block = CenterOfBuoyancyBlock(params, forces)
        problem = LeastSquaresProblem(3)
        problem.add_residual_block(block)
        return problem, block

    def solve(self, state, properties, forces) -> CalibrationResult:
        """
        Estimate the center of buoyancy.

        Args:
            state: VehicleState snapshot (vehicle should be stationary)
            properties: VehicleProperties; its current estimate seeds the solve
            forces: Thruster forces currently applied [N]

        Returns:
            CalibrationResult. The caller decides whether to persist it.

        Raises:
            SolverDivergence: If no finite estimate could be produced
        """
        forces = np.asarray(forces, dtype=float).reshape(-1)
        if forces.shape != (properties.num_thrusters,):
            raise ValueError(
                f"Expected {properties.num_thrusters} forces, got {forces.shape[0]}"
            )
        if not state.is_finite():
            raise SolverDivergence("Vehicle state is not finite")
        precondition_ok = self.check_precondition(state, properties)

        problem, _ = self.build_problem(state, properties, forces)
        summary = problem.solve(properties.center_of_buoyancy, self.options)

        return CalibrationResult(
            center_of_buoyancy=summary.x,
            residuals=summary.residuals,
            converged=summary.converged,
            cost=summary.cost,
            precondition_ok=precondition_ok,
            message=summary.message,
        )
