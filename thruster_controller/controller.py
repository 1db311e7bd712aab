"""
Control cycle for the thruster controller.

One call to ThrusterController.step() is one control cycle:
1. apply queued fault / mode / property changes
2. take a state snapshot
3. solve (normal allocation or buoyancy calibration)
4. check the deadline, then publish the new result or hold the previous one

Whatever goes wrong in steps 3-4, the held output is the last good one, so
the thrusters never receive NaN or an unintended zero.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

import numpy as np

from thruster_controller.buoyancy_calibration import BuoyancyCalibrator, CalibrationResult
from thruster_controller.errors import DeadlineMiss, SolverDivergence
from thruster_controller.force_solver import ForceSolver, SolveResult
from thruster_controller.mode_controller import FaultModeController, SolveMode
from thruster_controller.problem import SolverOptions
from thruster_controller.state import StateBuffer
from thruster_controller.vehicle_properties import VehicleProperties


@dataclass(frozen=True)
class ControllerOutput:
    """
    Output of one control cycle.

    Attributes:
        result: Thruster forces to command (new or held)
        calibration: Latest buoyancy estimate, only in calibration mode
        mode: Mode the cycle ran in
        updated: False if the previous output was reused this cycle
    """
    result: SolveResult
    calibration: Optional[CalibrationResult]
    mode: SolveMode
    updated: bool


class ThrusterController:
    """Runs the allocation engine once per control period."""

    def __init__(
        self,
        properties: VehicleProperties,
        period: float = 0.05,
        solver_options: SolverOptions = None,
        angular_velocity_tolerance: float = 0.05,
        clock: Callable[[], float] = time.perf_counter,
        logger: logging.Logger = None
    ):
        """
        Args:
            properties: Validated vehicle properties
            period: Control period [s]; a longer solve is a missed deadline
            solver_options: Options shared by both solvers
            angular_velocity_tolerance: Calibration stationarity threshold [rad/s]
            clock: Monotonic time source [s]
            logger: Optional logger
        """
        if period <= 0.0:
            raise ValueError("period must be positive")
        self.properties = properties
        self.period = float(period)
        self.logger = logger or logging.getLogger(__name__)
        self._clock = clock

        self.state = StateBuffer()
        self.modes = FaultModeController(properties, logger=self.logger)
        self.solver = ForceSolver(solver_options, logger=self.logger)
        self.calibrator = BuoyancyCalibrator(
            solver_options,
            angular_velocity_tolerance=angular_velocity_tolerance,
            logger=self.logger
        )

        self._output = SolveResult.zeros(properties.num_thrusters)
        self._calibration: Optional[CalibrationResult] = None
        self.deadline_misses = 0
        self.divergences = 0
        self.last_error: Optional[Exception] = None

    @property
    def output(self) -> SolveResult:
        """Forces currently commanded."""
        return self._output

    @property
    def calibration(self) -> Optional[CalibrationResult]:
        return self._calibration

    def step(self) -> ControllerOutput:
        """Run one control cycle."""
        previous_mode = self.modes.mode
        if self.modes.apply_pending():
            # Last cycle's solution belongs to a different problem
            self.solver.reset()
        mode = self.modes.mode
        if mode == SolveMode.BUOYANCY_CALIBRATION and previous_mode != mode:
            # A new session must not inherit the previous session's estimate
            self._calibration = None
        state = self.state.snapshot()

        start = self._clock()
        try:
            if mode == SolveMode.NORMAL:
                result = self.solver.solve(state, self.properties)
            else:
                calibration = self.calibrator.solve(state, self.properties, self._output.forces)
        except SolverDivergence as e:
            self.divergences += 1
            self.last_error = e
            self.logger.error(f"Solver diverged, holding previous output: {e}")
            return self._hold(mode)
        elapsed = self._clock() - start

        if elapsed > self.period:
            miss = DeadlineMiss(elapsed, self.period)
            self.deadline_misses += 1
            self.last_error = miss
            self.logger.warning(f"Deadline missed ({miss}), holding previous output")
            return self._hold(mode)

        if mode == SolveMode.NORMAL:
            if not result.converged:
                self.logger.warning(
                    f"Force solve did not converge (cost={result.cost:.3e}): {result.message}"
                )
            self.solver.accept(result)
            self._output = result
        else:
            if not calibration.converged:
                self.logger.warning(f"Buoyancy calibration did not converge: {calibration.message}")
            self._calibration = calibration

        return ControllerOutput(
            result=self._output,
            calibration=self._calibration if mode == SolveMode.BUOYANCY_CALIBRATION else None,
            mode=mode,
            updated=True,
        )

    def _hold(self, mode: SolveMode) -> ControllerOutput:
        return ControllerOutput(
            result=self._output,
            calibration=self._calibration if mode == SolveMode.BUOYANCY_CALIBRATION else None,
            mode=mode,
            updated=False,
        )

    def accept_calibration(self) -> bool:
        """
        Queue the latest buoyancy estimate as the vehicle's center of buoyancy.

        Returns:
            False if there is no estimate to accept
        """
        if self._calibration is None:
            self.logger.warning("No buoyancy estimate to accept")
            return False
        cob = np.asarray(self._calibration.center_of_buoyancy, dtype=float)
        self.modes.request_property_update('center_of_buoyancy', cob)
        self.logger.info(
            f"Accepted center of buoyancy [{cob[0]:.4f}, {cob[1]:.4f}, {cob[2]:.4f}] m"
        )
        return True

    def get_state(self) -> dict:
        """Get current controller state for debugging/logging."""
        return {
            'mode': self.modes.mode.value,
            'forces': self._output.forces.tolist(),
            'converged': self._output.converged,
            'deadline_misses': self.deadline_misses,
            'divergences': self.divergences,
        }
