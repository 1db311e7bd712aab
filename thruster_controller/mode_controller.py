"""
Fault and solve-mode controller.

Thruster fault reports, calibration requests and live property patches can
arrive while a solve is running. They are validated on arrival, queued, and
applied together at the start of the next control cycle, so a solve never
sees a half-applied change.
"""
import logging
import threading
from enum import Enum
from typing import List, Tuple

from thruster_controller.vehicle_properties import ThrusterId, VehicleProperties


class SolveMode(Enum):
    """Mutually exclusive solve modes."""
    NORMAL = "normal"                              # Solve for thruster forces
    BUOYANCY_CALIBRATION = "buoyancy_calibration"  # Solve for center of buoyancy


class FaultModeController:
    """
    Queues thruster enable/disable, mode and property changes.

    Every request is checked against the vehicle properties immediately, so
    bad requests fail at the caller and never reach the control loop.
    """

    def __init__(
        self,
        properties: VehicleProperties,
        mode: SolveMode = SolveMode.NORMAL,
        logger: logging.Logger = None
    ):
        self.properties = properties
        self.logger = logger or logging.getLogger(__name__)
        self._mode = mode
        self._lock = threading.Lock()
        self._pending: List[Tuple[str, object, object]] = []

    @property
    def mode(self) -> SolveMode:
        """Mode in effect for the current cycle."""
        return self._mode

    @property
    def has_pending(self) -> bool:
        with self._lock:
            return bool(self._pending)

    def request_thruster_state(self, thruster_id: ThrusterId, enabled: bool) -> None:
        """
        Report a thruster as healthy (enabled) or faulty (disabled).

        Raises:
            ConfigError: If the thruster id is unknown
        """
        index = self.properties.thruster_index(thruster_id)
        with self._lock:
            self._pending.append(('thruster', index, bool(enabled)))

    def request_mode(self, mode: SolveMode) -> None:
        """Switch between normal allocation and buoyancy calibration."""
        if not isinstance(mode, SolveMode):
            raise ValueError(f"Unknown solve mode: {mode!r}")
        with self._lock:
            self._pending.append(('mode', mode, None))

    def request_property_update(self, name: str, value) -> None:
        """
        Queue a live property patch.

        Raises:
            ConfigError: If the value is out of range; nothing is queued
        """
        checked = self.properties.validate_property(name, value)
        with self._lock:
            self._pending.append(('property', name, checked))

    def apply_pending(self) -> bool:
        """
        Apply all queued changes in arrival order.

        Returns:
            True if the enabled set or the mode changed, i.e. the residual
            blocks built last cycle no longer describe the problem
        """
        with self._lock:
            pending, self._pending = self._pending, []

        enabled_before = self.properties.enabled_mask.copy()
        mode_before = self._mode

        for kind, key, value in pending:
            if kind == 'thruster':
                self.properties.set_enabled(key, value)
                name = self.properties.thrusters[key].name
                self.logger.info(f"Thruster {name} {'enabled' if value else 'disabled'}")
            elif kind == 'mode':
                self._mode = key
            else:
                self.properties.update_property(key, value)
                self.logger.info(f"Vehicle property {key} set to {value}")

        if self._mode != mode_before:
            self.logger.info(f"Solve mode changed to: {self._mode.value}")

        return self._mode != mode_before or bool(
            (self.properties.enabled_mask != enabled_before).any()
        )
