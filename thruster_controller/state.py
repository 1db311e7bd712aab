"""
Per-cycle vehicle state and the buffer that collects it.

Orientation, angular velocity, depth and the acceleration command arrive
from independent callbacks. StateBuffer keeps the latest value of each and
hands the control loop an immutable, consistent VehicleState.
"""
import threading
from dataclasses import dataclass, field

import numpy as np
from scipy.spatial.transform import Rotation

from thruster_controller.errors import InvalidMeasurement


def _frozen(values, shape) -> np.ndarray:
    array = np.array(values, dtype=float).reshape(shape)
    array.setflags(write=False)
    return array


@dataclass(frozen=True)
class VehicleState:
    """
    Snapshot consumed by one solve.

    Attributes:
        rotation: World-to-body rotation matrix (3x3)
        angular_velocity: Body angular velocity [p, q, r] [rad/s]
        depth: Depth below the surface [m] (positive down)
        command: Commanded accelerations [surge, sway, heave, roll, pitch, yaw]
    """
    rotation: np.ndarray = field(default_factory=lambda: _frozen(np.eye(3), (3, 3)))
    angular_velocity: np.ndarray = field(default_factory=lambda: _frozen(np.zeros(3), (3,)))
    depth: float = 0.0
    command: np.ndarray = field(default_factory=lambda: _frozen(np.zeros(6), (6,)))

    def __post_init__(self):
        object.__setattr__(self, 'rotation', _frozen(self.rotation, (3, 3)))
        object.__setattr__(self, 'angular_velocity', _frozen(self.angular_velocity, (3,)))
        object.__setattr__(self, 'command', _frozen(self.command, (6,)))
        object.__setattr__(self, 'depth', float(self.depth))

    def is_finite(self) -> bool:
        return bool(
            np.all(np.isfinite(self.rotation))
            and np.all(np.isfinite(self.angular_velocity))
            and np.isfinite(self.depth)
            and np.all(np.isfinite(self.command))
        )


def rotation_from_quaternion(x: float, y: float, z: float, w: float) -> np.ndarray:
    """
    World-to-body rotation from an orientation quaternion.

    The quaternion describes the body attitude in the world frame, so it
    rotates body vectors into the world; its transpose goes the other way.

    Raises:
        InvalidMeasurement: If the quaternion is non-finite or zero, as IMU
            drivers publish when they have no orientation estimate
    """
    quat = np.array([x, y, z, w], dtype=float)
    if not np.all(np.isfinite(quat)) or np.linalg.norm(quat) < 1e-9:
        raise InvalidMeasurement(f"Orientation quaternion is unusable: {quat.tolist()}")
    return Rotation.from_quat(quat).as_matrix().T


class StateBuffer:
    """Thread-safe latest-value store. The lock is held only while copying."""

    def __init__(self):
        self._lock = threading.Lock()
        self._state = VehicleState()

    def _replace(self, **changes) -> None:
        with self._lock:
            current = self._state
            fields = {
                'rotation': current.rotation,
                'angular_velocity': current.angular_velocity,
                'depth': current.depth,
                'command': current.command,
            }
            fields.update(changes)
            self._state = VehicleState(**fields)

    def update_orientation(self, rotation) -> None:
        """Set the world-to-body rotation matrix."""
        self._replace(rotation=rotation)

    def update_orientation_quaternion(self, x: float, y: float, z: float, w: float) -> None:
        self._replace(rotation=rotation_from_quaternion(x, y, z, w))

    def update_imu(self, rotation, angular_velocity) -> None:
        """Set attitude and angular velocity from one IMU sample under a single lock."""
        self._replace(rotation=rotation, angular_velocity=angular_velocity)

    def update_angular_velocity(self, angular_velocity) -> None:
        self._replace(angular_velocity=angular_velocity)

    def update_depth(self, depth: float) -> None:
        self._replace(depth=depth)

    def update_command(self, linear, angular) -> None:
        """Set the commanded linear [m/s^2] and angular [rad/s^2] accelerations."""
        self._replace(command=np.concatenate([np.asarray(linear, dtype=float).reshape(3),
                                              np.asarray(angular, dtype=float).reshape(3)]))

    def snapshot(self) -> VehicleState:
        """Latest consistent state. Snapshots are immutable, so no copy is needed."""
        with self._lock:
            return self._state
