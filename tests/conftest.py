"""
Shared fixtures: a reference eight-thruster vehicle.

All thrusters sit in the z=0 plane so each one only couples into the axes
its direction and lever arm imply (surge/sway thrusters never pitch or roll
the vehicle).
"""
import copy

import numpy as np
import pytest

from thruster_controller.state import VehicleState
from thruster_controller.vehicle_properties import load_vehicle_properties


REFERENCE_VEHICLE = {
    'properties': {
        'mass': 30.0,
        'volume': 0.03,  # buoyancy == weight
        'Ixx': 0.5,
        'Iyy': 1.5,
        'Izz': 1.6,
        'center_of_buoyancy': [0.0, 0.0, 0.0],
        'buoyancy_depth_thresh': 0.3,
    },
    'thrusters': [
        {'name': 'surge_port_lo', 'position': [-0.2, 0.25, 0.0], 'direction': [1.0, 0.0, 0.0]},
        {'name': 'surge_stbd_lo', 'position': [-0.2, -0.25, 0.0], 'direction': [1.0, 0.0, 0.0]},
        {'name': 'sway_fwd', 'position': [0.3, 0.0, 0.0], 'direction': [0.0, 1.0, 0.0]},
        {'name': 'sway_aft', 'position': [-0.35, 0.0, 0.0], 'direction': [0.0, 1.0, 0.0]},
        {'name': 'heave_port_fwd', 'position': [0.3, 0.2, 0.0], 'direction': [0.0, 0.0, 1.0]},
        {'name': 'heave_stbd_fwd', 'position': [0.3, -0.2, 0.0], 'direction': [0.0, 0.0, 1.0]},
        {'name': 'heave_port_aft', 'position': [-0.3, 0.2, 0.0], 'direction': [0.0, 0.0, 1.0]},
        {'name': 'heave_stbd_aft', 'position': [-0.3, -0.2, 0.0], 'direction': [0.0, 0.0, 1.0]},
    ],
}

SURGE = [0, 1]
SWAY = [2, 3]
HEAVE = [4, 5, 6, 7]

SURFACE_DEPTH = 0.0     # above the buoyancy threshold
SUBMERGED_DEPTH = 2.0   # below the buoyancy threshold


@pytest.fixture
def vehicle_config():
    """Fresh copy of the reference vehicle configuration."""
    return copy.deepcopy(REFERENCE_VEHICLE)


@pytest.fixture
def properties(vehicle_config):
    """Validated reference vehicle properties."""
    return load_vehicle_properties(vehicle_config)


def make_state(command=None, depth=SURFACE_DEPTH, angular_velocity=None, rotation=None):
    """VehicleState with sensible defaults for tests."""
    return VehicleState(
        rotation=np.eye(3) if rotation is None else rotation,
        angular_velocity=np.zeros(3) if angular_velocity is None else angular_velocity,
        depth=depth,
        command=np.zeros(6) if command is None else command,
    )
