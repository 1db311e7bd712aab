"""
Rigid-body equations of motion as a residual system.

For each body axis i (surge, sway, heave, roll, pitch, yaw):

    residual[i] = (sum_j A[i][j] * f[j] + weightFM[i] + transportThm[i]) / inertia[i] - command[i]

weightFM is the weight/buoyancy imbalance and the buoyancy moment about the
center of mass, projected into the body frame and gated by the buoyancy
depth threshold. transportThm is the gyroscopic coupling of the rotational
axes (Euler's equations), zero on the translational ones.

The same function serves two bindings:
    - Normal mode: thruster forces unknown, center of buoyancy fixed
    - Calibration: center of buoyancy unknown, thruster forces fixed
Jacobians for either come from forward-mode autodiff (jax.jacfwd).
"""
from typing import NamedTuple

import jax
import jax.numpy as jnp
import numpy as np

from thruster_controller.problem import ResidualBlock

# Solver tolerances are far below float32 resolution
jax.config.update("jax_enable_x64", True)


class EOMParameters(NamedTuple):
    """Everything in the residual that is not an unknown."""
    allocation: jnp.ndarray        # 6xN
    rotation: jnp.ndarray          # 3x3 world->body
    angular_velocity: jnp.ndarray  # [p, q, r]
    inertia: jnp.ndarray           # [M, M, M, Ixx, Iyy, Izz]
    weight: jnp.ndarray            # scalar [N]
    buoyancy: jnp.ndarray          # scalar [N]
    is_buoyant: jnp.ndarray        # scalar, 1.0 or 0.0
    command: jnp.ndarray           # 6 accelerations


def make_parameters(state, properties, command=None, buoyant=None) -> EOMParameters:
    """
    Bind one state snapshot and the vehicle properties into EOM parameters.

    Args:
        state: VehicleState snapshot
        properties: VehicleProperties
        command: Override for the commanded accelerations (defaults to state.command)
        buoyant: Override for the buoyancy gate (defaults to the depth threshold test)
    """
    if buoyant is None:
        buoyant = properties.is_buoyant(state.depth)
    if command is None:
        command = state.command
    return EOMParameters(
        allocation=jnp.asarray(properties.allocation_matrix, dtype=jnp.float64),
        rotation=jnp.asarray(state.rotation, dtype=jnp.float64),
        angular_velocity=jnp.asarray(state.angular_velocity, dtype=jnp.float64),
        inertia=jnp.asarray(properties.inertia, dtype=jnp.float64),
        weight=jnp.asarray(properties.weight, dtype=jnp.float64),
        buoyancy=jnp.asarray(properties.buoyancy, dtype=jnp.float64),
        is_buoyant=jnp.asarray(1.0 if buoyant else 0.0, dtype=jnp.float64),
        command=jnp.asarray(command, dtype=jnp.float64),
    )


def weight_forces_moments(center_of_buoyancy, params: EOMParameters):
    """Net weight/buoyancy force and buoyancy moment in the body frame (6,)."""
    # World z expressed in the body frame
    up = params.rotation[:, 2]
    force = up * (params.buoyancy - params.weight)
    moment = jnp.cross(center_of_buoyancy, up * params.buoyancy)
    return jnp.concatenate([force, moment]) * params.is_buoyant


def transport_terms(params: EOMParameters):
    """Gyroscopic coupling -w x (I w) for a diagonal inertia, padded to 6 axes."""
    p, q, r = params.angular_velocity[0], params.angular_velocity[1], params.angular_velocity[2]
    Ixx, Iyy, Izz = params.inertia[3], params.inertia[4], params.inertia[5]
    return jnp.array([
        0.0,
        0.0,
        0.0,
        -(r * q) * (Izz - Iyy),
        -(p * r) * (Ixx - Izz),
        -(q * p) * (Iyy - Ixx),
    ])


def eom_residual(forces, center_of_buoyancy, params: EOMParameters):
    """
    Acceleration error on all six axes.

    Args:
        forces: Thruster forces (N,) [N]
        center_of_buoyancy: Center of buoyancy relative to the CoM (3,) [m]
        params: EOMParameters for this cycle

    Returns:
        residual (6,) [m/s^2, rad/s^2]
    """
    total = (
        params.allocation @ forces
        + weight_forces_moments(center_of_buoyancy, params)
        + transport_terms(params)
    )
    return total / params.inertia - params.command


def angular_residual(forces, center_of_buoyancy, params: EOMParameters):
    """Roll, pitch and yaw rows of eom_residual."""
    return eom_residual(forces, center_of_buoyancy, params)[3:]


_eom_residual = jax.jit(eom_residual)
_eom_jacobian_forces = jax.jit(jax.jacfwd(eom_residual, argnums=0))
_angular_residual = jax.jit(angular_residual)
_angular_jacobian_cob = jax.jit(jax.jacfwd(angular_residual, argnums=1))


class ThrusterForceBlock(ResidualBlock):
    """Six EOM residuals over the thruster forces, center of buoyancy fixed."""

    size = 6

    def __init__(self, params: EOMParameters, center_of_buoyancy):
        self.params = params
        self.center_of_buoyancy = jnp.asarray(center_of_buoyancy, dtype=jnp.float64)

    def evaluate(self, forces: np.ndarray) -> np.ndarray:
        return np.asarray(_eom_residual(jnp.asarray(forces), self.center_of_buoyancy, self.params))

    def jacobian(self, forces: np.ndarray) -> np.ndarray:
        return np.asarray(_eom_jacobian_forces(jnp.asarray(forces), self.center_of_buoyancy, self.params))


class CenterOfBuoyancyBlock(ResidualBlock):
    """Three angular EOM residuals over the center of buoyancy, forces fixed."""

    size = 3

    def __init__(self, params: EOMParameters, forces):
        self.params = params
        self.forces = jnp.asarray(forces, dtype=jnp.float64)

    def evaluate(self, center_of_buoyancy: np.ndarray) -> np.ndarray:
        return np.asarray(_angular_residual(self.forces, jnp.asarray(center_of_buoyancy), self.params))

    def jacobian(self, center_of_buoyancy: np.ndarray) -> np.ndarray:
        return np.asarray(_angular_jacobian_cob(self.forces, jnp.asarray(center_of_buoyancy), self.params))
