"""
Tests for the equations-of-motion residual and its autodiff Jacobians.
"""
import numpy as np
import pytest
from thruster_controller.eom import (
    CenterOfBuoyancyBlock,
    ThrusterForceBlock,
    make_parameters,
)

from conftest import SUBMERGED_DEPTH, make_state


class TestEOMResidual:
    """Test the residual for fixed thruster forces."""

    def test_zero_state(self, properties):
        """At rest, surfaced and with zero thrust the residual is -command."""
        command = np.array([0.5, -0.1, 0.2, 0.3, -0.4, 0.05])
        params = make_parameters(make_state(command=command), properties)
        block = ThrusterForceBlock(params, properties.center_of_buoyancy)

        residual = block.evaluate(np.zeros(8))

        assert np.allclose(residual, -command)

    def test_thrust_contribution(self, properties):
        """Residual is A f / inertia for zero command."""
        params = make_parameters(make_state(), properties)
        block = ThrusterForceBlock(params, properties.center_of_buoyancy)
        forces = np.array([1.0, 2.0, -1.0, 0.5, 3.0, -2.0, 0.0, 1.5])

        residual = block.evaluate(forces)

        expected = properties.allocation_matrix @ forces / properties.inertia
        assert np.allclose(residual, expected)

    def test_heave_imbalance(self, properties):
        """Submerged and upright, heave carries (B - W) / M."""
        properties.update_property('volume', 0.035)
        params = make_parameters(make_state(depth=SUBMERGED_DEPTH), properties)
        block = ThrusterForceBlock(params, properties.center_of_buoyancy)

        residual = block.evaluate(np.zeros(8))

        expected = (properties.buoyancy - properties.weight) / properties.mass
        assert residual[2] == pytest.approx(expected)
        assert np.allclose(residual[[0, 1, 3, 4, 5]], 0.0)

    def test_buoyancy_gated_at_surface(self, properties):
        """Above the depth threshold buoyancy and weight drop out."""
        properties.update_property('volume', 0.035)
        properties.update_property('center_of_buoyancy', [0.0, 0.0, 0.05])
        params = make_parameters(make_state(depth=0.1), properties)
        block = ThrusterForceBlock(params, properties.center_of_buoyancy)

        assert np.allclose(block.evaluate(np.zeros(8)), 0.0)

    def test_buoyancy_moment(self, properties):
        """Offset center of buoyancy produces a moment C x (up * B)."""
        cob = np.array([0.02, -0.01, 0.0])
        params = make_parameters(make_state(depth=SUBMERGED_DEPTH), properties)
        block = ThrusterForceBlock(params, cob)

        residual = block.evaluate(np.zeros(8))

        B = properties.buoyancy
        # up = [0, 0, 1] when upright: C x [0, 0, B] = [Cy B, -Cx B, 0]
        expected = np.array([cob[1] * B, -cob[0] * B, 0.0]) / properties.inertia[3:]
        assert np.allclose(residual[3:], expected)

    def test_rolled_vehicle(self, properties):
        """Rolled 90 degrees, the imbalance acts along body y."""
        properties.update_property('volume', 0.035)
        rotation = np.array([
            [1.0, 0.0, 0.0],
            [0.0, 0.0, 1.0],
            [0.0, -1.0, 0.0],
        ])
        params = make_parameters(make_state(depth=SUBMERGED_DEPTH, rotation=rotation), properties)
        block = ThrusterForceBlock(params, properties.center_of_buoyancy)

        residual = block.evaluate(np.zeros(8))

        expected = (properties.buoyancy - properties.weight) / properties.mass
        assert residual[1] == pytest.approx(expected)
        assert residual[2] == pytest.approx(0.0)

    def test_roll_transport_term(self, properties):
        """Roll row carries -(r q)(Izz - Iyy) / Ixx."""
        w = np.array([0.0, 0.4, 0.5])
        params = make_parameters(make_state(angular_velocity=w), properties)
        block = ThrusterForceBlock(params, properties.center_of_buoyancy)

        residual = block.evaluate(np.zeros(8))

        expected_roll = -(w[2] * w[1]) * (properties.Izz - properties.Iyy) / properties.Ixx
        assert residual[3] == pytest.approx(expected_roll)
        assert residual[4] == pytest.approx(0.0)
        assert residual[5] == pytest.approx(0.0)

    def test_pitch_and_yaw_transport(self, properties):
        w = np.array([0.3, 0.2, 0.1])
        params = make_parameters(make_state(angular_velocity=w), properties)
        block = ThrusterForceBlock(params, properties.center_of_buoyancy)

        residual = block.evaluate(np.zeros(8))

        p, q, r = w
        assert residual[4] == pytest.approx(-(p * r) * (properties.Ixx - properties.Izz) / properties.Iyy)
        assert residual[5] == pytest.approx(-(q * p) * (properties.Iyy - properties.Ixx) / properties.Izz)

    def test_command_override(self, properties):
        state = make_state(command=np.ones(6))
        params = make_parameters(state, properties, command=np.zeros(6))
        block = ThrusterForceBlock(params, properties.center_of_buoyancy)

        assert np.allclose(block.evaluate(np.zeros(8)), 0.0)


class TestEOMJacobian:
    """Test forward-mode Jacobians."""

    def test_force_jacobian_is_scaled_allocation(self, properties):
        """d residual / d f = A / inertia, independent of the forces."""
        params = make_parameters(
            make_state(depth=SUBMERGED_DEPTH, angular_velocity=[0.1, -0.2, 0.3]), properties
        )
        block = ThrusterForceBlock(params, [0.01, 0.0, 0.02])
        expected = properties.allocation_matrix / properties.inertia[:, None]

        for forces in (np.zeros(8), np.linspace(-5.0, 5.0, 8)):
            J = block.jacobian(forces)
            assert J.shape == (6, 8)
            assert np.allclose(J, expected)

    def test_cob_jacobian_matches_finite_difference(self, properties):
        rotation = np.array([
            [0.9, 0.1, -0.42],
            [-0.1, 0.99, 0.0],
            [0.42, 0.04, 0.9],
        ])
        rotation, _ = np.linalg.qr(rotation)
        params = make_parameters(make_state(depth=SUBMERGED_DEPTH, rotation=rotation), properties)
        block = CenterOfBuoyancyBlock(params, np.linspace(-2.0, 2.0, 8))
        cob = np.array([0.01, -0.02, 0.03])

        J = block.jacobian(cob)

        eps = 1e-6
        numeric = np.zeros((3, 3))
        for k in range(3):
            step = np.zeros(3)
            step[k] = eps
            numeric[:, k] = (block.evaluate(cob + step) - block.evaluate(cob - step)) / (2 * eps)
        assert J.shape == (3, 3)
        assert np.allclose(J, numeric, atol=1e-6)

    def test_cob_jacobian_zero_at_surface(self, properties):
        """Without buoyancy the angular rows do not depend on the CoB."""
        params = make_parameters(make_state(depth=0.0), properties)
        block = CenterOfBuoyancyBlock(params, np.zeros(8))

        assert np.allclose(block.jacobian(np.zeros(3)), 0.0)

    def test_cob_jacobian_forced_buoyant(self, properties):
        """The buoyancy gate can be overridden for calibration."""
        params = make_parameters(make_state(depth=0.0), properties, buoyant=True)
        block = CenterOfBuoyancyBlock(params, np.zeros(8))

        assert not np.allclose(block.jacobian(np.zeros(3)), 0.0)
