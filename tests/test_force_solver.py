"""
Tests for the thruster force solver and the least-squares problem it builds.
"""
import pytest
import numpy as np
from thruster_controller.errors import SolverDivergence
from thruster_controller.force_solver import ForceSolver, SolveResult
from thruster_controller.problem import (
    LeastSquaresProblem,
    SolverOptions,
    ZeroForceConstraint,
)

from conftest import HEAVE, SUBMERGED_DEPTH, SURGE, SWAY, make_state


@pytest.fixture
def solver():
    return ForceSolver()


class TestEquilibrium:
    """Test the zero-command, neutral-buoyancy case."""

    def test_zero_command_zero_thrust(self, solver, properties):
        """Neutrally buoyant at rest needs no thrust."""
        result = solver.solve(make_state(depth=SUBMERGED_DEPTH), properties)

        assert result.converged
        assert np.allclose(result.forces, 0.0, atol=1e-9)
        assert np.allclose(result.residuals, 0.0, atol=1e-9)

    def test_positive_buoyancy_is_held_down(self, solver, properties):
        """Submerged with B > W the heave thrusters push down evenly."""
        properties.update_property('volume', 0.032)
        result = solver.solve(make_state(depth=SUBMERGED_DEPTH), properties)

        excess = properties.buoyancy - properties.weight
        assert result.converged
        assert np.allclose(result.forces[HEAVE], -excess / 4.0, atol=1e-6)
        assert np.allclose(result.forces[SURGE + SWAY], 0.0, atol=1e-6)


class TestAxisIsolation:
    """Test that a single-axis command only drives the thrusters for that axis."""

    def test_surge(self, solver, properties):
        a = 0.8
        result = solver.solve(make_state(command=[a, 0, 0, 0, 0, 0]), properties)

        assert result.converged
        assert np.allclose(result.forces[SURGE], properties.mass * a / 2.0, atol=1e-6)
        assert np.allclose(result.forces[SWAY + HEAVE], 0.0, atol=1e-6)
        assert np.allclose(result.residuals, 0.0, atol=1e-6)

    def test_heave(self, solver, properties):
        a = -0.5
        result = solver.solve(make_state(command=[0, 0, a, 0, 0, 0]), properties)

        assert np.allclose(result.forces[HEAVE], properties.mass * a / 4.0, atol=1e-6)
        assert np.allclose(result.forces[SURGE + SWAY], 0.0, atol=1e-6)

    def test_sway_leaves_heave_idle(self, solver, properties):
        result = solver.solve(make_state(command=[0, 0.3, 0, 0, 0, 0]), properties)

        assert np.allclose(result.forces[HEAVE], 0.0, atol=1e-6)
        assert np.isclose(result.forces[SWAY].sum(), properties.mass * 0.3, atol=1e-6)
        assert np.allclose(result.residuals, 0.0, atol=1e-6)


class TestDisabledThrusters:
    """Test the zero-force guarantee for faulty thrusters."""

    COMMAND = [0.4, -0.2, 0.3, 0.1, -0.05, 0.2]

    @pytest.mark.parametrize("index", range(8))
    def test_disabled_thruster_is_zero(self, solver, properties, index):
        """Any single fault leaves 6-axis control with the faulty thruster at zero."""
        properties.set_enabled(index, False)

        result = solver.solve(make_state(command=self.COMMAND), properties)

        assert result.converged
        assert abs(result.forces[index]) < 1e-6
        assert np.allclose(result.residuals, 0.0, atol=1e-6)

    def test_whole_axis_disabled(self, solver, properties):
        """Both sway thrusters out: sway is unreachable but they still stay at zero."""
        properties.set_enabled(SWAY[0], False)
        properties.set_enabled(SWAY[1], False)

        result = solver.solve(make_state(command=[0.0, 0.3, 0.0, 0.0, 0.0, 0.0]), properties)

        assert np.allclose(result.forces[SWAY], 0.0, atol=1e-6)
        assert result.residuals[1] == pytest.approx(-0.3)
        assert np.allclose(result.residuals[[0, 2, 3, 4, 5]], 0.0, atol=1e-6)

    def test_constraint_weight_from_options(self, properties):
        solver = ForceSolver(SolverOptions(constraint_weight=50.0))
        properties.set_enabled(4, False)
        problem, _ = solver.build_problem(make_state(), properties)
        constraint = problem.residual_blocks[1]
        assert constraint.weight == 50.0
        assert np.allclose(constraint.evaluate(np.full(8, 2.0)), [100.0])

    def test_two_disabled(self, solver, properties):
        properties.set_enabled('surge_port_lo', False)
        properties.set_enabled('heave_stbd_aft', False)

        result = solver.solve(make_state(command=self.COMMAND), properties)

        assert abs(result.forces[0]) < 1e-6
        assert abs(result.forces[7]) < 1e-6

    def test_block_count(self, solver, properties):
        """One EOM block plus one constraint per disabled thruster."""
        problem, _ = solver.build_problem(make_state(), properties)
        assert len(problem.residual_blocks) == 1
        assert problem.num_residuals == 6

        properties.set_enabled(2, False)
        properties.set_enabled(5, False)
        problem, _ = solver.build_problem(make_state(), properties)
        assert len(problem.residual_blocks) == 3
        assert problem.num_residuals == 8
        constrained = [b.index for b in problem.residual_blocks if isinstance(b, ZeroForceConstraint)]
        assert constrained == [2, 5]

    def test_reenable_restores_solution(self, solver, properties):
        """Disable then enable, with the warm start reset, gives the original answer."""
        state = make_state(command=self.COMMAND)
        original = solver.solve(state, properties)

        properties.set_enabled(3, False)
        solver.reset()
        solver.accept(solver.solve(state, properties))
        properties.set_enabled(3, True)
        solver.reset()
        restored = solver.solve(state, properties)

        assert np.allclose(restored.forces, original.forces, atol=1e-6)


class TestWarmStart:
    """Test warm-start bookkeeping."""

    def test_initially_empty(self, solver):
        assert solver.warm_start is None

    def test_accept_and_reset(self, solver, properties):
        result = solver.solve(make_state(command=[0.2, 0, 0, 0, 0, 0]), properties)
        solver.accept(result)
        assert np.allclose(solver.warm_start, result.forces)

        solver.reset()
        assert solver.warm_start is None

    def test_warm_start_is_a_copy(self, solver, properties):
        result = solver.solve(make_state(command=[0.2, 0, 0, 0, 0, 0]), properties)
        solver.accept(result)
        solver.warm_start[0] = 1000.0
        assert np.isclose(solver.warm_start[0], result.forces[0])

    def test_warm_started_solve_is_immediate(self, solver, properties):
        """Same state again: the warm start already satisfies the EOM."""
        state = make_state(command=[0.2, 0.1, 0, 0, 0, 0.1])
        first = solver.solve(state, properties)
        solver.accept(first)

        second = solver.solve(state, properties)

        assert second.converged
        assert second.iterations <= first.iterations
        assert np.allclose(second.forces, first.forces, atol=1e-9)

    def test_zero_result(self):
        result = SolveResult.zeros(8)
        assert not result.converged
        assert np.array_equal(result.forces, np.zeros(8))


class TestFailures:
    """Test non-convergence and divergence reporting."""

    def test_nan_command_diverges(self, solver, properties):
        state = make_state(command=[np.nan, 0, 0, 0, 0, 0])
        with pytest.raises(SolverDivergence):
            solver.solve(state, properties)

    def test_nan_depth_diverges(self, solver, properties):
        """A NaN depth would silently switch buoyancy off, so it is rejected."""
        with pytest.raises(SolverDivergence, match="not finite"):
            solver.solve(make_state(depth=float('nan')), properties)

    def test_iteration_budget(self, properties):
        """Running out of iterations is reported, not raised."""
        solver = ForceSolver(SolverOptions(max_iterations=1))
        result = solver.solve(make_state(command=[5.0, 0, 0, 0, 0, 0]), properties)

        assert not result.converged
        assert np.all(np.isfinite(result.forces))


class TestLeastSquaresProblem:
    """Test the generic problem container."""

    def test_empty_problem(self):
        with pytest.raises(ValueError, match="no residual blocks"):
            LeastSquaresProblem(2).solve(np.zeros(2))

    def test_wrong_initial_guess(self):
        problem = LeastSquaresProblem(2)
        problem.add_residual_block(ZeroForceConstraint(0, 2))
        with pytest.raises(ValueError, match="x0 must have length 2"):
            problem.solve(np.zeros(3))

    def test_constraint_only(self):
        problem = LeastSquaresProblem(2)
        problem.add_residual_block(ZeroForceConstraint(1, 2))
        summary = problem.solve([0.0, 3.0])
        assert summary.converged
        assert np.allclose(summary.x, [0.0, 0.0])

    def test_constraint_index_range(self):
        with pytest.raises(ValueError, match="out of range"):
            ZeroForceConstraint(4, 4)

    def test_constraint_weight_positive(self):
        with pytest.raises(ValueError, match="weight must be positive"):
            ZeroForceConstraint(0, 4, weight=0.0)

    @pytest.mark.parametrize("field,value", [
        ('max_iterations', 0),
        ('function_tolerance', 0.0),
        ('gradient_tolerance', -1.0),
        ('constraint_weight', 0.0),
    ])
    def test_invalid_options(self, field, value):
        with pytest.raises(ValueError, match=field):
            SolverOptions(**{field: value})

    def test_options_from_config(self):
        options = SolverOptions.from_config({'max_iterations': 20})
        assert options.max_iterations == 20
        assert options.function_tolerance == 1e-8
        assert SolverOptions.from_config(None) == SolverOptions()
