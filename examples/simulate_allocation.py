"""
Offline allocation demo.
Runs the controller against scripted commands and thruster faults and plots
the resulting thruster forces, plus a buoyancy calibration sweep.
"""
import numpy as np
import matplotlib.pyplot as plt
from matplotlib.gridspec import GridSpec
from scipy.spatial.transform import Rotation
import sys
import os

# Add thruster_controller to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from thruster_controller.allocation_matrix import AXES
from thruster_controller.buoyancy_calibration import BuoyancyCalibrator
from thruster_controller.controller import ThrusterController
from thruster_controller.mode_controller import SolveMode
from thruster_controller.state import VehicleState
from thruster_controller.vehicle_properties import load_vehicle_properties_from_yaml

CONFIG = os.path.join(os.path.dirname(__file__), '..', 'config', 'vehicle_properties.yaml')


def command_profile(t):
    """Scripted 6-DOF acceleration command."""
    surge = 0.4 if 1.0 <= t < 9.0 else 0.0
    heave = -0.2 * np.sin(0.5 * t)
    yaw = 0.3 if 4.0 <= t < 6.0 else 0.0
    return np.array([surge, 0.0, heave, 0.0, 0.0, yaw])


def plot_fault_scenario():
    """Plot thruster forces while a heave thruster fails and recovers."""
    print("Generating fault scenario plots...")

    properties = load_vehicle_properties_from_yaml(CONFIG)
    # Offline run: the first cycle includes JIT compilation
    controller = ThrusterController(properties, period=10.0)
    controller.state.update_depth(2.0)

    dt = 0.05
    t_sim = 12.0
    steps = int(t_sim / dt)
    time = np.linspace(0, t_sim, steps)
    fault_on, fault_off = 3.0, 7.0
    faulty = 'heave_port_fwd'

    forces = []
    residuals = []
    commands = []

    for t in time:
        if np.isclose(t, fault_on, atol=dt / 2):
            controller.modes.request_thruster_state(faulty, False)
        if np.isclose(t, fault_off, atol=dt / 2):
            controller.modes.request_thruster_state(faulty, True)

        command = command_profile(t)
        controller.state.update_command(command[:3], command[3:])
        output = controller.step()

        forces.append(output.result.forces.copy())
        residuals.append(output.result.residuals.copy())
        commands.append(command)

    forces = np.array(forces)
    residuals = np.array(residuals)
    commands = np.array(commands)

    # Create figure
    fig = plt.figure(figsize=(15, 10))
    gs = GridSpec(3, 1, figure=fig, height_ratios=[1, 2, 1])

    # Plot 1: Command
    ax1 = fig.add_subplot(gs[0])
    for i, axis in enumerate(AXES):
        if np.any(commands[:, i]):
            ax1.plot(time, commands[:, i], label=axis)
    ax1.set_ylabel('Command [m/s², rad/s²]')
    ax1.set_title('Commanded Acceleration')
    ax1.legend(loc='upper right')
    ax1.grid(True, alpha=0.3)

    # Plot 2: Thruster forces
    ax2 = fig.add_subplot(gs[1], sharex=ax1)
    for j, name in enumerate(properties.thruster_names):
        style = 'k-' if name == faulty else '-'
        ax2.plot(time, forces[:, j], style, label=name, linewidth=2 if name == faulty else 1)
    ax2.axvspan(fault_on, fault_off, color='red', alpha=0.1, label=f'{faulty} disabled')
    ax2.axhline(properties.thrust_limits.max_thrust, color='gray', linestyle='--')
    ax2.axhline(properties.thrust_limits.min_thrust, color='gray', linestyle='--')
    ax2.set_ylabel('Force [N]')
    ax2.set_title('Thruster Forces')
    ax2.legend(loc='upper right', ncol=2, fontsize=8)
    ax2.grid(True, alpha=0.3)

    # Plot 3: Residual norm
    ax3 = fig.add_subplot(gs[2], sharex=ax1)
    ax3.semilogy(time, np.linalg.norm(residuals, axis=1) + 1e-16, 'b-')
    ax3.set_xlabel('Time [s]')
    ax3.set_ylabel('|residual|')
    ax3.set_title('EOM Residual')
    ax3.grid(True, alpha=0.3)

    plt.tight_layout()
    plt.savefig('fault_scenario.png', dpi=150, bbox_inches='tight')
    print("  Saved: fault_scenario.png")
    plt.close()


def plot_buoyancy_calibration():
    """Plot the recovered center of buoyancy over a range of pitch angles."""
    print("Generating buoyancy calibration plots...")

    properties = load_vehicle_properties_from_yaml(CONFIG)
    calibrator = BuoyancyCalibrator()
    true_cob = np.array([0.01, -0.005, 0.02])

    pitches = np.linspace(-30.0, 30.0, 25)
    estimates = []
    expected = []

    for pitch in pitches:
        rotation = Rotation.from_euler('y', pitch, degrees=True).as_matrix().T
        up = rotation[:, 2]
        # Forces an attitude controller would settle on to hold this pitch
        moment = np.cross(true_cob, up * properties.buoyancy)
        forces, *_ = np.linalg.lstsq(properties.allocation_matrix[3:], -moment, rcond=None)

        state = VehicleState(rotation=rotation, depth=2.0)
        result = calibrator.solve(state, properties, forces)
        estimates.append(result.center_of_buoyancy)
        expected.append(true_cob - np.dot(true_cob, up) * up)

    estimates = np.array(estimates)
    expected = np.array(expected)

    fig, axes = plt.subplots(1, 3, figsize=(15, 4), sharey=True)
    for i, (ax, label) in enumerate(zip(axes, ['x', 'y', 'z'])):
        ax.plot(pitches, true_cob[i] * np.ones_like(pitches) * 1000, 'k--', label='true')
        ax.plot(pitches, expected[:, i] * 1000, 'g-', linewidth=3, alpha=0.4, label='observable part')
        ax.plot(pitches, estimates[:, i] * 1000, 'b.', label='estimate')
        ax.set_xlabel('Pitch [deg]')
        ax.set_title(f'CoB {label}')
        ax.grid(True, alpha=0.3)
    axes[0].set_ylabel('Offset [mm]')
    axes[0].legend()

    plt.tight_layout()
    plt.savefig('buoyancy_calibration.png', dpi=150, bbox_inches='tight')
    print("  Saved: buoyancy_calibration.png")
    plt.close()


def run_calibration_cycle():
    """Run calibration through the controller and report the accepted estimate."""
    properties = load_vehicle_properties_from_yaml(CONFIG)
    controller = ThrusterController(properties, period=10.0)
    true_cob = np.array([0.01, -0.02, 0.0])

    controller.state.update_depth(2.0)
    moment = np.cross(true_cob, [0.0, 0.0, properties.buoyancy])
    controller.state.update_command(np.zeros(3), -moment / properties.inertia[3:])
    controller.step()

    controller.modes.request_mode(SolveMode.BUOYANCY_CALIBRATION)
    output = controller.step()
    controller.accept_calibration()
    controller.modes.request_mode(SolveMode.NORMAL)
    controller.step()

    print(f"  Calibration estimate: {np.round(output.calibration.center_of_buoyancy, 4)} m "
          f"(true {true_cob} m)")


def main():
    """Generate all plots."""
    print("\n" + "="*60)
    print("Thruster Allocation Visualization")
    print("="*60 + "\n")

    plot_fault_scenario()
    plot_buoyancy_calibration()
    run_calibration_cycle()

    print("\n" + "="*60)
    print("All plots generated successfully!")
    print("="*60 + "\n")


if __name__ == "__main__":
    main()
