"""
Allocation matrix builder.

Maps individual thruster forces to the force/moment they produce on each
body axis:

    [F; tau] = A @ f

Column j holds thruster j's unit direction d_j (surge, sway, heave rows)
and its lever arm r_j x d_j (roll, pitch, yaw rows). For a sway thruster
d = [0, 1, 0] this gives -z on roll and +x on yaw, for a heave thruster
d = [0, 0, 1] it gives +y on roll and -x on pitch.
"""
import numpy as np

AXES = ('surge', 'sway', 'heave', 'roll', 'pitch', 'yaw')


def build_allocation_matrix(thrusters) -> np.ndarray:
    """
    Build the 6xN allocation matrix from thruster geometry.

    Args:
        thrusters: Sequence of objects with `position` and `direction` 3-vectors

    Returns:
        6xN matrix, one row per axis, one column per thruster
    """
    matrix = np.zeros((6, len(thrusters)), dtype=float)
    for j, thruster in enumerate(thrusters):
        direction = np.asarray(thruster.direction, dtype=float)
        position = np.asarray(thruster.position, dtype=float)
        matrix[:3, j] = direction
        matrix[3:, j] = np.cross(position, direction)
    return matrix
