"""
Vehicle property model.

Holds the physical constants of the vehicle (mass, volume, inertia, center of
buoyancy) and the geometry of every thruster. Loaded once from the vehicle
properties YAML; afterwards only the thruster enabled flags and, in debug
mode, the live-tunable fields are changed.
"""
import logging
from dataclasses import dataclass
from typing import List, Sequence, Union

import numpy as np
import yaml

from thruster_controller.allocation_matrix import build_allocation_matrix
from thruster_controller.errors import ConfigError

GRAVITY = 9.81          # [m/s^2]
WATER_DENSITY = 1000.0  # [kg/m^3]

# Fields that may be patched at runtime through the reconfiguration channel
LIVE_PROPERTIES = ('mass', 'volume', 'Ixx', 'Iyy', 'Izz',
                   'center_of_buoyancy', 'buoyancy_depth_thresh')

ThrusterId = Union[int, str]


@dataclass
class ThrusterGeometry:
    """
    Geometry of a single fixed-orientation thruster.

    Attributes:
        name: Thruster name, e.g. 'heave_port_fwd'
        position: Position relative to the center of mass [m] (body frame)
        direction: Unit thrust direction (body frame)
        enabled: False while the thruster is reported faulty
    """
    name: str
    position: np.ndarray
    direction: np.ndarray
    enabled: bool = True


@dataclass(frozen=True)
class ThrustLimits:
    """Advisory per-thruster force limits [N]. Not enforced by the solver."""
    min_thrust: float = -24.0
    max_thrust: float = 24.0


def direction_from_angles(yaw_deg: float, pitch_deg: float) -> np.ndarray:
    """
    Thrust direction from mounting angles.

    Args:
        yaw_deg: Rotation about body z [deg]
        pitch_deg: Rotation about body y [deg]

    Returns:
        Unit direction vector in the body frame
    """
    yaw = np.radians(yaw_deg)
    pitch = np.radians(pitch_deg)
    direction = np.array([
        np.cos(yaw) * np.cos(pitch),
        np.sin(yaw) * np.cos(pitch),
        -np.sin(pitch),
    ])
    # cos(90 deg) is not exactly zero in floating point
    direction[np.abs(direction) < 1e-12] = 0.0
    return direction / np.linalg.norm(direction)


class VehicleProperties:
    """
    Physical and geometric description of the vehicle.

    Weight and buoyancy are derived from mass and volume, so they always stay
    consistent with live updates of either.
    """

    def __init__(
        self,
        mass: float,
        volume: float,
        inertia: Sequence[float],
        thrusters: List[ThrusterGeometry],
        buoyancy_depth_thresh: float,
        center_of_buoyancy: Sequence[float] = (0.0, 0.0, 0.0),
        thrust_limits: ThrustLimits = None,
        water_density: float = WATER_DENSITY,
        gravity: float = GRAVITY,
        logger: logging.Logger = None,
    ):
        """
        Args:
            mass: Vehicle mass [kg], must be positive
            volume: Displaced volume [m^3], must be non-negative
            inertia: Principal moments (Ixx, Iyy, Izz) [kg*m^2], all positive
            thrusters: Thruster geometry, one entry per allocation column
            buoyancy_depth_thresh: Depth [m] below which buoyancy is assumed acting
            center_of_buoyancy: Center of buoyancy relative to the CoM [m]
            thrust_limits: Advisory thrust limits for the output layer
            water_density: Water density [kg/m^3]
            gravity: Gravitational acceleration [m/s^2]
            logger: Optional logger for debugging

        Raises:
            ConfigError: If any value violates the physical invariants
        """
        _check_positive('mass', mass)
        _check_non_negative('volume', volume)
        inertia = _as_vector('inertia', inertia)
        for axis, value in zip(('Ixx', 'Iyy', 'Izz'), inertia):
            _check_positive(axis, value)
        _check_positive('water_density', water_density)
        _check_positive('gravity', gravity)
        if not thrusters:
            raise ConfigError("At least one thruster must be configured")
        names = [t.name for t in thrusters]
        if len(set(names)) != len(names):
            raise ConfigError(f"Thruster names must be unique, got {names}")

        self.mass = float(mass)
        self.volume = float(volume)
        self.Ixx, self.Iyy, self.Izz = (float(v) for v in inertia)
        self.center_of_buoyancy = _as_vector('center_of_buoyancy', center_of_buoyancy)
        self.buoyancy_depth_thresh = _as_number('buoyancy_depth_thresh', buoyancy_depth_thresh)
        self.thrust_limits = thrust_limits or ThrustLimits()
        self.water_density = float(water_density)
        self.gravity = float(gravity)
        self.thrusters = thrusters
        self._allocation = None
        self.logger = logger or logging.getLogger(__name__)

        rank = self.control_rank
        if rank < 6:
            self.logger.warning(
                f"Thruster layout only spans {rank} of 6 axes; "
                f"commands outside that span cannot be met"
            )

    @property
    def weight(self) -> float:
        return self.mass * self.gravity

    @property
    def buoyancy(self) -> float:
        return self.volume * self.water_density * self.gravity

    @property
    def inertia(self) -> np.ndarray:
        """Per-axis inertia [M, M, M, Ixx, Iyy, Izz] used as EOM denominators."""
        return np.array([self.mass, self.mass, self.mass, self.Ixx, self.Iyy, self.Izz])

    @property
    def num_thrusters(self) -> int:
        return len(self.thrusters)

    @property
    def thruster_names(self) -> List[str]:
        return [t.name for t in self.thrusters]

    @property
    def enabled_mask(self) -> np.ndarray:
        return np.array([t.enabled for t in self.thrusters], dtype=bool)

    @property
    def allocation_matrix(self) -> np.ndarray:
        """6xN allocation matrix, rebuilt only after a geometry change."""
        if self._allocation is None:
            self._allocation = build_allocation_matrix(self.thrusters)
        return self._allocation

    @property
    def control_rank(self) -> int:
        """Number of independent axes the thruster geometry can actuate."""
        return int(np.linalg.matrix_rank(self.allocation_matrix))

    def is_buoyant(self, depth: float) -> bool:
        """Buoyancy only acts once the vehicle is submerged past the threshold."""
        return depth > self.buoyancy_depth_thresh

    def thruster_index(self, thruster_id: ThrusterId) -> int:
        """Resolve a thruster index or name to a column index."""
        if isinstance(thruster_id, str):
            try:
                return self.thruster_names.index(thruster_id)
            except ValueError:
                raise ConfigError(f"Unknown thruster '{thruster_id}'") from None
        index = int(thruster_id)
        if not 0 <= index < self.num_thrusters:
            raise ConfigError(
                f"Thruster id {thruster_id} out of range [0, {self.num_thrusters - 1}]"
            )
        return index

    def set_enabled(self, thruster_id: ThrusterId, enabled: bool) -> None:
        """Enable or disable one thruster. The allocation matrix is untouched."""
        self.thrusters[self.thruster_index(thruster_id)].enabled = bool(enabled)

    def set_thruster_geometry(self, thruster_id: ThrusterId, position=None, direction=None) -> None:
        """Move or re-orient a thruster; invalidates the cached allocation matrix."""
        thruster = self.thrusters[self.thruster_index(thruster_id)]
        if position is not None:
            thruster.position = _as_vector('position', position)
        if direction is not None:
            thruster.direction = _unit_vector(thruster.name, direction)
        self._allocation = None

    def validate_property(self, name: str, value):
        """
        Check a live property patch without applying it.

        Returns:
            The value converted to its stored type

        Raises:
            ConfigError: If the name is unknown or the value out of range
        """
        if name not in LIVE_PROPERTIES:
            raise ConfigError(f"Property '{name}' cannot be updated at runtime")
        if name == 'center_of_buoyancy':
            return _as_vector(name, value)
        if name == 'volume':
            return _check_non_negative(name, value)
        if name == 'buoyancy_depth_thresh':
            return _as_number(name, value)
        return _check_positive(name, value)

    def update_property(self, name: str, value) -> None:
        """Apply a validated live patch. Invalid values leave state untouched."""
        setattr(self, name, self.validate_property(name, value))

    def get_state(self) -> dict:
        """Get current properties for debugging/logging."""
        return {
            'mass': self.mass,
            'volume': self.volume,
            'weight': self.weight,
            'buoyancy': self.buoyancy,
            'inertia': [self.Ixx, self.Iyy, self.Izz],
            'center_of_buoyancy': self.center_of_buoyancy.tolist(),
            'buoyancy_depth_thresh': self.buoyancy_depth_thresh,
            'enabled': {t.name: t.enabled for t in self.thrusters},
        }


def load_vehicle_properties(config: dict, logger: logging.Logger = None) -> VehicleProperties:
    """
    Build VehicleProperties from a parsed configuration dictionary.

    Args:
        config: Dictionary with 'properties' and 'thrusters' sections
        logger: Optional logger passed on to VehicleProperties

    Returns:
        Validated VehicleProperties

    Raises:
        ConfigError: If a parameter is missing, non-numeric or out of range
    """
    if not isinstance(config, dict):
        raise ConfigError("Vehicle configuration must be a mapping")
    props = config.get('properties')
    if not isinstance(props, dict):
        raise ConfigError("Missing 'properties' section")

    thrusters = [_load_thruster(i, entry) for i, entry in enumerate(config.get('thrusters') or [])]

    return VehicleProperties(
        mass=_require(props, 'mass'),
        volume=_require(props, 'volume'),
        inertia=[_require(props, axis) for axis in ('Ixx', 'Iyy', 'Izz')],
        thrusters=thrusters,
        buoyancy_depth_thresh=_require(props, 'buoyancy_depth_thresh'),
        center_of_buoyancy=props.get('center_of_buoyancy', [0.0, 0.0, 0.0]),
        thrust_limits=ThrustLimits(
            min_thrust=_as_number('min_thrust', props.get('min_thrust', -24.0)),
            max_thrust=_as_number('max_thrust', props.get('max_thrust', 24.0)),
        ),
        water_density=_as_number('water_density', props.get('water_density', WATER_DENSITY)),
        gravity=_as_number('gravity', props.get('gravity', GRAVITY)),
        logger=logger,
    )


def load_vehicle_properties_from_yaml(yaml_path: str) -> VehicleProperties:
    """Load and validate the vehicle properties YAML file."""
    return load_vehicle_properties(load_config_file(yaml_path))


def load_config_file(yaml_path: str) -> dict:
    """Read the raw vehicle configuration YAML."""
    try:
        with open(yaml_path, 'r') as f:
            config = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Cannot read vehicle properties from {yaml_path}: {e}") from e
    return config or {}


def _load_thruster(index: int, entry: dict) -> ThrusterGeometry:
    if not isinstance(entry, dict):
        raise ConfigError(f"Thruster #{index} must be a mapping")
    name = str(entry.get('name', f'thruster_{index}'))
    position = _as_vector(f'{name}.position', _require(entry, 'position'))

    if 'direction' in entry:
        direction = _unit_vector(name, entry['direction'])
    elif 'yaw' in entry or 'pitch' in entry:
        direction = direction_from_angles(
            _as_number(f'{name}.yaw', entry.get('yaw', 0.0)),
            _as_number(f'{name}.pitch', entry.get('pitch', 0.0)),
        )
    else:
        raise ConfigError(f"Thruster '{name}' needs either 'direction' or 'yaw'/'pitch'")

    enabled = entry.get('enabled', True)
    if not isinstance(enabled, bool):
        raise ConfigError(f"Thruster '{name}' enabled flag must be a boolean")

    return ThrusterGeometry(name=name, position=position, direction=direction, enabled=enabled)


def _require(section: dict, key: str):
    if key not in section or section[key] is None:
        raise ConfigError(f"Missing vehicle property '{key}'")
    return section[key]


def _as_number(name: str, value) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"'{name}' must be numeric, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"'{name}' must be numeric, got {value!r}") from None
    if not np.isfinite(number):
        raise ConfigError(f"'{name}' must be finite, got {value!r}")
    return number


def _as_vector(name: str, value) -> np.ndarray:
    if isinstance(value, (str, bytes)) or not hasattr(value, '__len__') or len(value) != 3:
        raise ConfigError(f"'{name}' must be a 3-vector, got {value!r}")
    return np.array([_as_number(name, v) for v in value], dtype=float)


def _unit_vector(name: str, value) -> np.ndarray:
    vector = _as_vector(f'{name}.direction', value)
    norm = np.linalg.norm(vector)
    if norm < 1e-9:
        raise ConfigError(f"Thruster '{name}' direction must be non-zero")
    return vector / norm


def _check_positive(name: str, value) -> float:
    number = _as_number(name, value)
    if number <= 0.0:
        raise ConfigError(f"{name} must be positive, got {number}")
    return number


def _check_non_negative(name: str, value) -> float:
    number = _as_number(name, value)
    if number < 0.0:
        raise ConfigError(f"{name} must be non-negative, got {number}")
    return number
