import os

import numpy as np
import rclpy
from ament_index_python.packages import PackageNotFoundError, get_package_share_directory
from geometry_msgs.msg import Accel, Vector3Stamped
from rcl_interfaces.msg import SetParametersResult
from rclpy.callback_groups import MutuallyExclusiveCallbackGroup, ReentrantCallbackGroup
from rclpy.executors import MultiThreadedExecutor
from rclpy.logging import get_logger
from rclpy.node import Node
from sensor_msgs.msg import Imu
from std_msgs.msg import Bool, Float64, Float64MultiArray

from thruster_controller.controller import ThrusterController
from thruster_controller.errors import ConfigError, InvalidMeasurement
from thruster_controller.mode_controller import SolveMode
from thruster_controller.problem import SolverOptions
from thruster_controller.state import rotation_from_quaternion
from thruster_controller.vehicle_properties import (
    LIVE_PROPERTIES,
    load_config_file,
    load_vehicle_properties,
)


class ThrusterControllerNode(Node):
    def __init__(self):
        super().__init__('thruster_controller')

        # Declare parameters
        self.declare_parameter('vehicle_properties_file', 'vehicle_properties.yaml')
        self.declare_parameter('rate_hz', 20.0)
        self.declare_parameter('debug_controller', False)  # Allow live property tuning
        self.declare_parameter('persist_calibration', False)  # Keep CoB estimate on calibration exit
        self.declare_parameter('frame_id', 'base_link')

        # Load vehicle properties from YAML (ConfigError aborts startup)
        properties_file = self.get_parameter('vehicle_properties_file').get_parameter_value().string_value
        yaml_path = self._resolve_config_path(properties_file)
        self.get_logger().info(f"Loading vehicle properties from: {yaml_path}")
        config = load_config_file(yaml_path)
        self.properties = load_vehicle_properties(config, logger=self.get_logger())
        self.get_logger().info(
            f"Loaded vehicle with {self.properties.num_thrusters} thrusters, "
            f"mass={self.properties.mass:.2f} kg, buoyancy={self.properties.buoyancy:.1f} N"
        )

        rate_hz = self.get_parameter('rate_hz').get_parameter_value().double_value
        if rate_hz <= 0.0:
            raise ConfigError("rate_hz must be positive")
        self.debug_controller = self.get_parameter('debug_controller').get_parameter_value().bool_value
        self.persist_calibration = self.get_parameter('persist_calibration').get_parameter_value().bool_value
        self.frame_id = self.get_parameter('frame_id').get_parameter_value().string_value

        calibration = config.get('calibration') or {}
        try:
            solver_options = SolverOptions.from_config(config.get('solver'))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid solver options: {e}") from e

        self.controller = ThrusterController(
            self.properties,
            period=1.0 / rate_hz,
            solver_options=solver_options,
            angular_velocity_tolerance=float(calibration.get('angular_velocity_tolerance', 0.05)),
            logger=self.get_logger()
        )

        # Live-tunable properties, mirrored as parameters
        self.declare_parameter('mass', self.properties.mass)
        self.declare_parameter('volume', self.properties.volume)
        self.declare_parameter('Ixx', self.properties.Ixx)
        self.declare_parameter('Iyy', self.properties.Iyy)
        self.declare_parameter('Izz', self.properties.Izz)
        self.declare_parameter('buoyancy_depth_thresh', self.properties.buoyancy_depth_thresh)
        self.declare_parameter('center_of_buoyancy', self.properties.center_of_buoyancy.tolist())
        self.declare_parameter('thruster_enabled', self.properties.enabled_mask.tolist())
        self.add_on_set_parameters_callback(self.parameters_callback)

        # Inputs may arrive while a solve is running
        self.input_group = ReentrantCallbackGroup()
        self.loop_group = MutuallyExclusiveCallbackGroup()

        # Publishers, one per thruster
        names = self.properties.thruster_names
        self.thrust_pubs = [self.create_publisher(Float64, f'thrust/{name}', 10) for name in names]
        self.residual_pub = self.create_publisher(Float64MultiArray, 'thrust/residuals', 10)
        self.buoyancy_pub = self.create_publisher(Vector3Stamped, 'buoyancy/center', 10)

        # Subscribers
        self.create_subscription(Imu, 'imu/data', self.imu_callback, 10, callback_group=self.input_group)
        self.create_subscription(Float64, 'depth', self.depth_callback, 10, callback_group=self.input_group)
        self.create_subscription(Accel, 'command/accel', self.accel_callback, 10, callback_group=self.input_group)
        self.create_subscription(Bool, 'calibrate_buoyancy', self.calibration_callback, 10,
                                 callback_group=self.input_group)
        for name in names:
            self.create_subscription(
                Bool, f'thruster_enable/{name}',
                lambda msg, name=name: self.thruster_enable_callback(name, msg),
                10, callback_group=self.input_group
            )

        # Control loop timer
        self.timer = self.create_timer(1.0 / rate_hz, self.control_loop, callback_group=self.loop_group)

    def _resolve_config_path(self, filename: str) -> str:
        if os.path.isabs(filename):
            return filename
        try:
            # Try package share directory first
            pkg_dir = get_package_share_directory('thruster_controller')
            return os.path.join(pkg_dir, 'config', filename)
        except PackageNotFoundError:
            # Fall back to relative path
            return os.path.join(os.path.dirname(__file__), '..', 'config', filename)

    def imu_callback(self, msg: Imu):
        """Orientation and angular velocity from the attitude filter"""
        q = msg.orientation
        try:
            rotation = rotation_from_quaternion(q.x, q.y, q.z, q.w)
        except InvalidMeasurement as e:
            self.get_logger().warning(f"Dropping IMU sample: {e}", throttle_duration_sec=1.0)
            return
        w = msg.angular_velocity
        self.controller.state.update_imu(rotation, [w.x, w.y, w.z])

    def depth_callback(self, msg: Float64):
        self.controller.state.update_depth(msg.data)

    def accel_callback(self, msg: Accel):
        """Commanded linear and angular acceleration"""
        self.controller.state.update_command(
            [msg.linear.x, msg.linear.y, msg.linear.z],
            [msg.angular.x, msg.angular.y, msg.angular.z]
        )

    def thruster_enable_callback(self, name: str, msg: Bool):
        """Thruster fault report: data=False disables the thruster"""
        self.controller.modes.request_thruster_state(name, msg.data)

    def calibration_callback(self, msg: Bool):
        if msg.data:
            self.controller.modes.request_mode(SolveMode.BUOYANCY_CALIBRATION)
            return
        if self.persist_calibration and self.controller.modes.mode == SolveMode.BUOYANCY_CALIBRATION:
            self.controller.accept_calibration()
        self.controller.modes.request_mode(SolveMode.NORMAL)

    def parameters_callback(self, params):
        """Live property patches, only honoured with debug_controller set"""
        live = [p for p in params if p.name in LIVE_PROPERTIES or p.name == 'thruster_enabled']
        if not live:
            return SetParametersResult(successful=True)
        if not self.debug_controller:
            return SetParametersResult(successful=False, reason='debug_controller is disabled')

        # Validate everything before queueing anything
        patches = []
        try:
            for p in live:
                value = list(p.value) if p.name in ('thruster_enabled', 'center_of_buoyancy') else p.value
                if p.name == 'thruster_enabled':
                    if len(value) != self.properties.num_thrusters:
                        raise ConfigError(
                            f"thruster_enabled needs {self.properties.num_thrusters} entries"
                        )
                else:
                    self.properties.validate_property(p.name, value)
                patches.append((p.name, value))
        except (ConfigError, TypeError) as e:
            return SetParametersResult(successful=False, reason=str(e))

        for name, value in patches:
            if name == 'thruster_enabled':
                for index, enabled in enumerate(value):
                    self.controller.modes.request_thruster_state(index, bool(enabled))
            else:
                self.controller.modes.request_property_update(name, value)
        return SetParametersResult(successful=True)

    def control_loop(self):
        """Main control loop - runs at rate_hz"""
        output = self.controller.step()
        forces = output.result.forces

        # Publish directly to thruster topics
        for pub, force in zip(self.thrust_pubs, forces):
            pub.publish(Float64(data=float(force)))

        limits = self.properties.thrust_limits
        if np.any(forces > limits.max_thrust) or np.any(forces < limits.min_thrust):
            self.get_logger().warning(
                f"Thrust outside advisory limits [{limits.min_thrust:.1f}, {limits.max_thrust:.1f}] N: "
                f"{np.array2string(forces, precision=2)}",
                throttle_duration_sec=1.0
            )

        residuals = Float64MultiArray()
        residuals.data = [float(r) for r in output.result.residuals]
        self.residual_pub.publish(residuals)

        if output.calibration is not None:
            cob = output.calibration.center_of_buoyancy
            msg = Vector3Stamped()
            msg.header.stamp = self.get_clock().now().to_msg()
            msg.header.frame_id = self.frame_id
            msg.vector.x, msg.vector.y, msg.vector.z = (float(v) for v in cob)
            self.buoyancy_pub.publish(msg)
            self.get_logger().info(
                f"CoB estimate=[{cob[0]:.4f}, {cob[1]:.4f}, {cob[2]:.4f}] m, "
                f"converged={output.calibration.converged}",
                throttle_duration_sec=1.0
            )


def main(args=None):
    rclpy.init(args=args)
    try:
        node = ThrusterControllerNode()
    except ConfigError as e:
        get_logger('thruster_controller').fatal(f"Invalid vehicle properties: {e}")
        rclpy.shutdown()
        raise SystemExit(1) from e

    executor = MultiThreadedExecutor()
    executor.add_node(node)
    try:
        executor.spin()
    finally:
        node.destroy_node()
        rclpy.shutdown()
