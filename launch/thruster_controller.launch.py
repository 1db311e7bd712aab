#!/usr/bin/env python3
"""
Launch file for the thruster controller node.
"""
from launch import LaunchDescription
from launch_ros.actions import Node
from launch.actions import DeclareLaunchArgument
from launch.substitutions import LaunchConfiguration


def generate_launch_description():
    # Declare arguments
    vehicle_properties_arg = DeclareLaunchArgument(
        'vehicle_properties_file',
        default_value='vehicle_properties.yaml',
        description='Vehicle properties YAML file name'
    )

    rate_hz_arg = DeclareLaunchArgument(
        'rate_hz',
        default_value='20.0',
        description='Control loop rate [Hz]'
    )

    debug_controller_arg = DeclareLaunchArgument(
        'debug_controller',
        default_value='false',
        description='Allow live tuning of mass, volume, inertia and center of buoyancy'
    )

    persist_calibration_arg = DeclareLaunchArgument(
        'persist_calibration',
        default_value='false',
        description='Keep the center of buoyancy estimate when calibration ends'
    )

    # Controller node
    controller_node = Node(
        package='thruster_controller',
        executable='thruster_controller_node',
        name='thruster_controller',
        output='screen',
        parameters=[{
            'vehicle_properties_file': LaunchConfiguration('vehicle_properties_file'),
            'rate_hz': LaunchConfiguration('rate_hz'),
            'debug_controller': LaunchConfiguration('debug_controller'),
            'persist_calibration': LaunchConfiguration('persist_calibration'),
        }]
    )

    return LaunchDescription([
        vehicle_properties_arg,
        rate_hz_arg,
        debug_controller_arg,
        persist_calibration_arg,
        controller_node,
    ])
