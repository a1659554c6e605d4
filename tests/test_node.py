import datetime as dt
import math

import pytest

from gpsdriver.interface import FixType, GpsState, ImuState, RTKType
from gpsdriver.node import (
    AbsolutePose,
    PoseFlags,
    build_gga_sentence,
    build_parser,
    convert_gps_result,
    format_coordinate,
    imu_to_dict,
    main,
    nmea_checksum,
    quaternion_from_yaw,
)


def test_quaternion_identity_for_zero_yaw():
    assert quaternion_from_yaw(0.0) == (0.0, 0.0, 0.0, 1.0)


@pytest.mark.parametrize("yaw", [0.3, 1.0, math.pi, -2.5])
def test_quaternion_is_unit_and_about_z(yaw):
    x, y, z, w = quaternion_from_yaw(yaw)
    assert x == 0.0 and y == 0.0
    assert math.isclose(x * x + y * y + z * z + w * w, 1.0)
    assert math.isclose(2 * math.atan2(z, w), yaw)


def test_format_latitude_north():
    assert format_coordinate(47.5, True) == ("4730.0000", "N")


def test_format_longitude_west_has_three_degree_digits():
    assert format_coordinate(-8.25, False) == ("00815.0000", "W")


def test_format_rounds_minutes_into_degrees():
    text, hemisphere = format_coordinate(10.999999999, True)
    assert text == "1100.0000"
    assert hemisphere == "N"


def test_nmea_checksum_known_sentence():
    body = "GPGGA,092750.000,5321.6802,N,00630.3372,W,1,8,1.03,61.7,M,55.2,M,,"
    assert nmea_checksum(body) == 0x76


def test_gga_sentence_layout():
    when = dt.datetime(2023, 1, 2, 12, 34, 56, 789000, tzinfo=dt.timezone.utc)
    sentence = build_gga_sentence(47.5, -8.25, when)
    assert sentence.startswith("$GPGGA,123456.789000,4730.0000,N,00815.0000,W,1,8,0,0,M,0,M,0000,*")
    body, checksum = sentence[1:].split("*")
    assert checksum == f"{nmea_checksum(body):02X}"
    assert "\r" not in sentence and "\n" not in sentence


def test_convert_rtk_float_flags():
    pose = convert_gps_result(GpsState(rtk_type=RTKType.RTK_FLOAT, fix_type=FixType.FIX_3D))
    assert pose.flags == PoseFlags.GPS_RTK | PoseFlags.GPS_RTK_FLOAT


def test_convert_rtk_fix_with_dead_reckoning():
    pose = convert_gps_result(GpsState(rtk_type=RTKType.RTK_FIX, fix_type=FixType.GNSS_DR_COMBINED))
    assert pose.flags == PoseFlags.GPS_RTK | PoseFlags.GPS_RTK_FIXED | PoseFlags.GPS_DEAD_RECKONING


def test_convert_no_rtk_has_no_flags():
    pose = convert_gps_result(GpsState(rtk_type=RTKType.RTK_NONE, fix_type=FixType.FIX_2D))
    assert pose.flags == PoseFlags.NONE


def test_convert_uses_motion_heading_without_vehicle_heading():
    state = GpsState(
        vehicle_heading_valid=False,
        vehicle_heading=2.0,
        vehicle_heading_accuracy=0.5,
        motion_heading=1.0,
        motion_heading_accuracy=0.25,
    )
    pose = convert_gps_result(state)
    assert pose.orientation == quaternion_from_yaw(1.0)
    assert pose.orientation_valid is False
    assert pose.covariance[35] == pytest.approx(0.25**2)
    assert pose.vehicle_heading == 2.0
    assert pose.motion_heading == 1.0


def test_convert_uses_vehicle_heading_when_valid():
    state = GpsState(vehicle_heading_valid=True, vehicle_heading=2.0, vehicle_heading_accuracy=0.5,
                     motion_heading=1.0, motion_heading_accuracy=0.25)
    pose = convert_gps_result(state)
    assert pose.orientation == quaternion_from_yaw(2.0)
    assert pose.orientation_accuracy == 0.5
    assert pose.covariance[35] == pytest.approx(0.5**2)


def test_convert_position_and_covariance_layout():
    state = GpsState(pos_e=1.5, pos_n=-2.0, pos_u=0.25, position_accuracy=0.1,
                     vel_e=0.5, vel_n=0.75, vel_u=-0.125, sensor_time=42, received_time=99)
    pose = convert_gps_result(state)
    assert pose.position == (1.5, -2.0, 0.25)
    assert pose.motion_vector == (0.5, 0.75, -0.125)
    assert pose.motion_vector_valid is True
    assert pose.sensor_stamp == 42 and pose.received_stamp == 99
    assert len(pose.covariance) == 36
    for index in (0, 7, 15):
        assert pose.covariance[index] == pytest.approx(0.1**2)
    assert pose.covariance[21] == 10000.0
    assert pose.covariance[28] == 10000.0
    assert pose.covariance[14] == 0.0


def test_pose_as_dict_is_plain_data():
    pose = AbsolutePose(flags=PoseFlags.GPS_RTK | PoseFlags.GPS_RTK_FIXED, position=(1.0, 2.0, 3.0))
    data = pose.as_dict()
    assert data["flags"] == int(PoseFlags.GPS_RTK | PoseFlags.GPS_RTK_FIXED)
    assert type(data["flags"]) is int
    assert data["position"] == [1.0, 2.0, 3.0]
    assert data["frame_id"] == "gps"


def test_imu_to_dict_maps_axes():
    state = ImuState(ax=1.0, ay=2.0, az=3.0, gx=0.1, gy=0.2, gz=0.3)
    data = imu_to_dict(state)
    assert data["frame_id"] == "gps"
    assert data["angular_velocity"] == {"x": 0.1, "y": 0.2, "z": 0.3}
    assert data["linear_acceleration"] == {"x": 1.0, "y": 2.0, "z": 3.0}


def test_parser_defaults():
    args = build_parser().parse_args([])
    assert args.device_type == "serial"
    assert args.baudrate == 38400
    assert args.serial_port == "/dev/ttyACM0"
    assert args.mode == "absolute"
    assert args.filename == "/dev/null"
    assert args.publish_latency is True


def test_main_rejects_unknown_device_type():
    with pytest.raises(SystemExit) as excinfo:
        main(["--device-type", "usb"])
    assert excinfo.value.code == 2


def test_main_absolute_mode_requires_datum():
    assert main(["--device-type", "tcp", "--tcp-host", "localhost", "--tcp-port", "1"]) == 2


def test_main_fails_on_missing_tcp_host():
    assert main(["--device-type", "tcp", "--mode", "relative"]) == 1


def test_main_fails_on_unknown_mode():
    assert main(["--device-type", "tcp", "--tcp-host", "localhost", "--tcp-port", "1",
                 "--mode", "sideways"]) == 1