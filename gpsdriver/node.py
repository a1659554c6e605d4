"""Command-line node that runs a UBX receiver and prints its output as JSON lines."""

from __future__ import annotations

import argparse
import dataclasses
import datetime as dt
import enum
import json
import logging
import math
import sys
import threading
import time
from dataclasses import dataclass, field
from typing import IO, Any, Sequence

from .devices import ConfigurationError, SerialGpsDevice, TcpGpsDevice
from .interface import FixType, GpsState, ImuState, Mode, RTKType
from .log import LogFunction, LogLevel, default_log
from .ublox import UbxGpsInterface

FRAME_ID = "gps"
SOURCE_GPS = 1

_VRS_INTERVAL = 10.0
_UNOBSERVED_VARIANCE = 10000.0
_GGA_TAIL = "1,8,0,0,M,0,M,0000,"
_RTCM_CHUNK = 4096


class PoseFlags(enum.IntFlag):
    """Quality flags attached to an absolute pose."""

    NONE = 0
    GPS_RTK = 1
    GPS_RTK_FIXED = 2
    GPS_RTK_FLOAT = 4
    GPS_DEAD_RECKONING = 8


@dataclass
class AbsolutePose:
    """A GPS pose in the local east/north/up frame, with covariance."""

    seq: int = 0
    frame_id: str = FRAME_ID
    stamp: float = 0.0
    source: int = SOURCE_GPS
    flags: PoseFlags = PoseFlags.NONE
    sensor_stamp: int = 0
    received_stamp: int = 0
    orientation_valid: bool = False
    motion_vector_valid: bool = False
    position_accuracy: float = 0.0
    orientation_accuracy: float = 0.0
    position: tuple[float, float, float] = (0.0, 0.0, 0.0)
    orientation: tuple[float, float, float, float] = (0.0, 0.0, 0.0, 1.0)
    covariance: tuple[float, ...] = field(default_factory=lambda: (0.0,) * 36)
    motion_vector: tuple[float, float, float] = (0.0, 0.0, 0.0)
    vehicle_heading: float = 0.0
    motion_heading: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        """Return the pose as plain JSON-serialisable data."""
        data = dataclasses.asdict(self)
        data["flags"] = int(self.flags)
        data["position"] = list(self.position)
        data["orientation"] = list(self.orientation)
        data["covariance"] = list(self.covariance)
        data["motion_vector"] = list(self.motion_vector)
        return data


def quaternion_from_yaw(yaw: float) -> tuple[float, float, float, float]:
    """Return the (x, y, z, w) quaternion of a rotation by ``yaw`` about the z axis."""
    half = yaw * 0.5
    return (0.0, 0.0, math.sin(half), math.cos(half))


def format_coordinate(value: float, is_latitude: bool) -> tuple[str, str]:
    """Format degrees as NMEA (d)ddmm.mmmm and return it with its hemisphere letter."""
    if is_latitude:
        hemisphere = "S" if value < 0 else "N"
        degree_width = 2
    else:
        hemisphere = "W" if value < 0 else "E"
        degree_width = 3
    scaled = round(abs(value) * 60.0 * 10000)
    degrees, minute_units = divmod(scaled, 60 * 10000)
    whole_minutes, fraction = divmod(minute_units, 10000)
    text = f"{degrees:0{degree_width}d}{whole_minutes:02d}.{fraction:04d}"
    return text, hemisphere


def nmea_checksum(body: str) -> int:
    """XOR of all characters between the leading '$' and the '*' of a sentence."""
    checksum = 0
    for char in body.encode("ascii"):
        checksum ^= char
    return checksum


def build_gga_sentence(lat: float, lon: float, when: dt.datetime) -> str:
    """Build a GPGGA sentence reporting the rover position to a VRS caster."""
    lat_text, lat_hemisphere = format_coordinate(lat, True)
    lon_text, lon_hemisphere = format_coordinate(lon, False)
    body = (
        f"GPGGA,{when.strftime('%H%M%S.%f')},{lat_text},{lat_hemisphere},"
        f"{lon_text},{lon_hemisphere},{_GGA_TAIL}"
    )
    return f"${body}*{nmea_checksum(body):02X}"


def convert_gps_result(state: GpsState) -> AbsolutePose:
    """Turn a receiver navigation solution into an absolute pose."""
    if state.rtk_type == RTKType.RTK_FLOAT:
        flags = PoseFlags.GPS_RTK | PoseFlags.GPS_RTK_FLOAT
    elif state.rtk_type == RTKType.RTK_FIX:
        flags = PoseFlags.GPS_RTK | PoseFlags.GPS_RTK_FIXED
    else:
        flags = PoseFlags.NONE
    if state.fix_type in (FixType.DR_ONLY, FixType.GNSS_DR_COMBINED):
        flags |= PoseFlags.GPS_DEAD_RECKONING

    if state.vehicle_heading_valid:
        heading, heading_acc = state.vehicle_heading, state.vehicle_heading_accuracy
    else:
        heading, heading_acc = state.motion_heading, state.motion_heading_accuracy

    position_variance = state.position_accuracy**2
    covariance = [0.0] * 36
    covariance[0] = position_variance
    covariance[7] = position_variance
    covariance[15] = position_variance
    covariance[21] = _UNOBSERVED_VARIANCE
    covariance[28] = _UNOBSERVED_VARIANCE
    covariance[35] = heading_acc**2

    return AbsolutePose(
        stamp=time.time(),
        flags=flags,
        sensor_stamp=state.sensor_time,
        received_stamp=state.received_time,
        orientation_valid=state.vehicle_heading_valid,
        motion_vector_valid=True,
        position_accuracy=state.position_accuracy,
        orientation_accuracy=state.vehicle_heading_accuracy,
        position=(state.pos_e, state.pos_n, state.pos_u),
        orientation=quaternion_from_yaw(heading),
        covariance=tuple(covariance),
        motion_vector=(state.vel_e, state.vel_n, state.vel_u),
        vehicle_heading=state.vehicle_heading,
        motion_heading=state.motion_heading,
    )


def imu_to_dict(state: ImuState) -> dict[str, Any]:
    """Describe an IMU sample as an IMU message body."""
    return {
        "frame_id": FRAME_ID,
        "stamp": time.time(),
        "angular_velocity": {"x": state.gx, "y": state.gy, "z": state.gz},
        "linear_acceleration": {"x": state.ax, "y": state.ay, "z": state.az},
    }


class _JsonPublisher:
    """Writes one JSON object per line, tagged with its topic."""

    def __init__(self, stream: IO[str]) -> None:
        self._stream = stream
        self._lock = threading.Lock()

    def publish(self, topic: str, payload: dict[str, Any]) -> None:
        line = json.dumps({"topic": topic, **payload})
        with self._lock:
            self._stream.write(line + "\n")
            self._stream.flush()


class _GpsNode:
    """Receives interface callbacks and publishes them."""

    def __init__(self, publisher: _JsonPublisher) -> None:
        self._publisher = publisher
        self._pose_seq = 0
        self._imu_seq = 0
        self._vrs_seq = 0
        self._last_vrs_feedback: float | None = None

    def on_state(self, state: GpsState) -> None:
        pose = convert_gps_result(state)
        self._pose_seq += 1
        pose.seq = self._pose_seq
        self._publisher.publish("xb_pose", pose.as_dict())
        self._publisher.publish(
            "pose",
            {
                "position": list(pose.position),
                "orientation": list(pose.orientation),
                "covariance": list(pose.covariance),
            },
        )
        self._send_vrs_feedback(state.pos_lat, state.pos_lon)

    def _send_vrs_feedback(self, lat: float, lon: float) -> None:
        now = time.monotonic()
        if self._last_vrs_feedback is not None and now - self._last_vrs_feedback < _VRS_INTERVAL:
            return
        self._last_vrs_feedback = now
        self._vrs_seq += 1
        sentence = build_gga_sentence(lat, lon, dt.datetime.now(dt.timezone.utc))
        self._publisher.publish(
            "nmea",
            {"seq": self._vrs_seq, "frame_id": FRAME_ID, "stamp": time.time(), "sentence": sentence},
        )

    def on_imu(self, state: ImuState) -> None:
        self._imu_seq += 1
        self._publisher.publish("imu", {"seq": self._imu_seq, **imu_to_dict(state)})

    def on_latency(self, stamp: int, stamp_ublox: int, round_trip: int) -> None:
        self._publisher.publish("wheel_tick_stamp_esc", {"data": stamp})
        self._publisher.publish("wheel_tick_ublox_rx", {"data": stamp_ublox})
        self._publisher.publish("wheel_tick_round_trip_host", {"data": round_trip})


def _make_log(verbose: bool) -> LogFunction:
    def log(text: str, level: LogLevel) -> None:
        if level == LogLevel.VERBOSE:
            if not verbose:
                return
            level = LogLevel.INFO
        default_log(text, level)

    return log


def _forward_rtcm(interface: UbxGpsInterface, stream: IO[bytes]) -> None:
    reader = getattr(stream, "read1", stream.read)
    while True:
        chunk = reader(_RTCM_CHUNK)
        if not chunk:
            break
        interface.send_rtcm(chunk)


def build_parser() -> argparse.ArgumentParser:
    """Create the command-line parser for the GPS node."""
    parser = argparse.ArgumentParser(
        prog="gpsdriver",
        description="Run a u-blox receiver and print poses, IMU samples and VRS feedback as JSON lines.",
    )
    parser.add_argument("--device-type", choices=("serial", "tcp", "file"), default="serial")
    parser.add_argument("--baudrate", type=int, default=38400)
    parser.add_argument("--serial-port", default="/dev/ttyACM0")
    parser.add_argument("--tcp-host", default="")
    parser.add_argument("--tcp-port", default="")
    parser.add_argument("--filename", default="/dev/null")
    parser.add_argument("--mode", default="absolute", help="absolute or relative")
    parser.add_argument("--datum-lat", type=float)
    parser.add_argument("--datum-long", type=float)
    parser.add_argument("--datum-height", type=float)
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument(
        "--no-publish-latency", dest="publish_latency", action="store_false",
        help="do not publish wheel tick latency measurements",
    )
    parser.add_argument(
        "--rtcm-stdin", action="store_true",
        help="forward RTCM correction bytes read from standard input to the receiver",
    )
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    """Run the GPS node until interrupted; return the process exit code."""
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.INFO, format="%(message)s")
    log = _make_log(args.verbose)

    log("Using UBX mode for GPS", LogLevel.INFO)
    interface = UbxGpsInterface(log=log)
    if args.verbose:
        log("GPS node has verbose logging enabled", LogLevel.WARN)

    if args.device_type == "serial":
        interface.device = SerialGpsDevice(args.serial_port, args.baudrate)
    elif args.device_type == "tcp":
        interface.device = TcpGpsDevice(args.tcp_host, args.tcp_port)
    else:
        log("Reading GPS data from file!", LogLevel.INFO)
        interface.filename = args.filename

    if args.mode == "absolute":
        log("Using absolute mode for GPS", LogLevel.INFO)
        interface.mode = Mode.ABSOLUTE
        if None in (args.datum_lat, args.datum_long, args.datum_height):
            log(
                "You need to provide datum_lat and datum_long and datum_height "
                "in order to use the absolute mode",
                LogLevel.ERROR,
            )
            return 2
        interface.set_datum(args.datum_lat, args.datum_long, args.datum_height)
    elif args.mode == "relative":
        log("Using relative mode for GPS", LogLevel.INFO)
        interface.mode = Mode.RELATIVE

    node = _GpsNode(_JsonPublisher(sys.stdout))
    interface.state_callback = node.on_state
    if args.publish_latency:
        interface.wheel_latency_callback = node.on_latency
    interface.imu_callback = node.on_imu

    try:
        interface.start()
    except ConfigurationError:
        return 1

    if args.rtcm_stdin:
        threading.Thread(
            target=_forward_rtcm, args=(interface, sys.stdin.buffer), name="gps-rtcm", daemon=True
        ).start()

    try:
        while True:
            time.sleep(1.0)
    except KeyboardInterrupt:
        pass
    finally:
        interface.stop()
    return 0