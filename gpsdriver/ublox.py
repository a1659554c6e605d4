"""A GPS interface that speaks the u-blox UBX binary protocol."""

from __future__ import annotations

import math
import struct
import time
from typing import Callable

from .interface import FixType, GpsInterface, RTKType
from .log import LogFunction, LogLevel
from .ubx import (
    ESF_MEAS_CLASS,
    ESF_MEAS_ID,
    FRAME_OVERHEAD,
    HEADER_SIZE,
    SYNC,
    UbxNavPvt,
    build_packet,
    calculate_checksum,
)

LatencyCallback = Callable[[int, int, int], None]

_U32 = 0xFFFFFFFF
_SLOW_CALLBACK_MS = 10
_MAX_TIME_DIFF_MS = 100.0

_IMU_ALL_FIELDS = 0b111111
_IMU_ALREADY_SENT = 0b1111111

_ESF_TYPE_WHEEL_TICK = 8
_ESF_TYPE_GYRO_Z = 5
_ESF_TYPE_GYRO_Y = 13
_ESF_TYPE_GYRO_X = 14
_ESF_TYPE_ACC_X = 16
_ESF_TYPE_ACC_Y = 17
_ESF_TYPE_ACC_Z = 18
_ESF_FLAG_CALIB_TTAG = 0b1000

_WHEEL_TICK_MASK = 0x7FFFFF
_WHEEL_DIRECTION_BIT = 1 << 23
_WHEEL_LEFT_TYPE = 8 << 24
_WHEEL_RIGHT_TYPE = 9 << 24

_GYRO_SCALE = 4096.0
_ACC_SCALE = 1024.0
_DEG = math.pi / 180.0

_NAV_PVT_KEY = (UbxNavPvt.CLASS_ID, UbxNavPvt.MESSAGE_ID)
_ESF_MEAS_KEY = (ESF_MEAS_CLASS, ESF_MEAS_ID)

_FIX_TYPES = {
    1: FixType.DR_ONLY,
    2: FixType.FIX_2D,
    3: FixType.FIX_3D,
    4: FixType.GNSS_DR_COMBINED,
}


def _millis(stamp: float) -> int:
    return int(stamp * 1000) & _U32


def _normalize_heading(raw: int) -> float:
    """Turn a UBX heading (1e-5 deg, clockwise from north) into rad, counter-clockwise from east."""
    heading = -(raw / 100000.0) * _DEG
    heading = math.fmod(heading + math.pi / 2, 2.0 * math.pi)
    while heading < 0:
        heading += 2.0 * math.pi
    return heading


def _sign_extend_24(value: int) -> int:
    value &= 0xFFFFFF
    return value - (1 << 24) if value & 0x800000 else value


class UbxGpsInterface(GpsInterface):
    """Parses NAV-PVT and ESF-MEAS frames and sends wheel ticks to the receiver."""

    def __init__(self, log: LogFunction | None = None) -> None:
        super().__init__(log)
        self.wheel_latency_callback: LatencyCallback | None = None
        self.imu_fields_valid = 0
        self.gps_state_itow = 0
        self.found_header = False
        self.current_header_time = 0.0

    def send_wheel_ticks(
        self,
        timestamp: int,
        direction_left: bool,
        ticks_left: int,
        direction_right: bool,
        ticks_right: int,
    ) -> None:
        """Queue an ESF-MEAS frame carrying rear-left and rear-right wheel ticks."""
        data_left = ticks_left & _WHEEL_TICK_MASK
        if direction_left:
            data_left |= _WHEEL_DIRECTION_BIT
        data_left |= _WHEEL_LEFT_TYPE

        data_right = ticks_right & _WHEEL_TICK_MASK
        if direction_right:
            data_right |= _WHEEL_DIRECTION_BIT
        data_right |= _WHEEL_RIGHT_TYPE

        payload = struct.pack("<IIII", timestamp & _U32, 0, data_left, data_right)
        self.send_raw(build_packet(ESF_MEAS_CLASS, ESF_MEAS_ID, payload))

    def reset_parser_state(self) -> None:
        self.found_header = False
        self.imu_fields_valid = 0

    def parse_rx_buffer(self) -> int:
        """Consume complete UBX frames from the rx buffer; return how many more bytes to read."""
        buffer = self.rx_buffer
        while len(buffer) >= HEADER_SIZE:
            if buffer[:2] != SYNC:
                del buffer[0]
                self.log("skipping rx byte", LogLevel.WARN)
                self.found_header = False
                continue

            if not self.found_header:
                self.current_header_time = time.monotonic()
                self.found_header = True

            payload_length = buffer[5] << 8 | buffer[4]
            total_length = payload_length + FRAME_OVERHEAD
            if total_length > len(buffer):
                return total_length - len(buffer)

            packet = bytes(buffer[:total_length])
            del buffer[:total_length]

            if not self._checksum_ok(packet):
                self.found_header = False
                continue

            self._process_packet(self.current_header_time, packet[2:-2])
            self.found_header = False

        return HEADER_SIZE

    def _checksum_ok(self, packet: bytes) -> bool:
        ck_a, ck_b = calculate_checksum(packet[2:-2])
        if packet[-2] == ck_a and packet[-1] == ck_b:
            return True
        self.log("got ubx packet with invalid checksum", LogLevel.WARN)
        self.log(f"expected: a = {packet[-2]}, b = {packet[-1]}", LogLevel.VERBOSE)
        self.log(f"real: a = {ck_a}, b = {ck_b}", LogLevel.VERBOSE)
        return False

    def _process_packet(self, header_stamp: float, data: bytes) -> None:
        """Dispatch a frame body (class, id, length, payload) to its handler."""
        key = (data[0], data[1])
        payload = data[4:]
        if key == _NAV_PVT_KEY:
            if len(payload) == UbxNavPvt.SIZE:
                self._handle_nav_pvt(header_stamp, UbxNavPvt.from_bytes(payload))
            else:
                self.log("size mismatch for PVT message!", LogLevel.WARN)
        elif key == _ESF_MEAS_KEY:
            self._handle_esf_meas(header_stamp, payload)

    def _handle_nav_pvt(self, header_stamp: float, msg: UbxNavPvt) -> None:
        if not msg.gnss_fix_ok:
            self.gps_state_valid = False
            self.log("invalid gnssFix - dropping message", LogLevel.WARN)
            return
        if msg.invalid_llh:
            self.gps_state_valid = False
            self.log("invalid lat, lon, height - dropping message", LogLevel.WARN)
            return

        if self.gps_state_valid and self.last_gps_message is not None:
            time_diff = int((header_stamp - self.last_gps_message) * 1000)
            pvt_diff = (msg.iTOW - self.gps_state_itow) & _U32
            if time_diff == 0 or abs(time_diff - pvt_diff) > _MAX_TIME_DIFF_MS:
                self.log(
                    f"gps time diff was: {pvt_diff}, host time diff was: {time_diff}",
                    LogLevel.ERROR,
                )

        state = self.gps_state
        state.fix_type = _FIX_TYPES.get(msg.fixType, FixType.NO_FIX)

        if msg.diff_soln:
            carrier = msg.carrier_phase >> 6
            state.rtk_type = {1: RTKType.RTK_FLOAT, 2: RTKType.RTK_FIX}.get(
                carrier, RTKType.RTK_NONE
            )
        else:
            state.rtk_type = RTKType.RTK_NONE

        lat = msg.lat / 10000000.0
        lon = msg.lon / 10000000.0
        height = msg.hMSL / 1000.0
        northing, easting, _zone = _ll_to_utm(lat, lon)
        state.pos_lat = lat
        state.pos_lon = lon
        state.position_valid = True
        state.pos_e = easting - self.datum_e
        state.pos_n = northing - self.datum_n
        state.pos_u = height - self.datum_u
        state.position_accuracy = msg.hAcc / 1000.0

        state.vel_e = msg.velE / 1000.0
        state.vel_n = msg.velN / 1000.0
        state.vel_u = -msg.velD / 1000.0

        head_acc = (msg.headAcc / 100000.0) * _DEG
        state.motion_heading_valid = True
        state.motion_heading = _normalize_heading(msg.headMot)
        state.motion_heading_accuracy = head_acc
        state.vehicle_heading_valid = msg.head_veh_valid
        state.vehicle_heading_accuracy = head_acc
        state.vehicle_heading = _normalize_heading(msg.headVeh)

        state.sensor_time = msg.iTOW
        state.received_time = _millis(header_stamp)

        self.last_gps_message = header_stamp
        self.gps_state_valid = True
        self.gps_state_itow = msg.iTOW

        start = time.monotonic()
        if self.state_callback:
            self.state_callback(state)
        millis = int((time.monotonic() - start) * 1000)
        if millis > _SLOW_CALLBACK_MS:
            self.log(f"slow ros publisher: {millis} ms", LogLevel.ERROR)

    def _start_imu_frame(self, time_tag: int, header_stamp: float) -> None:
        if self.imu_state.sensor_time != time_tag:
            self.imu_fields_valid = 0
            self.imu_state.sensor_time = time_tag
            self.imu_state.received_time = _millis(header_stamp)

    def _handle_esf_meas(self, header_stamp: float, payload: bytes) -> None:
        if len(payload) < 8:
            self.log("ESF-MEAS message too short", LogLevel.WARN)
            return
        time_tag, flags, _sensor_id = struct.unpack_from("<IHH", payload)
        has_calib_ttag = bool(flags & _ESF_FLAG_CALIB_TTAG)

        measurement_size = len(payload) - 8 - (4 if has_calib_ttag else 0)
        if measurement_size < 0:
            self.log("ESF-MEAS message too short", LogLevel.WARN)
            return
        count = measurement_size // 4
        words = struct.unpack_from(f"<{count}I", payload, 8)
        calib_ttag = struct.unpack_from("<I", payload, 8 + 4 * count)[0] if has_calib_ttag else 0

        imu = self.imu_state
        for word in words:
            value = _sign_extend_24(word)
            data_type = word >> 24

            if data_type == _ESF_TYPE_WHEEL_TICK:
                if self.wheel_latency_callback:
                    self.wheel_latency_callback(time_tag, calib_ttag, _millis(header_stamp))
                continue
            if data_type == _ESF_TYPE_GYRO_Z:
                self._start_imu_frame(time_tag, header_stamp)
                imu.gz = -value / _GYRO_SCALE * _DEG
                self.imu_fields_valid |= 0b1
            elif data_type == _ESF_TYPE_GYRO_Y:
                self._start_imu_frame(time_tag, header_stamp)
                imu.gy = value / _GYRO_SCALE * _DEG
                self.imu_fields_valid |= 0b10
            elif data_type == _ESF_TYPE_GYRO_X:
                self._start_imu_frame(time_tag, header_stamp)
                imu.gx = -value / _GYRO_SCALE * _DEG
                self.imu_fields_valid |= 0b100
            elif data_type == _ESF_TYPE_ACC_X:
                imu.ax = value / _ACC_SCALE
                self.imu_fields_valid |= 0b1000
            elif data_type == _ESF_TYPE_ACC_Y:
                imu.ay = value / _ACC_SCALE
                self.imu_fields_valid |= 0b10000
            elif data_type == _ESF_TYPE_ACC_Z:
                imu.az = value / _ACC_SCALE
                self.imu_fields_valid |= 0b100000
            else:
                continue

            if self.imu_fields_valid == _IMU_ALL_FIELDS:
                if self.imu_callback:
                    self.imu_callback(imu)
                self.imu_fields_valid = _IMU_ALREADY_SENT


def _ll_to_utm(lat: float, lon: float) -> tuple[float, float, str]:
    from .interface import ll_to_utm

    return ll_to_utm(lat, lon)