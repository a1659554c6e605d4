"""The receiver-independent part of a GPS driver: state, datum and I/O threads."""

from __future__ import annotations

import abc
import enum
import math
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from .devices import ConfigurationError, DeviceError, GpsDevice
from .log import LogFunction, LogLevel, default_log

_WGS84_A = 6378137.0
_UTM_E2 = 0.00669438
_UTM_K0 = 0.9996
_UTM_FALSE_EASTING = 500000.0
_UTM_FALSE_NORTHING_SOUTH = 10000000.0
_UTM_LETTERS = "CDEFGHJKLMNPQRSTUVW"

_TX_WAIT_TIMEOUT = 1.0
_RECONNECT_DELAY = 1.0
_TX_LOCK_WARN_MS = 10
_TX_BUFFER_WARN_SIZE = 5000
_FILE_BYTE_DELAY = 0.0001


class FixType(enum.IntEnum):
    """Kind of position fix reported by the receiver."""

    NO_FIX = 0
    DR_ONLY = 1
    FIX_2D = 2
    FIX_3D = 3
    GNSS_DR_COMBINED = 4


class RTKType(enum.IntEnum):
    """Carrier-phase (RTK) solution state."""

    RTK_NONE = 0
    RTK_FLOAT = 1
    RTK_FIX = 2


class Mode(enum.IntEnum):
    """Whether positions are relative to a fixed datum or to the receiver."""

    ABSOLUTE = 1
    RELATIVE = 2


@dataclass
class GpsState:
    """The navigation solution published to consumers."""

    sensor_time: int = 0
    received_time: int = 0
    position_valid: bool = False
    position_accuracy: float = 0.0
    pos_e: float = 0.0
    pos_n: float = 0.0
    pos_u: float = 0.0
    pos_lat: float = 0.0
    pos_lon: float = 0.0
    motion_heading_valid: bool = False
    vel_e: float = 0.0
    vel_n: float = 0.0
    vel_u: float = 0.0
    motion_heading_accuracy: float = 0.0
    motion_heading: float = 0.0
    vehicle_heading_valid: bool = False
    vehicle_heading_accuracy: float = 0.0
    vehicle_heading: float = 0.0
    fix_type: FixType = FixType.NO_FIX
    rtk_type: RTKType = RTKType.RTK_NONE


@dataclass
class ImuState:
    """One complete IMU sample: acceleration in m/s^2 and rotation rate in rad/s."""

    sensor_time: int = 0
    received_time: int = 0
    ax: float = 0.0
    ay: float = 0.0
    az: float = 0.0
    gx: float = 0.0
    gy: float = 0.0
    gz: float = 0.0


StateCallback = Callable[[GpsState], None]
ImuCallback = Callable[[ImuState], None]


def _utm_letter(lat: float) -> str:
    if 72.0 <= lat <= 84.0:
        return "X"
    if -80.0 <= lat < 72.0:
        return _UTM_LETTERS[int((lat + 80.0) // 8)]
    return "Z"


def _utm_zone_number(lat: float, lon: float) -> int:
    zone = int((lon + 180.0) / 6.0) + 1
    if 56.0 <= lat < 64.0 and 3.0 <= lon < 12.0:
        zone = 32
    if 72.0 <= lat < 84.0:
        if 0.0 <= lon < 9.0:
            zone = 31
        elif 9.0 <= lon < 21.0:
            zone = 33
        elif 21.0 <= lon < 33.0:
            zone = 35
        elif 33.0 <= lon < 42.0:
            zone = 37
    return zone


def ll_to_utm(lat: float, lon: float) -> tuple[float, float, str]:
    """Convert WGS84 latitude/longitude in degrees to (northing, easting, zone)."""
    lon = (lon + 180.0) - int((lon + 180.0) / 360.0) * 360.0 - 180.0
    lat_rad = math.radians(lat)
    lon_rad = math.radians(lon)

    zone_number = _utm_zone_number(lat, lon)
    lon_origin_rad = math.radians((zone_number - 1) * 6 - 180 + 3)
    zone = f"{zone_number}{_utm_letter(lat)}"

    e2 = _UTM_E2
    ep2 = e2 / (1.0 - e2)
    sin_lat = math.sin(lat_rad)
    cos_lat = math.cos(lat_rad)
    tan_lat = math.tan(lat_rad)

    n = _WGS84_A / math.sqrt(1.0 - e2 * sin_lat * sin_lat)
    t = tan_lat * tan_lat
    c = ep2 * cos_lat * cos_lat
    a = cos_lat * (lon_rad - lon_origin_rad)
    m = _WGS84_A * (
        (1 - e2 / 4 - 3 * e2**2 / 64 - 5 * e2**3 / 256) * lat_rad
        - (3 * e2 / 8 + 3 * e2**2 / 32 + 45 * e2**3 / 1024) * math.sin(2 * lat_rad)
        + (15 * e2**2 / 256 + 45 * e2**3 / 1024) * math.sin(4 * lat_rad)
        - (35 * e2**3 / 3072) * math.sin(6 * lat_rad)
    )

    easting = _UTM_K0 * n * (
        a
        + (1 - t + c) * a**3 / 6
        + (5 - 18 * t + t * t + 72 * c - 58 * ep2) * a**5 / 120
    ) + _UTM_FALSE_EASTING
    northing = _UTM_K0 * (
        m
        + n * tan_lat * (
            a * a / 2
            + (5 - t + 9 * c + 4 * c * c) * a**4 / 24
            + (61 - 58 * t + t * t + 600 * c - 330 * ep2) * a**6 / 720
        )
    )
    if lat < 0:
        northing += _UTM_FALSE_NORTHING_SOUTH
    return northing, easting, zone


class GpsInterface(abc.ABC):
    """Runs the receive and transmit threads and hands received bytes to a protocol parser.

    Subclasses implement ``reset_parser_state`` and ``parse_rx_buffer``; the latter consumes
    ``rx_buffer`` and returns how many more bytes it wants to read.
    """

    def __init__(self, log: LogFunction | None = None) -> None:
        self.log: LogFunction = log or default_log
        self.state_callback: StateCallback | None = None
        self.imu_callback: ImuCallback | None = None
        self.mode: Mode | None = None

        self.datum_e = math.nan
        self.datum_n = math.nan
        self.datum_u = math.nan
        self.datum_zone = ""

        self.last_gps_message: float | None = None
        self.gps_state_valid = False
        self.gps_state = GpsState()
        self.imu_state = ImuState()
        self.rx_buffer = bytearray()

        self._device: GpsDevice | None = None
        self._filename: str | None = None

        self._stopped = threading.Event()
        self._stopped.set()
        self._tx_cond = threading.Condition()
        self._tx_buffer = bytearray()
        self._threads: list[threading.Thread] = []

    @property
    def device(self) -> GpsDevice | None:
        """The device the receiver is attached through."""
        return self._device

    @device.setter
    def device(self, device: GpsDevice | None) -> None:
        if device is not None:
            device.log = self.log
        self._device = device

    @property
    def filename(self) -> str | None:
        """A recorded byte stream to replay instead of talking to a device."""
        return self._filename

    @filename.setter
    def filename(self, filename: str | Path | None) -> None:
        self._filename = None if filename is None else str(filename)

    @property
    def read_from_file(self) -> bool:
        return self._filename is not None

    @property
    def running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    @property
    def tx_pending(self) -> int:
        """Number of bytes queued for transmission."""
        with self._tx_cond:
            return len(self._tx_buffer)

    def set_datum(self, datum_lat: float, datum_long: float, datum_height: float) -> None:
        """Set the reference point that absolute positions are measured from."""
        self.datum_u = datum_height
        self.datum_n, self.datum_e, self.datum_zone = ll_to_utm(datum_lat, datum_long)

    @abc.abstractmethod
    def reset_parser_state(self) -> None:
        """Forget partial parse state; called when the device (re)connects."""

    @abc.abstractmethod
    def parse_rx_buffer(self) -> int:
        """Consume ``rx_buffer`` and return how many more bytes to read."""

    def feed(self, data: bytes) -> int:
        """Append received bytes to the rx buffer and parse them."""
        self.rx_buffer.extend(data)
        return self.parse_rx_buffer()

    def send_raw(self, data: bytes) -> None:
        """Queue bytes for the transmit thread."""
        start = time.monotonic()
        with self._tx_cond:
            millis = int((time.monotonic() - start) * 1000)
            if millis > _TX_LOCK_WARN_MS:
                self.log(
                    f"waited {millis} ms to write to the tx buffer, "
                    "serial port is probably congested!",
                    LogLevel.ERROR,
                )
            self._tx_buffer.extend(data)
            if len(self._tx_buffer) > _TX_BUFFER_WARN_SIZE:
                self.log(f"high tx buffer size: {len(self._tx_buffer)}", LogLevel.ERROR)
            self._tx_cond.notify_all()

    def send_rtcm(self, data: bytes) -> None:
        """Forward RTCM correction data to the receiver."""
        self.send_raw(data)

    def start(self) -> None:
        """Validate the configuration and start the I/O threads."""
        if self.running:
            raise RuntimeError("interface is already running")

        self.gps_state = GpsState()

        if self.mode not in (Mode.ABSOLUTE, Mode.RELATIVE):
            self.log("no mode set, can't start", LogLevel.ERROR)
            raise ConfigurationError("no mode set, can't start")

        if self.mode == Mode.ABSOLUTE and any(
            math.isnan(v) for v in (self.datum_n, self.datum_e, self.datum_u)
        ):
            self.log("absolute positioning with invalid datum, can't start", LogLevel.ERROR)
            raise ConfigurationError("absolute positioning with invalid datum, can't start")

        if self._device is not None:
            try:
                self._device.check_parameters()
            except ConfigurationError as exc:
                self.log(str(exc), LogLevel.ERROR)
                raise
        elif not self.read_from_file:
            self.log("no device set, can't start", LogLevel.ERROR)
            raise ConfigurationError("no device set, can't start")

        self._stopped.clear()
        with self._tx_cond:
            self._tx_buffer.clear()

        if self.read_from_file:
            self.log(f"reading from file: {self._filename}", LogLevel.WARN)
            targets = (self._rx_loop_file, self._tx_loop_file)
        else:
            targets = (self._rx_loop, self._tx_loop)

        self._threads = [
            threading.Thread(target=target, name=f"gps-{target.__name__}", daemon=True)
            for target in targets
        ]
        for thread in self._threads:
            thread.start()

    def stop(self) -> None:
        """Signal the I/O threads to finish and wait for them."""
        self._stopped.set()
        with self._tx_cond:
            self._tx_cond.notify_all()
        rx_thread, tx_thread = self._threads or (None, None)
        self.log("waiting for device rx thread to stop", LogLevel.INFO)
        if rx_thread is not None:
            rx_thread.join()
        self.log("waiting for device tx thread to stop", LogLevel.INFO)
        if tx_thread is not None:
            tx_thread.join()
        self._threads = []

    def __enter__(self) -> "GpsInterface":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def _wait_for_tx_data(self) -> bool:
        return self._tx_cond.wait_for(
            lambda: bool(self._tx_buffer) or self._stopped.is_set(),
            timeout=_TX_WAIT_TIMEOUT,
        ) and bool(self._tx_buffer)

    def _tx_loop(self) -> None:
        while not self._stopped.is_set():
            with self._tx_cond:
                if not self._wait_for_tx_data():
                    continue
                self.log(f"writing {len(self._tx_buffer)} bytes of data", LogLevel.VERBOSE)
                while self._tx_buffer and not self._stopped.is_set():
                    device = self._device
                    if device is None or not device.is_open():
                        self.log("device is closed, dropping data", LogLevel.WARN)
                        self._tx_buffer.clear()
                        break
                    try:
                        written = device.write(bytes(self._tx_buffer))
                    except (DeviceError, OSError):
                        self.log("error writing to the device!", LogLevel.ERROR)
                        continue
                    if written != len(self._tx_buffer):
                        self.log(
                            "not all data has been written to the device. tx_buffer size: "
                            f"{len(self._tx_buffer)}, written: {written}",
                            LogLevel.WARN,
                        )
                        del self._tx_buffer[:written]
                    else:
                        self._tx_buffer.clear()

    def _tx_loop_file(self) -> None:
        while not self._stopped.is_set():
            with self._tx_cond:
                if self._wait_for_tx_data():
                    self._tx_buffer.clear()

    def _rx_loop(self) -> None:
        device = self._device
        assert device is not None
        self.gps_state_valid = False
        self.reset_parser_state()
        bytes_to_read = self.parse_rx_buffer()

        while not self._stopped.is_set():
            if not device.is_open():
                bytes_to_read = self.parse_rx_buffer()
                self.reset_parser_state()
                self.gps_state_valid = False
                try:
                    device.open()
                except DeviceError:
                    self._stopped.wait(_RECONNECT_DELAY)
                    continue
                with self._tx_cond:
                    self._tx_buffer.clear()

            try:
                data = device.read(bytes_to_read)
                if data:
                    bytes_to_read = self.feed(data)
            except (DeviceError, OSError):
                self.log("error while reading from device. reconnecting.", LogLevel.ERROR)
                device.close()

        device.close()

    def _rx_loop_file(self) -> None:
        self.gps_state_valid = False
        self.reset_parser_state()
        try:
            handle = open(self._filename or "", "rb")
        except OSError:
            self.log("error opening file.", LogLevel.ERROR)
            return
        with handle:
            while not self._stopped.is_set():
                byte = handle.read(1)
                if not byte:
                    break
                self.feed(byte)
                time.sleep(_FILE_BYTE_DELAY)
        self.log("end of file", LogLevel.INFO)