"""Byte-stream devices a GPS receiver can be attached through."""

from __future__ import annotations

import abc
import socket

import serial

from .log import LogFunction, LogLevel, default_log

_TCP_TIMEOUT = 10.0
_TCP_READ_SIZE = 1024
_SERIAL_TIMEOUT = 0.1


class DeviceError(Exception):
    """Raised when a device cannot be opened, read or written."""


class ConfigurationError(DeviceError):
    """Raised when a device is missing required parameters."""


class GpsDevice(abc.ABC):
    """A bidirectional byte channel to a GPS receiver."""

    def __init__(self, log: LogFunction | None = None) -> None:
        self.log: LogFunction = log or default_log

    @abc.abstractmethod
    def check_parameters(self) -> None:
        """Raise ConfigurationError if the device cannot be started."""

    @abc.abstractmethod
    def is_open(self) -> bool:
        """Return True while the device is connected."""

    @abc.abstractmethod
    def open(self) -> None:
        """Connect the device, raising DeviceError on failure."""

    @abc.abstractmethod
    def close(self) -> None:
        """Disconnect the device."""

    @abc.abstractmethod
    def read(self, size: int) -> bytes:
        """Read up to ``size`` bytes; may return fewer."""

    @abc.abstractmethod
    def write(self, data: bytes) -> int:
        """Write ``data`` and return the number of bytes written."""

    def __enter__(self) -> "GpsDevice":
        if not self.is_open():
            self.open()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class SerialGpsDevice(GpsDevice):
    """A receiver attached to a serial port."""

    def __init__(self, port: str = "", baudrate: int = 0, log: LogFunction | None = None) -> None:
        super().__init__(log)
        self.port = port
        self.baudrate = baudrate
        self._serial = serial.Serial()

    def check_parameters(self) -> None:
        if not self.baudrate:
            raise ConfigurationError("no baudrate set, can't start")
        if not self.port:
            raise ConfigurationError("no serial port set, can't start")

    def is_open(self) -> bool:
        return bool(self._serial.is_open)

    def open(self) -> None:
        self.log(f"opening serial port: {self.port} with baudrate: {self.baudrate}", LogLevel.INFO)
        try:
            self._serial.port = self.port
            self._serial.baudrate = self.baudrate
            self._serial.timeout = _SERIAL_TIMEOUT
            self._serial.open()
        except (serial.SerialException, OSError, ValueError) as exc:
            self.log("error opening serial port.", LogLevel.ERROR)
            raise DeviceError(f"error opening serial port {self.port}") from exc

    def close(self) -> None:
        self._serial.close()

    def read(self, size: int) -> bytes:
        try:
            return self._serial.read(size)
        except (serial.SerialException, OSError) as exc:
            raise DeviceError(str(exc)) from exc

    def write(self, data: bytes) -> int:
        try:
            written = self._serial.write(data)
        except (serial.SerialException, OSError) as exc:
            raise DeviceError(str(exc)) from exc
        return len(data) if written is None else written


class TcpGpsDevice(GpsDevice):
    """A receiver reachable over a TCP connection."""

    def __init__(self, host: str = "", port: str | int = "", log: LogFunction | None = None) -> None:
        super().__init__(log)
        self.host = host
        self.port = str(port)
        self._sock: socket.socket | None = None

    def check_parameters(self) -> None:
        if not self.host:
            raise ConfigurationError("no host set, can't start")
        if not self.port:
            raise ConfigurationError("no port set, can't start")

    def is_open(self) -> bool:
        return self._sock is not None

    def open(self) -> None:
        self.log(f"connecting to {self.host}:{self.port}", LogLevel.INFO)
        try:
            addrs = socket.getaddrinfo(
                self.host, self.port, socket.AF_UNSPEC, socket.SOCK_STREAM, socket.IPPROTO_TCP
            )
        except (socket.gaierror, UnicodeError) as exc:
            self.log(f"could not resolve hostname {self.host}: {exc}", LogLevel.ERROR)
            raise DeviceError(f"could not resolve hostname {self.host}") from exc
        if not addrs:
            self.log(f"could not resolve hostname {self.host}: no IP found", LogLevel.ERROR)
            raise DeviceError(f"could not resolve hostname {self.host}")

        family, socktype, proto, _, address = addrs[0]
        try:
            sock = socket.socket(family, socktype, proto)
        except OSError as exc:
            self.log(f"socket creation failed: {exc}", LogLevel.ERROR)
            raise DeviceError("socket creation failed") from exc

        sock.settimeout(_TCP_TIMEOUT)
        try:
            sock.connect(address)
        except OSError as exc:
            self.log(f"connection failed: {exc}", LogLevel.ERROR)
            sock.close()
            raise DeviceError("connection failed") from exc
        self._sock = sock

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def _require_socket(self) -> socket.socket:
        if self._sock is None:
            raise DeviceError("device is not open")
        return self._sock

    def read(self, size: int) -> bytes:
        """Read whatever is available, up to one 1024-byte chunk; ``size`` is advisory."""
        sock = self._require_socket()
        try:
            data = sock.recv(_TCP_READ_SIZE)
        except OSError as exc:
            raise DeviceError(str(exc)) from exc
        if not data:
            raise DeviceError("connection closed")
        return data

    def write(self, data: bytes) -> int:
        sock = self._require_socket()
        try:
            return sock.send(data)
        except OSError as exc:
            raise DeviceError(str(exc)) from exc