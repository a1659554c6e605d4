import socket

import pytest

from gpsdriver.devices import (
    ConfigurationError,
    DeviceError,
    GpsDevice,
    SerialGpsDevice,
    TcpGpsDevice,
)
from gpsdriver.log import LogLevel


@pytest.fixture
def messages():
    return []


@pytest.fixture
def collector(messages):
    return lambda text, level: messages.append((text, level))


@pytest.fixture
def server():
    srv = socket.create_server(("127.0.0.1", 0))
    srv.settimeout(5)
    yield srv
    srv.close()


def test_base_device_is_abstract():
    with pytest.raises(TypeError):
        GpsDevice()


def test_serial_requires_baudrate(collector):
    dev = SerialGpsDevice("/dev/ttyACM0", 0, log=collector)
    with pytest.raises(ConfigurationError, match="no baudrate set"):
        dev.check_parameters()


def test_serial_requires_port(collector):
    dev = SerialGpsDevice("", 38400, log=collector)
    with pytest.raises(ConfigurationError, match="no serial port set"):
        dev.check_parameters()


def test_serial_valid_parameters_and_closed_initially(collector):
    dev = SerialGpsDevice("/dev/ttyACM0", 38400, log=collector)
    dev.check_parameters()
    assert dev.is_open() is False


def test_serial_open_failure_raises_and_logs(collector, messages):
    dev = SerialGpsDevice("/nonexistent/gps-port", 38400, log=collector)
    with pytest.raises(DeviceError):
        dev.open()
    assert ("error opening serial port.", LogLevel.ERROR) in messages
    assert dev.is_open() is False


def test_configuration_error_is_device_error():
    error = ConfigurationError("boom")
    assert issubclass(ConfigurationError, DeviceError)
    assert str(error) == "boom"


def test_tcp_requires_host(collector):
    with pytest.raises(ConfigurationError, match="no host set"):
        TcpGpsDevice("", "2101", log=collector).check_parameters()


def test_tcp_requires_port(collector):
    with pytest.raises(ConfigurationError, match="no port set"):
        TcpGpsDevice("localhost", "", log=collector).check_parameters()


def test_tcp_roundtrip(server, collector, messages):
    port = server.getsockname()[1]
    dev = TcpGpsDevice("127.0.0.1", str(port), log=collector)
    dev.open()
    assert dev.is_open()
    conn, _ = server.accept()
    with conn:
        assert dev.write(b"abc") == 3
        assert conn.recv(16) == b"abc"
        conn.sendall(b"xyz")
        assert dev.read(1) == b"xyz"
    dev.close()
    assert dev.is_open() is False
    assert (f"connecting to 127.0.0.1:{port}", LogLevel.INFO) in messages


def test_tcp_read_after_peer_close_raises(server, collector):
    dev = TcpGpsDevice("127.0.0.1", server.getsockname()[1], log=collector)
    dev.open()
    conn, _ = server.accept()
    conn.close()
    with pytest.raises(DeviceError, match="connection closed"):
        dev.read(10)
    dev.close()


def test_tcp_connection_refused(collector, messages):
    probe = socket.create_server(("127.0.0.1", 0))
    port = probe.getsockname()[1]
    probe.close()
    dev = TcpGpsDevice("127.0.0.1", str(port), log=collector)
    with pytest.raises(DeviceError, match="connection failed"):
        dev.open()
    assert dev.is_open() is False
    assert any(level == LogLevel.ERROR for _, level in messages)


def test_tcp_read_write_when_closed_raise(collector):
    dev = TcpGpsDevice("127.0.0.1", "1", log=collector)
    with pytest.raises(DeviceError):
        dev.read(1)
    with pytest.raises(DeviceError):
        dev.write(b"a")


def test_tcp_context_manager_closes(server, collector):
    dev = TcpGpsDevice("127.0.0.1", server.getsockname()[1], log=collector)
    with dev as opened:
        assert opened.is_open()
        conn, _ = server.accept()
        conn.close()
    assert dev.is_open() is False