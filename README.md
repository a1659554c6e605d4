# gpsdriver

A driver for GNSS receivers that speak the u-blox UBX protocol. It reads
the receiver over a serial port, a TCP socket or a recorded byte stream,
decodes navigation solutions (UBX-NAV-PVT) and sensor measurements
(UBX-ESF-MEAS), and turns them into poses in a local east/north/up frame.
RTCM correction data can be forwarded to the receiver, wheel ticks can be
sent to it, and a GGA sentence with the current position is produced as
feedback for VRS correction services.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Command line

The package installs a `gpsdriver` command. It starts the receiver
interface and writes one JSON object per line to standard output, each
tagged with a `"topic"` field:

- `xb_pose` – the full pose for each valid navigation solution
- `pose` – position, orientation quaternion and covariance only
- `nmea` – a GPGGA sentence with the current position, at most every 10 seconds
- `imu` – angular velocity and linear acceleration for each complete IMU sample
- `wheel_tick_stamp_esc`, `wheel_tick_ublox_rx`, `wheel_tick_round_trip_host` –
  wheel tick latency measurements (turned off with `--no-publish-latency`)

Log messages go to standard error through Python's `logging`.

```
gpsdriver --help
```

Options:

- `--device-type {serial,tcp,file}` (default `serial`)
- `--serial-port` (default `/dev/ttyACM0`) and `--baudrate` (default `38400`)
- `--tcp-host` and `--tcp-port`
- `--filename` (default `/dev/null`): replay a recorded UBX byte stream
- `--mode` `absolute` (default) or `relative`
- `--datum-lat`, `--datum-long`, `--datum-height`: required in absolute mode
- `--verbose`: also log verbose messages
- `--no-publish-latency`
- `--rtcm-stdin`: forward RTCM correction bytes read from standard input

In absolute mode positions are metres east, north and up of the datum. The
command exits with status 2 if absolute mode is chosen without a complete
datum, and with status 1 if the interface refuses to start (for example a
missing serial port, host or port, or an unknown mode). Otherwise it runs
until interrupted with Ctrl-C.

## Library use

Devices (`gpsdriver.devices`):

- `SerialGpsDevice(port, baudrate, log)` and `TcpGpsDevice(host, port, log)`.
- Both provide `check_parameters()` (raises `ConfigurationError`), `open()`,
  `is_open()`, `read(size)`, `write(data)` and `close()`, and work as context
  managers. Open and I/O failures raise `DeviceError`.

UBX framing (`gpsdriver.ubx`):

- `build_packet(msg_class, msg_id, payload)` frames a payload with the sync
  bytes, length and checksum.
- `calculate_checksum(data)` returns `(ck_a, ck_b)`;
  `validate_checksum(packet)` checks a whole frame.
- `UbxNavPvt.from_bytes(data)` decodes a NAV-PVT payload (raising
  `ValueError` on a wrong size) and `UbxNavPvt.to_bytes()` encodes one.

Receiver interfaces (`gpsdriver.interface`, `gpsdriver.ublox`):

- `UbxGpsInterface(log)` parses the UBX stream. Set `device` (or `filename`
  to replay a file), `mode` (`Mode.ABSOLUTE` or `Mode.RELATIVE`), and the
  callbacks `state_callback` (receives a `GpsState`), `imu_callback`
  (receives an `ImuState`) and `wheel_latency_callback`.
- `set_datum(datum_lat, datum_long, datum_height)` sets the origin of the
  local frame; `ll_to_utm(lat, lon)` returns `(northing, easting, zone)`.
- `start()` validates the configuration (raising `ConfigurationError`) and
  runs the reader and writer threads; `stop()` halts them. The interface is
  also a context manager.
- `send_rtcm(data)` queues correction data; `send_wheel_ticks(timestamp,
  direction_left, ticks_left, direction_right, ticks_right)` queues an
  ESF-MEAS frame with wheel ticks.
- `feed(data)` pushes raw bytes straight into the parser.

Output helpers (`gpsdriver.node`):

- `convert_gps_result(state)` turns a `GpsState` into an `AbsolutePose` with
  `PoseFlags`, an orientation quaternion and a covariance matrix.
- `build_gga_sentence(lat, lon, when)`, `format_coordinate(value,
  is_latitude)` and `nmea_checksum(body)` produce the GGA feedback sentence.
- `quaternion_from_yaw(yaw)` and `imu_to_dict(state)`.

Log messages go through a callable taking a text and a `LogLevel`;
`gpsdriver.log.default_log` is used when none is given.

## What it does not do

- Only the UBX binary protocol is parsed. Receivers that emit only NMEA
  sentences are not supported; NMEA appears only as the GGA sentence the
  package writes.
- Output is JSON lines on standard output; the package has no message bus
  or network publishing of its own.
- RTCM corrections are not fetched from a caster; they must be piped in
  (`--rtcm-stdin`) or passed to `send_rtcm`.