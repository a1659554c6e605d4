"""UBX frame helpers and the NAV-PVT message layout."""

from __future__ import annotations

import struct
from dataclasses import astuple, dataclass, field
from typing import ClassVar

SYNC = b"\xb5\x62"
HEADER_SIZE = 6
FRAME_OVERHEAD = 8

ESF_MEAS_CLASS = 0x10
ESF_MEAS_ID = 0x02


def calculate_checksum(data: bytes) -> tuple[int, int]:
    """Return the 8-bit Fletcher checksum (ck_a, ck_b) of ``data``."""
    ck_a = ck_b = 0
    for byte in data:
        ck_a = (ck_a + byte) & 0xFF
        ck_b = (ck_b + ck_a) & 0xFF
    return ck_a, ck_b


def validate_checksum(packet: bytes) -> bool:
    """Check the trailing checksum of a whole UBX frame, sync bytes included."""
    if len(packet) < FRAME_OVERHEAD:
        return False
    return calculate_checksum(packet[2:-2]) == (packet[-2], packet[-1])


def build_packet(msg_class: int, msg_id: int, payload: bytes) -> bytes:
    """Frame a payload with sync bytes, class, id, length and checksum."""
    body = struct.pack("<BBH", msg_class, msg_id, len(payload)) + bytes(payload)
    return SYNC + body + bytes(calculate_checksum(body))


_NAV_PVT_FORMAT = struct.Struct("<IH6BIi4B4i2I5i2I2H4sihH")


@dataclass
class UbxNavPvt:
    """Payload of a UBX-NAV-PVT navigation solution."""

    CLASS_ID: ClassVar[int] = 1
    MESSAGE_ID: ClassVar[int] = 7
    SIZE: ClassVar[int] = _NAV_PVT_FORMAT.size

    VALID_DATE: ClassVar[int] = 1
    VALID_TIME: ClassVar[int] = 2
    VALID_FULLY_RESOLVED: ClassVar[int] = 4
    VALID_MAG: ClassVar[int] = 8
    FIX_TYPE_NO_FIX: ClassVar[int] = 0
    FIX_TYPE_DEAD_RECKONING_ONLY: ClassVar[int] = 1
    FIX_TYPE_2D: ClassVar[int] = 2
    FIX_TYPE_3D: ClassVar[int] = 3
    FIX_TYPE_GNSS_DEAD_RECKONING_COMBINED: ClassVar[int] = 4
    FIX_TYPE_TIME_ONLY: ClassVar[int] = 5
    FLAGS_GNSS_FIX_OK: ClassVar[int] = 1
    FLAGS_DIFF_SOLN: ClassVar[int] = 2
    FLAGS_PSM_MASK: ClassVar[int] = 28
    PSM_OFF: ClassVar[int] = 0
    PSM_ENABLED: ClassVar[int] = 4
    PSM_ACQUIRED: ClassVar[int] = 8
    PSM_TRACKING: ClassVar[int] = 12
    PSM_POWER_OPTIMIZED_TRACKING: ClassVar[int] = 16
    PSM_INACTIVE: ClassVar[int] = 20
    FLAGS_HEAD_VEH_VALID: ClassVar[int] = 32
    FLAGS_CARRIER_PHASE_MASK: ClassVar[int] = 192
    CARRIER_PHASE_NO_SOLUTION: ClassVar[int] = 0
    CARRIER_PHASE_FLOAT: ClassVar[int] = 64
    CARRIER_PHASE_FIXED: ClassVar[int] = 128
    FLAGS2_CONFIRMED_AVAILABLE: ClassVar[int] = 32
    FLAGS2_CONFIRMED_DATE: ClassVar[int] = 64
    FLAGS2_CONFIRMED_TIME: ClassVar[int] = 128
    FLAGS3_INVALID_LLH: ClassVar[int] = 1

    iTOW: int = 0
    year: int = 0
    month: int = 0
    day: int = 0
    hour: int = 0
    min: int = 0
    sec: int = 0
    valid: int = 0
    tAcc: int = 0
    nano: int = 0
    fixType: int = 0
    flags: int = 0
    flags2: int = 0
    numSV: int = 0
    lon: int = 0
    lat: int = 0
    height: int = 0
    hMSL: int = 0
    hAcc: int = 0
    vAcc: int = 0
    velN: int = 0
    velE: int = 0
    velD: int = 0
    gSpeed: int = 0
    headMot: int = 0
    sAcc: int = 0
    headAcc: int = 0
    pDOP: int = 0
    flags3: int = 0
    reserved1: bytes = field(default=b"\x00\x00\x00\x00")
    headVeh: int = 0
    magDec: int = 0
    magAcc: int = 0

    @classmethod
    def from_bytes(cls, data: bytes) -> "UbxNavPvt":
        """Decode a NAV-PVT payload; raise ValueError on a size mismatch."""
        if len(data) != cls.SIZE:
            raise ValueError(f"NAV-PVT payload must be {cls.SIZE} bytes, got {len(data)}")
        return cls(*_NAV_PVT_FORMAT.unpack(bytes(data)))

    def to_bytes(self) -> bytes:
        """Encode this message as a NAV-PVT payload."""
        return _NAV_PVT_FORMAT.pack(*astuple(self))

    @property
    def gnss_fix_ok(self) -> bool:
        return bool(self.flags & self.FLAGS_GNSS_FIX_OK)

    @property
    def diff_soln(self) -> bool:
        return bool(self.flags & self.FLAGS_DIFF_SOLN)

    @property
    def carrier_phase(self) -> int:
        """The carrier-phase bits of ``flags`` (one of the CARRIER_PHASE_* values)."""
        return self.flags & self.FLAGS_CARRIER_PHASE_MASK

    @property
    def head_veh_valid(self) -> bool:
        return bool(self.flags & self.FLAGS_HEAD_VEH_VALID)

    @property
    def invalid_llh(self) -> bool:
        return bool(self.flags3 & self.FLAGS3_INVALID_LLH)