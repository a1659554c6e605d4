import pytest

from gpsdriver.ubx import (
    SYNC,
    UbxNavPvt,
    build_packet,
    calculate_checksum,
    validate_checksum,
)


def test_mon_ver_poll_frame():
    assert build_packet(0x0A, 0x04, b"") == bytes.fromhex("b5620a0400000e34")


def test_nav_pvt_poll_frame():
    assert build_packet(UbxNavPvt.CLASS_ID, UbxNavPvt.MESSAGE_ID, b"") == bytes.fromhex(
        "b562010700000819"
    )


def test_built_packets_validate():
    packet = build_packet(0x10, 0x02, bytes(range(16)))
    assert packet[:2] == SYNC
    assert len(packet) == 16 + 8
    assert validate_checksum(packet)


def test_corrupted_packet_fails_validation():
    packet = bytearray(build_packet(0x10, 0x02, b"\x01\x02\x03\x04"))
    packet[7] ^= 0xFF
    assert validate_checksum(bytes(packet)) is False


def test_short_packet_is_invalid():
    assert validate_checksum(b"\xb5\x62\x01") is False


def test_checksum_of_empty_is_zero():
    assert calculate_checksum(b"") == (0, 0)


def test_checksum_bytes_stay_in_range():
    ck_a, ck_b = calculate_checksum(bytes([0xFF]) * 1000)
    assert 0 <= ck_a <= 0xFF and 0 <= ck_b <= 0xFF


def test_nav_pvt_size():
    assert UbxNavPvt.SIZE == 92
    assert len(UbxNavPvt().to_bytes()) == UbxNavPvt.SIZE


def test_nav_pvt_roundtrip():
    msg = UbxNavPvt(
        iTOW=123456,
        year=2023,
        fixType=UbxNavPvt.FIX_TYPE_3D,
        flags=UbxNavPvt.FLAGS_GNSS_FIX_OK | UbxNavPvt.CARRIER_PHASE_FIXED,
        lon=-1234567,
        lat=485000000,
        hMSL=-500,
        velD=-42,
        headMot=18000000,
        headAcc=500000,
        headVeh=-9000000,
        magDec=-7,
        reserved1=b"\x01\x02\x03\x04",
    )
    assert UbxNavPvt.from_bytes(msg.to_bytes()) == msg


def test_nav_pvt_field_placement():
    payload = UbxNavPvt(iTOW=0x01020304).to_bytes()
    assert payload[:4] == b"\x04\x03\x02\x01"


def test_nav_pvt_wrong_size():
    with pytest.raises(ValueError):
        UbxNavPvt.from_bytes(b"\x00" * (UbxNavPvt.SIZE - 1))


def test_nav_pvt_flag_properties():
    msg = UbxNavPvt(
        flags=UbxNavPvt.FLAGS_GNSS_FIX_OK
        | UbxNavPvt.FLAGS_DIFF_SOLN
        | UbxNavPvt.CARRIER_PHASE_FLOAT
        | UbxNavPvt.FLAGS_HEAD_VEH_VALID,
        flags3=1,
    )
    assert msg.gnss_fix_ok
    assert msg.diff_soln
    assert msg.carrier_phase == UbxNavPvt.CARRIER_PHASE_FLOAT
    assert msg.head_veh_valid
    assert msg.invalid_llh


def test_nav_pvt_default_flags_false():
    msg = UbxNavPvt()
    assert not msg.gnss_fix_ok
    assert not msg.invalid_llh
    assert msg.carrier_phase == UbxNavPvt.CARRIER_PHASE_NO_SOLUTION


def test_nav_pvt_inside_frame_validates():
    payload = UbxNavPvt(iTOW=42).to_bytes()
    frame = build_packet(UbxNavPvt.CLASS_ID, UbxNavPvt.MESSAGE_ID, payload)
    assert validate_checksum(frame)
    assert UbxNavPvt.from_bytes(frame[6:-2]).iTOW == 42