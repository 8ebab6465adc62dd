from datetime import datetime, timedelta, timezone

import pytest

from wxbridge.authority import Confidence, ObservationResult, TimeSource, TimeWarning
from wxbridge.exif import (
    BRIDGE_EXIF_MARKER,
    build_bridge_exif,
    build_simple_exif,
    has_exif,
    inject_exif,
    is_bridge_stamped,
    is_jpeg,
    is_jpeg_complete,
    read_exif_timestamp,
    stamp_bridge_exif,
    stamp_exif,
)
from wxbridge.timehealth import TimeHealth, TimeHealthConfig

TEST_JPEG = bytes.fromhex(
    "ffd8"
    "ffe000104a46494600010100000100010000"
    "ffdb004300" + "10" * 64 +
    "ffc0000b080001000101011100"
    "ffc4001f00"
    "0001050101010101"
    "0100000000000000"
    "000102030405060708090a0b"
    "ffc400b510"
    "0002010303020403"
    "050504040000017d"
    "0102030004110512"
    "2131410613516107"
    "227114328191a108"
    "2342b1c11552d1f0"
    "2433627282090a16"
    "1718191a25262728"
    "292a343536373839"
    "3a43444546474849"
    "4a53545556575859"
    "5a63646566676869"
    "6a73747576777879"
    "7a83848586878889"
    "8a92939495969798"
    "999aa2a3a4a5a6a7"
    "a8a9aab2b3b4b5b6"
    "b7b8b9bac2c3c4c5"
    "c6c7c8c9cad2d3d4"
    "d5d6d7d8d9dae1e2"
    "e3e4e5e6e7e8e9ea"
    "f1f2f3f4f5f6f7f8"
    "f9fa"
    "ffda000801010000003f00"
    "7f"
    "ffd9"
)


class _HealthyClock:
    def is_healthy(self):
        return True


def _unhealthy():
    return TimeHealth(TimeHealthConfig(enabled=True))


def _observation(when=None, source=TimeSource.BRIDGE_CLOCK, warning=None):
    return ObservationResult(
        time=when or datetime.now(timezone.utc),
        source=source,
        confidence=Confidence.HIGH,
        warning=warning,
    )


def test_stamp_exif_time_unhealthy_returns_original():
    image = b"test image data"
    result = stamp_exif(image, _unhealthy(), datetime.now())
    assert result == image


def test_stamp_exif_time_healthy_adds_exif():
    result = stamp_exif(TEST_JPEG, _HealthyClock(), datetime.now())
    assert b"Exif" in result


def test_stamp_exif_without_time_health():
    result = stamp_exif(TEST_JPEG, None, datetime.now())
    assert b"Exif" in result


def test_stamp_exif_without_capture_time():
    result = stamp_exif(TEST_JPEG, None, None)
    assert has_exif(result)


def test_stamp_exif_writes_utc_time_readable_back():
    capture = datetime(2024, 12, 25, 12, 30, tzinfo=timezone(timedelta(hours=2)))
    result = stamp_exif(TEST_JPEG, _HealthyClock(), capture)
    assert read_exif_timestamp(result) == datetime(2024, 12, 25, 10, 30)


def test_stamp_exif_non_jpeg_healthy_returns_original():
    data = b"not a jpeg image"
    assert stamp_exif(data, _HealthyClock(), datetime.now()) == data


def test_stamp_exif_integration_partial_jpeg():
    image = bytes([0xFF, 0xD8, 0xFF, 0xE0, 0x00, 0x10]) + b"JFIF\x00"
    capture = datetime.now()

    assert stamp_exif(image, _unhealthy(), capture) == image

    stamped = stamp_exif(image, _HealthyClock(), capture)
    assert len(stamped) >= len(image)


def test_stamp_bridge_exif():
    result = stamp_bridge_exif(TEST_JPEG, _observation())
    assert result.stamped is True
    assert BRIDGE_EXIF_MARKER.encode() in result.data
    assert b"UTC" in result.data
    assert result.marker == "AviationWX-Bridge:UTC:v1:bridge_clock:high"


def test_stamp_bridge_exif_keeps_observation_time():
    when = datetime(2024, 12, 25, 10, 30, tzinfo=timezone.utc)
    result = stamp_bridge_exif(TEST_JPEG, _observation(when))
    assert result.observation_utc == when


def test_stamp_bridge_exif_with_warning():
    warning = TimeWarning(code="camera_clock_drift", message="Camera clock is off")
    result = stamp_bridge_exif(
        TEST_JPEG, _observation(source=TimeSource.CAMERA_EXIF, warning=warning)
    )
    assert result.stamped is True
    assert "warn:camera_clock_drift" in result.marker
    assert result.marker == "AviationWX-Bridge:UTC:v1:camera_exif:high:warn:camera_clock_drift"


def test_stamp_bridge_exif_non_jpeg():
    data = b"not a jpeg image"
    result = stamp_bridge_exif(data, _observation())
    assert result.stamped is False
    assert result.data == data
    assert result.marker == ""


def test_is_bridge_stamped():
    result = stamp_bridge_exif(TEST_JPEG, _observation())
    assert is_bridge_stamped(result.data) is True
    assert is_bridge_stamped(TEST_JPEG) is False


def test_is_bridge_stamped_requires_jpeg():
    assert is_bridge_stamped(BRIDGE_EXIF_MARKER.encode()) is False


def test_has_exif_basic_jpeg():
    data = bytes([0xFF, 0xD8, 0xFF, 0xE0, 0x00, 0x10]) + b"JFIF"
    assert has_exif(data) is False


def test_has_exif_with_exif():
    result = stamp_bridge_exif(TEST_JPEG, _observation())
    assert has_exif(result.data) is True


@pytest.mark.parametrize("data", [b"not a jpeg", b"", b"\xff"])
def test_has_exif_rejects_non_jpeg(data):
    assert has_exif(data) is False


@pytest.mark.parametrize(
    "data, expected",
    [
        (TEST_JPEG, True),
        (bytes([0xFF, 0xD8, 0x00, 0x00]), False),
        (bytes([0x00, 0x00, 0xFF, 0xD9]), False),
        (bytes([0xFF, 0xD8]), False),
        (b"", False),
    ],
    ids=["complete", "missing EOI", "missing SOI", "too short", "empty"],
)
def test_is_jpeg_complete(data, expected):
    assert is_jpeg_complete(data) is expected


@pytest.mark.parametrize(
    "data, expected", [(b"\xff\xd8", True), (b"\xff", False), (b"\x00\xd8", False)]
)
def test_is_jpeg(data, expected):
    assert is_jpeg(data) is expected


def test_read_exif_timestamp_round_trip():
    when = datetime(2024, 12, 25, 10, 30, 0, tzinfo=timezone.utc)
    result = stamp_bridge_exif(TEST_JPEG, _observation(when))
    assert read_exif_timestamp(result.data) == datetime(2024, 12, 25, 10, 30, 0)


def test_read_exif_timestamp_no_exif():
    assert read_exif_timestamp(TEST_JPEG) is None


def test_read_exif_timestamp_non_jpeg():
    assert read_exif_timestamp(b"not a jpeg") is None


def test_build_simple_exif():
    date_time = "2024:12:25 10:30:00"
    exif = build_simple_exif(date_time)
    assert exif.startswith(b"Exif\x00\x00")
    assert exif[6:8] == b"II"
    assert date_time.encode() in exif


def test_build_bridge_exif_contents():
    marker = "AviationWX-Bridge:UTC:v1:bridge_clock:high"
    exif = build_bridge_exif("2024:12:25 10:30:00", marker)
    assert exif.startswith(b"Exif\x00\x00")
    assert b"+00:00\x00" in exif
    assert exif.endswith(b"ASCII\x00\x00\x00" + marker.encode())


def test_inject_exif():
    result = inject_exif(TEST_JPEG, build_simple_exif("2024:12:25 10:30:00"))
    assert result[:2] == b"\xff\xd8"
    assert result[2:4] == b"\xff\xe1"
    assert b"Exif" in result
    assert result[-2:] == b"\xff\xd9"
    assert read_exif_timestamp(result) == datetime(2024, 12, 25, 10, 30, 0)


def test_inject_exif_replaces_existing_app1():
    first = inject_exif(TEST_JPEG, build_simple_exif("2020:01:01 00:00:00"))
    second = inject_exif(first, build_simple_exif("2024:12:25 10:30:00"))
    assert second.count(b"Exif") == 1
    assert read_exif_timestamp(second) == datetime(2024, 12, 25, 10, 30, 0)


def test_inject_exif_too_small():
    with pytest.raises(ValueError):
        inject_exif(b"\xff", build_simple_exif("2024:12:25 10:30:00"))