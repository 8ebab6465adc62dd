"""Minimal EXIF timestamp stamping and reading for JPEG images."""

from __future__ import annotations

import struct
from dataclasses import dataclass
from datetime import datetime, timezone

from wxbridge.authority import Confidence, ObservationResult, TimeSource
from wxbridge.timehealth import TimeHealth

__all__ = [
    "BRIDGE_EXIF_MARKER",
    "EXIFStampResult",
    "build_bridge_exif",
    "build_simple_exif",
    "has_exif",
    "inject_exif",
    "is_bridge_stamped",
    "is_jpeg",
    "is_jpeg_complete",
    "read_exif_timestamp",
    "stamp_bridge_exif",
    "stamp_exif",
]

BRIDGE_EXIF_MARKER = "AviationWX-Bridge"
"""Marker in UserComment telling the server the timestamp is UTC."""

EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"

_EXIF_HEADER = b"Exif\x00\x00"
_TIFF_HEADER_LE = b"II*\x00" + struct.pack("<I", 8)
_HAS_EXIF_SEARCH_LIMIT = 65536

_TAG_DATETIME = 0x0132
_TAG_EXIF_OFFSET = 0x8769
_TAG_DATETIME_ORIGINAL = 0x9003
_TAG_OFFSET_TIME_ORIGINAL = 0x9011
_TAG_USER_COMMENT = 0x9286

_TYPE_ASCII = 2
_TYPE_LONG = 4
_TYPE_UNDEFINED = 7

_ENTRY_SIZE = 12
# TIFF header (8) + IFD0 entry count (2) + one entry (12) + next-IFD offset (4)
_SUB_IFD_OFFSET = 8 + 2 + _ENTRY_SIZE + 4


@dataclass
class EXIFStampResult:
    """Outcome of stamping an image with the bridge's EXIF block."""

    data: bytes
    stamped: bool
    observation_utc: datetime
    marker: str = ""


def _entry(tag: int, kind: int, count: int, value: int) -> bytes:
    return struct.pack("<HHII", tag, kind, count, value)


def _ifd0() -> bytes:
    return (
        struct.pack("<H", 1)
        + _entry(_TAG_EXIF_OFFSET, _TYPE_LONG, 1, _SUB_IFD_OFFSET)
        + struct.pack("<I", 0)
    )


def _to_utc(t: datetime) -> datetime:
    if t.tzinfo is None:
        return t.replace(tzinfo=timezone.utc)
    return t.astimezone(timezone.utc)


def is_jpeg(data: bytes) -> bool:
    """Whether data starts with a JPEG SOI marker."""
    return len(data) >= 2 and data[0] == 0xFF and data[1] == 0xD8


def build_simple_exif(date_time: str) -> bytes:
    """Build an APP1 EXIF payload holding only DateTimeOriginal."""
    value = date_time.encode("ascii") + b"\x00"
    value_offset = _SUB_IFD_OFFSET + 2 + _ENTRY_SIZE + 4
    sub_ifd = (
        struct.pack("<H", 1)
        + _entry(_TAG_DATETIME_ORIGINAL, _TYPE_ASCII, len(value), value_offset)
        + struct.pack("<I", 0)
    )
    return _EXIF_HEADER + _TIFF_HEADER_LE + _ifd0() + sub_ifd + value


def build_bridge_exif(date_time: str, marker: str) -> bytes:
    """Build an APP1 EXIF payload with DateTimeOriginal, UTC offset and marker."""
    date_value = date_time.encode("ascii") + b"\x00"
    offset_value = b"+00:00\x00"
    comment_value = b"ASCII\x00\x00\x00" + marker.encode("ascii")

    date_offset = _SUB_IFD_OFFSET + 2 + 3 * _ENTRY_SIZE + 4
    offset_time_offset = date_offset + len(date_value)
    comment_offset = offset_time_offset + len(offset_value)

    sub_ifd = (
        struct.pack("<H", 3)
        + _entry(_TAG_DATETIME_ORIGINAL, _TYPE_ASCII, len(date_value), date_offset)
        + _entry(
            _TAG_OFFSET_TIME_ORIGINAL, _TYPE_ASCII, len(offset_value), offset_time_offset
        )
        + _entry(_TAG_USER_COMMENT, _TYPE_UNDEFINED, len(comment_value), comment_offset)
        + struct.pack("<I", 0)
    )
    return (
        _EXIF_HEADER
        + _TIFF_HEADER_LE
        + _ifd0()
        + sub_ifd
        + date_value
        + offset_value
        + comment_value
    )


def inject_exif(image_data: bytes, exif_data: bytes) -> bytes:
    """Insert an APP1 segment after SOI, dropping APP1 segments that follow it.

    Raises ValueError if the image is too small or the payload too large.
    """
    if len(image_data) < 2:
        raise ValueError("image too small")
    if len(exif_data) + 2 > 0xFFFF:
        raise ValueError("EXIF payload too large for an APP1 segment")

    pos = 2
    while pos < len(image_data) - 1:
        if image_data[pos] == 0xFF and image_data[pos + 1] == 0xE1 and pos + 3 < len(
            image_data
        ):
            pos += 2 + int.from_bytes(image_data[pos + 2 : pos + 4], "big")
            continue
        break

    return (
        image_data[:2]
        + b"\xff\xe1"
        + struct.pack(">H", len(exif_data) + 2)
        + exif_data
        + image_data[pos:]
    )


def stamp_exif(
    image_data: bytes,
    time_health: TimeHealth | None = None,
    capture_time: datetime | None = None,
) -> bytes:
    """Add a DateTimeOriginal stamp when the clock is healthy.

    Returns the original data when time is unhealthy, the data is not a
    JPEG, or stamping fails.
    """
    if time_health is not None and not time_health.is_healthy():
        return image_data

    capture = datetime.now(timezone.utc) if capture_time is None else _to_utc(capture_time)
    if not is_jpeg(image_data):
        return image_data
    try:
        return inject_exif(image_data, build_simple_exif(capture.strftime(EXIF_DATETIME_FORMAT)))
    except (ValueError, struct.error):
        return image_data


def _bridge_marker(observation: ObservationResult) -> str:
    parts = [
        BRIDGE_EXIF_MARKER,
        "UTC",
        "v1",
        TimeSource(observation.source).value,
        Confidence(observation.confidence).value,
    ]
    if observation.warning is not None:
        parts.append("warn:" + observation.warning.code)
    return ":".join(parts)


def stamp_bridge_exif(image_data: bytes, observation: ObservationResult) -> EXIFStampResult:
    """Stamp a JPEG with the observation time and the bridge marker."""
    result = EXIFStampResult(
        data=image_data, stamped=False, observation_utc=observation.time
    )
    if not is_jpeg(image_data):
        return result

    result.marker = _bridge_marker(observation)
    date_time = observation.time.strftime(EXIF_DATETIME_FORMAT)
    try:
        result.data = inject_exif(image_data, build_bridge_exif(date_time, result.marker))
    except (ValueError, struct.error):
        return result
    result.stamped = True
    return result


def _find_exif_segment(image_data: bytes) -> bytes | None:
    """Return the TIFF data of the first EXIF APP1 segment, if any."""
    size = len(image_data)
    if size < 4:
        return None

    pos = 2
    while pos < size - 3:
        if image_data[pos] != 0xFF:
            pos += 1
            continue

        seg_len = int.from_bytes(image_data[pos + 2 : pos + 4], "big")
        if image_data[pos + 1] == 0xE1 and pos + 2 + seg_len <= size:
            segment = image_data[pos + 4 : pos + 2 + seg_len]
            if len(segment) > len(_EXIF_HEADER) and segment.startswith(_EXIF_HEADER):
                return segment[len(_EXIF_HEADER) :]
        pos += 2 + seg_len
    return None


def _search_ifd(
    data: bytes, offset: int, tag_id: int, order: str, seen: set[int]
) -> str:
    if offset in seen or offset + 2 > len(data):
        return ""
    seen.add(offset)

    (count,) = struct.unpack_from(order + "H", data, offset)
    offset += 2
    for _ in range(count):
        if offset + _ENTRY_SIZE > len(data):
            break
        tag, kind, value_count, value = struct.unpack_from(order + "HHII", data, offset)

        if tag == tag_id and kind == _TYPE_ASCII and value + value_count <= len(data):
            return data[value : value + value_count - 1].decode("latin-1")

        if tag == _TAG_EXIF_OFFSET:
            found = _search_ifd(data, value, tag_id, order, seen)
            if found:
                return found

        offset += _ENTRY_SIZE
    return ""


def _find_exif_tag(tiff: bytes, tag_id: int) -> str:
    if len(tiff) < 8:
        return ""
    if tiff[:2] == b"II":
        order = "<"
    elif tiff[:2] == b"MM":
        order = ">"
    else:
        return ""
    (ifd_offset,) = struct.unpack_from(order + "I", tiff, 4)
    if ifd_offset >= len(tiff):
        return ""
    return _search_ifd(tiff, ifd_offset, tag_id, order, set())


def read_exif_timestamp(image_data: bytes) -> datetime | None:
    """Read DateTimeOriginal (or DateTime) as a naive wall-clock datetime."""
    if not is_jpeg(image_data):
        return None
    tiff = _find_exif_segment(image_data)
    if tiff is None:
        return None

    value = _find_exif_tag(tiff, _TAG_DATETIME_ORIGINAL) or _find_exif_tag(
        tiff, _TAG_DATETIME
    )
    if not value:
        return None
    try:
        return datetime.strptime(value, EXIF_DATETIME_FORMAT)
    except ValueError:
        return None


def is_bridge_stamped(image_data: bytes) -> bool:
    """Whether a JPEG carries the bridge marker."""
    return is_jpeg(image_data) and BRIDGE_EXIF_MARKER.encode("ascii") in image_data


def has_exif(image_data: bytes) -> bool:
    """Whether a JPEG appears to carry EXIF data in its first 64 KiB."""
    return is_jpeg(image_data) and b"Exif" in image_data[:_HAS_EXIF_SEARCH_LIMIT]


def is_jpeg_complete(image_data: bytes) -> bool:
    """Whether data starts with SOI and ends with EOI."""
    return (
        len(image_data) >= 4
        and image_data[:2] == b"\xff\xd8"
        and image_data[-2:] == b"\xff\xd9"
    )