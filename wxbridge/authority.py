"""Decides observation times from camera EXIF and the bridge clock."""

from __future__ import annotations

import calendar
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone, tzinfo
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from wxbridge.timehealth import TimeHealth

__all__ = [
    "Authority",
    "AuthorityConfig",
    "Confidence",
    "ObservationResult",
    "TimeInfo",
    "TimeSource",
    "TimeWarning",
    "drift_direction",
]


class TimeSource(str, Enum):
    """Where an observation time came from."""

    CAMERA_EXIF = "camera_exif"
    BRIDGE_CLOCK = "bridge_clock"


class Confidence(str, Enum):
    """How far an observation time can be trusted."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass
class TimeWarning:
    """A time-related warning."""

    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class ObservationResult:
    """The chosen observation time and how it was chosen."""

    time: datetime
    source: TimeSource
    confidence: Confidence
    warning: TimeWarning | None = None


@dataclass
class AuthorityConfig:
    """Timezone and camera-drift thresholds."""

    timezone: str = ""
    camera_tolerance_seconds: int = 5
    camera_warn_drift_seconds: int = 30
    camera_reject_drift_seconds: int = 300


@dataclass
class TimeInfo:
    """Current time details for display."""

    utc: str
    local: str
    timezone: str
    timezone_abbrev: str
    utc_offset: str
    dst_active: bool
    time_healthy: bool
    ntp_offset_ms: int


class _LocalZone(tzinfo):
    """The system's local timezone, following its DST rules."""

    def _wall_struct(self, dt: datetime) -> time.struct_time:
        stamp = time.mktime(
            (dt.year, dt.month, dt.day, dt.hour, dt.minute, dt.second, 0, 0, -1)
        )
        return time.localtime(stamp)

    def _struct(self, dt: datetime | None) -> time.struct_time:
        if dt is None:
            return time.localtime()
        return self._wall_struct(dt)

    def utcoffset(self, dt: datetime | None) -> timedelta:
        return timedelta(seconds=self._struct(dt).tm_gmtoff)

    def dst(self, dt: datetime | None) -> timedelta:
        local = self._struct(dt)
        if local.tm_isdst <= 0:
            return timedelta(0)
        standard_offset = -time.timezone
        return timedelta(seconds=local.tm_gmtoff - standard_offset)

    def tzname(self, dt: datetime | None) -> str:
        return self._struct(dt).tm_zone

    def fromutc(self, dt: datetime) -> datetime:
        stamp = calendar.timegm(dt.replace(tzinfo=None).timetuple())
        offset = time.localtime(stamp).tm_gmtoff
        return dt + timedelta(seconds=offset)

    def __str__(self) -> str:
        return "Local"

    def __repr__(self) -> str:
        return "_LocalZone()"


def _load_zone(name: str) -> tzinfo:
    if name in ("", "Local"):
        return _LocalZone()
    if name == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"load timezone {name!r}: {exc}") from exc


def _as_utc(t: datetime) -> datetime:
    if t.tzinfo is None:
        return t.replace(tzinfo=timezone.utc)
    return t.astimezone(timezone.utc)


def _rfc3339(t: datetime) -> str:
    text = t.isoformat(timespec="seconds")
    if text.endswith("+00:00"):
        text = text[:-6] + "Z"
    return text


def _milliseconds(d: timedelta) -> int:
    micros = (d.days * 86400 + d.seconds) * 1_000_000 + d.microseconds
    return micros // 1000 if micros >= 0 else -((-micros) // 1000)


def drift_direction(drift: timedelta | float) -> str:
    """'behind' when the camera lags the bridge, otherwise 'ahead'.

    drift is bridge time minus camera time, as a timedelta or in seconds.
    """
    seconds = drift.total_seconds() if isinstance(drift, timedelta) else float(drift)
    if seconds > 0:
        return "behind"
    return "ahead"


class Authority:
    """Chooses observation times, trusting the bridge clock when NTP is healthy."""

    def __init__(
        self, ntp_health: TimeHealth | None, config: AuthorityConfig | None = None
    ) -> None:
        self._config = config if config is not None else AuthorityConfig()
        self._tz = _load_zone(self._config.timezone)
        self._ntp_health = ntp_health

    def determine_observation_time(
        self, capture_start_utc: datetime, camera_exif: datetime | None
    ) -> ObservationResult:
        """Pick the observation time for an image captured at capture_start_utc.

        camera_exif is the camera's wall-clock time; its tzinfo is ignored
        and it is read in the bridge's timezone.
        """
        capture = _as_utc(capture_start_utc)

        if not self.is_ntp_healthy():
            return ObservationResult(
                time=capture,
                source=TimeSource.BRIDGE_CLOCK,
                confidence=Confidence.LOW,
                warning=TimeWarning(
                    code="ntp_unhealthy",
                    message="Bridge NTP is not synchronized. Observation times may be inaccurate.",
                    details={"ntp_offset_ms": _milliseconds(self.ntp_offset())},
                ),
            )

        if camera_exif is None:
            return ObservationResult(capture, TimeSource.BRIDGE_CLOCK, Confidence.HIGH)

        camera_utc = camera_exif.replace(tzinfo=self._tz).astimezone(timezone.utc)
        drift = capture - camera_utc
        abs_drift = abs(drift)
        seconds = abs_drift.total_seconds()
        direction = drift_direction(drift)
        times = {
            "camera_time": _rfc3339(camera_utc),
            "bridge_time": _rfc3339(capture),
        }

        if abs_drift <= timedelta(seconds=self._config.camera_tolerance_seconds):
            return ObservationResult(camera_utc, TimeSource.CAMERA_EXIF, Confidence.HIGH)

        if abs_drift <= timedelta(seconds=self._config.camera_warn_drift_seconds):
            warning = TimeWarning(
                code="camera_clock_drift",
                message=(
                    f"Camera clock is {seconds:.0f} seconds {direction}. "
                    "Consider adjusting camera time."
                ),
                details={"drift_seconds": drift.total_seconds(), **times},
            )
            return ObservationResult(
                camera_utc, TimeSource.CAMERA_EXIF, Confidence.HIGH, warning
            )

        if abs_drift <= timedelta(seconds=self._config.camera_reject_drift_seconds):
            warning = TimeWarning(
                code="camera_clock_rejected",
                message=(
                    f"Camera clock is {seconds / 60:.1f} minutes {direction}. "
                    "Using bridge time instead."
                ),
                details={
                    "drift_seconds": drift.total_seconds(),
                    **times,
                    "action": "using_bridge_time",
                },
            )
            return ObservationResult(
                capture, TimeSource.BRIDGE_CLOCK, Confidence.HIGH, warning
            )

        warning = TimeWarning(
            code="camera_clock_invalid",
            message=(
                f"Camera clock is incorrect (off by {seconds / 3600:.1f} hours). "
                "Using bridge time."
            ),
            details={
                "drift_hours": seconds / 3600,
                **times,
                "action": "using_bridge_time",
            },
        )
        return ObservationResult(capture, TimeSource.BRIDGE_CLOCK, Confidence.HIGH, warning)

    def timezone(self) -> tzinfo:
        """The configured timezone."""
        return self._tz

    def timezone_name(self) -> str:
        """The configured timezone's name."""
        return str(self._tz)

    def format_local_time(self, t: datetime) -> str:
        """Format t in the local timezone with its abbreviation."""
        return _as_utc(t).astimezone(self._tz).strftime("%Y-%m-%d %H:%M:%S %Z")

    def format_utc_time(self, t: datetime) -> str:
        """Format t in UTC."""
        return _as_utc(t).strftime("%Y-%m-%d %H:%M:%S UTC")

    def current_times(self) -> tuple[datetime, datetime]:
        """The current instant as (local, utc)."""
        now = datetime.now(timezone.utc)
        return now.astimezone(self._tz), now

    def is_ntp_healthy(self) -> bool:
        """NTP health; without an NTP monitor the system clock is trusted."""
        if self._ntp_health is None:
            return True
        return self._ntp_health.is_healthy()

    def ntp_offset(self) -> timedelta:
        """The last NTP offset, or zero without an NTP monitor."""
        if self._ntp_health is None:
            return timedelta(0)
        return self._ntp_health.offset()

    def time_info(self) -> TimeInfo:
        """Current time details for display."""
        now = datetime.now(timezone.utc)
        local = now.astimezone(self._tz)

        offset_delta = local.utcoffset() or timedelta(0)
        offset = int(offset_delta.total_seconds())
        hours = int(offset / 3600)
        minutes = abs(offset) % 3600 // 60
        offset_str = f"{hours:+03d}:{minutes:02d}"

        january = datetime(local.year, 1, 1, tzinfo=self._tz)
        standard = january.utcoffset() or timedelta(0)

        return TimeInfo(
            utc=_rfc3339(now),
            local=_rfc3339(local),
            timezone=self.timezone_name(),
            timezone_abbrev=local.tzname() or "",
            utc_offset=offset_str,
            dst_active=offset_delta != standard,
            time_healthy=self.is_ntp_healthy(),
            ntp_offset_ms=_milliseconds(self.ntp_offset()),
        )