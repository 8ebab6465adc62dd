"""Clock health tracking based on SNTP queries."""

from __future__ import annotations

import socket
import struct
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

__all__ = [
    "DEFAULT_QUERY_TIMEOUT",
    "NTPError",
    "TimeHealth",
    "TimeHealthConfig",
    "TimeHealthStatus",
    "query_ntp",
]

DEFAULT_QUERY_TIMEOUT = 5.0
DEFAULT_CHECK_INTERVAL = timedelta(seconds=300)
DEFAULT_MAX_OFFSET = timedelta(seconds=5)
DEFAULT_SERVERS = ("pool.ntp.org",)

_NTP_PORT = 123
_NTP_DELTA = 2208988800  # seconds between 1900-01-01 and 1970-01-01
_PACKET_SIZE = 48
_MODE_SERVER = 4
_LEAP_NOT_IN_SYNC = 3
_MAX_STRATUM = 16


class NTPError(Exception):
    """Raised when an NTP server cannot be queried or answers badly."""


@dataclass
class TimeHealthConfig:
    """Settings for clock health checks; zero values select defaults."""

    enabled: bool = False
    servers: list[str] = field(default_factory=list)
    check_interval_seconds: int = 0
    max_offset_seconds: int = 0
    timeout_seconds: int = 0


@dataclass(frozen=True)
class TimeHealthStatus:
    """Snapshot of the clock health state."""

    healthy: bool
    offset: timedelta
    last_check: datetime | None


def _split_host_port(server: str) -> tuple[str, int]:
    if server.startswith("["):
        host, _, rest = server[1:].partition("]")
        if rest.startswith(":") and rest[1:]:
            return host, int(rest[1:])
        return host, _NTP_PORT
    if server.count(":") == 1:
        host, port = server.split(":")
        return host, int(port)
    return server, _NTP_PORT


def _to_ntp(stamp: float) -> bytes:
    ntp = stamp + _NTP_DELTA
    seconds = int(ntp)
    fraction = int((ntp - seconds) * 2**32) & 0xFFFFFFFF
    return struct.pack("!II", seconds & 0xFFFFFFFF, fraction)


def _from_ntp(raw: bytes) -> float:
    seconds, fraction = struct.unpack("!II", raw)
    return seconds - _NTP_DELTA + fraction / 2**32


def query_ntp(server: str, timeout: float = DEFAULT_QUERY_TIMEOUT) -> timedelta:
    """Query an NTP server and return the local clock's offset from it."""
    try:
        host, port = _split_host_port(server)
        family, socktype, proto, _, address = socket.getaddrinfo(
            host, port, type=socket.SOCK_DGRAM
        )[0]
    except (OSError, ValueError) as exc:
        raise NTPError(f"NTP query failed: {exc}") from exc

    with socket.socket(family, socktype, proto) as sock:
        sock.settimeout(timeout)
        request = bytearray(_PACKET_SIZE)
        request[0] = (4 << 3) | 3  # version 4, client mode
        sent_at = time.time()
        transmit = _to_ntp(sent_at)
        request[40:48] = transmit
        try:
            sock.sendto(bytes(request), address)
            data, _ = sock.recvfrom(512)
        except OSError as exc:
            raise NTPError(f"NTP query failed: {exc}") from exc
        received_at = time.time()

    if len(data) < _PACKET_SIZE:
        raise NTPError("NTP query failed: short response")
    leap = data[0] >> 6
    mode = data[0] & 0x07
    stratum = data[1]
    if mode != _MODE_SERVER:
        raise NTPError(f"NTP query failed: unexpected mode {mode}")
    if stratum == 0:
        code = data[12:16].decode("ascii", "replace")
        raise NTPError(f"NTP query failed: kiss of death {code!r}")
    if stratum >= _MAX_STRATUM:
        raise NTPError(f"NTP query failed: invalid stratum {stratum}")
    if leap == _LEAP_NOT_IN_SYNC:
        raise NTPError("NTP query failed: server clock not synchronized")
    if data[24:32] != transmit:
        raise NTPError("NTP query failed: originate timestamp mismatch")
    if data[40:48] == bytes(8):
        raise NTPError("NTP query failed: zero transmit timestamp")

    server_received = _from_ntp(data[32:40])
    server_sent = _from_ntp(data[40:48])
    offset = ((server_received - sent_at) + (server_sent - received_at)) / 2
    return timedelta(seconds=offset)


class TimeHealth:
    """Tracks whether the local clock agrees with NTP within a tolerance."""

    def __init__(self, config: TimeHealthConfig) -> None:
        interval = timedelta(seconds=config.check_interval_seconds)
        self.check_interval = interval or DEFAULT_CHECK_INTERVAL
        max_offset = timedelta(seconds=config.max_offset_seconds)
        self.max_offset = max_offset or DEFAULT_MAX_OFFSET
        self.servers = list(config.servers) or list(DEFAULT_SERVERS)

        self._lock = threading.Lock()
        self._healthy = False
        self._offset = timedelta(0)
        self._last_check: datetime | None = None
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def is_healthy(self) -> bool:
        """Whether the clock is currently trusted."""
        with self._lock:
            return self._healthy

    def offset(self) -> timedelta:
        """The last measured offset from NTP."""
        with self._lock:
            return self._offset

    def status(self) -> TimeHealthStatus:
        """A consistent snapshot of the health state."""
        with self._lock:
            return TimeHealthStatus(self._healthy, self._offset, self._last_check)

    def check(self) -> None:
        """Query servers in order until one answers and update the state."""
        for server in self.servers:
            try:
                offset = query_ntp(server, DEFAULT_QUERY_TIMEOUT)
            except (NTPError, OSError):
                continue
            with self._lock:
                self._offset = offset
                self._last_check = datetime.now(timezone.utc)
                self._healthy = abs(offset) <= self.max_offset
            return

        with self._lock:
            self._healthy = False
            self._last_check = datetime.now(timezone.utc)

    def start(self) -> None:
        """Run one check now and keep checking in the background."""
        self.check()
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="time-health", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop background checks."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def _run(self) -> None:
        interval = self.check_interval.total_seconds()
        while not self._stop_event.wait(interval):
            self.check()