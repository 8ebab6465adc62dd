"""Upload settings and the errors raised by upload clients."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

__all__ = [
    "AuthError",
    "ConnectionFailedError",
    "UploadConfig",
    "UploadError",
    "UploadTimeoutError",
]


@dataclass
class UploadConfig:
    """Connection settings for an upload server; zero values select defaults."""

    host: str = ""
    port: int = 0
    username: str = ""
    password: str = ""
    tls: bool = False
    tls_verify: bool = False
    ca_bundle_path: str = ""
    timeout_connect_seconds: int = 0
    timeout_upload_seconds: int = 0


def _trim_fraction(value: float) -> str:
    return f"{value:.9f}".rstrip("0").rstrip(".")


def _format_duration(d: timedelta) -> str:
    """Render a duration the way the rest of the bridge logs it, e.g. '1m30s'."""
    micros = d // timedelta(microseconds=1)
    if micros == 0:
        return "0s"
    sign = "-" if micros < 0 else ""
    micros = abs(micros)
    if micros < 1000:
        return f"{sign}{micros}µs"
    if micros < 1_000_000:
        return f"{sign}{_trim_fraction(micros / 1000)}ms"
    hours, rest = divmod(micros, 3_600_000_000)
    minutes, rest = divmod(rest, 60_000_000)
    seconds = _trim_fraction(rest / 1_000_000)
    if hours:
        return f"{sign}{hours}h{minutes}m{seconds}s"
    if minutes:
        return f"{sign}{minutes}m{seconds}s"
    return f"{sign}{seconds}s"


class ConnectionFailedError(Exception):
    """The upload server could not be reached."""

    def __init__(self, message: str, err: BaseException | None = None) -> None:
        self.message = message
        self.err = err
        super().__init__(message)
        self.__cause__ = err

    def __str__(self) -> str:
        text = f"connection failed: {self.message}"
        return f"{text}: {self.err}" if self.err is not None else text


class AuthError(Exception):
    """The upload server rejected the credentials."""

    def __init__(self, message: str, err: BaseException | None = None) -> None:
        self.message = message
        self.err = err
        super().__init__(message)
        self.__cause__ = err

    def __str__(self) -> str:
        text = f"authentication failed: {self.message}"
        return f"{text}: {self.err}" if self.err is not None else text


class UploadError(Exception):
    """A file could not be stored at its remote path."""

    def __init__(
        self, remote_path: str, message: str, err: BaseException | None = None
    ) -> None:
        self.remote_path = remote_path
        self.message = message
        self.err = err
        super().__init__(remote_path, message)
        self.__cause__ = err

    def __str__(self) -> str:
        text = f"upload failed: {self.remote_path}: {self.message}"
        return f"{text}: {self.err}" if self.err is not None else text


class UploadTimeoutError(Exception):
    """An upload operation ran out of time."""

    def __init__(
        self, operation: str, timeout: timedelta, err: BaseException | None = None
    ) -> None:
        self.operation = operation
        self.timeout = timeout
        self.err = err
        super().__init__(operation, timeout)
        self.__cause__ = err

    def __str__(self) -> str:
        text = f"timeout: {self.operation} (timeout: {_format_duration(self.timeout)})"
        return f"{text}: {self.err}" if self.err is not None else text