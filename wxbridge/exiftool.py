"""EXIF reading and writing through the external exiftool program."""

from __future__ import annotations

import json
import os
import shutil
import subprocess
import tempfile
from dataclasses import dataclass, field
from datetime import datetime

from wxbridge.authority import Confidence, ObservationResult, TimeSource
from wxbridge.exif import BRIDGE_EXIF_MARKER, EXIF_DATETIME_FORMAT, EXIFStampResult

__all__ = [
    "COMMON_EXIFTOOL_PATHS",
    "DEFAULT_TIMEOUT",
    "EXIFTOOL_PATH_ENV",
    "ExifReadResult",
    "ExifToolError",
    "ExifToolHelper",
    "ExifValidateResult",
    "ExifWriteOptions",
    "default_exiftool_helper",
    "get_exiftool_path",
    "new_exiftool_helper",
    "stamp_bridge_exif_with_tool",
]

DEFAULT_TIMEOUT = 10.0
_PROBE_TIMEOUT = 2.0
EXIFTOOL_PATH_ENV = "AVIATIONWX_EXIFTOOL_PATH"
COMMON_EXIFTOOL_PATHS = (
    "/usr/bin/exiftool",
    "/usr/local/bin/exiftool",
    "/opt/homebrew/bin/exiftool",
)


class ExifToolError(Exception):
    """Raised when exiftool cannot be found, run, or understood."""


@dataclass
class ExifReadResult:
    """Fields read from an image by exiftool."""

    success: bool = False
    error: str = ""
    datetime_original: str | None = None
    offset_time_original: str | None = None
    user_comment: str | None = None
    is_bridge_stamped: bool = False
    gps_datetime: str | None = None


@dataclass
class ExifValidateResult:
    """Outcome of checking that bridge-written EXIF can be read back."""

    valid: bool = False
    datetime_original: str | None = None
    offset_time_original: str | None = None
    has_bridge_marker: bool = False
    bridge_marker: str | None = None
    marker_version: str | None = None
    time_source: str | None = None
    confidence: str | None = None
    errors: list[str] = field(default_factory=list)


@dataclass
class ExifWriteOptions:
    """Tags to write; empty values are left untouched."""

    datetime_original: str = ""
    offset_time_original: str = ""
    user_comment: str = ""


class ExifToolHelper:
    """Runs exiftool with a time limit for each call."""

    def __init__(self, exiftool_path: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        self.exiftool_path = exiftool_path
        self.timeout = timeout

    def read_exif(self, image_path: str) -> ExifReadResult:
        """Read the timestamp and marker tags from an image file.

        Raises ExifToolError on timeout or unparseable output. A failing
        exiftool run (e.g. a file without EXIF) yields an empty result.
        """
        args = [
            self.exiftool_path,
            "-json",
            "-DateTimeOriginal",
            "-OffsetTimeOriginal",
            "-UserComment",
            "-GPSDateTime",
            image_path,
        ]
        try:
            completed = subprocess.run(args, capture_output=True, timeout=self.timeout)
        except subprocess.TimeoutExpired as exc:
            raise ExifToolError(f"exiftool read timeout after {self.timeout}s") from exc
        except OSError:
            return ExifReadResult(success=True)
        if completed.returncode != 0:
            return ExifReadResult(success=True)
        return self.parse_read_output(completed.stdout)

    def parse_read_output(self, output: bytes | str) -> ExifReadResult:
        """Parse exiftool's JSON output into a read result."""
        try:
            records = json.loads(output)
        except (ValueError, TypeError) as exc:
            raise ExifToolError(f"parse exiftool output: {exc}") from exc
        if not isinstance(records, list):
            raise ExifToolError("parse exiftool output: expected a JSON array")

        result = ExifReadResult(success=True)
        if not records:
            return result
        data = records[0]
        if not isinstance(data, dict):
            raise ExifToolError("parse exiftool output: expected a JSON object")

        def text(key: str) -> str | None:
            value = data.get(key)
            return value if isinstance(value, str) else None

        result.datetime_original = text("DateTimeOriginal")
        result.offset_time_original = text("OffsetTimeOriginal")
        result.user_comment = text("UserComment")
        if result.user_comment is not None:
            result.is_bridge_stamped = BRIDGE_EXIF_MARKER in result.user_comment
        result.gps_datetime = text("GPSDateTime")
        return result

    def write_exif(self, image_path: str, options: ExifWriteOptions) -> None:
        """Write tags into an image file in place."""
        args = [self.exiftool_path, "-overwrite_original"]
        if options.datetime_original:
            args.append(f"-DateTimeOriginal={options.datetime_original}")
        if options.offset_time_original:
            args.append(f"-OffsetTimeOriginal={options.offset_time_original}")
        if options.user_comment:
            args.append(f"-UserComment={options.user_comment}")
        args.append(image_path)

        try:
            completed = subprocess.run(
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise ExifToolError(f"exiftool write timeout after {self.timeout}s") from exc
        except OSError as exc:
            raise ExifToolError(f"exiftool write failed: {exc}") from exc
        if completed.returncode != 0:
            output = (completed.stdout or b"").decode("utf-8", "replace")
            raise ExifToolError(
                f"exiftool write failed: exit status {completed.returncode}: {output}"
            )

    def write_exif_to_data(self, image_data: bytes, options: ExifWriteOptions) -> bytes:
        """Write tags into image bytes by way of a temporary file."""
        try:
            fd, tmp_path = tempfile.mkstemp(prefix="aviationwx-", suffix=".jpg")
        except OSError as exc:
            raise ExifToolError(f"create temp file: {exc}") from exc
        try:
            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(image_data)
            except OSError as exc:
                raise ExifToolError(f"write temp file: {exc}") from exc
            self.write_exif(tmp_path, options)
            try:
                with open(tmp_path, "rb") as handle:
                    return handle.read()
            except OSError as exc:
                raise ExifToolError(f"read modified file: {exc}") from exc
        finally:
            try:
                os.remove(tmp_path)
            except OSError:
                pass

    def validate_exif(self, image_path: str) -> ExifValidateResult:
        """Check that an image carries a readable timestamp and bridge marker."""
        try:
            read = self.read_exif(image_path)
        except ExifToolError as exc:
            return ExifValidateResult(valid=False, errors=[str(exc)])

        result = ExifValidateResult()
        if read.datetime_original is not None:
            result.datetime_original = read.datetime_original
            if len(read.datetime_original) < 19:
                result.errors.append("invalid_datetime_format")
        else:
            result.errors.append("missing_datetime_original")

        if read.offset_time_original is not None:
            result.offset_time_original = read.offset_time_original
            if read.offset_time_original != "+00:00":
                result.errors.append("offset_not_utc")

        if read.user_comment is not None and read.is_bridge_stamped:
            result.has_bridge_marker = True
            result.bridge_marker = read.user_comment
            parts = read.user_comment.split(":")
            if len(parts) >= 5:
                result.marker_version = parts[2]
                result.time_source = parts[3]
                result.confidence = parts[4]
        else:
            result.errors.append("missing_bridge_marker")

        result.valid = result.datetime_original is not None and result.has_bridge_marker
        return result

    def parse_camera_time(self, result: ExifReadResult | None) -> datetime | None:
        """Parse DateTimeOriginal as a naive wall-clock time, if present."""
        if result is None or result.datetime_original is None:
            return None
        try:
            return datetime.strptime(result.datetime_original, EXIF_DATETIME_FORMAT)
        except ValueError:
            return None

    def is_available(self) -> bool:
        """Whether exiftool runs and reports a version."""
        try:
            completed = subprocess.run(
                [self.exiftool_path, "-ver"],
                capture_output=True,
                timeout=_PROBE_TIMEOUT,
            )
        except (OSError, subprocess.TimeoutExpired):
            return False
        return completed.returncode == 0

    def version(self) -> str:
        """The exiftool version string."""
        try:
            completed = subprocess.run(
                [self.exiftool_path, "-ver"],
                capture_output=True,
                timeout=_PROBE_TIMEOUT,
            )
        except subprocess.TimeoutExpired as exc:
            raise ExifToolError("exiftool version timeout") from exc
        except OSError as exc:
            raise ExifToolError(f"exiftool version failed: {exc}") from exc
        if completed.returncode != 0:
            raise ExifToolError(
                f"exiftool version failed: exit status {completed.returncode}"
            )
        return completed.stdout.decode("utf-8", "replace").strip()


def new_exiftool_helper() -> ExifToolHelper:
    """A helper for the exiftool found on PATH."""
    path = shutil.which("exiftool")
    if path is None:
        raise ExifToolError("exiftool not found in PATH")
    return ExifToolHelper(path, DEFAULT_TIMEOUT)


def default_exiftool_helper() -> ExifToolHelper:
    """A helper for exiftool on PATH or in a common install location."""
    try:
        return new_exiftool_helper()
    except ExifToolError:
        pass
    for path in COMMON_EXIFTOOL_PATHS:
        if os.path.exists(path):
            return ExifToolHelper(path, DEFAULT_TIMEOUT)
    raise ExifToolError("exiftool not found")


def _marker(observation: ObservationResult) -> str:
    marker = (
        f"{BRIDGE_EXIF_MARKER}:UTC:v1:"
        f"{TimeSource(observation.source).value}:"
        f"{Confidence(observation.confidence).value}"
    )
    if observation.warning is not None:
        marker += f":warn:{observation.warning.code}"
    return marker


def stamp_bridge_exif_with_tool(
    image_data: bytes, observation: ObservationResult
) -> EXIFStampResult:
    """Stamp an image with the observation time and bridge marker via exiftool."""
    try:
        helper = default_exiftool_helper()
    except ExifToolError:
        return EXIFStampResult(
            data=image_data, stamped=False, observation_utc=observation.time
        )

    marker = _marker(observation)
    options = ExifWriteOptions(
        datetime_original=observation.time.strftime(EXIF_DATETIME_FORMAT),
        offset_time_original="+00:00",
        user_comment=marker,
    )
    try:
        modified = helper.write_exif_to_data(image_data, options)
    except ExifToolError:
        return EXIFStampResult(
            data=image_data,
            stamped=False,
            observation_utc=observation.time,
            marker=marker,
        )
    return EXIFStampResult(
        data=modified, stamped=True, observation_utc=observation.time, marker=marker
    )


def get_exiftool_path() -> str:
    """Resolve exiftool from the environment, PATH, or common locations."""
    configured = os.environ.get(EXIFTOOL_PATH_ENV, "")
    if configured and os.path.exists(configured):
        return os.path.abspath(configured)

    found = shutil.which("exiftool")
    if found is not None:
        return found

    for path in COMMON_EXIFTOOL_PATHS:
        if os.path.exists(path):
            return path
    raise ExifToolError("exiftool not found")