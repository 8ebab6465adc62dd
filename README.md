# wxbridge

Building blocks for a bridge that captures images from weather cameras and
uploads them to an aviation weather service. The package is a library: it
decides which clock to trust, stamps images with the observation time,
uploads them over FTPS and checks for newer releases.

## Modules

- **`wxbridge.timehealth`**: SNTP clock health. `query_ntp(server, timeout)`
  returns the local clock's offset from an NTP server as a `timedelta` and
  raises `NTPError` on failure. `TimeHealth(TimeHealthConfig(...))` tries the
  configured servers in order (default `pool.ntp.org`), marks the clock
  healthy when the offset is within `max_offset_seconds` (default 5), and
  with `start()` / `stop()` repeats the check in a background thread every
  `check_interval_seconds` (default 300). It starts out unhealthy until the
  first successful check. `status()` returns a `TimeHealthStatus` snapshot.
- **`wxbridge.authority`**: `Authority(ntp_health, AuthorityConfig(...))`
  chooses the observation time for an image. With no health monitor
  (`None`) the system clock is trusted. When NTP is unhealthy it uses the
  bridge clock with `Confidence.LOW` and an `ntp_unhealthy` warning.
  Otherwise it reads the camera's wall-clock EXIF time in the configured
  timezone and compares it with the bridge time:
  - drift up to `camera_tolerance_seconds` (5): camera time is used;
  - up to `camera_warn_drift_seconds` (30): camera time is used with a
    `camera_clock_drift` warning;
  - up to `camera_reject_drift_seconds` (300): bridge time is used with a
    `camera_clock_rejected` warning;
  - beyond that: bridge time is used with a `camera_clock_invalid` warning.

  It also offers `format_local_time`, `format_utc_time`, `current_times`,
  `time_info` (a `TimeInfo` with UTC offset, abbreviation and DST state),
  `is_ntp_healthy` and `ntp_offset`. An unknown timezone name raises
  `ValueError`.
- **`wxbridge.exif`**: builds a small EXIF segment and puts it into JPEG
  data without outside tools. `stamp_bridge_exif` writes DateTimeOriginal,
  OffsetTimeOriginal `+00:00` and a marker in UserComment, and returns an
  `EXIFStampResult`. `stamp_exif` writes only DateTimeOriginal, and only
  when the clock is healthy. `read_exif_timestamp` returns the naive
  DateTimeOriginal (or DateTime) or `None`. The module also has
  `is_bridge_stamped`, `has_exif`, `is_jpeg`, `is_jpeg_complete`,
  `build_simple_exif`, `build_bridge_exif` and `inject_exif`.
- **`wxbridge.exiftool`**: the same work done by running an installed
  `exiftool` program. `ExifToolHelper` provides `read_exif`, `write_exif`,
  `write_exif_to_data`, `validate_exif`, `parse_camera_time`,
  `is_available` and `version`. The functions `new_exiftool_helper`,
  `default_exiftool_helper`, `get_exiftool_path` and
  `stamp_bridge_exif_with_tool` are also here. The tool is looked for in the
  `AVIATIONWX_EXIFTOOL_PATH` environment variable (by `get_exiftool_path`),
  then on `PATH`, then in `/usr/bin`, `/usr/local/bin` and
  `/opt/homebrew/bin`. Failures raise `ExifToolError`.
- **`wxbridge.ftps`**: `FTPSClient(UploadConfig(...))` uploads over explicit
  FTPS. Each file goes to `<path>.tmp` first and is then renamed, so readers
  never see partial files. Missing directories are created. Missing host,
  username or password raises `ValueError`. The port defaults to 21, and
  TLS with certificate checking is always on.
- **`wxbridge.upload_errors`**: `UploadConfig` and the upload exceptions
  `ConnectionFailedError`, `AuthError`, `UploadError` and
  `UploadTimeoutError`.
- **`wxbridge.updates`**: `Checker(current_version, current_commit,
  releases_url)` fetches a GitHub-style "latest release" JSON document
  (`tag_name`, `html_url`), once with `check()` or every hour in the
  background with `start()` / `stop()`. The first background check comes
  after 30 seconds. `status()` returns an `UpdateStatus` with `to_dict()` and
  `to_json()`. Versions are compared as plain strings, and a current version
  of `dev` or empty treats any tag as newer.

## Installation

```
pip install wxbridge
```

No third-party packages are needed at runtime. The `wxbridge.exiftool`
helpers work only when the `exiftool` program is installed.

## Example

```python
from datetime import datetime, timezone

from wxbridge.authority import Authority, AuthorityConfig
from wxbridge.exif import read_exif_timestamp, stamp_bridge_exif

authority = Authority(None, AuthorityConfig(timezone="America/Los_Angeles"))

with open("snapshot.jpg", "rb") as fh:
    image = fh.read()

camera_time = read_exif_timestamp(image)  # naive datetime or None
observation = authority.determine_observation_time(
    datetime.now(timezone.utc), camera_time
)
if observation.warning:
    print(observation.warning.code, observation.warning.message)

stamped = stamp_bridge_exif(image, observation)
print(stamped.stamped, stamped.marker)
```

The marker written into the EXIF UserComment has this form:

```
AviationWX-Bridge:UTC:v1:<source>:<confidence>[:warn:<code>]
```

## Uploading

```python
from wxbridge.ftps import FTPSClient
from wxbridge.upload_errors import UploadConfig

password = "password"
client = FTPSClient(UploadConfig(host="ftp.example.com", username="user", password=password))
client.test_connection()
client.upload("/kspb/camera-1/latest.jpg", stamped.data)
```

## Update checks

```python
from wxbridge.updates import Checker

checker = Checker("v1.0.0", "abc1234", "https://example.com/releases/latest")
checker.check()
print(checker.status().to_json())
```

## What this package does not do

It has no command-line program and no web console. It does not capture
images from cameras, and it does not read or store a configuration file.
Applications wire the pieces above together themselves.

## Running the tests

```
pip install -e .[test]
pytest
```