import ftplib
from datetime import timedelta

import pytest

from wxbridge.ftps import (
    FTPSClient,
    is_auth_error,
    is_timeout_error,
    normalize_remote_path,
)
from wxbridge.upload_errors import (
    AuthError,
    ConnectionFailedError,
    UploadConfig,
    UploadError,
    UploadTimeoutError,
)

password = "password"


def make_config(**overrides):
    values = {"host": "upload.aviationwx.org", "username": "testuser", "password": password}
    values.update(overrides)
    return UploadConfig(**values)


class FakeFTP:
    def __init__(self, script, context=None, timeout=None):
        self.script = script
        self.context = context
        self.timeout = timeout
        self.calls = []
        self.cwd_path = "/"
        self.dirs = set(script.get("existing_dirs", ()))

    def _maybe_fail(self, name):
        exc = self.script.get("fail", {}).get(name)
        if exc is not None:
            raise exc

    def connect(self, host, port):
        self.calls.append(("connect", host, port))
        self._maybe_fail("connect")

    def login(self, user, passwd):
        self.calls.append(("login", user))
        self._maybe_fail("login")

    def prot_p(self):
        self.calls.append(("prot_p",))

    def mkd(self, path):
        self.calls.append(("mkd", path))
        self._maybe_fail("mkd")
        if path in self.dirs:
            raise ftplib.error_perm("550 already exists")
        self.dirs.add(path)
        return path

    def pwd(self):
        return self.cwd_path

    def cwd(self, path):
        if path != "/" and path not in self.dirs:
            raise ftplib.error_perm("550 no such directory")
        self.cwd_path = path

    def storbinary(self, cmd, fp):
        self.calls.append(("storbinary", cmd, fp.read(), self.timeout))
        self._maybe_fail("storbinary")

    def rename(self, old, new):
        self.calls.append(("rename", old, new))
        self._maybe_fail("rename")

    def delete(self, path):
        self.calls.append(("delete", path))

    def retrlines(self, cmd, callback):
        self.calls.append(("retrlines", cmd))
        self._maybe_fail("retrlines")
        callback("drwxr-xr-x kspb")

    def close(self):
        self.calls.append(("close",))

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.calls.append(("quit",))
        return False


@pytest.fixture
def fake_ftp(monkeypatch):
    script = {}
    created = []

    def factory(**kwargs):
        ftp = FakeFTP(script, **kwargs)
        created.append(ftp)
        return ftp

    monkeypatch.setattr(ftplib, "FTP_TLS", factory)
    return script, created


@pytest.mark.parametrize(
    "config",
    [
        make_config(port=21, tls=True),
        make_config(),
        make_config(port=990),
        make_config(tls=True, tls_verify=False),
    ],
)
def test_new_client_valid_applies_defaults(config):
    client = FTPSClient(config)
    assert client.config.port == (config.port or 21)
    assert client.config.tls is True
    assert client.config.tls_verify is True
    assert client.config.timeout_connect_seconds == 10
    assert client.config.timeout_upload_seconds == 30


@pytest.mark.parametrize(
    "config, message",
    [
        (make_config(host=""), "host is required"),
        (make_config(username=""), "username is required"),
        (make_config(password=""), "password is required"),
    ],
)
def test_new_client_missing_fields(config, message):
    with pytest.raises(ValueError, match=message):
        FTPSClient(config)


def test_new_client_keeps_custom_timeouts():
    client = FTPSClient(make_config(timeout_connect_seconds=3, timeout_upload_seconds=7))
    assert client.config.timeout_connect_seconds == 3
    assert client.config.timeout_upload_seconds == 7


@pytest.mark.parametrize(
    "remote, expected",
    [
        ("/kspb/camera-1/latest.jpg", "kspb/camera-1/latest.jpg"),
        ("kspb/camera-1/latest.jpg", "kspb/camera-1/latest.jpg"),
        ("latest.jpg", "latest.jpg"),
    ],
)
def test_normalize_remote_path(remote, expected):
    assert normalize_remote_path(remote) == expected


@pytest.mark.parametrize(
    "err, expected",
    [
        (None, False),
        (TimeoutError("timed out"), True),
        (OSError("read tcp: i/o timeout"), True),
        (Exception("context deadline exceeded"), True),
        (ConnectionRefusedError("Connection refused"), False),
    ],
)
def test_is_timeout_error(err, expected):
    assert is_timeout_error(err) is expected


@pytest.mark.parametrize(
    "err, expected",
    [
        (None, False),
        (ftplib.error_perm("530 Login incorrect."), True),
        (Exception("bad password"), True),
        (Exception("authentication required"), True),
        (ConnectionRefusedError("Connection refused"), False),
    ],
)
def test_is_auth_error(err, expected):
    assert is_auth_error(err) is expected


def test_upload_creates_directories_and_renames(fake_ftp):
    script, created = fake_ftp
    result = FTPSClient(make_config()).upload("/kspb/camera-1/latest.jpg", b"jpeg-bytes")
    assert result is None

    calls = created[0].calls
    assert ("connect", "upload.aviationwx.org", 21) in calls
    assert ("login", "testuser") in calls
    assert ("prot_p",) in calls
    assert ("mkd", "kspb") in calls
    assert ("mkd", "kspb/camera-1") in calls
    assert ("storbinary", "STOR kspb/camera-1/latest.jpg.tmp", b"jpeg-bytes", 30.0) in calls
    assert ("rename", "kspb/camera-1/latest.jpg.tmp", "kspb/camera-1/latest.jpg") in calls
    assert calls[-1] == ("quit",)
    assert created[0].timeout == 30.0


def test_upload_tolerates_existing_directories(fake_ftp):
    script, created = fake_ftp
    script["existing_dirs"] = {"kspb"}
    result = FTPSClient(make_config()).upload("kspb/latest.jpg", b"x")
    assert result is None
    assert ("rename", "kspb/latest.jpg.tmp", "kspb/latest.jpg") in created[0].calls


def test_upload_without_directory_skips_mkd(fake_ftp):
    script, created = fake_ftp
    result = FTPSClient(make_config()).upload("latest.jpg", b"x")
    assert result is None
    assert not [call for call in created[0].calls if call[0] == "mkd"]
    assert ("rename", "latest.jpg.tmp", "latest.jpg") in created[0].calls


def test_upload_directory_failure(fake_ftp):
    script, created = fake_ftp
    script["fail"] = {"mkd": ftplib.error_perm("550 permission denied")}
    with pytest.raises(UploadError) as info:
        FTPSClient(make_config()).upload("kspb/latest.jpg", b"x")
    assert info.value.message == "ensure directory"
    assert info.value.remote_path == "kspb/latest.jpg"


def test_upload_store_failure_cleans_up(fake_ftp):
    script, created = fake_ftp
    script["fail"] = {"storbinary": ftplib.error_temp("451 local error")}
    with pytest.raises(UploadError) as info:
        FTPSClient(make_config()).upload("latest.jpg", b"x")
    assert info.value.message == "upload to .tmp"
    assert ("delete", "latest.jpg.tmp") in created[0].calls


def test_upload_store_timeout(fake_ftp):
    script, created = fake_ftp
    script["fail"] = {"storbinary": TimeoutError("timed out")}
    with pytest.raises(UploadError) as info:
        FTPSClient(make_config()).upload("latest.jpg", b"x")
    cause = info.value.err
    assert isinstance(cause, UploadTimeoutError)
    assert cause.operation == "upload"
    assert cause.timeout == timedelta(seconds=30)


def test_upload_rename_failure_cleans_up(fake_ftp):
    script, created = fake_ftp
    script["fail"] = {"rename": ftplib.error_perm("553 not allowed")}
    with pytest.raises(UploadError) as info:
        FTPSClient(make_config()).upload("latest.jpg", b"x")
    assert info.value.message == "rename .tmp to final"
    assert ("delete", "latest.jpg.tmp") in created[0].calls


def test_connect_refused(fake_ftp):
    script, created = fake_ftp
    script["fail"] = {"connect": ConnectionRefusedError("Connection refused")}
    with pytest.raises(ConnectionFailedError) as info:
        FTPSClient(make_config()).upload("latest.jpg", b"x")
    assert str(info.value).startswith("connection failed: dial failed")
    assert ("close",) in created[0].calls


def test_connect_auth_failure(fake_ftp):
    script, created = fake_ftp
    script["fail"] = {"login": ftplib.error_perm("530 Login incorrect.")}
    with pytest.raises(AuthError) as info:
        FTPSClient(make_config()).test_connection()
    assert info.value.message == "authentication failed"


def test_connect_timeout(fake_ftp):
    script, created = fake_ftp
    script["fail"] = {"connect": TimeoutError("timed out")}
    with pytest.raises(UploadTimeoutError) as info:
        FTPSClient(make_config()).test_connection()
    assert info.value.operation == "connect"
    assert info.value.timeout == timedelta(seconds=10)


def test_test_connection_lists_directory(fake_ftp):
    script, created = fake_ftp
    assert FTPSClient(make_config()).test_connection() is None
    assert ("retrlines", "LIST") in created[0].calls


def test_test_connection_list_failure(fake_ftp):
    script, created = fake_ftp
    script["fail"] = {"retrlines": ftplib.error_temp("425 cannot open data connection")}
    with pytest.raises(ConnectionFailedError) as info:
        FTPSClient(make_config()).test_connection()
    assert info.value.message == "test connection failed"