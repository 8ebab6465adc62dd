"""Atomic image uploads over explicit FTPS."""

from __future__ import annotations

import dataclasses
import ftplib
import io
import posixpath
import ssl
from datetime import timedelta

from wxbridge.upload_errors import (
    AuthError,
    ConnectionFailedError,
    UploadConfig,
    UploadError,
    UploadTimeoutError,
)

__all__ = [
    "FTPSClient",
    "is_auth_error",
    "is_timeout_error",
    "normalize_remote_path",
]

DEFAULT_PORT = 21
DEFAULT_CONNECT_TIMEOUT_SECONDS = 10
DEFAULT_UPLOAD_TIMEOUT_SECONDS = 30
TMP_SUFFIX = ".tmp"


def normalize_remote_path(remote_path: str) -> str:
    """Drop one leading slash so paths are relative to the login directory."""
    return remote_path[1:] if remote_path.startswith("/") else remote_path


def is_timeout_error(err: BaseException | None) -> bool:
    """Whether an error describes a timeout."""
    if err is None:
        return False
    if isinstance(err, TimeoutError):
        return True
    text = str(err)
    return "timeout" in text or "deadline exceeded" in text or "i/o timeout" in text


def is_auth_error(err: BaseException | None) -> bool:
    """Whether an error describes rejected credentials."""
    if err is None:
        return False
    text = str(err)
    return (
        "530" in text
        or "authentication" in text
        or "login" in text
        or "password" in text
    )


class FTPSClient:
    """Uploads to a .tmp file and renames it, so readers never see partial files."""

    def __init__(self, config: UploadConfig) -> None:
        if not config.host:
            raise ValueError("host is required")
        if not config.username:
            raise ValueError("username is required")
        if not config.password:
            raise ValueError("password is required")

        self.config = dataclasses.replace(
            config,
            port=config.port or DEFAULT_PORT,
            tls=True,
            tls_verify=True,
            timeout_connect_seconds=config.timeout_connect_seconds
            or DEFAULT_CONNECT_TIMEOUT_SECONDS,
            timeout_upload_seconds=config.timeout_upload_seconds
            or DEFAULT_UPLOAD_TIMEOUT_SECONDS,
        )

    @property
    def _connect_timeout(self) -> timedelta:
        return timedelta(seconds=self.config.timeout_connect_seconds)

    @property
    def _upload_timeout(self) -> timedelta:
        return timedelta(seconds=self.config.timeout_upload_seconds)

    def upload(self, remote_path: str, data: bytes) -> None:
        """Store data at remote_path, creating directories as needed."""
        remote = normalize_remote_path(remote_path)
        tmp_path = remote + TMP_SUFFIX

        with self._connect() as ftp:
            directory = posixpath.dirname(remote)
            if directory not in ("", "."):
                try:
                    self._ensure_directory(ftp, directory)
                except ftplib.all_errors as exc:
                    raise UploadError(remote, "ensure directory", exc) from exc

            try:
                ftp.timeout = self._upload_timeout.total_seconds()
                ftp.storbinary(f"STOR {tmp_path}", io.BytesIO(data))
            except ftplib.all_errors as exc:
                cause: BaseException = exc
                if is_timeout_error(exc):
                    cause = UploadTimeoutError("upload", self._upload_timeout, exc)
                _delete_quietly(ftp, tmp_path)
                raise UploadError(remote, "upload to .tmp", cause) from cause

            try:
                ftp.rename(tmp_path, remote)
            except ftplib.all_errors as exc:
                _delete_quietly(ftp, tmp_path)
                raise UploadError(remote, "rename .tmp to final", exc) from exc

    def test_connection(self) -> None:
        """Connect, log in and list the working directory."""
        with self._connect() as ftp:
            try:
                ftp.retrlines("LIST", lambda _line: None)
            except ftplib.all_errors as exc:
                raise ConnectionFailedError("test connection failed", exc) from exc

    def _tls_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context(
            cafile=self.config.ca_bundle_path or None
        )
        if not self.config.tls_verify:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    def _connect(self) -> ftplib.FTP_TLS:
        try:
            context = self._tls_context()
        except (OSError, ValueError) as exc:
            raise ConnectionFailedError("load CA bundle", exc) from exc

        ftp = ftplib.FTP_TLS(
            context=context, timeout=self._connect_timeout.total_seconds()
        )
        try:
            ftp.connect(self.config.host, self.config.port)
            ftp.login(self.config.username, self.config.password)
            ftp.prot_p()
        except ftplib.all_errors as exc:
            ftp.close()
            if is_timeout_error(exc):
                raise UploadTimeoutError("connect", self._connect_timeout, exc) from exc
            if is_auth_error(exc):
                raise AuthError("authentication failed", exc) from exc
            raise ConnectionFailedError("dial failed", exc) from exc
        return ftp

    def _ensure_directory(self, ftp: ftplib.FTP_TLS, remote_dir: str) -> None:
        current = ""
        for part in remote_dir.strip("/").split("/"):
            if not part:
                continue
            current = f"{current}/{part}" if current else part
            try:
                ftp.mkd(current)
            except ftplib.all_errors:
                # Many servers refuse MKD for an existing directory.
                if not _is_directory(ftp, current):
                    raise


def _is_directory(ftp: ftplib.FTP_TLS, path: str) -> bool:
    home = ftp.pwd()
    try:
        ftp.cwd(path)
    except ftplib.all_errors:
        return False
    ftp.cwd(home)
    return True


def _delete_quietly(ftp: ftplib.FTP_TLS, path: str) -> None:
    try:
        ftp.delete(path)
    except ftplib.all_errors:
        pass