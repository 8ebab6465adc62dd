"""Periodic checks for newer releases."""

from __future__ import annotations

import json
import threading
import urllib.error
import urllib.request
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

__all__ = ["Checker", "UpdateStatus"]

DEFAULT_CHECK_INTERVAL = timedelta(hours=1)
INITIAL_DELAY = timedelta(seconds=30)
REQUEST_TIMEOUT = 10.0


def _rfc3339(t: datetime) -> str:
    if t.tzinfo is None:
        t = t.replace(tzinfo=timezone.utc)
    text = t.isoformat(timespec="seconds")
    return text[:-6] + "Z" if text.endswith("+00:00") else text


@dataclass
class UpdateStatus:
    """The result of the latest update check."""

    current_version: str
    current_commit: str
    latest_version: str = ""
    latest_url: str = ""
    update_available: bool = False
    last_check: datetime | None = None
    last_error: BaseException | None = None

    def to_dict(self) -> dict[str, Any]:
        """A JSON-ready mapping; empty optional fields are left out."""
        data: dict[str, Any] = {
            "current_version": self.current_version,
            "current_commit": self.current_commit,
        }
        if self.latest_version:
            data["latest_version"] = self.latest_version
        if self.latest_url:
            data["latest_url"] = self.latest_url
        data["update_available"] = self.update_available
        if self.last_error is not None and str(self.last_error):
            data["error"] = str(self.last_error)
        if self.last_check is not None:
            data["last_check"] = _rfc3339(self.last_check)
        return data

    def to_json(self) -> str:
        """The status encoded as JSON."""
        return json.dumps(self.to_dict())


class Checker:
    """Polls a releases endpoint and remembers whether a newer tag exists."""

    def __init__(
        self, current_version: str, current_commit: str, releases_url: str
    ) -> None:
        self.current_version = current_version
        self.current_commit = current_commit
        self.releases_url = releases_url
        self.check_interval = DEFAULT_CHECK_INTERVAL

        self._lock = threading.Lock()
        self._latest_version = ""
        self._latest_url = ""
        self._update_available = False
        self._last_check: datetime | None = None
        self._last_error: BaseException | None = None
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        """Begin checking in the background, first after a short delay."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="update-checker", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        """Stop background checking."""
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def check(self) -> None:
        """Query the releases endpoint now.

        Raises OSError or ValueError when the query fails; the failure is
        also recorded in the status.
        """
        request = urllib.request.Request(
            self.releases_url,
            headers={
                "Accept": "application/vnd.github.v3+json",
                "User-Agent": f"aviationwx-bridge/{self.current_version}",
            },
        )
        try:
            with urllib.request.urlopen(request, timeout=REQUEST_TIMEOUT) as response:
                status = response.status
                body = response.read()
        except urllib.error.HTTPError as exc:
            status = exc.code
            body = b""
            exc.close()
        except OSError as exc:
            self._set_error(exc)
            raise

        if status == 404:
            self._set_result("", "", False)
            return
        if status != 200:
            error = OSError(f"GitHub API returned status {status}")
            self._set_error(error)
            raise error

        try:
            tag_name, html_url = _parse_release(body)
        except ValueError as exc:
            self._set_error(exc)
            raise

        self._set_result(tag_name, html_url, self.is_newer_version(tag_name))

    def status(self) -> UpdateStatus:
        """A snapshot of the current update state."""
        with self._lock:
            return UpdateStatus(
                current_version=self.current_version,
                current_commit=self.current_commit,
                latest_version=self._latest_version,
                latest_url=self._latest_url,
                update_available=self._update_available,
                last_check=self._last_check,
                last_error=self._last_error,
            )

    def is_newer_version(self, tag_name: str) -> bool:
        """Whether tag_name is newer than the running version (plain string order)."""
        if self.current_version in ("dev", ""):
            return tag_name != ""
        return tag_name != self.current_version and tag_name > self.current_version

    def _run(self) -> None:
        if self._stop_event.wait(INITIAL_DELAY.total_seconds()):
            return
        while True:
            try:
                self.check()
            except (OSError, ValueError):
                pass
            if self._stop_event.wait(self.check_interval.total_seconds()):
                return

    def _set_error(self, err: BaseException) -> None:
        with self._lock:
            self._last_error = err
            self._last_check = datetime.now(timezone.utc)

    def _set_result(self, version: str, url: str, update_available: bool) -> None:
        with self._lock:
            self._latest_version = version
            self._latest_url = url
            self._update_available = update_available
            self._last_check = datetime.now(timezone.utc)
            self._last_error = None


def _parse_release(body: bytes) -> tuple[str, str]:
    release = json.loads(body)
    if not isinstance(release, dict):
        raise ValueError("release response is not a JSON object")
    tag_name = release.get("tag_name") or ""
    html_url = release.get("html_url") or ""
    if not isinstance(tag_name, str) or not isinstance(html_url, str):
        raise ValueError("release response has non-string fields")
    return tag_name, html_url