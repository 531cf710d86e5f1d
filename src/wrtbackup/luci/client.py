"""LuCI web-admin HTTP client."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import requests

AUTH_PATH = "/cgi-bin/luci/rpc/auth"
BACKUP_PATH = "/cgi-bin/luci/admin/system/flashops/backup"
RESTORE_PATH = "/cgi-bin/luci/admin/system/flashops/restore"
REBOOT_PATH = "/cgi-bin/luci/admin/system/reboot/call"
RESTORE_FIELD = "archive"
RESTORE_FILENAME = "backup.tar.gz"


class LuciClientError(RuntimeError):
    """Base exception for LuCI client errors."""


class LuciAuthenticationError(LuciClientError):
    """Raised when the auth endpoint returns no token."""


class LuciRequestError(LuciClientError):
    """Raised when an authenticated request fails."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(slots=True)
class LuciClient:
    """HTTP client for the LuCI administration interface."""

    host: str
    timeout: float = 10.0
    http: requests.Session = field(default_factory=requests.Session)

    def _url(self, path: str) -> str:
        return f"http://{self.host}{path}"

    @staticmethod
    def _cookie(token: str) -> dict[str, str]:
        return {"Cookie": f"sysauth={token}"}

    def login(self, username: str, password: str) -> str:
        """Authenticate and return the ``sysauth`` token."""

        try:
            response = self.http.post(
                self._url(AUTH_PATH),
                data={"username": username, "password": password},
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as exc:
            raise LuciAuthenticationError(f"auth request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise LuciAuthenticationError("auth response is not JSON") from exc

        token = body.get("result") if isinstance(body, dict) else None
        if not isinstance(token, str) or not token:
            raise LuciAuthenticationError("auth response carries no token")
        return token

    def _request(self, method: str, path: str, token: str, **kwargs: Any) -> requests.Response:
        try:
            response = self.http.request(
                method,
                self._url(path),
                headers=self._cookie(token),
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as exc:
            raise LuciRequestError(f"{method} {path} failed: {exc}") from exc

        if not response.ok:
            raise LuciRequestError(f"{method} {path} returned HTTP {response.status_code}", response.status_code)
        return response

    def fetch_backup(self, token: str) -> bytes:
        """Download the device-generated backup archive as-is."""

        return self._request("GET", BACKUP_PATH, token).content

    def upload_restore(self, token: str, archive: bytes) -> None:
        files = {RESTORE_FIELD: (RESTORE_FILENAME, archive, "application/x-targz")}
        self._request("POST", RESTORE_PATH, token, files=files)

    def reboot(self, token: str) -> None:
        self._request("POST", REBOOT_PATH, token)
