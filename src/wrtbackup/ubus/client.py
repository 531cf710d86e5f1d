"""ubus JSON-RPC client for OpenWrt devices."""

from __future__ import annotations

import base64
import itertools
import logging
from dataclasses import dataclass, field
from typing import Any

import requests

ANONYMOUS_SESSION = "0" * 32

UBUS_STATUS = {
    0: "OK",
    1: "INVALID_COMMAND",
    2: "INVALID_ARGUMENT",
    3: "METHOD_NOT_FOUND",
    4: "NOT_FOUND",
    5: "NO_DATA",
    6: "PERMISSION_DENIED",
    7: "TIMEOUT",
    8: "NOT_SUPPORTED",
    9: "UNKNOWN_ERROR",
    10: "CONNECTION_FAILED",
}


class UbusClientError(RuntimeError):
    """Base exception for ubus client errors."""


class UbusTransportError(UbusClientError):
    """Raised when the HTTP request fails or the body is not JSON."""


class UbusCallError(UbusClientError):
    """Raised when the device answers with a JSON-RPC error or a non-zero ubus status."""

    def __init__(self, message: str, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


@dataclass(slots=True)
class UbusClient:
    """Thin JSON-RPC client for ``http://<host>/ubus``."""

    host: str
    timeout: float = 10.0
    http: requests.Session = field(default_factory=requests.Session)
    _ids: Any = field(default_factory=lambda: itertools.count(1), repr=False)

    @property
    def url(self) -> str:
        return f"http://{self.host}/ubus"

    def call(
        self,
        session_id: str,
        obj: str,
        method: str,
        args: dict[str, Any] | None = None,
        logger: logging.Logger | None = None,
        log_extra: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Invoke ``obj.method`` and return the payload at ``result[1]``."""

        logger = logger or logging.getLogger(__name__)
        log_extra = log_extra or {}
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": "call",
            "params": [session_id, obj, method, args or {}],
        }
        logger.debug("ubus call object=%s method=%s url=%s", obj, method, self.url, extra=log_extra)

        try:
            response = self.http.post(self.url, json=payload, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as exc:
            raise UbusTransportError(f"ubus request {obj}.{method} failed: {exc}") from exc

        # requests.JSONDecodeError is both a ValueError and a RequestException
        try:
            body = response.json()
        except ValueError as exc:
            raise UbusTransportError(f"ubus response for {obj}.{method} is not JSON") from exc

        if not isinstance(body, dict):
            raise UbusTransportError(f"ubus response for {obj}.{method} is not an object")

        error = body.get("error")
        if error is not None:
            message = error.get("message") if isinstance(error, dict) else str(error)
            code = error.get("code") if isinstance(error, dict) else None
            raise UbusCallError(f"{obj}.{method}: {message}", code)

        result = body.get("result")
        if not isinstance(result, list) or not result:
            raise UbusCallError(f"{obj}.{method}: malformed result")

        status = result[0]
        if status != 0:
            name = UBUS_STATUS.get(status, str(status)) if isinstance(status, int) else str(status)
            raise UbusCallError(f"{obj}.{method}: ubus status {name}", status if isinstance(status, int) else None)

        data = result[1] if len(result) > 1 else {}
        return data if isinstance(data, dict) else {}

    def login(
        self,
        username: str,
        password: str,
        logger: logging.Logger | None = None,
        log_extra: dict[str, Any] | None = None,
    ) -> str:
        """Open a ubus session and return its token."""

        data = self.call(
            ANONYMOUS_SESSION,
            "session",
            "login",
            {"username": username, "password": password},
            logger,
            log_extra,
        )
        token = data.get("ubus_rpc_session")
        if not isinstance(token, str) or not token:
            raise UbusCallError("session.login: response carries no ubus_rpc_session")
        return token

    def board(self, session_id: str) -> dict[str, Any]:
        return self.call(session_id, "system", "board")

    def info(self, session_id: str) -> dict[str, Any]:
        return self.call(session_id, "system", "info")

    def reboot(self, session_id: str) -> None:
        self.call(session_id, "system", "reboot")

    def restore(
        self,
        session_id: str,
        archive: bytes,
        logger: logging.Logger | None = None,
        log_extra: dict[str, Any] | None = None,
    ) -> None:
        """Send a backup archive; the device applies it and reboots on its own."""

        encoded = base64.b64encode(archive).decode("ascii")
        self.call(session_id, "backup", "restore", {"archive": encoded}, logger, log_extra)
