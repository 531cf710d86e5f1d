"""Device status and reboot over ubus."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from wrtbackup.core.errors import WrtBackupError
from wrtbackup.core.models import Device
from wrtbackup.ubus.client import UbusClient, UbusClientError

LOAD_SCALE = 65536.0


class StatusError(WrtBackupError):
    """Raised when status or reboot calls fail."""


@dataclass(slots=True)
class DeviceStatus:
    """Board and runtime information reported by ``system board`` and ``system info``."""

    name: str
    model: str = "Unknown"
    hostname: str = "Unknown"
    uptime: int = 0
    load: list[float] = field(default_factory=list)
    memory: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "model": self.model,
            "hostname": self.hostname,
            "uptime": self.uptime,
            "load": self.load,
            "memory": self.memory,
        }


def _as_int(value: Any) -> int:
    return value if isinstance(value, int) and not isinstance(value, bool) else 0


def parse_status(name: str, board: dict[str, Any], info: dict[str, Any]) -> DeviceStatus:
    raw_load = info.get("load")
    load = [_as_int(value) / LOAD_SCALE for value in raw_load] if isinstance(raw_load, list) else []
    raw_memory = info.get("memory")
    memory = {key: _as_int(value) for key, value in raw_memory.items()} if isinstance(raw_memory, dict) else {}

    return DeviceStatus(
        name=name,
        model=str(board.get("model") or "Unknown"),
        hostname=str(board.get("hostname") or "Unknown"),
        uptime=_as_int(info.get("uptime")),
        load=load,
        memory=memory,
    )


def format_uptime(seconds: int) -> str:
    days, remainder = divmod(seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes = remainder // 60
    if days:
        return f"{days}d {hours}h {minutes}m"
    if hours:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def format_status(status: DeviceStatus, raw: bool = False) -> str:
    """Render a status block for the terminal."""

    total = status.memory.get("total", 0)
    free = status.memory.get("free", 0)
    load = status.load[0] if status.load else 0.0

    if raw:
        uptime = f"{status.uptime} seconds"
        total_text = f"{total} B"
        free_text = f"{free} B"
    else:
        uptime = format_uptime(status.uptime)
        total_text = f"{total / (1024 * 1024):.1f} MB"
        free_text = f"{free / (1024 * 1024):.1f} MB"

    lines = [
        f"Device Status: {status.name}",
        "----------------",
        f"Model: {status.model}",
        f"Hostname: {status.hostname}",
        f"Uptime: {uptime}",
        f"Load: {load:.2f}",
        "Memory:",
        f"   Total: {total_text}",
        f"   Free: {free_text}",
    ]
    return "\n".join(lines)


def get_status(device: Device, client: UbusClient, logger: logging.Logger) -> DeviceStatus:
    log_extra = {"device": device.name}
    try:
        session = client.login(device.username, device.password, logger, log_extra)
        board = client.board(session)
        info = client.info(session)
    except UbusClientError as exc:
        raise StatusError(f"Status query for '{device.name}' failed: {exc}") from exc
    return parse_status(device.name, board, info)


def reboot_device(device: Device, client: UbusClient, logger: logging.Logger) -> None:
    log_extra = {"device": device.name}
    try:
        session = client.login(device.username, device.password, logger, log_extra)
        client.reboot(session)
    except UbusClientError as exc:
        raise StatusError(f"Reboot of '{device.name}' failed: {exc}") from exc
    logger.info("reboot requested host=%s", device.host, extra=log_extra)
