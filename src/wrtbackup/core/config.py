"""Configuration helpers for WrtConfigBackup."""

from __future__ import annotations

from dataclasses import dataclass
import logging
from pathlib import Path
from typing import Any, Mapping

import yaml

from wrtbackup.core.errors import DeviceNotFoundError
from wrtbackup.core.models import BACKUP_METHODS, BackupMethod, Device

DEFAULT_HTTP_TIMEOUT = 10.0
DEFAULT_SSH_TIMEOUT = 10.0


@dataclass(slots=True)
class ConfigPaths:
    """Paths used by the application."""

    devices: Path
    local: Path


DEFAULT_CONFIG = ConfigPaths(
    devices=Path("config/devices.yml"),
    local=Path("config/local.yml"),
)


@dataclass(slots=True)
class Settings:
    """Transport settings loaded from local.yml."""

    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    ssh_timeout: float = DEFAULT_SSH_TIMEOUT


class DevicesConfigError(ValueError):
    """Raised when devices.yml cannot be parsed or validated."""


def _require_string(mapping: Mapping[str, Any], field: str, context: str) -> str:
    value = mapping.get(field)
    if value is None or value == "":
        raise DevicesConfigError(f"{context}: missing required field '{field}'.")
    if not isinstance(value, str):
        raise DevicesConfigError(f"{context}: field '{field}' must be a string.")
    return value


def validate_method(value: Any, context: str) -> BackupMethod:
    if value is None:
        return "ubus"
    if value not in BACKUP_METHODS:
        raise DevicesConfigError(
            f"{context}: invalid method '{value}'. Allowed values: ubus, luci."
        )
    return value  # type: ignore[return-value]


def _validate_port(value: Any, context: str) -> int:
    if value is None:
        return 22
    if isinstance(value, bool) or not isinstance(value, int):
        raise DevicesConfigError(f"{context}: port must be an integer.")
    if value <= 0 or value > 65535:
        raise DevicesConfigError(f"{context}: port must be between 1 and 65535.")
    return value


def _parse_device(raw_device: Mapping[str, Any], context: str) -> Device:
    name = _require_string(raw_device, "name", context)
    if "/" in name or name in (".", ".."):
        raise DevicesConfigError(f"{context}: device name '{name}' is not a valid directory name.")
    host = _require_string(raw_device, "host", f"{context} '{name}'")
    username = _require_string(raw_device, "username", f"{context} '{name}'")
    password = raw_device.get("password")
    if not isinstance(password, str):
        raise DevicesConfigError(f"{context} '{name}': field 'password' must be a string.")

    return Device(
        name=name,
        host=host,
        username=username,
        password=password,
        method=validate_method(raw_device.get("method"), f"{context} '{name}'"),
        ssh_port=_validate_port(raw_device.get("ssh_port"), f"{context} '{name}' ssh_port"),
    )


def _read_raw_devices(path: Path) -> list[Any]:
    with path.open("r", encoding="utf-8") as handle:
        raw_data = yaml.safe_load(handle) or {}

    if not isinstance(raw_data, dict):
        raise DevicesConfigError("Top-level devices.yml structure must be a mapping.")

    raw_devices = raw_data.get("devices", [])
    if raw_devices is None:
        return []
    if not isinstance(raw_devices, list):
        raise DevicesConfigError("The 'devices' field must be a list of device entries.")
    return raw_devices


def load_devices(path: Path, logger: logging.Logger | None = None) -> list[Device]:
    """Load and validate devices.yml. A missing file is an empty registry."""

    logger = logger or logging.getLogger(__name__)

    if not path.exists():
        logger.debug("devices inventory not found path=%s", path)
        return []

    devices: list[Device] = []
    seen_names: set[str] = set()

    for index, raw_device in enumerate(_read_raw_devices(path), start=1):
        context = f"device #{index}"
        if not isinstance(raw_device, dict):
            logger.error("%s: each device must be a mapping.", context, extra={"device": "-"})
            continue

        log_extra = {"device": raw_device.get("name") or "-"}
        try:
            device = _parse_device(raw_device, context)
        except DevicesConfigError as exc:
            logger.error("%s", exc, extra=log_extra)
            continue

        if device.name in seen_names:
            logger.error(
                "%s '%s': device name must be unique. Duplicate ignored.",
                context,
                device.name,
                extra=log_extra,
            )
            continue

        seen_names.add(device.name)
        devices.append(device)
        logger.debug(
            "device=%s host=%s method=%s ssh_port=%s loaded",
            device.name,
            device.host,
            device.method,
            device.ssh_port,
            extra=log_extra,
        )

    return devices


def get_device(devices: list[Device], name: str) -> Device:
    """Return the registered device called ``name``."""

    for device in devices:
        if device.name == name:
            return device
    raise DeviceNotFoundError(name)


def add_device(path: Path, device: Device, logger: logging.Logger | None = None) -> None:
    """Insert or replace ``device`` in devices.yml."""

    logger = logger or logging.getLogger(__name__)
    _parse_device(device.to_dict(), f"device '{device.name}'")
    devices = [existing for existing in load_devices(path, logger) if existing.name != device.name]
    devices.append(device)

    path.parent.mkdir(parents=True, exist_ok=True)
    payload = {"devices": [entry.to_dict() for entry in devices]}
    with path.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(payload, handle, sort_keys=False)
    logger.info("device registered host=%s method=%s", device.host, device.method, extra={"device": device.name})


def _positive_float(value: Any, default: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return default
    return float(value)


def load_settings(local_cfg: Mapping[str, Any] | None) -> Settings:
    """Extract transport timeouts from a local.yml mapping."""

    if not isinstance(local_cfg, Mapping):
        return Settings()

    http_section = local_cfg.get("http")
    ssh_section = local_cfg.get("ssh")
    http_timeout = http_section.get("timeout") if isinstance(http_section, Mapping) else None
    ssh_timeout = ssh_section.get("timeout") if isinstance(ssh_section, Mapping) else None

    return Settings(
        http_timeout=_positive_float(http_timeout, DEFAULT_HTTP_TIMEOUT),
        ssh_timeout=_positive_float(ssh_timeout, DEFAULT_SSH_TIMEOUT),
    )
