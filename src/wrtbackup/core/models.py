"""Data models for devices, sessions and catalogued backups."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal, Mapping


BackupMethod = Literal["ubus", "luci"]
BACKUP_METHODS: tuple[str, ...] = ("ubus", "luci")


@dataclass(slots=True)
class Device:
    """Representation of a registered OpenWrt device."""

    name: str
    host: str
    username: str
    password: str
    method: BackupMethod = "ubus"
    ssh_port: int = 22

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "host": self.host,
            "username": self.username,
            "password": self.password,
            "method": self.method,
            "ssh_port": self.ssh_port,
        }


@dataclass(slots=True, frozen=True)
class SessionHandle:
    """Authenticated session token for one operation. Never persisted."""

    method: BackupMethod
    token: str


@dataclass(slots=True)
class CollectionReport:
    """Per-section outcome of a shell-based collection."""

    collected: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    identity_included: bool = False


@dataclass(slots=True)
class RestoreOutcome:
    """Result of a successful restore."""

    method: BackupMethod
    bytes_sent: int
    rebooted: bool


@dataclass(slots=True, frozen=True)
class BackupRecord:
    """Catalog entry describing one stored archive."""

    id: str
    filename: str
    created_at: datetime
    device_name: str
    backup_method: BackupMethod
    size: int
    description: str | None = None
    backup_type: str = "full"

    def to_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "filename": self.filename,
            "created_at": self.created_at.isoformat(),
            "device_name": self.device_name,
            "description": self.description,
            "backup_type": self.backup_type,
            "backup_method": self.backup_method,
            "size": self.size,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "BackupRecord":
        return cls(
            id=str(data["id"]),
            filename=str(data["filename"]),
            created_at=datetime.fromisoformat(str(data["created_at"])),
            device_name=str(data["device_name"]),
            description=data.get("description"),
            backup_type=str(data.get("backup_type", "full")),
            backup_method=data["backup_method"],
            size=int(data["size"]),
        )
