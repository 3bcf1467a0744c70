from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class BackupStatus(str, Enum):
    QUEUED = "queued"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class OperationKind(str, Enum):
    BACKUP = "backup"
    RESTORE = "restore"


# Backend status strings as reported by the storage control plane.
_BACKEND_STATUS_MAP = {
    "notstarted": BackupStatus.QUEUED,
    "queued": BackupStatus.QUEUED,
    "paused": BackupStatus.QUEUED,
    "active": BackupStatus.ACTIVE,
    "done": BackupStatus.COMPLETED,
    "completed": BackupStatus.COMPLETED,
    "failed": BackupStatus.FAILED,
    "aborted": BackupStatus.FAILED,
    "stopped": BackupStatus.FAILED,
    "invalid": BackupStatus.FAILED,
}


def parse_backup_status(value: str | None) -> BackupStatus:
    normalized = (value or "").strip().lower().removeprefix("cloudbackupstatus")
    status = _BACKEND_STATUS_MAP.get(normalized)
    if status is None:
        raise ValueError(f"unknown backend status: {value!r}")
    return status


@dataclass(frozen=True)
class CredentialClaim:
    issuer: str
    subject: str
    name: str
    roles: tuple[str, ...]
    groups: tuple[str, ...]
    issued_at: int
    expires_at: int

    def to_payload(self) -> dict[str, Any]:
        return {
            "iss": self.issuer,
            "sub": self.subject,
            "name": self.name,
            "roles": list(self.roles),
            "groups": list(self.groups),
            "iat": self.issued_at,
            "exp": self.expires_at,
        }


@dataclass(frozen=True)
class BackupRecord:
    backup_id: str
    src_volume_id: str
    src_volume_name: str


@dataclass(frozen=True)
class BackupStatusRecord:
    job_name: str
    backup_id: str
    operation: str
    status: BackupStatus
    src_volume_id: str = ""
    detail: str = ""


@dataclass(frozen=True)
class RestoreRecord:
    job_name: str
    restore_volume_name: str


@dataclass(frozen=True)
class PortworxVolume:
    volume_id: str
    name: str
    labels: dict[str, str] = field(default_factory=dict)
