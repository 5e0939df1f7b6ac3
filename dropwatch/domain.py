"""Domain types shared by the scheduler, adapters and repositories."""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Optional, Union
from uuid import uuid4

from dropwatch.errors import ConfigurationError, ErrorCategory


class Protocol(str, Enum):
    """Closed set of supported remote location protocols."""

    FTP = "FTP"
    HTTPS = "HTTPS"
    OBJECT_STORAGE = "ObjectStorage"


class ExecutionStatus(str, Enum):
    """Lifecycle of one check attempt: Pending -> Running -> Completed | Failed."""

    PENDING = "Pending"
    RUNNING = "Running"
    COMPLETED = "Completed"
    FAILED = "Failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED)

    def can_transition_to(self, target: "ExecutionStatus") -> bool:
        return target in _ALLOWED_TRANSITIONS[self]


_ALLOWED_TRANSITIONS = {
    ExecutionStatus.PENDING: {
        ExecutionStatus.RUNNING,
        ExecutionStatus.FAILED,
    },
    ExecutionStatus.RUNNING: {
        ExecutionStatus.COMPLETED,
        ExecutionStatus.FAILED,
    },
    ExecutionStatus.COMPLETED: set(),
    ExecutionStatus.FAILED: set(),
}


class NotificationStatus(str, Enum):
    """Delivery state of a discovery notification."""

    PENDING = "Pending"
    SENT = "Sent"
    FAILED = "Failed"


class HttpsAuthType(str, Enum):
    """Authentication schemes understood by the HTTPS adapter."""

    NONE = "none"
    BASIC = "basic"
    BEARER = "bearer"
    API_KEY = "api_key"


# Connection settings. Credentials are never stored here, only references
# that a SecretResolver turns into a credential at call time.

@dataclass
class FtpSettings:
    """Connection settings for an FTP or FTPS server."""

    protocol: ClassVar[Protocol] = Protocol.FTP

    host: str
    port: int = 21
    username: str = "anonymous"
    password_ref: Optional[str] = None
    use_tls: bool = True
    passive_mode: bool = True

    @property
    def location(self) -> str:
        return self.host

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class HttpsSettings:
    """Connection settings for an HTTPS file listing endpoint."""

    protocol: ClassVar[Protocol] = Protocol.HTTPS

    base_url: str
    auth_type: HttpsAuthType = HttpsAuthType.NONE
    username: Optional[str] = None
    secret_ref: Optional[str] = None
    follow_redirects: bool = True
    max_redirects: int = 3

    def __post_init__(self) -> None:
        self.auth_type = HttpsAuthType(self.auth_type)

    @property
    def location(self) -> str:
        return self.base_url

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["auth_type"] = self.auth_type.value
        return data


@dataclass
class ObjectStorageSettings:
    """Connection settings for an S3-compatible bucket."""

    protocol: ClassVar[Protocol] = Protocol.OBJECT_STORAGE

    endpoint: str
    bucket: str
    access_key: Optional[str] = None
    secret_ref: Optional[str] = None
    secure: bool = True
    region: Optional[str] = None
    prefix: str = ""

    @property
    def location(self) -> str:
        return f"{self.endpoint}/{self.bucket}"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


ConnectionSettings = Union[FtpSettings, HttpsSettings, ObjectStorageSettings]

_SETTINGS_TYPES = {
    Protocol.FTP: FtpSettings,
    Protocol.HTTPS: HttpsSettings,
    Protocol.OBJECT_STORAGE: ObjectStorageSettings,
}


def settings_from_dict(protocol: Protocol, data: Dict[str, Any]) -> ConnectionSettings:
    """Build the settings variant for ``protocol`` from a plain mapping.

    Raises:
        ConfigurationError: If the mapping does not fit the protocol's settings
    """
    settings_type = _SETTINGS_TYPES[Protocol(protocol)]
    try:
        return settings_type(**data)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(
            f"Invalid {Protocol(protocol).value} connection settings: {e}"
        ) from e


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Configuration:
    """Tenant-owned rule describing where, when and what to check."""

    tenant_id: str
    protocol: Protocol
    settings: ConnectionSettings
    path_pattern: str
    name_pattern: str
    schedule_expression: str
    timezone: str = "UTC"
    name: str = ""
    description: Optional[str] = None
    file_extension: Optional[str] = None
    is_active: bool = True
    last_evaluated_at: Optional[datetime] = None
    next_due_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=_utcnow)
    id: str = field(default_factory=lambda: str(uuid4()))

    def __post_init__(self) -> None:
        self.protocol = Protocol(self.protocol)
        if self.settings.protocol is not self.protocol:
            raise ConfigurationError(
                f"Configuration {self.id} declares protocol {self.protocol.value} "
                f"but has {self.settings.protocol.value} settings"
            )
        if not self.name:
            self.name = self.id


@dataclass
class ExecutionOutcome:
    """Fields written alongside a status transition."""

    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    files_found: int = 0
    error_category: Optional[ErrorCategory] = None
    error_detail: Optional[str] = None
    resolved_path: Optional[str] = None
    resolved_name: Optional[str] = None
    duration_ms: Optional[int] = None
    retry_count: int = 0


@dataclass
class Execution:
    """One scheduled attempt to check a configuration."""

    configuration_id: str
    tenant_id: str
    scheduled_for: datetime
    status: ExecutionStatus = ExecutionStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    files_found: int = 0
    error_category: Optional[ErrorCategory] = None
    error_detail: Optional[str] = None
    resolved_path: Optional[str] = None
    resolved_name: Optional[str] = None
    duration_ms: Optional[int] = None
    retry_count: int = 0
    created_at: Optional[datetime] = None
    id: str = field(default_factory=lambda: str(uuid4()))


@dataclass
class RemoteFile:
    """A file reported by a protocol adapter."""

    url: str
    size: Optional[int] = None
    last_modified_remote: Optional[datetime] = None
    name: Optional[str] = None


def build_idempotency_key(
    tenant_id: str,
    configuration_id: str,
    url: str,
    discovery_date: date,
) -> str:
    """Format the composite identity of a discovery as a single string."""
    return f"{tenant_id}:{configuration_id}:{url}:{discovery_date.isoformat()}"


@dataclass
class DiscoveredFile:
    """A uniquely observed remote file, deduplicated per discovery date."""

    tenant_id: str
    configuration_id: str
    url: str
    discovery_date: date
    discovered_at: datetime
    size: Optional[int] = None
    last_modified_remote: Optional[datetime] = None
    execution_id: Optional[str] = None
    notification_status: NotificationStatus = NotificationStatus.PENDING
    id: str = field(default_factory=lambda: str(uuid4()))

    @property
    def idempotency_key(self) -> str:
        return build_idempotency_key(
            self.tenant_id, self.configuration_id, self.url, self.discovery_date
        )


@dataclass
class DiscoveryNotification:
    """Published once for each newly created DiscoveredFile."""

    tenant_id: str
    configuration_id: str
    file_url: str
    size: Optional[int]
    last_modified_remote: Optional[datetime]
    discovered_at: datetime
    idempotency_key: str

    @classmethod
    def from_discovery(cls, discovery: DiscoveredFile) -> "DiscoveryNotification":
        return cls(
            tenant_id=discovery.tenant_id,
            configuration_id=discovery.configuration_id,
            file_url=discovery.url,
            size=discovery.size,
            last_modified_remote=discovery.last_modified_remote,
            discovered_at=discovery.discovered_at,
            idempotency_key=discovery.idempotency_key,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tenant_id": self.tenant_id,
            "configuration_id": self.configuration_id,
            "file_url": self.file_url,
            "size": self.size,
            "last_modified_remote": (
                self.last_modified_remote.isoformat() if self.last_modified_remote else None
            ),
            "discovered_at": self.discovered_at.isoformat(),
            "idempotency_key": self.idempotency_key,
        }


@dataclass
class OutcomeNotification:
    """Published once for each execution that reaches a terminal status.

    ``idempotency_key`` is unique per execution, so a consumer receiving
    the same outcome twice can drop the repeat.
    """

    execution_id: str
    tenant_id: str
    configuration_id: str
    status: ExecutionStatus
    files_found: int = 0
    error_category: Optional[ErrorCategory] = None
    error_detail: Optional[str] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    retry_count: int = 0
    resolved_path: Optional[str] = None
    resolved_name: Optional[str] = None

    @property
    def idempotency_key(self) -> str:
        return (
            f"{self.tenant_id}:{self.configuration_id}:"
            f"{self.status.value.lower()}:{self.execution_id}"
        )

    @classmethod
    def from_execution(cls, execution: Execution) -> "OutcomeNotification":
        return cls(
            execution_id=execution.id,
            tenant_id=execution.tenant_id,
            configuration_id=execution.configuration_id,
            status=execution.status,
            files_found=execution.files_found,
            error_category=execution.error_category,
            error_detail=execution.error_detail,
            started_at=execution.started_at,
            completed_at=execution.completed_at,
            duration_ms=execution.duration_ms,
            retry_count=execution.retry_count,
            resolved_path=execution.resolved_path,
            resolved_name=execution.resolved_name,
        )

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "execution_id": self.execution_id,
            "tenant_id": self.tenant_id,
            "configuration_id": self.configuration_id,
            "status": self.status.value,
            "files_found": self.files_found,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "duration_ms": self.duration_ms,
            "retry_count": self.retry_count,
            "resolved_path": self.resolved_path,
            "resolved_name": self.resolved_name,
            "idempotency_key": self.idempotency_key,
        }
        if self.error_category is not None:
            data["error_category"] = self.error_category.value
            data["error_detail"] = self.error_detail
        return data
