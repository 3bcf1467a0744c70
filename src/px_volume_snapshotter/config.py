from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
import os

from .errors import UnsupportedConfigurationError

TYPE_KEY = "type"
NAMESPACE_KEY = "PX_NAMESPACE"
SHARED_SECRET_KEY = "PX_SHARED_SECRET"
JWT_ISSUER_KEY = "PX_JWT_ISSUER"
CREDENTIAL_KEY = "credId"
ENDPOINT_KEY = "PX_ENDPOINT"
SERVICE_NAME_KEY = "PX_SERVICE_NAME"
SECRET_NAME_KEY = "PX_SECRET_NAME"
SECRET_NAMESPACE_KEY = "PX_SECRET_NAMESPACE"
SECRET_KEY_KEY = "PX_SECRET_KEY"
ENABLE_TLS_KEY = "PX_ENABLE_TLS"
CA_CERT_PATH_KEY = "PX_CA_CERT_PATH"
TLS_INSECURE_KEY = "PX_TLS_INSECURE"
KUBECONFIG_KEY = "kubeconfig"
CONTEXT_KEY = "context"
PV_NAME_LABEL_KEY = "pvNameLabel"
BACKUP_NAME_LABEL_KEY = "backupNameLabel"
POLL_INTERVAL_KEY = "pollIntervalSeconds"
WAIT_TIMEOUT_KEY = "waitTimeoutSeconds"
STATUS_QUERY_ATTEMPTS_KEY = "statusQueryAttempts"

TYPE_LOCAL = "local"
TYPE_CLOUD = "cloud"

DEFAULT_NAMESPACE = "kube-system"
DEFAULT_SERVICE_NAME = "portworx-service"
DEFAULT_SECRET_KEY = "apps-secret"
DEFAULT_PV_NAME_LABEL = "pvName"
DEFAULT_BACKUP_NAME_LABEL = "velero.io/backup"

_SECRET_CONFIG_KEYS = frozenset({SHARED_SECRET_KEY})
_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"", "0", "false", "no", "off"})


@dataclass(frozen=True)
class WaiterSettings:
    poll_interval_seconds: float = float(os.getenv("PX_SNAPSHOTTER_POLL_INTERVAL_SECONDS", "10"))
    timeout_seconds: float = float(os.getenv("PX_SNAPSHOTTER_WAIT_TIMEOUT_SECONDS", "14400"))
    status_query_attempts: int = int(os.getenv("PX_SNAPSHOTTER_STATUS_QUERY_ATTEMPTS", "3"))
    retry_backoff_seconds: float = 1.0
    retry_backoff_max_seconds: float = 30.0


@dataclass(frozen=True)
class TlsSettings:
    enabled: bool = False
    ca_cert_path: str | None = None
    insecure_skip_verify: bool = False


@dataclass(frozen=True)
class SessionConfig:
    namespace: str = DEFAULT_NAMESPACE
    endpoint: str | None = None
    shared_secret: str | None = None
    jwt_issuer: str = ""
    service_name: str = DEFAULT_SERVICE_NAME
    secret_name: str | None = None
    secret_namespace: str | None = None
    secret_key: str = DEFAULT_SECRET_KEY
    kubeconfig_path: str | None = None
    context: str | None = None
    tls: TlsSettings = field(default_factory=TlsSettings)


@dataclass(frozen=True)
class PluginConfig:
    snapshot_type: str = TYPE_LOCAL
    credential_id: str = ""
    pv_name_label: str = DEFAULT_PV_NAME_LABEL
    backup_name_label: str = DEFAULT_BACKUP_NAME_LABEL
    session: SessionConfig = field(default_factory=SessionConfig)
    waiter: WaiterSettings = field(default_factory=WaiterSettings)

    @classmethod
    def from_mapping(cls, config: Mapping[str, str] | None) -> PluginConfig:
        config = config or {}
        defaults = WaiterSettings()
        session = SessionConfig(
            namespace=_value(config, NAMESPACE_KEY) or DEFAULT_NAMESPACE,
            endpoint=_value(config, ENDPOINT_KEY),
            shared_secret=_value(config, SHARED_SECRET_KEY),
            jwt_issuer=_value(config, JWT_ISSUER_KEY) or "",
            service_name=_value(config, SERVICE_NAME_KEY) or DEFAULT_SERVICE_NAME,
            secret_name=_value(config, SECRET_NAME_KEY),
            secret_namespace=_value(config, SECRET_NAMESPACE_KEY),
            secret_key=_value(config, SECRET_KEY_KEY) or DEFAULT_SECRET_KEY,
            kubeconfig_path=_value(config, KUBECONFIG_KEY),
            context=_value(config, CONTEXT_KEY),
            tls=TlsSettings(
                enabled=_bool(config, ENABLE_TLS_KEY),
                ca_cert_path=_value(config, CA_CERT_PATH_KEY),
                insecure_skip_verify=_bool(config, TLS_INSECURE_KEY),
            ),
        )
        waiter = WaiterSettings(
            poll_interval_seconds=_number(config, POLL_INTERVAL_KEY, default=defaults.poll_interval_seconds),
            timeout_seconds=_number(config, WAIT_TIMEOUT_KEY, default=defaults.timeout_seconds),
            status_query_attempts=int(
                _number(config, STATUS_QUERY_ATTEMPTS_KEY, default=defaults.status_query_attempts, minimum=1)
            ),
            retry_backoff_seconds=defaults.retry_backoff_seconds,
            retry_backoff_max_seconds=defaults.retry_backoff_max_seconds,
        )
        return cls(
            snapshot_type=_value(config, TYPE_KEY) or TYPE_LOCAL,
            credential_id=_value(config, CREDENTIAL_KEY) or "",
            pv_name_label=_value(config, PV_NAME_LABEL_KEY) or DEFAULT_PV_NAME_LABEL,
            backup_name_label=_value(config, BACKUP_NAME_LABEL_KEY) or DEFAULT_BACKUP_NAME_LABEL,
            session=session,
            waiter=waiter,
        )


def redact_config(config: Mapping[str, str] | None) -> dict[str, str]:
    return {key: ("<redacted>" if key in _SECRET_CONFIG_KEYS and value else value) for key, value in (config or {}).items()}


def _value(config: Mapping[str, str], key: str) -> str | None:
    raw = config.get(key)
    if raw is None:
        return None
    stripped = str(raw).strip()
    return stripped or None


def _bool(config: Mapping[str, str], key: str) -> bool:
    raw = (_value(config, key) or "").lower()
    if raw in _TRUE_VALUES:
        return True
    if raw in _FALSE_VALUES:
        return False
    raise UnsupportedConfigurationError(f"config key {key} must be a boolean, got {config.get(key)!r}")


def _number(config: Mapping[str, str], key: str, *, default: float, minimum: float = 0) -> float:
    raw = _value(config, key)
    if raw is None:
        return default
    try:
        value = float(raw)
    except ValueError as error:
        raise UnsupportedConfigurationError(f"config key {key} must be numeric, got {raw!r}") from error
    if value < minimum:
        raise UnsupportedConfigurationError(f"config key {key} must be >= {minimum}, got {raw!r}")
    return value
