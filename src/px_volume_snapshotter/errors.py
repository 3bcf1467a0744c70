from __future__ import annotations


class SnapshotPluginError(RuntimeError):
    """Base class for every error raised by the snapshot plugin."""


class ConfigurationError(SnapshotPluginError):
    """Raised when plugin configuration is missing or invalid."""


class UnsupportedConfigurationError(ConfigurationError):
    """Raised when a configuration value cannot be interpreted."""


class UnsupportedSnapshotTypeError(ConfigurationError):
    """Raised when the configured snapshot type is neither local nor cloud."""


class NotInitializedError(SnapshotPluginError):
    """Raised when an operation is invoked before the plugin is initialized."""


class EndpointUnavailableError(SnapshotPluginError):
    """Raised when the storage control-plane address cannot be determined."""


class ControlPlaneConnectionError(SnapshotPluginError):
    """Raised when the storage control plane cannot be reached."""


class ControlPlaneRequestError(SnapshotPluginError):
    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status

    @property
    def is_server_error(self) -> bool:
        return self.status is not None and self.status >= 500


class SigningError(SnapshotPluginError):
    """Raised when an access token cannot be signed."""


class NotFoundError(SnapshotPluginError):
    """Raised when a referenced volume, snapshot or backup does not exist."""


class SourceNotFoundError(NotFoundError):
    """Raised when the source volume of a snapshot cannot be recovered."""


class WaitTimeoutError(SnapshotPluginError):
    """Raised when a backend job does not finish within the wait bound."""


class WaitCancelledError(SnapshotPluginError):
    """Raised when a wait is aborted through its cancel event."""


class BackendFailureError(SnapshotPluginError):
    def __init__(self, *, job_name: str, operation: str, detail: str) -> None:
        normalized_detail = detail.strip() or "no detail provided"
        super().__init__(f"{operation} job {job_name} failed: {normalized_detail}")
        self.job_name = job_name
        self.operation = operation
        self.detail = normalized_detail


class UnrecognizedDescriptorError(SnapshotPluginError):
    """Raised when a volume descriptor cannot be claimed by this platform."""
