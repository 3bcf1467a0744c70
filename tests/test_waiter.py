from __future__ import annotations

import threading
from unittest.mock import MagicMock

import pytest

from px_volume_snapshotter.config import WaiterSettings
from px_volume_snapshotter.errors import (
    BackendFailureError,
    ControlPlaneConnectionError,
    ControlPlaneRequestError,
    NotFoundError,
    WaitCancelledError,
    WaitTimeoutError,
)
from px_volume_snapshotter.models import BackupStatus, BackupStatusRecord, OperationKind
from px_volume_snapshotter.waiter import CompletionWaiter


def _driver() -> MagicMock:
    driver = MagicMock()
    driver.__enter__.return_value = driver
    return driver


def _statuses(
    status: BackupStatus,
    *,
    job_name: str = "job-9",
    backup_id: str = "",
    detail: str = "",
    operation: str = "Backup",
) -> dict:
    return {
        job_name: BackupStatusRecord(
            job_name=job_name,
            backup_id=backup_id,
            operation=operation,
            status=status,
            detail=detail,
        )
    }


def _waiter(**overrides: float) -> CompletionWaiter:
    settings = {
        "poll_interval_seconds": 0,
        "timeout_seconds": 5,
        "status_query_attempts": 3,
        "retry_backoff_seconds": 0,
        "retry_backoff_max_seconds": 0,
    }
    settings.update(overrides)
    return CompletionWaiter(WaiterSettings(**settings))


def test_wait_with_queued_active_active_completed_stops_at_terminal_observation() -> None:
    driver = _driver()
    driver.cloud_backup_status.side_effect = [
        _statuses(BackupStatus.QUEUED),
        _statuses(BackupStatus.ACTIVE),
        _statuses(BackupStatus.ACTIVE),
        _statuses(BackupStatus.COMPLETED, backup_id="bk-42"),
        _statuses(BackupStatus.COMPLETED, backup_id="bk-42"),
    ]

    record = _waiter().wait(lambda: driver, "job-9", OperationKind.BACKUP)

    assert record.status is BackupStatus.COMPLETED
    assert record.backup_id == "bk-42"
    assert driver.cloud_backup_status.call_count == 4


def test_wait_with_failed_job_raises_backend_failure_with_detail() -> None:
    driver = _driver()
    driver.cloud_backup_status.side_effect = [
        _statuses(BackupStatus.ACTIVE, operation="Restore"),
        _statuses(BackupStatus.FAILED, detail="objectstore credentials rejected", operation="Restore"),
    ]

    with pytest.raises(BackendFailureError, match="objectstore credentials rejected") as error_info:
        _waiter().wait(lambda: driver, "job-9", OperationKind.RESTORE)

    assert error_info.value.job_name == "job-9"
    assert error_info.value.operation == "restore"


def test_wait_with_job_stuck_active_raises_wait_timeout() -> None:
    driver = _driver()
    driver.cloud_backup_status.return_value = _statuses(BackupStatus.ACTIVE)

    with pytest.raises(WaitTimeoutError, match="job-9"):
        _waiter(poll_interval_seconds=0.01, timeout_seconds=0.05).wait(lambda: driver, "job-9", OperationKind.BACKUP)


def test_wait_with_explicit_timeout_overrides_settings() -> None:
    driver = _driver()
    driver.cloud_backup_status.return_value = _statuses(BackupStatus.QUEUED)

    with pytest.raises(WaitTimeoutError):
        _waiter(timeout_seconds=3600).wait(lambda: driver, "job-9", OperationKind.BACKUP, timeout_seconds=0)

    assert driver.cloud_backup_status.call_count == 1


def test_wait_with_transient_query_error_retries_before_success() -> None:
    driver = _driver()
    driver.cloud_backup_status.side_effect = [
        ControlPlaneConnectionError("connection reset"),
        ControlPlaneRequestError("gateway timeout", status=504),
        _statuses(BackupStatus.COMPLETED, backup_id="bk-1"),
    ]

    record = _waiter().wait(lambda: driver, "job-9", OperationKind.BACKUP)

    assert record.backup_id == "bk-1"
    assert driver.cloud_backup_status.call_count == 3


def test_wait_with_persistent_transport_failure_surfaces_connection_error() -> None:
    driver = _driver()
    driver.cloud_backup_status.side_effect = ControlPlaneConnectionError("connection refused")

    with pytest.raises(ControlPlaneConnectionError, match="connection refused"):
        _waiter(status_query_attempts=2).wait(lambda: driver, "job-9", OperationKind.BACKUP)

    assert driver.cloud_backup_status.call_count == 2


def test_wait_with_client_error_does_not_retry() -> None:
    driver = _driver()
    driver.cloud_backup_status.side_effect = ControlPlaneRequestError("forbidden", status=403)

    with pytest.raises(ControlPlaneRequestError, match="forbidden"):
        _waiter().wait(lambda: driver, "job-9", OperationKind.BACKUP)

    assert driver.cloud_backup_status.call_count == 1


def test_wait_with_unknown_job_raises_not_found() -> None:
    driver = _driver()
    driver.cloud_backup_status.return_value = _statuses(BackupStatus.ACTIVE, job_name="other-job")

    with pytest.raises(NotFoundError, match="job-9"):
        _waiter().wait(lambda: driver, "job-9", OperationKind.BACKUP)


def test_wait_requests_fresh_driver_for_each_poll() -> None:
    driver = _driver()
    driver.cloud_backup_status.side_effect = [
        _statuses(BackupStatus.ACTIVE),
        _statuses(BackupStatus.COMPLETED),
    ]
    factory = MagicMock(return_value=driver)

    _waiter().wait(factory, "job-9", OperationKind.BACKUP)

    assert factory.call_count == 2
    assert driver.__exit__.call_count == 2


def test_wait_with_preset_cancel_event_raises_without_polling() -> None:
    driver = _driver()
    cancel_event = threading.Event()
    cancel_event.set()

    with pytest.raises(WaitCancelledError):
        _waiter().wait(lambda: driver, "job-9", OperationKind.BACKUP, cancel_event=cancel_event)

    driver.cloud_backup_status.assert_not_called()


def test_wait_with_cancel_during_sleep_aborts_promptly() -> None:
    driver = _driver()
    cancel_event = threading.Event()

    def _status_then_cancel(job_name: str) -> dict:
        cancel_event.set()
        return _statuses(BackupStatus.ACTIVE)

    driver.cloud_backup_status.side_effect = _status_then_cancel

    with pytest.raises(WaitCancelledError, match="1 polls"):
        _waiter(poll_interval_seconds=60).wait(lambda: driver, "job-9", OperationKind.BACKUP, cancel_event=cancel_event)


def test_wait_with_cancel_during_query_retries_stops_retrying() -> None:
    driver = _driver()
    cancel_event = threading.Event()

    def _fail_then_cancel(job_name: str) -> dict:
        cancel_event.set()
        raise ControlPlaneConnectionError("connection refused")

    driver.cloud_backup_status.side_effect = _fail_then_cancel
    waiter = _waiter(status_query_attempts=5, retry_backoff_seconds=60, retry_backoff_max_seconds=60)

    with pytest.raises(WaitCancelledError, match="retrying a status query"):
        waiter.wait(lambda: driver, "job-9", OperationKind.BACKUP, cancel_event=cancel_event)

    assert driver.cloud_backup_status.call_count == 1


def test_wait_with_expired_deadline_does_not_retry_failed_query() -> None:
    driver = _driver()
    driver.cloud_backup_status.side_effect = ControlPlaneConnectionError("connection refused")

    with pytest.raises(ControlPlaneConnectionError):
        _waiter(status_query_attempts=5).wait(lambda: driver, "job-9", OperationKind.BACKUP, timeout_seconds=0)

    assert driver.cloud_backup_status.call_count == 1


def test_wait_with_mismatched_operation_raises_backend_failure() -> None:
    driver = _driver()
    driver.cloud_backup_status.return_value = _statuses(BackupStatus.COMPLETED, operation="Backup")

    with pytest.raises(BackendFailureError, match="'Backup'"):
        _waiter().wait(lambda: driver, "job-9", OperationKind.RESTORE)


def test_wait_with_unreported_operation_accepts_job() -> None:
    driver = _driver()
    driver.cloud_backup_status.return_value = _statuses(BackupStatus.COMPLETED, operation="")

    record = _waiter().wait(lambda: driver, "job-9", OperationKind.RESTORE)

    assert record.status is BackupStatus.COMPLETED
