from __future__ import annotations

from collections.abc import Callable
import logging
import threading
import time

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    stop_after_delay,
    wait_random_exponential,
)

from ._logging import get_logger
from .config import WaiterSettings
from .driver import VolumeDriverClient
from .errors import (
    BackendFailureError,
    ControlPlaneConnectionError,
    ControlPlaneRequestError,
    NotFoundError,
    WaitCancelledError,
    WaitTimeoutError,
)
from .models import BackupStatus, BackupStatusRecord, OperationKind

logger = get_logger(__name__)


class CompletionWaiter:
    """Blocks until a cloud backup or restore job reaches a terminal state.

    Each poll asks ``driver_factory`` for a fresh handle so that access tokens
    are minted per call even when a job runs for hours. A query that fails
    with a transient error is retried before the error is surfaced; such a
    failure is never reported as a job failure. Retries stop at the wait
    deadline and their backoff sleeps end early when the cancel event is set.
    """

    def __init__(self, settings: WaiterSettings | None = None) -> None:
        self.settings = settings or WaiterSettings()

    def wait(
        self,
        driver_factory: Callable[[], VolumeDriverClient],
        job_name: str,
        kind: OperationKind,
        *,
        cancel_event: threading.Event | None = None,
        timeout_seconds: float | None = None,
    ) -> BackupStatusRecord:
        bound = self.settings.timeout_seconds if timeout_seconds is None else timeout_seconds
        deadline = time.monotonic() + bound
        polls = 0
        last_status: BackupStatus | None = None

        while True:
            if cancel_event is not None and cancel_event.is_set():
                raise WaitCancelledError(f"wait for {kind.value} job {job_name} cancelled after {polls} polls")

            record = self._query_status(driver_factory, job_name, kind, deadline=deadline, cancel_event=cancel_event)
            polls += 1
            if not _operation_matches(record, kind):
                raise BackendFailureError(
                    job_name=job_name,
                    operation=kind.value,
                    detail=f"job reports operation {record.operation!r}",
                )
            if record.status is not last_status:
                logger.debug("%s job %s is %s (poll %d)", kind.value, job_name, record.status.value, polls)
                last_status = record.status

            if record.status is BackupStatus.COMPLETED:
                return record
            if record.status is BackupStatus.FAILED:
                logger.error("%s job %s failed: %s", kind.value, job_name, record.detail or "no detail")
                raise BackendFailureError(job_name=job_name, operation=kind.value, detail=record.detail)

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise WaitTimeoutError(
                    f"{kind.value} job {job_name} did not finish within {bound:g}s "
                    f"(last status {record.status.value}, {polls} polls)"
                )

            pause = min(self.settings.poll_interval_seconds, remaining)
            if cancel_event is not None:
                cancel_event.wait(pause)
            else:
                time.sleep(pause)

    def _query_status(
        self,
        driver_factory: Callable[[], VolumeDriverClient],
        job_name: str,
        kind: OperationKind,
        *,
        deadline: float,
        cancel_event: threading.Event | None,
    ) -> BackupStatusRecord:
        def _sleep(seconds: float) -> None:
            pause = max(0.0, min(seconds, deadline - time.monotonic()))
            if cancel_event is None:
                time.sleep(pause)
            elif cancel_event.wait(pause):
                raise WaitCancelledError(
                    f"wait for {kind.value} job {job_name} cancelled while retrying a status query"
                )

        for attempt in Retrying(
            stop=(
                stop_after_attempt(max(1, self.settings.status_query_attempts))
                | stop_after_delay(max(0.0, deadline - time.monotonic()))
            ),
            wait=wait_random_exponential(
                multiplier=self.settings.retry_backoff_seconds,
                max=self.settings.retry_backoff_max_seconds,
            ),
            retry=retry_if_exception(_is_transient_query_error),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=_sleep,
            reraise=True,
        ):
            with attempt, driver_factory() as driver:
                statuses = driver.cloud_backup_status(job_name)
        record = statuses.get(job_name)
        if record is None:
            raise NotFoundError(f"control plane reports no status for job {job_name}")
        return record


def _operation_matches(record: BackupStatusRecord, kind: OperationKind) -> bool:
    operation = record.operation.strip().lower()
    return not operation or operation == kind.value


def _is_transient_query_error(error: BaseException) -> bool:
    if isinstance(error, ControlPlaneConnectionError):
        return True
    return isinstance(error, ControlPlaneRequestError) and error.is_server_error
