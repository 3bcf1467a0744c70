from __future__ import annotations

from collections.abc import Mapping
import threading
import uuid

from ._logging import get_logger
from .config import PluginConfig
from .errors import NotFoundError, SourceNotFoundError
from .models import BackupRecord, OperationKind
from .session import ClientSession
from .strategy import SnapshotStrategy
from .waiter import CompletionWaiter

logger = get_logger(__name__)

RESTORE_VOLUME_PREFIX = "pvc-"


class CloudSnapshotStrategy(SnapshotStrategy):
    """Snapshots uploaded to an objectstore through cloud backups.

    Backups and restores run asynchronously on the storage cluster; each
    mutating call blocks on the ``CompletionWaiter`` until the job settles.
    """

    volume_type = "portworx-cloudsnapshot"

    def __init__(
        self,
        *,
        session: ClientSession,
        config: PluginConfig,
        waiter: CompletionWaiter | None = None,
    ) -> None:
        super().__init__(session=session, config=config)
        self.waiter = waiter or CompletionWaiter(config.waiter)
        self.credential_id = ""

    def initialize(self) -> None:
        self.credential_id = self.config.credential_id
        logger.info(
            "Initializing cloud snapshots with credential %s",
            self.credential_id or "<cluster default>",
        )

    def create_snapshot(
        self,
        volume_id: str,
        zone: str,
        tags: Mapping[str, str],
        *,
        cancel_event: threading.Event | None = None,
    ) -> str:
        with self.session.volume_driver() as driver:
            job_name = driver.cloud_backup_create(volume_id, credential_uuid=self.credential_id, full=True)
        logger.info("Started cloud backup %s for volume %s", job_name, volume_id)

        self.waiter.wait(self.session.volume_driver, job_name, OperationKind.BACKUP, cancel_event=cancel_event)

        with self.session.volume_driver() as driver:
            statuses = driver.cloud_backup_status(job_name)
        record = statuses.get(job_name)
        if record is None or not record.backup_id:
            raise NotFoundError(f"cloud backup {job_name} for volume {volume_id} finished without a backup id")

        logger.info("Finished cloud backup %s for volume %s as %s", job_name, volume_id, record.backup_id)
        return record.backup_id

    def create_volume_from_snapshot(
        self,
        snapshot_id: str,
        volume_type: str,
        zone: str,
        iops: int | None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> str:
        # The orchestrator does not pass the source volume name, so it is
        # recovered from the backup enumeration.
        with self.session.volume_driver() as driver:
            backups = driver.cloud_backup_enumerate(credential_uuid=self.credential_id, backup_id=snapshot_id)
            source = find_backup(backups, snapshot_id)
            if source is None or not source.src_volume_name:
                raise SourceNotFoundError(f"could not find backup associated with ID: {snapshot_id}")

            restore_volume_name = f"{RESTORE_VOLUME_PREFIX}{uuid.uuid4()}"
            restore = driver.cloud_backup_restore(
                snapshot_id,
                credential_uuid=self.credential_id,
                restore_volume_name=restore_volume_name,
            )
        logger.info(
            "Started cloud restore %s of backup %s (source volume %s) to %s",
            restore.job_name,
            snapshot_id,
            source.src_volume_name,
            restore_volume_name,
        )

        self.waiter.wait(self.session.volume_driver, restore.job_name, OperationKind.RESTORE, cancel_event=cancel_event)

        logger.info("Finished cloud restore %s of backup %s to %s", restore.job_name, snapshot_id, restore_volume_name)
        return restore_volume_name

    def delete_snapshot(self, snapshot_id: str) -> None:
        with self.session.volume_driver() as driver:
            driver.cloud_backup_delete(snapshot_id, credential_uuid=self.credential_id, force=False)
        logger.info("Deleted cloud backup %s", snapshot_id)


def find_backup(backups: list[BackupRecord], backup_id: str) -> BackupRecord | None:
    # Match on the backup id only: concurrent backups of one volume share a source name.
    for backup in backups:
        if backup.backup_id == backup_id:
            return backup
    return None
