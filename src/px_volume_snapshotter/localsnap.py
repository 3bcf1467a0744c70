from __future__ import annotations

from collections.abc import Mapping
import threading

from ._logging import get_logger
from .errors import NotFoundError, SourceNotFoundError
from .models import PortworxVolume
from .strategy import SnapshotStrategy

logger = get_logger(__name__)


class LocalSnapshotStrategy(SnapshotStrategy):
    """Snapshots kept on the storage cluster itself. Every call is synchronous."""

    volume_type = "portworx-snapshot"

    def initialize(self) -> None:
        logger.info("Initializing local snapshots (lineage label %s)", self.config.pv_name_label)

    def create_snapshot(
        self,
        volume_id: str,
        zone: str,
        tags: Mapping[str, str],
        *,
        cancel_event: threading.Event | None = None,
    ) -> str:
        with self.session.volume_driver() as driver:
            volume = _inspect_one(driver.inspect([volume_id]), kind="volume", object_id=volume_id)

            labels = dict(tags)
            labels[self.config.pv_name_label] = volume.name
            backup_name = labels.get(self.config.backup_name_label, "").strip()
            snapshot_name = f"{backup_name}_{volume.name}"
            logger.info("Creating local snapshot %s of volume %s", snapshot_name, volume_id)
            snapshot_id = driver.snapshot(
                volume_id,
                readonly=True,
                name=snapshot_name,
                labels=labels,
                no_retry=True,
            )

        logger.info("Created local snapshot %s of volume %s", snapshot_id, volume_id)
        return snapshot_id

    def create_volume_from_snapshot(
        self,
        snapshot_id: str,
        volume_type: str,
        zone: str,
        iops: int | None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> str:
        with self.session.volume_driver() as driver:
            snapshot = _inspect_one(driver.inspect([snapshot_id]), kind="snapshot", object_id=snapshot_id)

            source_name = snapshot.labels.get(self.config.pv_name_label, "").strip()
            if not source_name:
                raise SourceNotFoundError(
                    f"snapshot {snapshot_id} has no '{self.config.pv_name_label}' label naming its source volume"
                )

            logger.info("Cloning snapshot %s into volume %s", snapshot_id, source_name)
            volume_id = driver.snapshot(snapshot_id, readonly=False, name=source_name, no_retry=True)

        logger.info("Restored snapshot %s to volume %s", snapshot_id, volume_id)
        return volume_id

    def delete_snapshot(self, snapshot_id: str) -> None:
        with self.session.volume_driver() as driver:
            driver.delete(snapshot_id)
        logger.info("Deleted local snapshot %s", snapshot_id)


def _inspect_one(volumes: list[PortworxVolume], *, kind: str, object_id: str) -> PortworxVolume:
    if not volumes:
        raise NotFoundError(f"{kind} {object_id} not found")
    return volumes[0]
