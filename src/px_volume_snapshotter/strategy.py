from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
import threading

from .config import PluginConfig
from .session import ClientSession


class SnapshotStrategy(ABC):
    """Snapshot lifecycle contract shared by the local and cloud variants.

    A strategy is bound to one ``ClientSession`` for its whole lifetime and
    keeps no per-call state, so calls for different volumes may run
    concurrently.
    """

    volume_type: str = ""

    def __init__(self, *, session: ClientSession, config: PluginConfig) -> None:
        self.session = session
        self.config = config

    @abstractmethod
    def initialize(self) -> None:
        ...

    @abstractmethod
    def create_snapshot(
        self,
        volume_id: str,
        zone: str,
        tags: Mapping[str, str],
        *,
        cancel_event: threading.Event | None = None,
    ) -> str:
        """Snapshot ``volume_id`` and return the snapshot id. Not idempotent."""

    @abstractmethod
    def create_volume_from_snapshot(
        self,
        snapshot_id: str,
        volume_type: str,
        zone: str,
        iops: int | None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> str:
        """Materialize a new volume from ``snapshot_id`` and return its id."""

    @abstractmethod
    def delete_snapshot(self, snapshot_id: str) -> None:
        ...

    def describe_volume(self, volume_id: str, zone: str) -> tuple[str, int | None]:
        # The control plane exposes no per-volume IOPS through this path.
        return self.volume_type, None
