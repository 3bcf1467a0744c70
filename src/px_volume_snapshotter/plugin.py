from __future__ import annotations

from collections.abc import Callable, Mapping
import threading
from typing import Any, TypeVar

from kubernetes import client

from ._logging import get_logger
from .cloudsnap import CloudSnapshotStrategy
from .config import TYPE_CLOUD, TYPE_LOCAL, PluginConfig, redact_config
from .errors import NotInitializedError, SnapshotPluginError, UnsupportedSnapshotTypeError
from .identity import get_volume_id, set_volume_id
from .k8s import KubernetesClients
from .localsnap import LocalSnapshotStrategy
from .session import ClientSession
from .strategy import SnapshotStrategy

logger = get_logger(__name__)
T = TypeVar("T")

STRATEGIES: dict[str, type[SnapshotStrategy]] = {
    TYPE_LOCAL: LocalSnapshotStrategy,
    TYPE_CLOUD: CloudSnapshotStrategy,
}


class PortworxSnapshotPlugin:
    """Volume snapshotter entry point called by the backup orchestrator.

    ``initialize`` selects the local or cloud strategy once; every other
    operation forwards to it and fails with ``NotInitializedError`` before that.
    """

    def __init__(self, *, kube_clients_loader: Callable[[], KubernetesClients] | None = None) -> None:
        self._kube_clients_loader = kube_clients_loader
        self.config: PluginConfig | None = None
        self.session: ClientSession | None = None
        self._strategy: SnapshotStrategy | None = None

    @property
    def initialized(self) -> bool:
        return self._strategy is not None

    def initialize(self, config: Mapping[str, str] | None) -> None:
        config = dict(config or {})
        plugin_config = PluginConfig.from_mapping(config)
        strategy_class = STRATEGIES.get(plugin_config.snapshot_type)
        if strategy_class is None:
            message = f"Snapshot type {plugin_config.snapshot_type} not supported"
            logger.error(message)
            raise UnsupportedSnapshotTypeError(message)

        logger.info("Initializing portworx plugin with config %s", redact_config(config))
        session = ClientSession(plugin_config.session, kube_clients_loader=self._kube_clients_loader)
        try:
            session.initialize()
        except SnapshotPluginError as error:
            logger.error("Failed to initialize portworx client: %s", error)
            raise

        strategy = strategy_class(session=session, config=plugin_config)
        strategy.initialize()

        self.config = plugin_config
        self.session = session
        self._strategy = strategy

    def create_snapshot(
        self,
        volume_id: str,
        zone: str,
        tags: Mapping[str, str] | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> str:
        strategy = self._require_strategy()
        return _with_context(
            "create_snapshot",
            volume_id,
            lambda: strategy.create_snapshot(volume_id, zone, tags or {}, cancel_event=cancel_event),
        )

    def create_volume_from_snapshot(
        self,
        snapshot_id: str,
        volume_type: str,
        zone: str,
        iops: int | None = None,
        *,
        cancel_event: threading.Event | None = None,
    ) -> str:
        strategy = self._require_strategy()
        return _with_context(
            "create_volume_from_snapshot",
            snapshot_id,
            lambda: strategy.create_volume_from_snapshot(
                snapshot_id,
                volume_type,
                zone,
                iops,
                cancel_event=cancel_event,
            ),
        )

    def delete_snapshot(self, snapshot_id: str) -> None:
        strategy = self._require_strategy()
        _with_context("delete_snapshot", snapshot_id, lambda: strategy.delete_snapshot(snapshot_id))

    def describe_volume(self, volume_id: str, zone: str) -> tuple[str, int | None]:
        return self._require_strategy().describe_volume(volume_id, zone)

    def get_volume_id(self, descriptor: Mapping[str, Any] | client.V1PersistentVolume) -> str:
        self._require_strategy()
        return get_volume_id(descriptor)

    def set_volume_id(self, descriptor: Mapping[str, Any] | client.V1PersistentVolume, volume_id: str) -> dict[str, Any]:
        self._require_strategy()
        return _with_context("set_volume_id", volume_id, lambda: set_volume_id(descriptor, volume_id))

    def _require_strategy(self) -> SnapshotStrategy:
        if self._strategy is None:
            raise NotInitializedError("portworx plugin used before initialize()")
        return self._strategy


def _with_context(operation: str, object_id: str, func: Callable[[], T]) -> T:
    try:
        return func()
    except SnapshotPluginError as error:
        error.add_note(f"operation={operation} id={object_id}")
        raise
