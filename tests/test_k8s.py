from __future__ import annotations

import base64
from types import SimpleNamespace
from unittest.mock import Mock

import pytest
from kubernetes.client import ApiException

from px_volume_snapshotter.errors import ConfigurationError, EndpointUnavailableError
from px_volume_snapshotter.k8s import (
    KubernetesAuthenticationError,
    SecretResolutionError,
    load_kubernetes_clients,
    read_secret_value,
    resolve_service_endpoint,
)


def _service(*, cluster_ip: str | None, ports: list[SimpleNamespace] | None = None) -> SimpleNamespace:
    return SimpleNamespace(spec=SimpleNamespace(cluster_ip=cluster_ip, ports=ports or []))


def _port(*, name: str, port: int) -> SimpleNamespace:
    return SimpleNamespace(name=name, port=port)


def test_resolve_service_endpoint_with_named_rest_port_returns_cluster_ip_and_port() -> None:
    core_api = Mock()
    core_api.read_namespaced_service.return_value = _service(
        cluster_ip="10.96.4.12",
        ports=[_port(name="px-sdk", port=9020), _port(name="px-api", port=9021)],
    )

    endpoint = resolve_service_endpoint(core_api, name="portworx-service", namespace="kube-system")

    assert endpoint == "10.96.4.12:9021"
    core_api.read_namespaced_service.assert_called_once_with(
        name="portworx-service",
        namespace="kube-system",
        _request_timeout=20,
    )


def test_resolve_service_endpoint_without_named_port_falls_back_to_default_port() -> None:
    core_api = Mock()
    core_api.read_namespaced_service.return_value = _service(cluster_ip="10.96.4.12")

    assert resolve_service_endpoint(core_api, name="portworx-service", namespace="portworx") == "10.96.4.12:9001"


def test_resolve_service_endpoint_with_missing_service_raises_endpoint_unavailable() -> None:
    core_api = Mock()
    core_api.read_namespaced_service.side_effect = ApiException(status=404, reason="Not Found")

    with pytest.raises(EndpointUnavailableError, match="API status 404"):
        resolve_service_endpoint(core_api, name="portworx-service", namespace="kube-system")


def test_resolve_service_endpoint_with_transport_failure_raises_endpoint_unavailable() -> None:
    core_api = Mock()
    core_api.read_namespaced_service.side_effect = OSError("connection refused")

    with pytest.raises(EndpointUnavailableError, match="connection refused"):
        resolve_service_endpoint(core_api, name="portworx-service", namespace="kube-system")


def test_resolve_service_endpoint_with_headless_service_raises_endpoint_unavailable() -> None:
    core_api = Mock()
    core_api.read_namespaced_service.return_value = _service(cluster_ip="None")

    with pytest.raises(EndpointUnavailableError, match="no cluster IP"):
        resolve_service_endpoint(core_api, name="portworx-service", namespace="kube-system")


def test_read_secret_value_decodes_base64_payload() -> None:
    core_api = Mock()
    core_api.read_namespaced_secret.return_value = SimpleNamespace(
        data={"apps-secret": base64.b64encode(b"shared-secret-value\n").decode()}
    )

    value = read_secret_value(core_api, name="px-system-secrets", namespace="portworx", key="apps-secret")

    assert value == "shared-secret-value"


def test_read_secret_value_with_missing_key_raises_configuration_error() -> None:
    core_api = Mock()
    core_api.read_namespaced_secret.return_value = SimpleNamespace(data={"other": "eA=="})

    with pytest.raises(SecretResolutionError, match="no key 'apps-secret'"):
        read_secret_value(core_api, name="px-system-secrets", namespace="portworx", key="apps-secret")


def test_read_secret_value_with_forbidden_secret_raises_configuration_error() -> None:
    core_api = Mock()
    core_api.read_namespaced_secret.side_effect = ApiException(status=403, reason="Forbidden")

    with pytest.raises(ConfigurationError, match="Forbidden"):
        read_secret_value(core_api, name="px-system-secrets", namespace="portworx", key="apps-secret")


def test_load_kubernetes_clients_with_in_cluster_mode_uses_incluster_auth(monkeypatch: pytest.MonkeyPatch) -> None:
    load_incluster_config = Mock()
    load_kube_config = Mock()
    api_client = Mock()
    core_api = Mock()

    monkeypatch.setattr("px_volume_snapshotter.k8s.config.load_incluster_config", load_incluster_config)
    monkeypatch.setattr("px_volume_snapshotter.k8s.config.load_kube_config", load_kube_config)
    monkeypatch.setattr("px_volume_snapshotter.k8s.client.ApiClient", Mock(return_value=api_client))
    monkeypatch.setattr("px_volume_snapshotter.k8s.client.CoreV1Api", Mock(return_value=core_api))

    clients = load_kubernetes_clients(kubeconfig_path=None, context=None, in_cluster=True)

    load_incluster_config.assert_called_once_with()
    load_kube_config.assert_not_called()
    assert clients.api_client is api_client
    assert clients.core_api is core_api


def test_load_kubernetes_clients_with_kubeconfig_mode_expands_path_and_context(monkeypatch: pytest.MonkeyPatch) -> None:
    load_kube_config = Mock()

    monkeypatch.setenv("HOME", "/tmp/pxvs-home")
    monkeypatch.setattr("px_volume_snapshotter.k8s.config.load_kube_config", load_kube_config)
    monkeypatch.setattr("px_volume_snapshotter.k8s.client.ApiClient", Mock(return_value=Mock()))
    monkeypatch.setattr("px_volume_snapshotter.k8s.client.CoreV1Api", Mock(return_value=Mock()))

    load_kubernetes_clients(kubeconfig_path="~/.kube/config", context="dev-cluster", in_cluster=False)

    load_kube_config.assert_called_once_with(config_file="/tmp/pxvs-home/.kube/config", context="dev-cluster")


def test_load_kubernetes_clients_with_invalid_context_raises_authentication_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        "px_volume_snapshotter.k8s.config.load_kube_config",
        Mock(side_effect=RuntimeError("context does not exist")),
    )

    with pytest.raises(KubernetesAuthenticationError, match="context does not exist"):
        load_kubernetes_clients(kubeconfig_path="/etc/velero/kubeconfig", context="missing", in_cluster=False)
