from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass
from pathlib import Path

from kubernetes import client, config
from kubernetes.client import ApiException

from .errors import ConfigurationError, EndpointUnavailableError

DEFAULT_REQUEST_TIMEOUT_SECONDS = 20
REST_PORT_NAME = "px-api"
DEFAULT_REST_PORT = 9001


@dataclass(frozen=True)
class KubernetesClients:
    api_client: client.ApiClient
    core_api: client.CoreV1Api


class KubernetesAuthenticationError(ConfigurationError):
    """Raised when Kubernetes authentication configuration fails."""


class SecretResolutionError(ConfigurationError):
    """Raised when shared-secret material cannot be read from a Kubernetes secret."""


def load_kubernetes_clients(
    *,
    kubeconfig_path: str | None,
    context: str | None,
    in_cluster: bool,
) -> KubernetesClients:
    expanded = _expand_kubeconfig_path(kubeconfig_path)
    try:
        if in_cluster:
            config.load_incluster_config()
        else:
            config.load_kube_config(config_file=expanded, context=context)
    except Exception as error:  # pylint: disable=broad-except
        raise KubernetesAuthenticationError(
            _format_authentication_error(
                in_cluster=in_cluster,
                kubeconfig_path=expanded,
                context=context,
                error=error,
            )
        ) from error

    api_client = client.ApiClient()
    return KubernetesClients(api_client=api_client, core_api=client.CoreV1Api(api_client))


def resolve_service_endpoint(
    core_api: client.CoreV1Api,
    *,
    name: str,
    namespace: str,
    port_name: str = REST_PORT_NAME,
    default_port: int = DEFAULT_REST_PORT,
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS,
) -> str:
    try:
        service = core_api.read_namespaced_service(
            name=name,
            namespace=namespace,
            _request_timeout=request_timeout_seconds,
        )
    except ApiException as error:
        raise EndpointUnavailableError(
            _format_api_exception_message(
                operation=f"read service '{namespace}/{name}'",
                hint="Confirm the storage service exists and RBAC allows get on services.",
                error=error,
            )
        ) from error
    except Exception as error:  # pylint: disable=broad-except
        raise EndpointUnavailableError(
            f"Service lookup failed while trying to read service '{namespace}/{name}': {_error_message(error)}"
        ) from error

    spec = getattr(service, "spec", None)
    cluster_ip = getattr(spec, "cluster_ip", None) if spec is not None else None
    if not cluster_ip or cluster_ip == "None":
        raise EndpointUnavailableError(f"service '{namespace}/{name}' has no cluster IP")

    port = default_port
    for service_port in getattr(spec, "ports", None) or []:
        if getattr(service_port, "name", None) == port_name and getattr(service_port, "port", None):
            port = int(service_port.port)
            break

    return f"{cluster_ip}:{port}"


def read_secret_value(
    core_api: client.CoreV1Api,
    *,
    name: str,
    namespace: str,
    key: str,
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS,
) -> str:
    try:
        secret = core_api.read_namespaced_secret(
            name=name,
            namespace=namespace,
            _request_timeout=request_timeout_seconds,
        )
    except ApiException as error:
        raise SecretResolutionError(
            _format_api_exception_message(
                operation=f"read secret '{namespace}/{name}'",
                hint="Confirm the secret exists and RBAC allows get on secrets.",
                error=error,
            )
        ) from error

    data = getattr(secret, "data", None) or {}
    encoded = data.get(key)
    if not encoded:
        raise SecretResolutionError(f"secret '{namespace}/{name}' has no key '{key}'")

    try:
        decoded = base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as error:
        raise SecretResolutionError(f"secret '{namespace}/{name}' key '{key}' is not valid base64 text") from error
    return decoded.strip()


def _format_api_exception_message(*, operation: str, hint: str, error: ApiException) -> str:
    status = error.status if error.status is not None else "unknown"
    reason = error.reason or "no reason provided"
    return f"Kubernetes lookup failed while trying to {operation}: API status {status} ({reason}). {hint}"


def _expand_kubeconfig_path(kubeconfig_path: str | None) -> str | None:
    if kubeconfig_path is None:
        return None
    stripped = kubeconfig_path.strip()
    if not stripped:
        return None
    return str(Path(stripped).expanduser())


def _format_authentication_error(
    *,
    in_cluster: bool,
    kubeconfig_path: str | None,
    context: str | None,
    error: Exception,
) -> str:
    reason = _error_message(error)
    if in_cluster:
        return (
            "Kubernetes authentication setup failed while loading in-cluster service account credentials: "
            f"{reason}. Ensure the pod has a mounted service account token and Kubernetes service host "
            "environment variables."
        )

    kubeconfig_source = kubeconfig_path or "default kubeconfig search path"
    context_message = f" with context '{context}'" if context else ""
    return (
        "Kubernetes authentication setup failed while loading kubeconfig "
        f"from '{kubeconfig_source}'{context_message}: {reason}. "
        "Verify the kubeconfig path and context are valid."
    )


def _error_message(error: Exception) -> str:
    message = str(error).strip()
    return message or error.__class__.__name__
