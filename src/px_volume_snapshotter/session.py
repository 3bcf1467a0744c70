from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import timedelta
import os
import time

import jwt

from ._logging import get_logger
from .config import SessionConfig
from .driver import VolumeDriverClient
from .errors import ControlPlaneConnectionError, EndpointUnavailableError, SigningError
from .k8s import KubernetesClients, load_kubernetes_clients, read_secret_value, resolve_service_endpoint
from .models import CredentialClaim

logger = get_logger(__name__)

# Must stay unique across every account that talks to the storage cluster.
CLIENT_UNIQUE_ID = "velero-portworx-plugin"
CLIENT_NAME = "Velero"
USER_ROLES = ("system.user",)
ADMIN_ROLES = ("system.admin",)
ALL_GROUPS = ("*",)
DEFAULT_TOKEN_EXPIRY = timedelta(hours=1)
ISSUED_AT_SKEW = timedelta(minutes=1)
SIGNING_ALGORITHM = "HS256"


class ClientSession:
    def __init__(
        self,
        config: SessionConfig,
        *,
        kube_clients_loader: Callable[[], KubernetesClients] | None = None,
    ) -> None:
        self.config = config
        self._kube_clients_loader = kube_clients_loader or self._load_kube_clients
        self._kube_clients: KubernetesClients | None = None
        self._endpoint: str | None = None
        self._shared_secret: str | None = config.shared_secret

    @property
    def auth_enabled(self) -> bool:
        return bool(self._shared_secret)

    def initialize(self) -> None:
        if not self._shared_secret and self.config.secret_name:
            self._shared_secret = self._resolve_shared_secret()
        endpoint = self.resolve_endpoint()
        logger.info(
            "Storage control plane at %s (tls=%s, auth=%s)",
            endpoint,
            self.config.tls.enabled,
            "shared-secret" if self.auth_enabled else "none",
        )

    def resolve_endpoint(self) -> str:
        if self._endpoint is not None:
            return self._endpoint

        if self.config.endpoint:
            self._endpoint = self.config.endpoint
            return self._endpoint

        clients = self._clients()
        endpoint = resolve_service_endpoint(
            clients.core_api,
            name=self.config.service_name,
            namespace=self.config.namespace,
        )
        if not endpoint:
            raise EndpointUnavailableError(
                f"no address for service '{self.config.namespace}/{self.config.service_name}'"
            )
        self._endpoint = endpoint
        return endpoint

    def issue_token(self, roles: Iterable[str], expiry: timedelta = DEFAULT_TOKEN_EXPIRY) -> str:
        """Mint a signed access token for ``roles``.

        Returns an empty string when no shared secret is configured, which
        means the control plane is used without authentication.
        """
        if not self._shared_secret:
            return ""

        now = int(time.time())
        issuer = self.config.jwt_issuer
        claim = CredentialClaim(
            issuer=issuer,
            subject=f"{issuer}.{CLIENT_UNIQUE_ID}",
            name=CLIENT_NAME,
            roles=tuple(roles),
            groups=ALL_GROUPS,
            issued_at=now - int(ISSUED_AT_SKEW.total_seconds()),
            expires_at=now + int(expiry.total_seconds()),
        )
        try:
            return jwt.encode(claim.to_payload(), self._shared_secret, algorithm=SIGNING_ALGORITHM)
        except (jwt.PyJWTError, TypeError, ValueError) as error:
            raise SigningError(f"failed to sign token for roles {list(claim.roles)}: {error}") from error

    def token_generator(self) -> str:
        return self.issue_token(ADMIN_ROLES)

    def get_driver_handle(self, token: str = "") -> VolumeDriverClient:
        endpoint = self.resolve_endpoint()
        tls = self.config.tls
        verify: bool | str = not tls.insecure_skip_verify
        if tls.enabled and tls.ca_cert_path and not tls.insecure_skip_verify:
            ca_path = os.path.expanduser(tls.ca_cert_path)
            if not os.path.isfile(ca_path) or not os.access(ca_path, os.R_OK):
                raise ControlPlaneConnectionError(f"CA bundle is not a readable file: {ca_path}")
            verify = ca_path

        try:
            return VolumeDriverClient(
                endpoint=endpoint,
                token=token,
                use_tls=tls.enabled,
                verify=verify,
                token_refresher=self.token_generator if token else None,
            )
        except Exception as error:  # pylint: disable=broad-except
            raise ControlPlaneConnectionError(f"failed to build control-plane client for {endpoint}: {error}") from error

    def volume_driver(self) -> VolumeDriverClient:
        return self.get_driver_handle(self.issue_token(USER_ROLES))

    def _resolve_shared_secret(self) -> str:
        secret_namespace = self.config.secret_namespace or self.config.namespace
        secret = read_secret_value(
            self._clients().core_api,
            name=self.config.secret_name or "",
            namespace=secret_namespace,
            key=self.config.secret_key,
        )
        logger.info("Loaded shared secret from %s/%s", secret_namespace, self.config.secret_name)
        return secret

    def _clients(self) -> KubernetesClients:
        if self._kube_clients is None:
            self._kube_clients = self._kube_clients_loader()
        return self._kube_clients

    def _load_kube_clients(self) -> KubernetesClients:
        return load_kubernetes_clients(
            kubeconfig_path=self.config.kubeconfig_path,
            context=self.config.context,
            in_cluster=not self.config.kubeconfig_path,
        )
