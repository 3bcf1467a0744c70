"""REST client for the Portworx/OpenStorage volume control API.

Only the calls the snapshot strategies need are implemented. Every method
maps transport failures to ``ControlPlaneConnectionError``, 404 replies to
``NotFoundError`` and any other non-2xx reply to ``ControlPlaneRequestError``.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import requests

from ._logging import get_logger
from .errors import ControlPlaneConnectionError, ControlPlaneRequestError, NotFoundError
from .models import (
    BackupRecord,
    BackupStatus,
    BackupStatusRecord,
    PortworxVolume,
    RestoreRecord,
    parse_backup_status,
)

logger = get_logger(__name__)

API_VERSION = "v1"
VOLUME_PATH = "/osd-volumes"
SNAPSHOT_PATH = "/osd-snapshot"
BACKUP_PATH = f"{VOLUME_PATH}/backup"
USER_AGENT = "px-volume-snapshotter"
DEFAULT_REQUEST_TIMEOUT_SECONDS = 60


class VolumeDriverClient:
    def __init__(
        self,
        *,
        endpoint: str,
        token: str = "",
        use_tls: bool = False,
        verify: bool | str = True,
        token_refresher: Callable[[], str] | None = None,
        request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        http_session: requests.Session | None = None,
    ) -> None:
        scheme = "https" if use_tls else "http"
        self.base_url = f"{scheme}://{endpoint.rstrip('/')}/{API_VERSION}"
        self.request_timeout_seconds = request_timeout_seconds
        self._token_refresher = token_refresher
        self._http = http_session or requests.Session()
        self._http.verify = verify
        self._http.headers.update({"User-Agent": USER_AGENT, "Content-Type": "application/json"})
        self._set_token(token)

    def close(self) -> None:
        self._http.close()

    def __enter__(self) -> VolumeDriverClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def inspect(self, volume_ids: list[str]) -> list[PortworxVolume]:
        payload = self._request("GET", VOLUME_PATH, params={"VolumeID": volume_ids}) or []
        return [_parse_volume(item) for item in payload]

    def snapshot(
        self,
        volume_id: str,
        *,
        readonly: bool,
        name: str,
        labels: dict[str, str] | None = None,
        no_retry: bool = True,
    ) -> str:
        payload = self._request(
            "POST",
            SNAPSHOT_PATH,
            json={
                "id": volume_id,
                "readonly": readonly,
                "locator": {"name": name, "volume_labels": dict(labels or {})},
                "no_retry": no_retry,
            },
        ) or {}
        response = payload.get("volume_create_response") or {}
        error = ((response.get("volume_response") or {}).get("error") or "").strip()
        if error:
            raise ControlPlaneRequestError(f"snapshot of volume {volume_id} failed: {error}")
        snapshot_id = response.get("id") or ""
        if not snapshot_id:
            raise ControlPlaneRequestError(f"snapshot of volume {volume_id} returned no id")
        return snapshot_id

    def delete(self, volume_id: str) -> None:
        payload = self._request("DELETE", f"{VOLUME_PATH}/{volume_id}") or {}
        error = (payload.get("error") or "").strip()
        if error:
            raise ControlPlaneRequestError(f"delete of volume {volume_id} failed: {error}")

    def cloud_backup_create(self, volume_id: str, *, credential_uuid: str, full: bool = True) -> str:
        payload = self._request(
            "POST",
            BACKUP_PATH,
            json={"volume_id": volume_id, "credential_uuid": credential_uuid, "full": full},
        ) or {}
        job_name = payload.get("name") or ""
        if not job_name:
            raise ControlPlaneRequestError(f"cloud backup of volume {volume_id} returned no job name")
        return job_name

    def cloud_backup_enumerate(self, *, credential_uuid: str, backup_id: str = "") -> list[BackupRecord]:
        payload = self._request(
            "POST",
            f"{BACKUP_PATH}/enumerate",
            json={"credential_uuid": credential_uuid, "cloud_backup_id": backup_id},
        ) or {}
        return [_parse_backup(item) for item in payload.get("backups") or []]

    def cloud_backup_restore(self, backup_id: str, *, credential_uuid: str, restore_volume_name: str) -> RestoreRecord:
        payload = self._request(
            "POST",
            f"{BACKUP_PATH}/restore",
            json={
                "id": backup_id,
                "credential_uuid": credential_uuid,
                "restore_volume_name": restore_volume_name,
            },
        ) or {}
        job_name = payload.get("name") or ""
        if not job_name:
            raise ControlPlaneRequestError(f"cloud restore of backup {backup_id} returned no job name")
        return RestoreRecord(job_name=job_name, restore_volume_name=restore_volume_name)

    def cloud_backup_status(self, name: str) -> dict[str, BackupStatusRecord]:
        payload = self._request("POST", f"{BACKUP_PATH}/status", json={"name": name}) or {}
        statuses = payload.get("statuses") or {}
        records: dict[str, BackupStatusRecord] = {}
        for job_name, item in statuses.items():
            try:
                records[job_name] = _parse_status(job_name, item)
            except ControlPlaneRequestError as error:
                if job_name == name:
                    raise
                logger.debug("Skipping status of unrelated job %s: %s", job_name, error)
        return records

    def cloud_backup_delete(self, backup_id: str, *, credential_uuid: str, force: bool = False) -> None:
        self._request(
            "DELETE",
            BACKUP_PATH,
            json={"id": backup_id, "credential_uuid": credential_uuid, "force": force},
        )

    def _set_token(self, token: str) -> None:
        if token:
            self._http.headers["Authorization"] = f"Bearer {token}"
        else:
            self._http.headers.pop("Authorization", None)

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        response = self._send(method, path, **kwargs)
        if response.status_code == 401 and self._token_refresher is not None:
            logger.info("Control plane rejected token for %s %s, re-authenticating", method, path)
            self._set_token(self._token_refresher())
            response = self._send(method, path, **kwargs)

        if response.status_code == 404:
            raise NotFoundError(f"{method} {path} not found: {_response_error(response)}")
        if response.status_code >= 400:
            raise ControlPlaneRequestError(
                f"{method} {path} failed with HTTP {response.status_code}: {_response_error(response)}",
                status=response.status_code,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as error:
            raise ControlPlaneRequestError(
                f"{method} {path} returned a non-JSON body",
                status=response.status_code,
            ) from error

    def _send(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            return self._http.request(method, url, timeout=self.request_timeout_seconds, **kwargs)
        except requests.RequestException as error:
            raise ControlPlaneConnectionError(f"{method} {url} failed: {_error_message(error)}") from error


def _parse_volume(item: dict[str, Any]) -> PortworxVolume:
    locator = item.get("locator") or {}
    return PortworxVolume(
        volume_id=item.get("id") or "",
        name=locator.get("name") or "",
        labels=dict(locator.get("volume_labels") or {}),
    )


def _parse_backup(item: dict[str, Any]) -> BackupRecord:
    return BackupRecord(
        backup_id=item.get("id") or "",
        src_volume_id=item.get("src_volume_id") or "",
        src_volume_name=item.get("src_volume_name") or "",
    )


def _parse_status(job_name: str, item: dict[str, Any]) -> BackupStatusRecord:
    info = item.get("info") or []
    detail = "; ".join(str(line) for line in info) if isinstance(info, list) else str(info)
    return BackupStatusRecord(
        job_name=job_name,
        backup_id=item.get("id") or "",
        operation=item.get("op_type") or "",
        status=_status(item.get("status")),
        src_volume_id=item.get("src_volume_id") or "",
        detail=detail,
    )


def _status(value: Any) -> BackupStatus:
    try:
        return parse_backup_status(value)
    except ValueError as error:
        raise ControlPlaneRequestError(str(error)) from error


def _response_error(response: requests.Response) -> str:
    text = (response.text or "").strip()
    return text or response.reason or "no body"


def _error_message(error: Exception) -> str:
    message = str(error).strip()
    return message or error.__class__.__name__
