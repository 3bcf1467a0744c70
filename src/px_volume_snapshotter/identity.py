"""Read and write the Portworx volume id inside a PersistentVolume descriptor.

Descriptors are unstructured PersistentVolume mappings using the Kubernetes
API field names. The id lives either in ``spec.csi.volumeHandle`` (CSI
provisioned, only when the CSI driver is Portworx) or in
``spec.portworxVolume.volumeID`` (in-tree provisioner).
"""

from __future__ import annotations

from collections.abc import Mapping
import copy
from typing import Any

from kubernetes import client

from ._logging import get_logger
from .errors import UnrecognizedDescriptorError

logger = get_logger(__name__)

PORTWORX_CSI_DRIVER = "pxd.portworx.com"


def get_volume_id(descriptor: Mapping[str, Any] | client.V1PersistentVolume) -> str:
    """Return the Portworx volume id, or ``""`` when the volume belongs to another platform."""
    spec = _as_mapping(descriptor).get("spec") or {}

    csi = spec.get("csi")
    if csi:
        driver = csi.get("driver") or ""
        if driver == PORTWORX_CSI_DRIVER:
            return csi.get("volumeHandle") or ""
        logger.info("Unable to handle CSI driver: %s", driver)

    legacy = spec.get("portworxVolume")
    if legacy is not None:
        volume_id = (legacy or {}).get("volumeID") or ""
        if not volume_id:
            raise UnrecognizedDescriptorError("portworx volumeID not found")
        return volume_id

    return ""


def set_volume_id(descriptor: Mapping[str, Any] | client.V1PersistentVolume, volume_id: str) -> dict[str, Any]:
    """Return a copy of ``descriptor`` pointing at ``volume_id``. The input is left untouched."""
    updated = copy.deepcopy(dict(_as_mapping(descriptor)))
    spec = updated.get("spec") or {}

    csi = spec.get("csi")
    if csi:
        driver = csi.get("driver") or ""
        if driver != PORTWORX_CSI_DRIVER:
            raise UnrecognizedDescriptorError(f"unable to handle CSI driver: {driver}")
        csi["volumeHandle"] = volume_id
    elif spec.get("portworxVolume") is not None:
        spec["portworxVolume"] = dict(spec["portworxVolume"] or {})
        spec["portworxVolume"]["volumeID"] = volume_id
        metadata = updated.setdefault("metadata", {})
        metadata["name"] = volume_id
    else:
        raise UnrecognizedDescriptorError("spec.csi and spec.portworxVolume not found")

    return updated


def _as_mapping(descriptor: Mapping[str, Any] | client.V1PersistentVolume) -> Mapping[str, Any]:
    if isinstance(descriptor, Mapping):
        return descriptor
    if isinstance(descriptor, client.V1PersistentVolume):
        return client.ApiClient().sanitize_for_serialization(descriptor)
    raise UnrecognizedDescriptorError(f"unsupported descriptor type: {type(descriptor).__name__}")
