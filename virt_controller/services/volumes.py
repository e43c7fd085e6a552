"""
virt_controller/services/volumes.py
────────────────────────────────────
Volume classifier: turns guest volumes into pod volumes, mounts and devices.

What this is
─────────────
Every guest volume ends up in exactly one of three places on the compute
container:

  block device  → claim in Block mode, exposed at /dev/<volume-name>
  mount         → everything file-backed (filesystem claims, host disks,
                  config maps, secrets, ...)
  nothing       → registry disks; a staging container copies those
                  (see registry_disk.py), we only record their pull secret

plus at most one pod-level volume source. A volume is never both mounted
and attached as a device.

How it works
─────────────
Each source kind has its own handler returning a ``VolumeLayout`` delta.
``classify_volumes`` folds the deltas left to right into one accumulator.
Handlers never see each other's output, so each can be tested alone.

  handler(volume, ctx) → VolumeLayout(mounts, volumes, devices, pull_secrets)
  layout = layout.merge(delta)

Errors abort the whole fold: no partial layout is returned.
"""

from __future__ import annotations

import logging
import posixpath
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, Optional, Tuple

from kubernetes.client import (
    V1ConfigMapVolumeSource,
    V1HostPathVolumeSource,
    V1LocalObjectReference,
    V1PersistentVolumeClaimVolumeSource,
    V1SecretVolumeSource,
    V1Volume,
    V1VolumeDevice,
    V1VolumeMount,
)

from virt_controller.shared.models import HostDiskType, Volume
from virt_controller.shared.stores import Store, object_key

logger = logging.getLogger(__name__)

PRIVATE_DISK_DIR = "/var/run/kubevirt-private/vmi-disks"
CONFIG_MAP_SOURCE_DIR = "/var/run/kubevirt-private/config-map"
SECRET_SOURCE_DIR = "/var/run/kubevirt-private/secret"

_HOST_PATH_TYPES = {
    HostDiskType.DISK: "Directory",
    HostDiskType.DISK_OR_CREATE: "DirectoryOrCreate",
}


# ── Errors ────────────────────────────────────────────────────────────────────

class VolumeError(Exception):
    """Base class for volume classification failures."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class ClaimLookupError(VolumeError):
    """The claim store failed. Not retried here; the caller requeues."""


class ClaimNotFoundError(VolumeError):
    """
    A volume references a PersistentVolumeClaim that does not exist.

    User-actionable: the VMI will not start until the claim is created.

    Attributes:
        namespace:  Namespace the claim was looked up in.
        claim_name: Name of the missing claim.
    """

    def __init__(self, namespace: str, claim_name: str) -> None:
        self.namespace = namespace
        self.claim_name = claim_name
        super().__init__(f"didn't find PVC {claim_name}")


# ── Accumulator ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class VolumeLayout:
    """
    Pod-side volume wiring produced by the classifier.

    Immutable; ``merge`` returns a new layout. Pull secrets are
    de-duplicated by name, first occurrence wins.
    """
    mounts: Tuple[V1VolumeMount, ...] = ()
    volumes: Tuple[V1Volume, ...] = ()
    devices: Tuple[V1VolumeDevice, ...] = ()
    pull_secrets: Tuple[V1LocalObjectReference, ...] = ()

    def merge(self, other: "VolumeLayout") -> "VolumeLayout":
        secrets = self.pull_secrets
        for secret in other.pull_secrets:
            secrets = append_unique_pull_secret(secrets, secret.name)
        return VolumeLayout(
            mounts=self.mounts + other.mounts,
            volumes=self.volumes + other.volumes,
            devices=self.devices + other.devices,
            pull_secrets=secrets,
        )


def append_unique_pull_secret(
    secrets: Tuple[V1LocalObjectReference, ...],
    name: str,
) -> Tuple[V1LocalObjectReference, ...]:
    if not name or any(s.name == name for s in secrets):
        return secrets
    return secrets + (V1LocalObjectReference(name=name),)


@dataclass(frozen=True)
class ClaimInfo:
    claim: object
    is_block: bool


@dataclass(frozen=True)
class _Context:
    namespace: str
    claim_store: Store


# ── Claim lookup ──────────────────────────────────────────────────────────────

def lookup_claim(store: Store, namespace: str, claim_name: str) -> Optional[ClaimInfo]:
    """
    Find a claim in the store and report whether it is in Block mode.

    Returns None if the claim does not exist.

    Raises:
        ClaimLookupError: the store raised.
    """
    try:
        claim = store.get_by_key(object_key(namespace, claim_name))
    except Exception as exc:
        logger.error("error getting PVC: %s", claim_name)
        raise ClaimLookupError(f"error getting PVC {claim_name}: {exc}") from exc

    if claim is None:
        return None

    spec = getattr(claim, "spec", None)
    volume_mode = getattr(spec, "volume_mode", None) if spec is not None else None
    return ClaimInfo(claim=claim, is_block=volume_mode == "Block")


# ── Per-source handlers ───────────────────────────────────────────────────────

def _private_mount(volume: Volume) -> V1VolumeMount:
    return V1VolumeMount(
        name=volume.name,
        mount_path=posixpath.join(PRIVATE_DISK_DIR, volume.name),
    )


def _claim_volume(name: str, claim_name: str, read_only: bool = False) -> V1Volume:
    return V1Volume(
        name=name,
        persistent_volume_claim=V1PersistentVolumeClaimVolumeSource(
            claim_name=claim_name,
            read_only=read_only or None,
        ),
    )


def _persistent_volume_claim(volume: Volume, ctx: _Context) -> VolumeLayout:
    source = volume.persistent_volume_claim
    info = lookup_claim(ctx.claim_store, ctx.namespace, source.claim_name)
    if info is None:
        logger.error("didn't find PVC %s", source.claim_name)
        raise ClaimNotFoundError(ctx.namespace, source.claim_name)

    pod_volume = _claim_volume(volume.name, source.claim_name, source.read_only)
    if info.is_block:
        device = V1VolumeDevice(
            name=volume.name,
            device_path=posixpath.join("/dev", volume.name),
        )
        return VolumeLayout(devices=(device,), volumes=(pod_volume,))
    return VolumeLayout(mounts=(_private_mount(volume),), volumes=(pod_volume,))


def _ephemeral(volume: Volume, ctx: _Context) -> VolumeLayout:
    inner = volume.ephemeral.persistent_volume_claim
    return VolumeLayout(
        mounts=(_private_mount(volume),),
        volumes=(_claim_volume(volume.name, inner.claim_name, inner.read_only),),
    )


def _registry_disk(volume: Volume, ctx: _Context) -> VolumeLayout:
    return VolumeLayout(
        pull_secrets=append_unique_pull_secret((), volume.registry_disk.image_pull_secret),
    )


def _host_disk(volume: Volume, ctx: _Context) -> VolumeLayout:
    source = volume.host_disk
    directory = posixpath.dirname(source.path)
    return VolumeLayout(
        mounts=(V1VolumeMount(name=volume.name, mount_path=directory),),
        volumes=(V1Volume(
            name=volume.name,
            host_path=V1HostPathVolumeSource(
                path=directory,
                type=_HOST_PATH_TYPES[source.type],
            ),
        ),),
    )


def _data_volume(volume: Volume, ctx: _Context) -> VolumeLayout:
    # a DataVolume always owns a claim of the same name
    return VolumeLayout(
        mounts=(_private_mount(volume),),
        volumes=(_claim_volume(volume.name, volume.data_volume.name),),
    )


def _config_map(volume: Volume, ctx: _Context) -> VolumeLayout:
    source = volume.config_map
    return VolumeLayout(
        mounts=(V1VolumeMount(
            name=volume.name,
            mount_path=posixpath.join(CONFIG_MAP_SOURCE_DIR, volume.name),
            read_only=True,
        ),),
        volumes=(V1Volume(
            name=volume.name,
            config_map=V1ConfigMapVolumeSource(name=source.name, optional=source.optional),
        ),),
    )


def _secret(volume: Volume, ctx: _Context) -> VolumeLayout:
    source = volume.secret
    return VolumeLayout(
        mounts=(V1VolumeMount(
            name=volume.name,
            mount_path=posixpath.join(SECRET_SOURCE_DIR, volume.name),
            read_only=True,
        ),),
        volumes=(V1Volume(
            name=volume.name,
            secret=V1SecretVolumeSource(secret_name=source.secret_name, optional=source.optional),
        ),),
    )


_HANDLERS: Dict[str, Callable[[Volume, _Context], VolumeLayout]] = {
    "persistent_volume_claim": _persistent_volume_claim,
    "ephemeral": _ephemeral,
    "registry_disk": _registry_disk,
    "host_disk": _host_disk,
    "data_volume": _data_volume,
    "config_map": _config_map,
    "secret": _secret,
}


# ── Entry point ───────────────────────────────────────────────────────────────

def classify_volume(volume: Volume, namespace: str, claim_store: Store) -> VolumeLayout:
    """Classify a single volume. Raises VolumeError subclasses."""
    return _HANDLERS[volume.source_kind](volume, _Context(namespace, claim_store))


def classify_volumes(
    volumes: Iterable[Volume],
    namespace: str,
    claim_store: Store,
    initial: Optional[VolumeLayout] = None,
) -> VolumeLayout:
    """
    Fold every guest volume into a single VolumeLayout.

    Args:
        volumes:     Guest volumes in declaration order.
        namespace:   Namespace claims are looked up in.
        claim_store: Store of PersistentVolumeClaims.
        initial:     Layout to start from (e.g. the launcher's own mounts).

    Raises:
        ClaimLookupError:   the claim store failed.
        ClaimNotFoundError: a referenced claim does not exist.
    """
    layout = initial if initial is not None else VolumeLayout()
    for volume in volumes:
        layout = layout.merge(classify_volume(volume, namespace, claim_store))
    return layout
