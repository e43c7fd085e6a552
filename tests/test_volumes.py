"""
tests/test_volumes.py
──────────────────────
Test suite for virt_controller/services/volumes.py

Test groups
────────────
Group 1: claim volumes        — block vs filesystem, lookup failures
Group 2: other source kinds   — ephemeral, host disk, data volume, config
                                map, secret, registry disk
Group 3: accumulation         — ordering, pull secret de-duplication,
                                no partial result on error
"""

from __future__ import annotations

from typing import List, Optional

import pytest
from kubernetes.client import (
    V1ObjectMeta,
    V1PersistentVolumeClaim,
    V1PersistentVolumeClaimSpec,
    V1VolumeMount,
)
from pydantic import ValidationError

from virt_controller.services.volumes import (
    ClaimLookupError,
    ClaimNotFoundError,
    VolumeError,
    VolumeLayout,
    append_unique_pull_secret,
    classify_volume,
    classify_volumes,
    lookup_claim,
)
from virt_controller.shared.models import (
    ConfigMapVolumeSource,
    DataVolumeSource,
    EphemeralVolumeSource,
    HostDiskSource,
    HostDiskType,
    PersistentVolumeClaimSource,
    RegistryDiskSource,
    SecretVolumeSource,
    Volume,
)
from virt_controller.shared.stores import ObjectStore


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────

NAMESPACE = "default"


def _make_claim(name: str, volume_mode: Optional[str] = None, namespace: str = NAMESPACE) -> V1PersistentVolumeClaim:
    return V1PersistentVolumeClaim(
        metadata=V1ObjectMeta(name=name, namespace=namespace),
        spec=V1PersistentVolumeClaimSpec(volume_mode=volume_mode),
    )


def _claim_store(*claims: V1PersistentVolumeClaim) -> ObjectStore:
    return ObjectStore(claims)


def _pvc_volume(name: str, claim_name: str) -> Volume:
    return Volume(name=name, persistent_volume_claim=PersistentVolumeClaimSource(claim_name=claim_name))


def _registry_volume(name: str, secret: str = "") -> Volume:
    return Volume(name=name, registry_disk=RegistryDiskSource(image="reg/disk:latest", image_pull_secret=secret))


def _mount_names(layout: VolumeLayout) -> List[str]:
    return [m.name for m in layout.mounts]


class _FailingStore:
    def get_by_key(self, key: str):
        raise RuntimeError("cache not synced")


# ─────────────────────────────────────────────────────────────────────────────
# Group 1: claim volumes
# ─────────────────────────────────────────────────────────────────────────────

class TestClaimVolumes:

    def test_block_claim_becomes_device(self) -> None:
        """Block-mode claim → one device at /dev/<name>, no mount."""
        store = _claim_store(_make_claim("disk-claim", "Block"))
        layout = classify_volume(_pvc_volume("disk0", "disk-claim"), NAMESPACE, store)

        assert len(layout.devices) == 1
        assert layout.devices[0].name == "disk0"
        assert layout.devices[0].device_path == "/dev/disk0"
        assert layout.mounts == ()

    @pytest.mark.parametrize("mode", [None, "Filesystem"])
    def test_filesystem_claim_becomes_mount(self, mode: Optional[str]) -> None:
        """Non-block claim → one mount under the private disk dir, no device."""
        store = _claim_store(_make_claim("disk-claim", mode))
        layout = classify_volume(_pvc_volume("disk0", "disk-claim"), NAMESPACE, store)

        assert layout.devices == ()
        assert len(layout.mounts) == 1
        assert layout.mounts[0].mount_path == "/var/run/kubevirt-private/vmi-disks/disk0"

    @pytest.mark.parametrize("mode", ["Block", "Filesystem"])
    def test_claim_volume_source_references_claim(self, mode: str) -> None:
        store = _claim_store(_make_claim("disk-claim", mode))
        layout = classify_volume(_pvc_volume("disk0", "disk-claim"), NAMESPACE, store)

        assert len(layout.volumes) == 1
        assert layout.volumes[0].name == "disk0"
        assert layout.volumes[0].persistent_volume_claim.claim_name == "disk-claim"

    def test_missing_claim_raises_not_found(self) -> None:
        with pytest.raises(ClaimNotFoundError) as exc_info:
            classify_volume(_pvc_volume("disk0", "nope"), NAMESPACE, _claim_store())
        assert exc_info.value.claim_name == "nope"
        assert exc_info.value.namespace == NAMESPACE
        assert "nope" in exc_info.value.reason

    def test_claim_in_other_namespace_is_not_found(self) -> None:
        """Claims are namespaced: a same-named claim elsewhere does not count."""
        store = _claim_store(_make_claim("disk-claim", "Block", namespace="other"))
        with pytest.raises(ClaimNotFoundError):
            classify_volume(_pvc_volume("disk0", "disk-claim"), NAMESPACE, store)

    def test_store_failure_raises_lookup_error(self) -> None:
        with pytest.raises(ClaimLookupError) as exc_info:
            classify_volume(_pvc_volume("disk0", "disk-claim"), NAMESPACE, _FailingStore())
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    def test_errors_share_a_base_class(self) -> None:
        assert issubclass(ClaimLookupError, VolumeError)
        assert issubclass(ClaimNotFoundError, VolumeError)
        assert not issubclass(ClaimNotFoundError, ClaimLookupError)

    def test_lookup_claim_reports_block_mode(self) -> None:
        store = _claim_store(_make_claim("a", "Block"), _make_claim("b"))
        assert lookup_claim(store, NAMESPACE, "a").is_block is True
        assert lookup_claim(store, NAMESPACE, "b").is_block is False
        assert lookup_claim(store, NAMESPACE, "c") is None


# ─────────────────────────────────────────────────────────────────────────────
# Group 2: other source kinds
# ─────────────────────────────────────────────────────────────────────────────

class TestOtherSources:

    store = _claim_store()

    def test_ephemeral_mounts_inner_claim(self) -> None:
        volume = Volume(
            name="scratch",
            ephemeral=EphemeralVolumeSource(
                persistent_volume_claim=PersistentVolumeClaimSource(claim_name="base", read_only=True),
            ),
        )
        layout = classify_volume(volume, NAMESPACE, self.store)

        assert _mount_names(layout) == ["scratch"]
        assert layout.volumes[0].persistent_volume_claim.claim_name == "base"
        assert layout.volumes[0].persistent_volume_claim.read_only is True

    def test_ephemeral_does_not_consult_store(self) -> None:
        """Ephemeral volumes never look their claim up."""
        volume = Volume(
            name="scratch",
            ephemeral=EphemeralVolumeSource(
                persistent_volume_claim=PersistentVolumeClaimSource(claim_name="base"),
            ),
        )
        layout = classify_volume(volume, NAMESPACE, _FailingStore())
        assert len(layout.mounts) == 1

    @pytest.mark.parametrize("disk_type, path_type", [
        (HostDiskType.DISK, "Directory"),
        (HostDiskType.DISK_OR_CREATE, "DirectoryOrCreate"),
    ])
    def test_host_disk_mounts_parent_directory(self, disk_type: HostDiskType, path_type: str) -> None:
        volume = Volume(name="host", host_disk=HostDiskSource(path="/data/disks/disk.img", type=disk_type))
        layout = classify_volume(volume, NAMESPACE, self.store)

        assert layout.mounts[0].mount_path == "/data/disks"
        assert layout.volumes[0].host_path.path == "/data/disks"
        assert layout.volumes[0].host_path.type == path_type

    def test_data_volume_claim_has_same_name(self) -> None:
        volume = Volume(name="dv-disk", data_volume=DataVolumeSource(name="my-dv"))
        layout = classify_volume(volume, NAMESPACE, self.store)

        assert _mount_names(layout) == ["dv-disk"]
        assert layout.volumes[0].persistent_volume_claim.claim_name == "my-dv"

    def test_config_map_is_read_only(self) -> None:
        volume = Volume(name="cfg", config_map=ConfigMapVolumeSource(name="app-config", optional=True))
        layout = classify_volume(volume, NAMESPACE, self.store)

        mount = layout.mounts[0]
        assert mount.read_only is True
        assert mount.mount_path == "/var/run/kubevirt-private/config-map/cfg"
        assert layout.volumes[0].config_map.name == "app-config"
        assert layout.volumes[0].config_map.optional is True

    def test_secret_is_read_only(self) -> None:
        volume = Volume(name="creds", secret=SecretVolumeSource(secret_name="db-creds"))
        layout = classify_volume(volume, NAMESPACE, self.store)

        mount = layout.mounts[0]
        assert mount.read_only is True
        assert mount.mount_path == "/var/run/kubevirt-private/secret/creds"
        assert layout.volumes[0].secret.secret_name == "db-creds"
        assert layout.volumes[0].secret.optional is None

    def test_registry_disk_only_records_secret(self) -> None:
        """Registry disks produce no mount, volume or device of their own."""
        layout = classify_volume(_registry_volume("rd", secret="regcred"), NAMESPACE, self.store)

        assert layout.mounts == () and layout.volumes == () and layout.devices == ()
        assert [s.name for s in layout.pull_secrets] == ["regcred"]

    def test_registry_disk_without_secret(self) -> None:
        layout = classify_volume(_registry_volume("rd"), NAMESPACE, self.store)
        assert layout.pull_secrets == ()

    def test_volume_needs_exactly_one_source(self) -> None:
        with pytest.raises(ValidationError):
            Volume(name="empty")
        with pytest.raises(ValidationError):
            Volume(
                name="both",
                data_volume=DataVolumeSource(name="dv"),
                secret=SecretVolumeSource(secret_name="s"),
            )


# ─────────────────────────────────────────────────────────────────────────────
# Group 3: accumulation
# ─────────────────────────────────────────────────────────────────────────────

class TestClassifyVolumes:

    def test_order_is_preserved_after_initial(self) -> None:
        initial = VolumeLayout(mounts=(V1VolumeMount(name="fixed", mount_path="/fixed"),))
        store = _claim_store(_make_claim("c1"))
        volumes = [
            _pvc_volume("a", "c1"),
            Volume(name="b", data_volume=DataVolumeSource(name="dv")),
            Volume(name="c", secret=SecretVolumeSource(secret_name="s")),
        ]
        layout = classify_volumes(volumes, NAMESPACE, store, initial=initial)

        assert _mount_names(layout) == ["fixed", "a", "b", "c"]
        assert [v.name for v in layout.volumes] == ["a", "b", "c"]

    def test_never_both_mount_and_device(self) -> None:
        store = _claim_store(_make_claim("blk", "Block"), _make_claim("fs"))
        layout = classify_volumes([_pvc_volume("a", "blk"), _pvc_volume("b", "fs")], NAMESPACE, store)

        device_names = {d.name for d in layout.devices}
        mount_names = set(_mount_names(layout))
        assert device_names == {"a"}
        assert mount_names == {"b"}

    def test_pull_secrets_deduplicated(self) -> None:
        volumes = [
            _registry_volume("rd1", secret="regcred"),
            _registry_volume("rd2", secret="other"),
            _registry_volume("rd3", secret="regcred"),
        ]
        layout = classify_volumes(volumes, NAMESPACE, _claim_store())
        assert [s.name for s in layout.pull_secrets] == ["regcred", "other"]

    def test_append_unique_pull_secret(self) -> None:
        secrets = append_unique_pull_secret((), "a")
        secrets = append_unique_pull_secret(secrets, "a")
        secrets = append_unique_pull_secret(secrets, "")
        assert [s.name for s in secrets] == ["a"]

    def test_error_aborts_without_partial_layout(self) -> None:
        """A missing claim halfway through raises; nothing is returned."""
        store = _claim_store(_make_claim("c1"))
        volumes = [_pvc_volume("a", "c1"), _pvc_volume("b", "missing"), _pvc_volume("c", "c1")]
        with pytest.raises(ClaimNotFoundError):
            classify_volumes(volumes, NAMESPACE, store)

    def test_empty_volume_list(self) -> None:
        assert classify_volumes([], NAMESPACE, _claim_store()) == VolumeLayout()
