"""
virt_controller/services/registry_disk.py
──────────────────────────────────────────
Staging containers for registry disks.

A registry disk is a disk image shipped inside a container image. For each
one the pod gets a small container that copies the image into the shared
ephemeral-disk volume, where the launcher picks it up. The container
reports readiness once the copy is done.
"""

from __future__ import annotations

import posixpath
from typing import List

from kubernetes.client import (
    V1Container,
    V1EnvVar,
    V1ExecAction,
    V1Probe,
    V1ResourceRequirements,
    V1VolumeMount,
)

from virt_controller.shared.models import PullPolicy, VirtualMachineInstance
from virt_controller.services.resources import sidecar_limits

STAGING_CPU_LIMIT = "10m"
STAGING_MEMORY_LIMIT = "40M"


def registry_disk_dir(vmi: VirtualMachineInstance, mount_dir: str, volume_name: str) -> str:
    """Directory a given registry disk is copied into."""
    return posixpath.join(
        mount_dir, "registry-disk-data",
        vmi.metadata.namespace, vmi.metadata.name, volume_name,
    )


def generate_containers(
    vmi: VirtualMachineInstance,
    pod_volume_name: str,
    pod_volume_mount_dir: str,
) -> List[V1Container]:
    """
    One staging container per registry-disk volume, in declaration order.

    Args:
        vmi:                  The instance being rendered.
        pod_volume_name:      Name of the shared ephemeral-disk pod volume.
        pod_volume_mount_dir: Where that volume is mounted in every container.
    """
    containers = []
    for volume in vmi.spec.volumes:
        if volume.registry_disk is None:
            continue
        copy_path = posixpath.join(
            registry_disk_dir(vmi, pod_volume_mount_dir, volume.name), "disk-image",
        )
        containers.append(V1Container(
            name=f"volume{volume.name}",
            image=volume.registry_disk.image,
            image_pull_policy=PullPolicy.IF_NOT_PRESENT.value,
            command=["/entry-point.sh"],
            env=[V1EnvVar(name="COPY_PATH", value=copy_path)],
            volume_mounts=[V1VolumeMount(name=pod_volume_name, mount_path=pod_volume_mount_dir)],
            resources=V1ResourceRequirements(
                limits=sidecar_limits(vmi, STAGING_CPU_LIMIT, STAGING_MEMORY_LIMIT),
            ),
            readiness_probe=V1Probe(
                _exec=V1ExecAction(command=["cat", "/tmp/healthy"]),
                initial_delay_seconds=2,
                period_seconds=5,
                timeout_seconds=5,
                success_threshold=2,
                failure_threshold=5,
            ),
        ))
    return containers
