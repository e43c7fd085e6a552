"""
virt_controller/services/hooks.py
──────────────────────────────────
Hook sidecars: user-supplied containers that talk to the launcher over a
shared socket directory and may rewrite the domain before it starts.

Declaration
────────────
Sidecars are requested through a VMI annotation holding a JSON list:

    hooks.kubevirt.io/hookSidecars: '[{"image": "reg/hook:v1",
                                       "imagePullPolicy": "IfNotPresent"}]'

Injection
──────────
Each declaration becomes a container ``hook-sidecar-<i>`` mounting the
``hook-sidecar-sockets`` empty dir at /var/run/kubevirt-hooks. The compute
container mounts the same directory (see template.py).

Sidecars declare no resources of their own. In a dedicated-CPU pod every
container must have limits for the pod to stay Guaranteed, so they get a
small fixed limit.
"""

from __future__ import annotations

from typing import List, Optional

from kubernetes.client import (
    V1Container,
    V1EmptyDirVolumeSource,
    V1ResourceRequirements,
    V1Volume,
    V1VolumeMount,
)
from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from virt_controller.shared.models import (
    HOOK_SIDECARS_ANNOTATION,
    ObjectMeta,
    PullPolicy,
    VirtualMachineInstance,
)
from virt_controller.services.resources import sidecar_limits

HOOK_SOCKETS_SHARED_DIRECTORY = "/var/run/kubevirt-hooks"
HOOK_SOCKETS_VOLUME = "hook-sidecar-sockets"

SIDECAR_CPU_LIMIT = "200m"
SIDECAR_MEMORY_LIMIT = "64M"


class SidecarParseError(Exception):
    """
    Raised when the hook sidecar annotation cannot be parsed.

    Attributes:
        reason: Human-readable explanation of the parse failure.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class HookSidecar(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    image: str = Field(..., min_length=1)
    image_pull_policy: Optional[PullPolicy] = Field(None, alias="imagePullPolicy")

    @field_validator("image_pull_policy", mode="before")
    @classmethod
    def _empty_policy_is_unset(cls, value):
        # "" leaves the choice to the cluster default
        return value or None


_SIDECAR_LIST = TypeAdapter(List[HookSidecar])


def parse_hook_sidecars(metadata: ObjectMeta) -> List[HookSidecar]:
    """
    Read the requested hook sidecars from VMI metadata.

    Returns an empty list when the annotation is absent.

    Raises:
        SidecarParseError: the annotation is not a JSON list of sidecars.
    """
    raw = metadata.annotations.get(HOOK_SIDECARS_ANNOTATION)
    if raw is None:
        return []
    try:
        return _SIDECAR_LIST.validate_json(raw)
    except ValidationError as exc:
        raise SidecarParseError(
            f"invalid {HOOK_SIDECARS_ANNOTATION} annotation on "
            f"{metadata.namespace}/{metadata.name}: {exc}"
        ) from exc


def hook_sockets_mount() -> V1VolumeMount:
    return V1VolumeMount(name=HOOK_SOCKETS_VOLUME, mount_path=HOOK_SOCKETS_SHARED_DIRECTORY)


def hook_sockets_volume() -> V1Volume:
    return V1Volume(name=HOOK_SOCKETS_VOLUME, empty_dir=V1EmptyDirVolumeSource())


def sidecar_containers(vmi: VirtualMachineInstance, sidecars: List[HookSidecar]) -> List[V1Container]:
    containers = []
    for i, sidecar in enumerate(sidecars):
        policy = sidecar.image_pull_policy
        containers.append(V1Container(
            name=f"hook-sidecar-{i}",
            image=sidecar.image,
            image_pull_policy=policy.value if policy is not None else None,
            resources=V1ResourceRequirements(
                limits=sidecar_limits(vmi, SIDECAR_CPU_LIMIT, SIDECAR_MEMORY_LIMIT),
            ),
            volume_mounts=[hook_sockets_mount()],
        ))
    return containers
