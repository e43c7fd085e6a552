"""
virt_controller/shared/models.py
─────────────────────────────────
The single source of truth for the VirtualMachineInstance input model.

Design philosophy
-----------------
Every model answers one question: "What does the renderer *need to know*
about this virtual machine in order to produce a launcher pod?"

The models are read-only input. Nothing in ``virt_controller.services``
mutates them; every stage copies what it needs into its own output.

Reading guide
-------------
Read top-to-bottom. Each model builds on the ones above it.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from virt_controller.shared.quantity import to_decimal


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 1: WELL-KNOWN NAMES
# Label, annotation and resource keys shared with the rest of the cluster.
# ─────────────────────────────────────────────────────────────────────────────

APP_LABEL = "kubevirt.io"
CREATED_BY_LABEL = "kubevirt.io/created-by"
NODE_SCHEDULABLE_LABEL = "kubevirt.io/schedulable"
CPU_MANAGER_LABEL = "cpumanager"

DOMAIN_ANNOTATION = "kubevirt.io/domain"
OWNED_BY_ANNOTATION = "kubevirt.io/owned-by"
MULTUS_NETWORKS_ANNOTATION = "k8s.v1.cni.cncf.io/networks"
HOOK_SIDECARS_ANNOTATION = "hooks.kubevirt.io/hookSidecars"

RESOURCE_CPU = "cpu"
RESOURCE_MEMORY = "memory"
RESOURCE_HUGEPAGES_PREFIX = "hugepages-"

DEFAULT_GRACE_PERIOD_SECONDS = 30


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 2: ENUMERATIONS
# ─────────────────────────────────────────────────────────────────────────────

class HostDiskType(str, Enum):
    """
    Existence policy of a host disk image.

    DISK                → The image (and its directory) must already exist.
    DISK_OR_CREATE      → The directory is created on the node if missing.
    """
    DISK = "Disk"
    DISK_OR_CREATE = "DiskOrCreate"


class PullPolicy(str, Enum):
    ALWAYS = "Always"
    NEVER = "Never"
    IF_NOT_PRESENT = "IfNotPresent"


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 3: DOMAIN MODELS
# CPU, memory and devices of the guest.
# ─────────────────────────────────────────────────────────────────────────────

class ResourceRequirements(BaseModel):
    """
    Requests and limits declared for the guest.

    Values are quantity strings ("512Mi", "2", "200m") keyed by resource
    name, exactly as they would appear on a container.

    Fields:
        requests                  → Always present (may be empty).
        limits                    → None when the user declared no limits.
                                    The renderer never fabricates a memory
                                    limit that was not declared.
        overcommit_guest_overhead → Do not add the memory overhead to the
                                    memory *request*. The limit still gets it.
    """
    requests: Dict[str, str] = Field(default_factory=dict)
    limits: Optional[Dict[str, str]] = Field(
        None,
        description="Declared limits. None = no limits declared."
    )
    overcommit_guest_overhead: bool = Field(
        False,
        description="Skip adding memory overhead to the request (limit unaffected)"
    )

    @field_validator("requests", "limits")
    @classmethod
    def _valid_quantities(cls, value: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
        for name, quantity in (value or {}).items():
            try:
                to_decimal(quantity)
            except (ValueError, ArithmeticError) as exc:
                raise ValueError(f"invalid quantity {quantity!r} for {name}: {exc}") from exc
        return value


class Hugepages(BaseModel):
    page_size: str = Field(..., min_length=1, description="Huge page size, e.g. '2Mi' or '1Gi'")


class Memory(BaseModel):
    hugepages: Optional[Hugepages] = None


class CPU(BaseModel):
    """
    Guest CPU topology.

    cores                    → vCPU count. 0 means "not specified".
    dedicated_cpu_placement  → Pin every vCPU to an exclusive host core.
                               Requires the pod to land in the Guaranteed
                               QoS class (request == limit for cpu and memory).
    """
    cores: int = Field(0, ge=0)
    dedicated_cpu_placement: bool = False


class Port(BaseModel):
    name: str = ""
    protocol: str = Field("", description="TCP/UDP. Empty defaults to TCP.")
    port: int = Field(..., gt=0, lt=65536)


class Interface(BaseModel):
    name: str
    model: str = Field("", description="NIC model. Empty means the default (virtio).")
    ports: List[Port] = Field(default_factory=list)


class Devices(BaseModel):
    """
    Attached devices.

    autoattach_pod_interface    → None (unset) behaves like True.
    autoattach_graphics_device  → None (unset) behaves like True.
    """
    interfaces: List[Interface] = Field(default_factory=list)
    autoattach_pod_interface: Optional[bool] = None
    autoattach_graphics_device: Optional[bool] = None


class DomainSpec(BaseModel):
    resources: ResourceRequirements = Field(default_factory=ResourceRequirements)
    memory: Optional[Memory] = None
    cpu: Optional[CPU] = None
    devices: Devices = Field(default_factory=Devices)


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 4: VOLUME MODELS
# A volume names exactly one source. The classifier dispatches on it.
# ─────────────────────────────────────────────────────────────────────────────

class PersistentVolumeClaimSource(BaseModel):
    claim_name: str = Field(..., min_length=1)
    read_only: bool = False


class EphemeralVolumeSource(BaseModel):
    persistent_volume_claim: PersistentVolumeClaimSource


class RegistryDiskSource(BaseModel):
    image: str = Field(..., min_length=1)
    image_pull_secret: str = ""


class HostDiskSource(BaseModel):
    path: str = Field(..., min_length=1, description="Path of the disk image on the node")
    type: HostDiskType
    capacity: Optional[str] = None


class DataVolumeSource(BaseModel):
    name: str = Field(..., min_length=1)


class ConfigMapVolumeSource(BaseModel):
    name: str = Field(..., min_length=1)
    optional: Optional[bool] = None


class SecretVolumeSource(BaseModel):
    secret_name: str = Field(..., min_length=1)
    optional: Optional[bool] = None


VOLUME_SOURCE_FIELDS = (
    "persistent_volume_claim",
    "ephemeral",
    "registry_disk",
    "host_disk",
    "data_volume",
    "config_map",
    "secret",
)


class Volume(BaseModel):
    """
    A named guest volume.

    Exactly one of the source fields must be set. A volume with none or
    with several sources is rejected at construction time, before any
    rendering happens.
    """
    name: str = Field(..., min_length=1)

    persistent_volume_claim: Optional[PersistentVolumeClaimSource] = None
    ephemeral: Optional[EphemeralVolumeSource] = None
    registry_disk: Optional[RegistryDiskSource] = None
    host_disk: Optional[HostDiskSource] = None
    data_volume: Optional[DataVolumeSource] = None
    config_map: Optional[ConfigMapVolumeSource] = None
    secret: Optional[SecretVolumeSource] = None

    @model_validator(mode="after")
    def _exactly_one_source(self) -> "Volume":
        declared = [f for f in VOLUME_SOURCE_FIELDS if getattr(self, f) is not None]
        if len(declared) != 1:
            raise ValueError(
                f"volume {self.name!r} must declare exactly one source, "
                f"got {declared or 'none'}"
            )
        return self

    @property
    def source_kind(self) -> str:
        """Name of the single declared source field."""
        for f in VOLUME_SOURCE_FIELDS:
            if getattr(self, f) is not None:
                return f
        raise AssertionError("unreachable: validated on construction")


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 5: NETWORK & PLACEMENT MODELS
# ─────────────────────────────────────────────────────────────────────────────

class MultusNetwork(BaseModel):
    network_name: str = Field(..., min_length=1)


class PodNetwork(BaseModel):
    vm_network_cidr: str = ""


class Network(BaseModel):
    """A guest network. ``multus`` binds it to a named secondary attachment."""
    name: str
    pod: Optional[PodNetwork] = None
    multus: Optional[MultusNetwork] = None


class Affinity(BaseModel):
    """
    Scheduling affinity, passed through to the pod verbatim.

    The terms are kept as plain dicts in the Kubernetes wire shape; the
    renderer does not interpret them.
    """
    node_affinity: Optional[Dict[str, Any]] = None
    pod_affinity: Optional[Dict[str, Any]] = None
    pod_anti_affinity: Optional[Dict[str, Any]] = None


class Toleration(BaseModel):
    key: Optional[str] = None
    operator: Optional[str] = None
    value: Optional[str] = None
    effect: Optional[str] = None
    toleration_seconds: Optional[int] = None


# ─────────────────────────────────────────────────────────────────────────────
# SECTION 6: THE VIRTUAL MACHINE INSTANCE
# ─────────────────────────────────────────────────────────────────────────────

class ObjectMeta(BaseModel):
    name: str = Field(..., min_length=1)
    namespace: str = Field(..., min_length=1)
    uid: str = ""
    labels: Dict[str, str] = Field(default_factory=dict)
    annotations: Dict[str, str] = Field(default_factory=dict)


class VirtualMachineInstanceSpec(BaseModel):
    domain: DomainSpec = Field(default_factory=DomainSpec)
    volumes: List[Volume] = Field(default_factory=list)
    networks: List[Network] = Field(default_factory=list)

    node_selector: Dict[str, str] = Field(default_factory=dict)
    affinity: Optional[Affinity] = None
    tolerations: Optional[List[Toleration]] = None

    termination_grace_period_seconds: Optional[int] = Field(None, ge=0)
    hostname: str = ""
    subdomain: str = ""

    @model_validator(mode="after")
    def _unique_volume_names(self) -> "VirtualMachineInstanceSpec":
        seen = set()
        for volume in self.volumes:
            if volume.name in seen:
                raise ValueError(f"duplicate volume name {volume.name!r}")
            seen.add(volume.name)
        return self


class VirtualMachineInstance(BaseModel):
    """
    The declarative virtual machine the renderer translates into a pod.

    Derived properties keep the policy checks in one place so that every
    stage asks the same question the same way.
    """
    metadata: ObjectMeta
    spec: VirtualMachineInstanceSpec = Field(default_factory=VirtualMachineInstanceSpec)

    @property
    def is_cpu_dedicated(self) -> bool:
        cpu = self.spec.domain.cpu
        return cpu is not None and cpu.dedicated_cpu_placement

    @property
    def hugepages(self) -> Optional[Hugepages]:
        memory = self.spec.domain.memory
        return memory.hugepages if memory is not None else None

    @property
    def pod_interface_autoattach(self) -> bool:
        """Unset counts as enabled."""
        return self.spec.domain.devices.autoattach_pod_interface is not False

    @property
    def graphics_device_autoattach(self) -> bool:
        """Unset counts as enabled."""
        return self.spec.domain.devices.autoattach_graphics_device is not False
