"""
virt_controller/services/resources.py
──────────────────────────────────────
Resource envelope builder: requests/limits of the compute container.

What this is
─────────────
The guest declares how much memory and CPU it wants. The pod running it
needs more than that: QEMU, libvirt and the page tables all live in the
same cgroup. This module copies the declared envelope and applies a fixed,
ordered list of adjustment steps to it:

  1. memory overhead     → add the estimated overhead to memory
  2. huge pages          → move guest memory to a hugepages-<size> key;
                           generic memory becomes the overhead alone
  3. dedicated CPU       → request == limit for cpu and memory
                           (Guaranteed QoS, required for CPU pinning)

Steps 1 and 2 are mutually exclusive: exactly one of them runs.

The memory overhead formula
────────────────────────────
  overhead = floor(request_KiB / 512) KiB    page tables
           + 64 MiB                          shared libraries, runtime
           + 8 MiB × max(cores, 1)           per-vCPU tables
           + 8 MiB                           IO thread
           + 16 MiB                          video RAM, unless the graphics
                                             device is explicitly disabled

  Example: 512Mi, 2 cores, graphics on
           1Mi + 64Mi + 16Mi + 8Mi + 16Mi = 105Mi → request 617Mi

The overcommit asymmetry
─────────────────────────
``overcommit_guest_overhead`` keeps the overhead off the memory *request*
but a declared memory *limit* still gets it. The request then tracks real
guest usage while the limit keeps its burst ceiling.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from kubernetes.client import V1EmptyDirVolumeSource, V1Volume, V1VolumeMount

from virt_controller.shared.models import (
    RESOURCE_CPU,
    RESOURCE_HUGEPAGES_PREFIX,
    RESOURCE_MEMORY,
    DomainSpec,
    VirtualMachineInstance,
)
from virt_controller.shared.quantity import KIB, MIB, format_resource_list, parse_resource_list
from virt_controller.services.volumes import VolumeLayout

logger = logging.getLogger(__name__)

HUGEPAGES_VOLUME = "hugepages"
HUGEPAGES_DIR = "/dev/hugepages"

# ── Overhead constants ────────────────────────────────────────────────────────
# Module-level so tests can import and assert against them directly.

PAGETABLE_RATIO = 512
"""One KiB of page tables per 512 KiB of guest RAM."""

FIXED_OVERHEAD = 64 * MIB
PER_CORE_OVERHEAD = 8 * MIB
IOTHREAD_OVERHEAD = 8 * MIB
VIDEO_RAM_OVERHEAD = 16 * MIB


def memory_overhead(domain: DomainSpec) -> Decimal:
    """
    Estimate the memory the pod needs on top of guest RAM, in bytes.

    This is the best estimate available and not exact.
    """
    requested = parse_resource_list(domain.resources.requests).get(RESOURCE_MEMORY, Decimal(0))
    requested_kib = int(requested) // KIB

    overhead = (requested_kib // PAGETABLE_RATIO) * KIB
    overhead += FIXED_OVERHEAD

    cores = domain.cpu.cores if domain.cpu is not None else 0
    overhead += PER_CORE_OVERHEAD * max(cores, 1)

    overhead += IOTHREAD_OVERHEAD

    if domain.devices.autoattach_graphics_device is not False:
        overhead += VIDEO_RAM_OVERHEAD

    return Decimal(overhead)


# ── Envelope ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ResourceEnvelope:
    """
    Requests and limits in exact Decimal units.

    ``limits`` is None when nothing has put a limit on the container yet;
    steps that need a limit create the dict, others leave it None.
    Treat as immutable: steps return a new envelope via ``with_request`` /
    ``with_limit``.
    """
    requests: Mapping[str, Decimal]
    limits: Optional[Mapping[str, Decimal]] = None

    def with_request(self, name: str, value: Decimal) -> "ResourceEnvelope":
        requests = dict(self.requests)
        requests[name] = value
        return replace(self, requests=requests)

    def with_limit(self, name: str, value: Decimal) -> "ResourceEnvelope":
        limits = dict(self.limits or {})
        limits[name] = value
        return replace(self, limits=limits)

    def with_limits(self, extra: Mapping[str, Decimal]) -> "ResourceEnvelope":
        limits = dict(self.limits or {})
        limits.update(extra)
        return replace(self, limits=limits)

    def request(self, name: str) -> Optional[Decimal]:
        return self.requests.get(name)

    def limit(self, name: str) -> Optional[Decimal]:
        return (self.limits or {}).get(name)


def base_envelope(vmi: VirtualMachineInstance) -> ResourceEnvelope:
    """Verbatim copy of the declared requests and limits."""
    declared = vmi.spec.domain.resources
    return ResourceEnvelope(
        requests=parse_resource_list(declared.requests),
        limits=parse_resource_list(declared.limits),
    )


# ── Adjustment steps ──────────────────────────────────────────────────────────

Step = Callable[[ResourceEnvelope, VirtualMachineInstance, Decimal], ResourceEnvelope]


def apply_memory_overhead(
    envelope: ResourceEnvelope,
    vmi: VirtualMachineInstance,
    overhead: Decimal,
) -> ResourceEnvelope:
    """
    Add the overhead to memory. No-op when huge pages are requested.

    Request: +overhead unless overcommit_guest_overhead is set.
    Limit:   +overhead whenever a memory limit was declared.
    """
    if vmi.hugepages is not None:
        return envelope

    request = envelope.request(RESOURCE_MEMORY) or Decimal(0)
    if not vmi.spec.domain.resources.overcommit_guest_overhead:
        request += overhead
    envelope = envelope.with_request(RESOURCE_MEMORY, request)

    limit = envelope.limit(RESOURCE_MEMORY)
    if limit is not None:
        envelope = envelope.with_limit(RESOURCE_MEMORY, limit + overhead)
    return envelope


def apply_hugepages(
    envelope: ResourceEnvelope,
    vmi: VirtualMachineInstance,
    overhead: Decimal,
) -> ResourceEnvelope:
    """
    Back guest memory with huge pages.

    hugepages-<size> request and limit ← original memory request
    memory request and limit           ← overhead only
    """
    hugepages = vmi.hugepages
    if hugepages is None:
        return envelope

    guest_memory = envelope.request(RESOURCE_MEMORY) or Decimal(0)
    key = RESOURCE_HUGEPAGES_PREFIX + hugepages.page_size
    return (
        envelope
        .with_request(key, guest_memory)
        .with_limit(key, guest_memory)
        .with_request(RESOURCE_MEMORY, overhead)
        .with_limit(RESOURCE_MEMORY, overhead)
    )


def apply_dedicated_cpu(
    envelope: ResourceEnvelope,
    vmi: VirtualMachineInstance,
    overhead: Decimal,
) -> ResourceEnvelope:
    """
    Converge cpu and memory to request == limit.

    CPU source, first match wins:
      explicit core count  → both request and limit
      declared cpu limit   → copied to the request
      declared cpu request → copied to the limit
    Memory limit always mirrors the memory request.
    """
    if not vmi.is_cpu_dedicated:
        return envelope

    cores = vmi.spec.domain.cpu.cores
    if cores:
        value = Decimal(cores)
        envelope = envelope.with_request(RESOURCE_CPU, value).with_limit(RESOURCE_CPU, value)
    elif envelope.limit(RESOURCE_CPU) is not None:
        envelope = envelope.with_request(RESOURCE_CPU, envelope.limit(RESOURCE_CPU))
    elif envelope.request(RESOURCE_CPU) is not None:
        envelope = envelope.with_limit(RESOURCE_CPU, envelope.request(RESOURCE_CPU))

    memory = envelope.request(RESOURCE_MEMORY)
    if memory is not None:
        envelope = envelope.with_limit(RESOURCE_MEMORY, memory)
    return envelope


ADJUSTMENT_STEPS: List[Tuple[str, Step]] = [
    ("memory-overhead", apply_memory_overhead),
    ("hugepages", apply_hugepages),
    ("dedicated-cpu", apply_dedicated_cpu),
]


def build_resource_envelope(vmi: VirtualMachineInstance) -> ResourceEnvelope:
    """
    Compute the compute container's resource envelope.

    Device-plugin resources are not included here; devices.py resolves
    them and the assembler adds them to the limits.
    """
    overhead = memory_overhead(vmi.spec.domain)
    logger.debug(
        "VMI %s/%s memory overhead: %s bytes",
        vmi.metadata.namespace, vmi.metadata.name, overhead,
    )

    envelope = base_envelope(vmi)
    for name, step in ADJUSTMENT_STEPS:
        adjusted = step(envelope, vmi, overhead)
        if adjusted is not envelope:
            logger.debug(
                "VMI %s/%s %s: requests=%s limits=%s",
                vmi.metadata.namespace, vmi.metadata.name, name,
                format_resource_list(adjusted.requests), format_resource_list(adjusted.limits),
            )
        envelope = adjusted
    return envelope


def sidecar_limits(vmi: VirtualMachineInstance, cpu: str, memory: str) -> Optional[Dict[str, str]]:
    """Fixed limits for helper containers of a dedicated-CPU pod, else None."""
    if not vmi.is_cpu_dedicated:
        return None
    return {RESOURCE_CPU: cpu, RESOURCE_MEMORY: memory}


def hugepages_layout(vmi: VirtualMachineInstance) -> Optional[VolumeLayout]:
    """HugePages-backed empty dir mounted at /dev/hugepages, if requested."""
    if vmi.hugepages is None:
        return None
    return VolumeLayout(
        mounts=(V1VolumeMount(name=HUGEPAGES_VOLUME, mount_path=HUGEPAGES_DIR),),
        volumes=(V1Volume(
            name=HUGEPAGES_VOLUME,
            empty_dir=V1EmptyDirVolumeSource(medium="HugePages"),
        ),),
    )
