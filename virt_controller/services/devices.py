"""
virt_controller/services/devices.py
────────────────────────────────────
Capabilities and device-plugin resources of the compute container.

Capabilities
─────────────
  NET_ADMIN → the launcher plugs guest NICs into the pod network.
              Needed unless pod-interface auto-attach is explicitly
              disabled AND the guest declares no interfaces.
  SYS_NICE  → dedicated CPU only; lets the launcher set vCPU affinity.

Device-plugin resources (all quantity 1, placed in limits)
───────────────────────────────────────────────────────────
  tun        → unless pod-interface auto-attach is explicitly disabled.
  vhost-net  → when emulation is off and at least one interface uses the
               default or "virtio" model.
  kvm        → when emulation is off. With emulation on the launcher gets
               --use-emulation instead (see template.py).
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Dict, List

from virt_controller.shared.models import VirtualMachineInstance

logger = logging.getLogger(__name__)

KVM_DEVICE = "devices.kubevirt.io/kvm"
TUN_DEVICE = "devices.kubevirt.io/tun"
VHOST_NET_DEVICE = "devices.kubevirt.io/vhost-net"

CAP_NET_ADMIN = "NET_ADMIN"
CAP_SYS_NICE = "SYS_NICE"

_VHOST_MODELS = ("", "virtio")


def required_capabilities(vmi: VirtualMachineInstance) -> List[str]:
    capabilities: List[str] = []
    if vmi.spec.domain.devices.interfaces or vmi.pod_interface_autoattach:
        capabilities.append(CAP_NET_ADMIN)
    if vmi.is_cpu_dedicated:
        capabilities.append(CAP_SYS_NICE)
    return capabilities


def required_device_resources(vmi: VirtualMachineInstance, use_emulation: bool) -> Dict[str, Decimal]:
    """
    Device-plugin resource limits for the compute container.

    Args:
        vmi:           The instance being rendered.
        use_emulation: Cluster policy from policy.is_emulation_allowed().
    """
    resources: Dict[str, Decimal] = {}
    if vmi.pod_interface_autoattach:
        resources[TUN_DEVICE] = Decimal(1)

    if not use_emulation:
        if any(iface.model in _VHOST_MODELS for iface in vmi.spec.domain.devices.interfaces):
            resources[VHOST_NET_DEVICE] = Decimal(1)
        resources[KVM_DEVICE] = Decimal(1)

    logger.debug(
        "VMI %s/%s device resources: %s",
        vmi.metadata.namespace, vmi.metadata.name, sorted(resources),
    )
    return resources
