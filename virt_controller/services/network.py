"""
virt_controller/services/network.py
────────────────────────────────────
Network surface of the launcher pod: container ports and the Multus
secondary-network annotation.

Both outputs are omitted (None) rather than empty when there is nothing to
declare. A missing port list means "no explicit ports", not "no network".
"""

from __future__ import annotations

from typing import List, Optional

from kubernetes.client import V1ContainerPort

from virt_controller.shared.models import VirtualMachineInstance

DEFAULT_PROTOCOL = "TCP"


def ports_from_vmi(vmi: VirtualMachineInstance) -> Optional[List[V1ContainerPort]]:
    ports = [
        V1ContainerPort(
            name=port.name or None,
            protocol=port.protocol or DEFAULT_PROTOCOL,
            container_port=port.port,
        )
        for iface in vmi.spec.domain.devices.interfaces
        for port in iface.ports
    ]
    return ports or None


def multus_networks(vmi: VirtualMachineInstance) -> Optional[str]:
    """Comma-joined Multus network names, in declaration order."""
    names = [net.multus.network_name for net in vmi.spec.networks if net.multus is not None]
    return ",".join(names) or None
