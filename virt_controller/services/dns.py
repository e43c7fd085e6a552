"""
virt_controller/services/dns.py
────────────────────────────────
Hostname of the launcher pod.

The pod hostname is also the guest's DNS name inside the cluster, so it
must be a single DNS label: no dots, at most 63 characters. This is the
default hostname sanitizer; TemplateService accepts a replacement.
"""

from __future__ import annotations

from virt_controller.shared.models import VirtualMachineInstance

MAX_HOSTNAME_LENGTH = 63


def sanitize_hostname(vmi: VirtualMachineInstance) -> str:
    """
    ``spec.hostname`` if set, else the VMI name; dots become dashes and the
    result is cut to a single DNS label.
    """
    hostname = vmi.spec.hostname or vmi.metadata.name
    hostname = hostname.replace(".", "-")
    return hostname[:MAX_HOSTNAME_LENGTH]
