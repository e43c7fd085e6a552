"""
virt_controller/services — VMI → launcher pod rendering.

Public API:

    TemplateService            — render_launch_manifest(vmi) → V1Pod
    TemplateServiceConfig      — launcher image, shared dirs, pull secret

    Errors (all abort the render):
        ClaimLookupError           — claim store failed
        ClaimNotFoundError         — referenced claim does not exist
        ConfigLookupError          — config store failed
        InvalidConfigurationError  — bad value in the kubevirt config map
        SidecarParseError          — bad hook sidecar annotation

    Stage helpers (usable on their own):
        classify_volumes()         — volumes.py
        build_resource_envelope()  — resources.py
        memory_overhead()          — resources.py
        required_capabilities()    — devices.py
        required_device_resources()— devices.py
        ports_from_vmi()           — network.py
        multus_networks()          — network.py
        parse_hook_sidecars()      — hooks.py
"""

from virt_controller.shared.config import TemplateServiceConfig
from virt_controller.services.volumes import (
    ClaimLookupError,
    ClaimNotFoundError,
    VolumeLayout,
    classify_volumes,
)
from virt_controller.services.resources import (
    ResourceEnvelope,
    build_resource_envelope,
    memory_overhead,
)
from virt_controller.services.devices import (
    required_capabilities,
    required_device_resources,
)
from virt_controller.services.network import multus_networks, ports_from_vmi
from virt_controller.services.policy import (
    ConfigLookupError,
    InvalidConfigurationError,
    get_image_pull_policy,
    is_emulation_allowed,
)
from virt_controller.services.hooks import HookSidecar, SidecarParseError, parse_hook_sidecars
from virt_controller.services.template import TemplateService

__all__ = [
    "TemplateService",
    "TemplateServiceConfig",
    "ClaimLookupError",
    "ClaimNotFoundError",
    "ConfigLookupError",
    "InvalidConfigurationError",
    "SidecarParseError",
    "VolumeLayout",
    "classify_volumes",
    "ResourceEnvelope",
    "build_resource_envelope",
    "memory_overhead",
    "required_capabilities",
    "required_device_resources",
    "ports_from_vmi",
    "multus_networks",
    "get_image_pull_policy",
    "is_emulation_allowed",
    "HookSidecar",
    "parse_hook_sidecars",
]
