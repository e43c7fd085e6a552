"""
virt_controller/shared/config.py
─────────────────────────────────
Static configuration of the template service.

Two kinds of configuration feed the renderer:

  1. Process configuration (this module) — fixed when the controller starts:
     the launcher image, the host directories shared with the node agent,
     and an optional default image pull secret.

  2. Cluster policy — read per render from the ``kube-system/kubevirt-config``
     config map (see services/policy.py). Operators can flip emulation or the
     pull policy without restarting the controller.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

# ── Defaults ──────────────────────────────────────────────────────────────────

DEFAULT_VIRT_SHARE_DIR = "/var/run/kubevirt"
DEFAULT_EPHEMERAL_DISK_DIR = "/var/run/kubevirt-ephemeral-disks"

CONFIG_MAP_KEY = "kube-system/kubevirt-config"
"""Store key of the config map holding cluster policy."""

USE_EMULATION_KEY = "debug.useEmulation"
IMAGE_PULL_POLICY_KEY = "dev.imagePullPolicy"


class TemplateServiceConfig(BaseModel):
    """
    Process-level settings for TemplateService.

    Fields:
        launcher_image      → Image of the compute container. Required.
        virt_share_dir      → Host directory shared with the node agent
                              (sockets, domain state).
        ephemeral_disk_dir  → Directory staging containers copy registry
                              disk images into.
        image_pull_secret   → Default pull secret added to every pod.
                              Empty = none.
    """
    launcher_image: str = Field(..., min_length=1, description="virt-launcher image")
    virt_share_dir: str = Field(DEFAULT_VIRT_SHARE_DIR)
    ephemeral_disk_dir: str = Field(DEFAULT_EPHEMERAL_DISK_DIR)
    image_pull_secret: str = Field("", description="Default image pull secret name")

    model_config = {"frozen": True}
