"""
virt_controller/services/template.py
─────────────────────────────────────
TemplateService: renders the virt-launcher pod for a VirtualMachineInstance.

Pipeline
─────────
Strictly one direction; every stage reads the VMI and returns its own piece
of output. This module only wires the pieces together.

  1. policy.py        emulation allowed?  image pull policy?
  2. volumes.py       mounts, pod volumes, block devices, pull secrets
  3. resources.py     requests/limits (overhead, huge pages, dedicated CPU)
  4. devices.py       capabilities + device-plugin limits
  5. network.py       container ports + Multus annotation
  6. hooks.py         hook sidecar containers
  7. here             assemble the V1Pod

Any stage error aborts the render. No partially built pod is ever returned.

Collaborators
──────────────
Disk staging, hostname sanitizing and hook parsing are injectable. The
defaults are the implementations in this package.

Thread safety
──────────────
Stateless per call. The service only reads its config and its two stores,
so one instance can render for many VMIs concurrently as long as nobody
mutates the stores or the VMI being rendered.
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Tuple

from kubernetes.client import (
    V1Affinity,
    V1Capabilities,
    V1Container,
    V1EmptyDirVolumeSource,
    V1ExecAction,
    V1HostPathVolumeSource,
    V1ObjectMeta,
    V1Pod,
    V1PodSecurityContext,
    V1PodSpec,
    V1Probe,
    V1ResourceRequirements,
    V1SecurityContext,
    V1SELinuxOptions,
    V1Toleration,
    V1Volume,
    V1VolumeMount,
)

from virt_controller.shared.config import TemplateServiceConfig
from virt_controller.shared.models import (
    APP_LABEL,
    CPU_MANAGER_LABEL,
    CREATED_BY_LABEL,
    DEFAULT_GRACE_PERIOD_SECONDS,
    DOMAIN_ANNOTATION,
    MULTUS_NETWORKS_ANNOTATION,
    NODE_SCHEDULABLE_LABEL,
    OWNED_BY_ANNOTATION,
    VirtualMachineInstance,
)
from virt_controller.shared.quantity import format_resource_list
from virt_controller.shared.stores import Store
from virt_controller.services import dns, hooks, registry_disk
from virt_controller.services.devices import (
    required_capabilities,
    required_device_resources,
)
from virt_controller.services.network import multus_networks, ports_from_vmi
from virt_controller.services.policy import get_image_pull_policy, is_emulation_allowed
from virt_controller.services.resources import build_resource_envelope, hugepages_layout
from virt_controller.services.volumes import (
    VolumeLayout,
    append_unique_pull_secret,
    classify_volumes,
)

logger = logging.getLogger(__name__)

# ── Launcher constants ────────────────────────────────────────────────────────

LAUNCHER_COMMAND = "/usr/bin/virt-launcher"
COMPUTE_CONTAINER = "compute"
READINESS_FILE = "/tmp/healthy"
QEMU_TIMEOUT = "5m"

EPHEMERAL_DISKS_VOLUME = "ephemeral-disks"
VIRT_SHARE_DIR_VOLUME = "virt-share-dir"
LIBVIRT_RUNTIME_VOLUME = "libvirt-runtime"
LIBVIRT_RUNTIME_DIR = "/var/run/libvirt"

GRACE_PERIOD_PAD_SECONDS = 15
"""Added twice: once for the node agent's teardown, once before force-kill."""

ROOT_USER = 0
SELINUX_TYPE = "spc_t"

DiskStager = Callable[[VirtualMachineInstance, str, str], List[V1Container]]
HostnameSanitizer = Callable[[VirtualMachineInstance], str]
HookParser = Callable[..., List[hooks.HookSidecar]]


def grace_periods(vmi: VirtualMachineInstance) -> Tuple[int, int]:
    """
    Return (launcher grace period, pod termination grace period) in seconds.

    declared (default 30) + 15 is handed to the launcher; the pod is
    force-killed another 15 seconds later.
    """
    declared = vmi.spec.termination_grace_period_seconds
    if declared is None:
        declared = DEFAULT_GRACE_PERIOD_SECONDS
    launcher = declared + GRACE_PERIOD_PAD_SECONDS
    return launcher, launcher + GRACE_PERIOD_PAD_SECONDS


class TemplateService:
    """
    Renders launcher pods.

    Usage:
        service = TemplateService(config, config_store, claim_store)
        pod = service.render_launch_manifest(vmi)   # kubernetes V1Pod

    Raises (from render_launch_manifest):
        ClaimLookupError, ClaimNotFoundError   — volumes.py
        ConfigLookupError, InvalidConfigurationError — policy.py
        SidecarParseError                      — hooks.py
    """

    def __init__(
        self,
        config: TemplateServiceConfig,
        config_store: Store,
        claim_store: Store,
        *,
        disk_stager: Optional[DiskStager] = None,
        hostname_sanitizer: Optional[HostnameSanitizer] = None,
        hook_parser: Optional[HookParser] = None,
    ) -> None:
        self.config = config
        self.config_store = config_store
        self.claim_store = claim_store
        self._disk_stager = disk_stager or registry_disk.generate_containers
        self._hostname_sanitizer = hostname_sanitizer or dns.sanitize_hostname
        self._hook_parser = hook_parser or hooks.parse_hook_sidecars

    # ── Main entrypoint ────────────────────────────────────────────────────────

    def render_launch_manifest(self, vmi: VirtualMachineInstance) -> V1Pod:
        """
        Translate a VMI into the pod that runs it.

        The returned pod is freshly built on every call and shares no
        mutable state with the VMI or with other renders.
        """
        name = vmi.metadata.name
        namespace = vmi.metadata.namespace
        if not name or not namespace:
            raise ValueError("VMI must have a name and a namespace")

        launcher_grace, pod_grace = grace_periods(vmi)

        # ── Volumes ───────────────────────────────────────────────────────────
        layout = classify_volumes(
            vmi.spec.volumes, namespace, self.claim_store,
            initial=VolumeLayout(mounts=self._launcher_mounts()),
        )
        pull_secrets = append_unique_pull_secret(layout.pull_secrets, self.config.image_pull_secret)

        # ── Resources ─────────────────────────────────────────────────────────
        envelope = build_resource_envelope(vmi)
        hugepages = hugepages_layout(vmi)
        if hugepages is not None:
            layout = layout.merge(hugepages)

        # ── Hook sidecars ─────────────────────────────────────────────────────
        sidecars = self._hook_parser(vmi.metadata)
        if sidecars:
            layout = layout.merge(VolumeLayout(
                mounts=(hooks.hook_sockets_mount(),),
                volumes=(hooks.hook_sockets_volume(),),
            ))

        node_selector: Dict[str, str] = {}
        if vmi.is_cpu_dedicated:
            # only nodes running the CPU manager can pin
            node_selector[CPU_MANAGER_LABEL] = "true"

        # ── Cluster policy ────────────────────────────────────────────────────
        use_emulation = is_emulation_allowed(self.config_store)
        pull_policy = get_image_pull_policy(self.config_store)

        envelope = envelope.with_limits(required_device_resources(vmi, use_emulation))

        command = [
            LAUNCHER_COMMAND,
            "--qemu-timeout", QEMU_TIMEOUT,
            "--name", name,
            "--uid", vmi.metadata.uid,
            "--namespace", namespace,
            "--kubevirt-share-dir", self.config.virt_share_dir,
            "--ephemeral-disk-dir", self.config.ephemeral_disk_dir,
            "--readiness-file", READINESS_FILE,
            "--grace-period-seconds", str(launcher_grace),
            "--hook-sidecars", str(len(sidecars)),
        ]
        if use_emulation:
            command.append("--use-emulation")

        capabilities = required_capabilities(vmi)
        logger.debug("VMI %s/%s capabilities: %s", namespace, name, capabilities)

        compute = V1Container(
            name=COMPUTE_CONTAINER,
            image=self.config.launcher_image,
            image_pull_policy=pull_policy.value,
            security_context=V1SecurityContext(
                run_as_user=ROOT_USER,
                privileged=False,
                capabilities=V1Capabilities(add=capabilities),
            ),
            command=command,
            volume_devices=list(layout.devices) or None,
            volume_mounts=list(layout.mounts),
            readiness_probe=V1Probe(
                _exec=V1ExecAction(command=["cat", READINESS_FILE]),
                initial_delay_seconds=2,
                period_seconds=2,
                timeout_seconds=5,
                success_threshold=1,
                failure_threshold=5,
            ),
            resources=V1ResourceRequirements(
                requests=format_resource_list(envelope.requests),
                limits=format_resource_list(envelope.limits),
            ),
            ports=ports_from_vmi(vmi),
        )

        containers = list(self._disk_stager(vmi, EPHEMERAL_DISKS_VOLUME, self.config.ephemeral_disk_dir))
        containers.append(compute)
        containers.extend(hooks.sidecar_containers(vmi, sidecars))

        volumes = list(layout.volumes) + self._launcher_volumes()

        node_selector.update(vmi.spec.node_selector)
        node_selector[NODE_SCHEDULABLE_LABEL] = "true"

        labels = dict(vmi.metadata.labels)
        labels[APP_LABEL] = "virt-launcher"
        labels[CREATED_BY_LABEL] = vmi.metadata.uid

        annotations = {
            DOMAIN_ANNOTATION: name,
            OWNED_BY_ANNOTATION: "virt-controller",
        }
        networks = multus_networks(vmi)
        if networks:
            annotations[MULTUS_NETWORKS_ANNOTATION] = networks

        pod = V1Pod(
            metadata=V1ObjectMeta(
                generate_name=f"virt-launcher-{name}-",
                labels=labels,
                annotations=annotations,
            ),
            spec=V1PodSpec(
                hostname=self._hostname_sanitizer(vmi),
                subdomain=vmi.spec.subdomain or None,
                security_context=V1PodSecurityContext(
                    run_as_user=ROOT_USER,
                    se_linux_options=V1SELinuxOptions(type=SELINUX_TYPE),
                ),
                termination_grace_period_seconds=pod_grace,
                restart_policy="Never",
                containers=containers,
                node_selector=node_selector,
                volumes=volumes,
                image_pull_secrets=list(pull_secrets) or None,
                affinity=self._affinity(vmi),
                tolerations=self._tolerations(vmi),
            ),
        )

        logger.info(
            "Rendered launcher pod for VMI %s/%s (%d containers, %d volumes)",
            namespace, name, len(containers), len(volumes),
        )
        return pod

    # ── Fixed launcher wiring ──────────────────────────────────────────────────

    def _launcher_mounts(self) -> Tuple[V1VolumeMount, ...]:
        return (
            V1VolumeMount(name=EPHEMERAL_DISKS_VOLUME, mount_path=self.config.ephemeral_disk_dir),
            V1VolumeMount(name=VIRT_SHARE_DIR_VOLUME, mount_path=self.config.virt_share_dir),
            V1VolumeMount(name=LIBVIRT_RUNTIME_VOLUME, mount_path=LIBVIRT_RUNTIME_DIR),
        )

    def _launcher_volumes(self) -> List[V1Volume]:
        return [
            V1Volume(
                name=VIRT_SHARE_DIR_VOLUME,
                host_path=V1HostPathVolumeSource(path=self.config.virt_share_dir),
            ),
            V1Volume(name=LIBVIRT_RUNTIME_VOLUME, empty_dir=V1EmptyDirVolumeSource()),
            V1Volume(name=EPHEMERAL_DISKS_VOLUME, empty_dir=V1EmptyDirVolumeSource()),
        ]

    # ── Passthrough ────────────────────────────────────────────────────────────

    @staticmethod
    def _affinity(vmi: VirtualMachineInstance) -> Optional[V1Affinity]:
        affinity = vmi.spec.affinity
        if affinity is None:
            return None
        return V1Affinity(
            node_affinity=affinity.node_affinity,
            pod_affinity=affinity.pod_affinity,
            pod_anti_affinity=affinity.pod_anti_affinity,
        )

    @staticmethod
    def _tolerations(vmi: VirtualMachineInstance) -> Optional[List[V1Toleration]]:
        if vmi.spec.tolerations is None:
            return None
        return [
            V1Toleration(
                key=t.key,
                operator=t.operator,
                value=t.value,
                effect=t.effect,
                toleration_seconds=t.toleration_seconds,
            )
            for t in vmi.spec.tolerations
        ]

    def __repr__(self) -> str:
        return (
            f"TemplateService(launcher_image={self.config.launcher_image!r}, "
            f"virt_share_dir={self.config.virt_share_dir!r}, "
            f"ephemeral_disk_dir={self.config.ephemeral_disk_dir!r})"
        )
