"""
virt_controller/services/policy.py
───────────────────────────────────
Policy resolver: cluster-wide flags read from the kubevirt config map.

Two keys matter to the renderer:

  debug.useEmulation   → "true" (any case) allows software emulation.
                         The kvm device is then not requested and the
                         launcher is told to emulate instead.
  dev.imagePullPolicy  → Always | Never | IfNotPresent.
                         Missing or empty → IfNotPresent.
                         Anything else    → InvalidConfigurationError.

A missing config map is not an error: every key falls back to its default.
A store failure is an error and aborts the render.
"""

from __future__ import annotations

import logging
from typing import Optional

from virt_controller.shared.config import (
    CONFIG_MAP_KEY,
    IMAGE_PULL_POLICY_KEY,
    USE_EMULATION_KEY,
)
from virt_controller.shared.models import PullPolicy
from virt_controller.shared.stores import Store

logger = logging.getLogger(__name__)


class ConfigLookupError(Exception):
    """Raised when the config store itself fails (not when a key is absent)."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


class InvalidConfigurationError(Exception):
    """
    Raised when the config map holds a value the renderer cannot use.

    Attributes:
        reason: Human-readable explanation including the offending value.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(reason)


def get_config_map_entry(store: Store, key: str) -> Optional[str]:
    """
    Return the raw value of ``key`` in the kubevirt config map.

    Returns None when the config map or the key is absent.

    Raises:
        ConfigLookupError: the store lookup raised.
    """
    try:
        config_map = store.get_by_key(CONFIG_MAP_KEY)
    except Exception as exc:
        raise ConfigLookupError(
            f"failed to read config map {CONFIG_MAP_KEY}: {exc}"
        ) from exc

    if config_map is None:
        return None
    return (config_map.data or {}).get(key)


def is_emulation_allowed(store: Store) -> bool:
    value = get_config_map_entry(store, USE_EMULATION_KEY)
    return (value or "").lower() == "true"


def get_image_pull_policy(store: Store) -> PullPolicy:
    """
    Resolve the image pull policy for launcher containers.

    Raises:
        InvalidConfigurationError: value is set but is not a known policy.
    """
    value = get_config_map_entry(store, IMAGE_PULL_POLICY_KEY)
    if not value:
        return PullPolicy.IF_NOT_PRESENT

    try:
        return PullPolicy(value)
    except ValueError:
        logger.warning("Invalid %s in config map: %r", IMAGE_PULL_POLICY_KEY, value)
        raise InvalidConfigurationError(
            f"Invalid ImagePullPolicy in ConfigMap: {value}"
        ) from None
