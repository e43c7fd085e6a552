"""
tests/test_policy.py
─────────────────────
Test suite for virt_controller/services/policy.py

The config map is optional; only malformed values and store failures are
errors.
"""

from __future__ import annotations

from typing import Dict, Optional

import pytest
from kubernetes.client import V1ConfigMap, V1ObjectMeta

from virt_controller.services.policy import (
    ConfigLookupError,
    InvalidConfigurationError,
    get_config_map_entry,
    get_image_pull_policy,
    is_emulation_allowed,
)
from virt_controller.shared.models import PullPolicy
from virt_controller.shared.stores import ObjectStore


def _config_store(data: Optional[Dict[str, str]] = None) -> ObjectStore:
    """Store holding kube-system/kubevirt-config with the given data."""
    return ObjectStore([
        V1ConfigMap(
            metadata=V1ObjectMeta(name="kubevirt-config", namespace="kube-system"),
            data=data,
        ),
    ])


class _FailingStore:
    def get_by_key(self, key: str):
        raise ConnectionError("store unavailable")


class TestEmulation:

    @pytest.mark.parametrize("value", ["true", "True", "TRUE"])
    def test_true_any_case(self, value: str) -> None:
        assert is_emulation_allowed(_config_store({"debug.useEmulation": value})) is True

    @pytest.mark.parametrize("value", ["false", "", "yes", "1"])
    def test_anything_else_is_false(self, value: str) -> None:
        assert is_emulation_allowed(_config_store({"debug.useEmulation": value})) is False

    def test_missing_config_map(self) -> None:
        assert is_emulation_allowed(ObjectStore()) is False

    def test_config_map_without_data(self) -> None:
        assert is_emulation_allowed(_config_store(None)) is False

    def test_store_failure(self) -> None:
        with pytest.raises(ConfigLookupError):
            is_emulation_allowed(_FailingStore())


class TestImagePullPolicy:

    @pytest.mark.parametrize("value, expected", [
        ("Always", PullPolicy.ALWAYS),
        ("Never", PullPolicy.NEVER),
        ("IfNotPresent", PullPolicy.IF_NOT_PRESENT),
    ])
    def test_known_values(self, value: str, expected: PullPolicy) -> None:
        assert get_image_pull_policy(_config_store({"dev.imagePullPolicy": value})) == expected

    def test_default_when_missing(self) -> None:
        assert get_image_pull_policy(ObjectStore()) == PullPolicy.IF_NOT_PRESENT
        assert get_image_pull_policy(_config_store({})) == PullPolicy.IF_NOT_PRESENT
        assert get_image_pull_policy(_config_store({"dev.imagePullPolicy": ""})) == PullPolicy.IF_NOT_PRESENT

    @pytest.mark.parametrize("value", ["always", "Sometimes", "IfNotPresent "])
    def test_invalid_value_raises(self, value: str) -> None:
        with pytest.raises(InvalidConfigurationError) as exc_info:
            get_image_pull_policy(_config_store({"dev.imagePullPolicy": value}))
        assert value in exc_info.value.reason

    def test_store_failure(self) -> None:
        with pytest.raises(ConfigLookupError):
            get_image_pull_policy(_FailingStore())


def test_entry_lookup_returns_raw_value() -> None:
    store = _config_store({"some.key": "value"})
    assert get_config_map_entry(store, "some.key") == "value"
    assert get_config_map_entry(store, "other.key") is None
