"""
virt_controller/shared/quantity.py
───────────────────────────────────
Resource quantity helpers.

Resource values travel through the renderer as ``Decimal`` so that the
arithmetic in the envelope builder is exact (no float rounding on byte
counts). Parsing is delegated to the kubernetes client; formatting picks
the canonical string form the API server would echo back:

    646971392  → "617Mi"
    2          → "2"
    0.2        → "200m"
    64000000   → "64M"     (also 62500Ki; the shorter form wins)
"""

from __future__ import annotations

from decimal import Decimal
from typing import Dict, Mapping, Optional, Union

from kubernetes.utils import parse_quantity

Quantity = Union[str, int, float, Decimal]

KIB = 1024
MIB = 1024 * KIB

_BINARY_SUFFIXES = [("Ei", 1024 ** 6), ("Pi", 1024 ** 5), ("Ti", 1024 ** 4),
                    ("Gi", 1024 ** 3), ("Mi", 1024 ** 2), ("Ki", 1024)]
_DECIMAL_SUFFIXES = [("E", 1000 ** 6), ("P", 1000 ** 5), ("T", 1000 ** 4),
                     ("G", 1000 ** 3), ("M", 1000 ** 2), ("k", 1000)]


def to_decimal(value: Quantity) -> Decimal:
    """Parse a quantity string (or number) into an exact Decimal."""
    if isinstance(value, Decimal):
        return value
    return parse_quantity(value)


def format_quantity(value: Decimal) -> str:
    """Render a Decimal as the shortest canonical quantity string."""
    if value == 0:
        return "0"
    if value != value.to_integral_value():
        milli = value * 1000
        if milli == milli.to_integral_value():
            return f"{int(milli)}m"
        return str(value.normalize())

    whole = int(value)
    candidates = [
        _largest_suffix(whole, _BINARY_SUFFIXES),
        _largest_suffix(whole, _DECIMAL_SUFFIXES),
        str(whole),
    ]
    # min() keeps the first of equal-length candidates: binary wins ties
    return min(candidates, key=len)


def _largest_suffix(whole: int, suffixes) -> str:
    for suffix, factor in suffixes:
        if whole % factor == 0:
            return f"{whole // factor}{suffix}"
    return str(whole)


def parse_resource_list(resources: Optional[Mapping[str, Quantity]]) -> Optional[Dict[str, Decimal]]:
    """Parse every entry of a resource list; ``None`` stays ``None``."""
    if resources is None:
        return None
    return {name: to_decimal(value) for name, value in resources.items()}


def format_resource_list(resources: Optional[Mapping[str, Decimal]]) -> Optional[Dict[str, str]]:
    if resources is None:
        return None
    return {name: format_quantity(value) for name, value in resources.items()}
