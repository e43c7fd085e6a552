"""
virt_controller/shared/stores.py
─────────────────────────────────
Read-only object caches consulted during rendering.

The renderer performs two point lookups per call: the cluster policy
config map and, per claim volume, the referenced PersistentVolumeClaim.
Both are served from a local cache kept in sync by an informer that lives
outside this package. The renderer only ever *reads* from it.

Anything with a ``get_by_key(key)`` method satisfies ``Store``. Keys are
``"<namespace>/<name>"``. A lookup failure is raised as an exception; a
missing object is ``None``.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional, Protocol


def object_key(namespace: str, name: str) -> str:
    return f"{namespace}/{name}" if namespace else name


class Store(Protocol):
    def get_by_key(self, key: str) -> Optional[Any]:
        ...


class ObjectStore:
    """
    Dict-backed Store for kubernetes client objects.

    Objects are indexed by ``metadata.namespace`` / ``metadata.name``.
    Populate it up front; the renderer treats it as immutable, which is
    what makes concurrent renders safe without locking.
    """

    def __init__(self, objects: Iterable[Any] = ()) -> None:
        self._items: Dict[str, Any] = {}
        for obj in objects:
            self.add(obj)

    def add(self, obj: Any) -> None:
        meta = obj.metadata
        self._items[object_key(meta.namespace or "", meta.name)] = obj

    def get_by_key(self, key: str) -> Optional[Any]:
        return self._items.get(key)

    def __len__(self) -> int:
        return len(self._items)

    def __repr__(self) -> str:
        return f"ObjectStore(keys={sorted(self._items)})"
