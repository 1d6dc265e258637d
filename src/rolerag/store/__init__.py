"""Store domain: Neo4j persistence and chunk search.

Exports are loaded lazily to avoid import cycles between the store and
the chat/profile packages whose schemas it persists.
"""

from __future__ import annotations

from importlib import import_module

__all__ = [
    "Neo4jChunkSearch",
    "Neo4jRecordStore",
    "RecordStore",
    "init_schema",
]


_EXPORT_TO_MODULE = {
    "Neo4jChunkSearch": "rolerag.store.chunks",
    "Neo4jRecordStore": "rolerag.store.records",
    "RecordStore": "rolerag.store.protocols",
    "init_schema": "rolerag.store.schema",
}


def __getattr__(name: str):
    module_name = _EXPORT_TO_MODULE.get(name)
    if module_name is None:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
    module = import_module(module_name)
    return getattr(module, name)
