"""
Transactional, key-sorted storage used by the job queue and scheduler.
"""

from jobengine.config.settings import KVBackend, Settings
from jobengine.infra.kv.base import AtomicOperation, CommitResult, Entry, KeyValueStore
from jobengine.infra.kv.memory import MemoryKeyValueStore

__all__ = [
    "AtomicOperation",
    "CommitResult",
    "Entry",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "open_store",
]


async def open_store(settings: Settings) -> KeyValueStore:
    """Open the configured store and return a ready handle."""
    if settings.kv_backend == KVBackend.MEMORY:
        return MemoryKeyValueStore()

    from jobengine.infra.database import Database
    from jobengine.infra.kv.sql import SqlKeyValueStore

    return await SqlKeyValueStore.open(Database(settings))
