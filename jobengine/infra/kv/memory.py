"""
In-process key-value store for tests and single-process development.
"""

import bisect
import copy
from collections.abc import AsyncIterator, Sequence
from typing import Any

from jobengine.infra.kv.base import (
    AtomicOperation,
    CommitResult,
    Entry,
    new_versionstamp,
)
from jobengine.infra.kv.keys import Key, encode_key, key_range


class MemoryAtomicOperation(AtomicOperation):
    def __init__(self, store: "MemoryKeyValueStore"):
        super().__init__()
        self._store = store

    async def commit(self) -> CommitResult:
        # No awaits between check and apply: commits are serialized by the loop
        return self._store._apply(self)


class MemoryKeyValueStore:
    """Sorted in-memory map implementing the KeyValueStore protocol."""

    def __init__(self):
        self._data: dict[bytes, Entry] = {}
        self._sorted_keys: list[bytes] = []
        self._closed = False

    def _apply(self, op: AtomicOperation) -> CommitResult:
        for check in op.checks:
            current = self._data.get(encode_key(check.key))
            current_stamp = current.versionstamp if current else None
            if current_stamp != check.versionstamp:
                return CommitResult(ok=False)

        versionstamp = new_versionstamp()
        for mutation in op.mutations:
            encoded = encode_key(mutation.key)
            if mutation.kind == "set":
                if encoded not in self._data:
                    bisect.insort(self._sorted_keys, encoded)
                self._data[encoded] = Entry(
                    mutation.key, copy.deepcopy(mutation.value), versionstamp
                )
            elif encoded in self._data:
                del self._data[encoded]
                index = bisect.bisect_left(self._sorted_keys, encoded)
                del self._sorted_keys[index]
        return CommitResult(ok=True, versionstamp=versionstamp)

    async def get(self, key: Key) -> Entry | None:
        entry = self._data.get(encode_key(tuple(key)))
        if entry is None:
            return None
        return Entry(entry.key, copy.deepcopy(entry.value), entry.versionstamp)

    async def get_many(self, keys: Sequence[Key]) -> list[Entry | None]:
        return [await self.get(key) for key in keys]

    async def set(self, key: Key, value: Any) -> CommitResult:
        return await self.atomic().set(key, value).commit()

    async def delete(self, key: Key) -> None:
        await self.atomic().delete(key).commit()

    async def list(
        self,
        prefix: Key = (),
        start: Key | None = None,
        end: Key | None = None,
        limit: int | None = None,
        reverse: bool = False,
    ) -> AsyncIterator[Entry]:
        low, high = key_range(tuple(prefix), start, end)
        lo_index = bisect.bisect_left(self._sorted_keys, low)
        hi_index = bisect.bisect_left(self._sorted_keys, high)
        # Snapshot so callers may mutate the store while iterating
        snapshot = self._sorted_keys[lo_index:hi_index]
        if reverse:
            snapshot.reverse()

        yielded = 0
        for encoded in snapshot:
            if limit is not None and yielded >= limit:
                return
            entry = self._data.get(encoded)
            if entry is None:
                continue
            yielded += 1
            yield Entry(entry.key, copy.deepcopy(entry.value), entry.versionstamp)

    def atomic(self) -> MemoryAtomicOperation:
        return MemoryAtomicOperation(self)

    async def ping(self) -> None:
        return None

    async def close(self) -> None:
        self._closed = True

    def __len__(self) -> int:
        return len(self._data)
