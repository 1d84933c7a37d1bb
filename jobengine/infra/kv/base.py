"""
Key-value store contract shared by the in-memory and SQL backends.
"""

import uuid
from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from jobengine.infra.kv.keys import Key


@dataclass(frozen=True)
class Entry:
    """A stored value with the versionstamp of the commit that wrote it."""

    key: Key
    value: Any
    versionstamp: str


@dataclass(frozen=True)
class CommitResult:
    """Outcome of an atomic commit."""

    ok: bool
    versionstamp: str | None = None


@dataclass(frozen=True)
class Check:
    key: Key
    versionstamp: str | None


@dataclass(frozen=True)
class Mutation:
    kind: str  # "set" | "delete"
    key: Key
    value: Any = None


def new_versionstamp() -> str:
    return uuid.uuid4().hex


class AtomicOperation:
    """
    Collects checks and mutations applied by one transactional commit.

    A check passes when the key's current versionstamp equals the expected
    one; an expected versionstamp of None means the key must not exist.
    """

    def __init__(self):
        self.checks: list[Check] = []
        self.mutations: list[Mutation] = []

    def check(self, key_or_entry: Key | Entry, versionstamp: str | None = None) -> "AtomicOperation":
        if isinstance(key_or_entry, Entry):
            self.checks.append(Check(key_or_entry.key, key_or_entry.versionstamp))
        else:
            self.checks.append(Check(tuple(key_or_entry), versionstamp))
        return self

    def set(self, key: Key, value: Any) -> "AtomicOperation":
        self.mutations.append(Mutation("set", tuple(key), value))
        return self

    def delete(self, key: Key) -> "AtomicOperation":
        self.mutations.append(Mutation("delete", tuple(key)))
        return self

    async def commit(self) -> CommitResult:
        raise NotImplementedError


class KeyValueStore(Protocol):
    """Transactional, key-sorted store."""

    async def get(self, key: Key) -> Entry | None:
        ...

    async def get_many(self, keys: Sequence[Key]) -> list[Entry | None]:
        ...

    async def set(self, key: Key, value: Any) -> CommitResult:
        ...

    async def delete(self, key: Key) -> None:
        ...

    def list(
        self,
        prefix: Key = (),
        start: Key | None = None,
        end: Key | None = None,
        limit: int | None = None,
        reverse: bool = False,
    ) -> AsyncIterator[Entry]:
        ...

    def atomic(self) -> AtomicOperation:
        ...

    async def ping(self) -> None:
        ...

    async def close(self) -> None:
        ...
