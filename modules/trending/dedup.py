"""Admission gate that filters re-observations of already counted messages."""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from typing import Hashable, Optional, Union

__all__ = [
    "DedupGate",
    "Handle",
    "HandleCache",
    "Identity",
    "IdentityCache",
    "SeenEntry",
    "StableId",
]

log = logging.getLogger("hivemind.trending.dedup")


@dataclass(frozen=True)
class StableId:
    """Durable identifier supplied by the source (e.g. a Discord message id)."""

    value: str


@dataclass(frozen=True)
class Handle:
    """Transient source handle, keyed by a producer-assigned surrogate."""

    key: Hashable


Identity = Union[StableId, Handle]


@dataclass(frozen=True)
class SeenEntry:
    signature: str
    ts: int


class IdentityCache:
    """Bounded FIFO of stable ids.

    Eviction follows first-insertion order only. Updating an id that is
    already cached keeps its original position, and lookups never refresh it.
    """

    def __init__(self, limit: int) -> None:
        self.limit = max(1, int(limit))
        self._entries: "OrderedDict[str, SeenEntry]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: str) -> Optional[SeenEntry]:
        return self._entries.get(key)

    def put(self, key: str, entry: SeenEntry) -> None:
        self._entries[key] = entry
        self._evict()

    def resize(self, limit: int) -> None:
        self.limit = max(1, int(limit))
        self._evict()

    def clear(self) -> None:
        self._entries.clear()

    def _evict(self) -> None:
        while len(self._entries) > self.limit:
            evicted, _ = self._entries.popitem(last=False)
            log.debug("identity cache evicted", extra={"identity": evicted})


class HandleCache:
    """Handle-keyed entries owned by the producer.

    Producers call :meth:`forget` when they discard a handle. Entries they
    never release are bounded by ``limit`` and dropped least recently used
    first.
    """

    def __init__(self, limit: int) -> None:
        self.limit = max(1, int(limit))
        self._entries: "OrderedDict[Hashable, SeenEntry]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get(self, key: Hashable) -> Optional[SeenEntry]:
        entry = self._entries.get(key)
        if entry is not None:
            self._entries.move_to_end(key)
        return entry

    def put(self, key: Hashable, entry: SeenEntry) -> None:
        self._entries[key] = entry
        self._entries.move_to_end(key)
        self._evict()

    def forget(self, key: Hashable) -> bool:
        return self._entries.pop(key, None) is not None

    def resize(self, limit: int) -> None:
        self.limit = max(1, int(limit))
        self._evict()

    def clear(self) -> None:
        self._entries.clear()

    def _evict(self) -> None:
        while len(self._entries) > self.limit:
            self._entries.popitem(last=False)


class DedupGate:
    """Decide whether an observation is a new event or a re-render."""

    def __init__(
        self,
        *,
        identity_cache_limit: int = 2000,
        grace_window_ms: int = 120,
        handle_cache_limit: int = 2000,
    ) -> None:
        self.grace_window_ms = max(0, int(grace_window_ms))
        self.identities = IdentityCache(identity_cache_limit)
        self.handles = HandleCache(handle_cache_limit)

    def configure(
        self,
        *,
        identity_cache_limit: int,
        grace_window_ms: int,
        handle_cache_limit: int,
    ) -> None:
        self.grace_window_ms = max(0, int(grace_window_ms))
        self.identities.resize(identity_cache_limit)
        self.handles.resize(handle_cache_limit)

    def should_accept(self, identity: Identity, signature: str, now: int) -> bool:
        """Return ``True`` when ``signature`` from ``identity`` should be counted.

        Stable ids reject an unchanged signature for as long as the id stays
        cached. Handles reject an unchanged signature seen less than twice the
        grace window ago. Accepting refreshes the matching cache entry.
        """

        if isinstance(identity, StableId):
            prev = self.identities.get(identity.value)
            if prev is not None and prev.signature == signature:
                return False
            self.identities.put(identity.value, SeenEntry(signature, now))
            return True

        if isinstance(identity, Handle):
            prev = self.handles.get(identity.key)
            if (
                prev is not None
                and prev.signature == signature
                and (now - prev.ts) < self.grace_window_ms * 2
            ):
                return False
            self.handles.put(identity.key, SeenEntry(signature, now))
            return True

        raise TypeError(f"unsupported identity: {type(identity).__name__}")

    def forget_handle(self, handle: Handle) -> bool:
        return self.handles.forget(handle.key)

    def clear(self) -> None:
        self.identities.clear()
        self.handles.clear()
