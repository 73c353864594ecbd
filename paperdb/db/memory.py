"""
In-process log store with peer-to-peer replication between backends.

Every MemoryLogBackend attached to the same MemoryLogNetwork is a peer.
Handles opened at the same address on different peers replicate each
other's appends: a receiving handle checks the entry's hash and signature
and runs its own access callback before storing it.

Usage:
    network = MemoryLogNetwork()
    alice = MemoryLogBackend(alice_identity, network)
    bob = MemoryLogBackend(bob_identity, network)
    a = await alice.open("/paperdb/<id>/paperdb", access_callback=gate)
    b = await bob.open("/paperdb/<id>/paperdb", access_callback=gate)
    await a.add({"type": "date", "iso8601": "..."})   # b emits "replicated"
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Dict, List, Optional

from paperdb.db.logstore import AccessCallback, LogHandleBase
from paperdb.documents.models import LOGSTORE_TYPE, LogEntry
from paperdb.engine.errors import PaperDBStoreError

logger = logging.getLogger("paperdb.db.memory")


class MemoryLogNetwork:
    """Shared medium connecting in-process peers, keyed by log address."""

    def __init__(self):
        self._handles: Dict[str, List["MemoryLogHandle"]] = {}

    def handles(self, address: str) -> List["MemoryLogHandle"]:
        return [h for h in self._handles.get(address, []) if not h.closed]

    def join(self, handle: "MemoryLogHandle") -> List["MemoryLogHandle"]:
        """Attach *handle*; returns the handles that were already open."""
        existing = self.handles(handle.address)
        self._handles.setdefault(handle.address, []).append(handle)
        return existing

    def leave(self, handle: "MemoryLogHandle") -> None:
        handles = self._handles.get(handle.address, [])
        if handle in handles:
            handles.remove(handle)
        if not handles:
            self._handles.pop(handle.address, None)

    def known(self, address: str) -> bool:
        return bool(self.handles(address))

    async def broadcast(self, sender: "MemoryLogHandle", entries: List[LogEntry]) -> None:
        for handle in self.handles(sender.address):
            if handle is not sender:
                await handle.receive(entries)


class MemoryLogHandle(LogHandleBase):
    """A handle over one log held in a MemoryLogBackend."""

    def __init__(
        self,
        backend: "MemoryLogBackend",
        address: str,
        log: Dict[str, LogEntry],
        access_callback: Optional[AccessCallback] = None,
        fail_open: bool = True,
    ):
        super().__init__(address, backend.identity, access_callback, fail_open)
        self.backend = backend
        self._log = log

    def _entries(self) -> List[LogEntry]:
        return list(self._log.values())

    def _lookup(self, entry_hash: str) -> Optional[LogEntry]:
        return self._log.get(entry_hash)

    def _store(self, entry: LogEntry) -> None:
        self._log[entry.hash] = entry

    async def _after_add(self, entry: LogEntry) -> None:
        if self.backend.network is not None:
            await self.backend.network.broadcast(self, [entry])

    async def close(self) -> None:
        if self.closed:
            return
        if self.backend.network is not None:
            self.backend.network.leave(self)
        self.backend._forget(self)
        await super().close()


class MemoryLogBackend:
    """
    Log-store backend keeping every log in memory.

    Logs outlive their handles: reopening an address on the same backend
    sees the entries written before.
    """

    def __init__(self, identity: Any, network: Optional[MemoryLogNetwork] = None, peer_id: Optional[str] = None):
        self.identity = identity
        self.network = network
        self.peer_id = peer_id or uuid.uuid4().hex
        self._logs: Dict[str, Dict[str, LogEntry]] = {}
        self._handles: List[MemoryLogHandle] = []
        self.open_count = 0

    async def open(
        self,
        address: str,
        *,
        create: bool = True,
        type: str = LOGSTORE_TYPE,
        access_callback: Optional[AccessCallback] = None,
        fail_open: bool = True,
    ) -> MemoryLogHandle:
        if type != LOGSTORE_TYPE:
            raise PaperDBStoreError(f"Unsupported log store type '{type}'", object_ref=address)

        known = address in self._logs or (self.network is not None and self.network.known(address))
        if not known and not create:
            raise PaperDBStoreError(f"Log store {address} does not exist", object_ref=address)

        log = self._logs.setdefault(address, {})
        handle = MemoryLogHandle(self, address, log, access_callback, fail_open)
        self._handles.append(handle)
        self.open_count += 1
        logger.info(f"Opened log store {address} on peer {self.peer_id}")

        if self.network is not None:
            peers = self.network.join(handle)
            for peer in peers:
                # sync both ways, then announce
                await handle.receive(peer.iterator())
                await peer.receive(handle.iterator())
                peer.events.emit("peer", self.peer_id)
                handle.events.emit("peer", peer.backend.peer_id)

        return handle

    def _forget(self, handle: MemoryLogHandle) -> None:
        if handle in self._handles:
            self._handles.remove(handle)

    async def close(self) -> None:
        for handle in list(self._handles):
            await handle.close()
        logger.debug(f"Closed memory log backend {self.peer_id}")
