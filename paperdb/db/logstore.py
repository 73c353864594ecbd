"""
PaperDB Log Store — Interfaces and shared handle logic for append-only logs.

Provides:
    - LogStoreBackend / LogStoreHandle: the protocols a Collection consumes
    - LogHandleBase: entry signing, hashing, admission and range iteration
      shared by the memory and SQL backends

Entry wire shape:
    {"hash", "payload", "identity", "signature", "clock"}

``signature`` is the writer's signature over canonical_json({"clock",
"payload"}); ``hash`` is the hex sha256 of the canonical JSON of every
other field.

Admission:
    Every append, local or replicated, is passed to the handle's
    ``access_callback``. A callback that raises is resolved by
    ``fail_open``: True admits the write, False rejects it.
    Appends on one handle are serialized by an asyncio.Lock, so the
    callback never runs concurrently for one handle.
"""

from __future__ import annotations

import asyncio
import hashlib
import inspect
import logging
from typing import (
    Any,
    Awaitable,
    Callable,
    Iterable,
    List,
    Optional,
    Protocol,
    Union,
    runtime_checkable,
)

from paperdb.db.events import EventEmitter
from paperdb.documents.models import LOGSTORE_TYPE, LogEntry
from paperdb.engine.errors import CollectionClosedError, WriteRejectedError
from paperdb.security.identity import is_bound_descriptor
from paperdb.security.preload import canonical_json

logger = logging.getLogger("paperdb.db.logstore")

AccessCallback = Callable[[LogEntry], Union[bool, Awaitable[bool]]]


# ---------------------------------------------------------------------------
# Protocols
# ---------------------------------------------------------------------------

@runtime_checkable
class LogStoreHandle(Protocol):
    address: str
    events: EventEmitter

    async def add(self, payload: Any, pin: bool = True) -> str:
        ...

    def get(self, entry_hash: str) -> Optional[LogEntry]:
        ...

    def iterator(
        self,
        limit: int = -1,
        reverse: bool = False,
        gt: Optional[str] = None,
        gte: Optional[str] = None,
        lt: Optional[str] = None,
        lte: Optional[str] = None,
    ) -> List[LogEntry]:
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class LogStoreBackend(Protocol):

    async def open(
        self,
        address: str,
        *,
        create: bool = True,
        type: str = LOGSTORE_TYPE,
        access_callback: Optional[AccessCallback] = None,
        fail_open: bool = True,
    ) -> LogStoreHandle:
        ...

    async def close(self) -> None:
        ...


# ---------------------------------------------------------------------------
# Entry helpers
# ---------------------------------------------------------------------------

def signed_bytes(payload: Any, clock: int) -> bytes:
    return canonical_json({"clock": clock, "payload": payload})


def entry_hash(entry: LogEntry) -> str:
    body = {
        "payload": entry.payload,
        "identity": entry.identity.to_wire() if entry.identity else None,
        "signature": entry.signature,
        "clock": entry.clock,
    }
    return hashlib.sha256(canonical_json(body)).hexdigest()


def sign_entry(payload: Any, identity: Any, clock: int) -> LogEntry:
    """Build a signed, hashed LogEntry for *payload*."""
    unsigned = LogEntry(
        payload=payload,
        identity=identity.descriptor(),
        signature=identity.sign(signed_bytes(payload, clock)),
        clock=clock,
    )
    return unsigned.model_copy(update={"hash": entry_hash(unsigned)})


def verify_log_entry(entry: LogEntry, provider: Any) -> bool:
    """Check an entry received from a peer: content hash and writer signature."""
    if not entry.hash or entry.identity is None or not entry.identity.public_key or not entry.signature:
        return False
    if not is_bound_descriptor(entry.identity):
        return False
    if entry_hash(entry) != entry.hash:
        return False
    return bool(provider.verify(entry.signature, entry.identity.public_key, signed_bytes(entry.payload, entry.clock)))


def _sort_key(entry: LogEntry):
    return (entry.clock, entry.hash or "")


# ---------------------------------------------------------------------------
# Shared handle implementation
# ---------------------------------------------------------------------------

class LogHandleBase:
    """
    Base class for log-store handles.

    Subclasses provide storage through ``_entries()``, ``_lookup()`` and
    ``_store()``.
    """

    def __init__(
        self,
        address: str,
        identity: Any,
        access_callback: Optional[AccessCallback] = None,
        fail_open: bool = True,
    ):
        self.address = address
        self.identity = identity
        self.events = EventEmitter()
        self.fail_open = fail_open
        self._access_callback = access_callback
        self._lock = asyncio.Lock()
        self._closed = False

    # -- storage hooks -------------------------------------------------------

    def _entries(self) -> List[LogEntry]:
        raise NotImplementedError

    def _lookup(self, entry_hash: str) -> Optional[LogEntry]:
        raise NotImplementedError

    def _store(self, entry: LogEntry) -> None:
        raise NotImplementedError

    async def _after_add(self, entry: LogEntry) -> None:
        """Called after a local append has been stored."""
        return None

    # -- admission -------------------------------------------------------------

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self) -> None:
        if self._closed:
            raise CollectionClosedError(f"Log store {self.address} is closed", object_ref=self.address)

    async def can_append(self, entry: LogEntry) -> bool:
        """Run the access callback for *entry*, applying the fail_open policy."""
        if self._access_callback is None:
            return True
        try:
            result = self._access_callback(entry)
            if inspect.isawaitable(result):
                result = await result
            return bool(result)
        except Exception as e:
            logger.error(
                f"Access callback raised for entry {entry.hash} on {self.address}: {e} "
                f"({'admitting' if self.fail_open else 'rejecting'}, fail_open={self.fail_open})",
                exc_info=True,
            )
            return self.fail_open

    def _next_clock(self) -> int:
        entries = self._entries()
        return max((e.clock for e in entries), default=0) + 1

    async def add(self, payload: Any, pin: bool = True) -> str:
        """
        Sign and append *payload*.

        Raises:
            WriteRejectedError: the access callback rejected the entry.
        """
        self._check_open()
        async with self._lock:
            entry = sign_entry(payload, self.identity, self._next_clock())
            if not await self.can_append(entry):
                raise WriteRejectedError(
                    f"Write rejected by the access controller of {self.address}",
                    address=self.address,
                    object_ref=entry.hash,
                    user_id=self.identity.user_id(),
                )
            self._store(entry)
        logger.debug(f"Appended {entry.hash} to {self.address} (pin={pin})")
        await self._after_add(entry)
        return entry.hash

    async def receive(self, entries: Iterable[LogEntry]) -> List[LogEntry]:
        """
        Admit entries replicated from a peer.

        Entries already held, with a broken hash or signature, or rejected
        by the access callback are skipped. Emits ``replicated`` once if
        anything was stored.
        """
        if self._closed:
            return []

        accepted: List[LogEntry] = []
        async with self._lock:
            for entry in sorted(entries, key=_sort_key):
                if self._lookup(entry.hash) is not None:
                    continue
                if not verify_log_entry(entry, self.identity.provider):
                    logger.warning(f"Dropped replicated entry {entry.hash} on {self.address}: bad hash or signature")
                    continue
                if not await self.can_append(entry):
                    logger.info(f"Dropped replicated entry {entry.hash} on {self.address}: rejected")
                    continue
                self._store(entry)
                accepted.append(entry)

        if accepted:
            logger.debug(f"Replicated {len(accepted)} entries into {self.address}")
            self.events.emit("replicated", self.address)
        return accepted

    # -- reads -----------------------------------------------------------------

    def get(self, entry_hash: str) -> Optional[LogEntry]:
        self._check_open()
        return self._lookup(entry_hash)

    def iterator(
        self,
        limit: int = -1,
        reverse: bool = False,
        gt: Optional[str] = None,
        gte: Optional[str] = None,
        lt: Optional[str] = None,
        lte: Optional[str] = None,
    ) -> List[LogEntry]:
        """
        Entries in log order (oldest first).

        ``gt``/``gte``/``lt``/``lte`` take entry hashes; a hash that is not
        found is ignored. ``limit=-1`` means no limit.
        """
        self._check_open()
        entries = sorted(self._entries(), key=_sort_key)
        index = {e.hash: i for i, e in enumerate(entries)}

        start, end = 0, len(entries)
        if gt in index:
            start = index[gt] + 1
        elif gte in index:
            start = index[gte]
        if lt in index:
            end = index[lt]
        elif lte in index:
            end = index[lte] + 1

        selected = entries[start:end]
        if reverse:
            selected.reverse()
        if limit is not None and limit >= 0:
            selected = selected[:limit]
        return selected

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.events.clear()
        logger.debug(f"Closed log store {self.address}")

    def __len__(self) -> int:
        return len(self._entries())
