"""
PaperDB Collection — the handle binding doctype, access gate, preload
entry and a lazily opened log store.

State machine:
    unready ──ready()──▶ loading ──▶ ready ──close()──▶ closed

- unready: constructed, no I/O. Doctype and access controllers may change.
- loading: one shared readiness task in flight (concurrent ready() callers
  all await it, so the log store is opened exactly once).
- ready:   log store open, access gate installed, configuration frozen.
- closed:  terminal; only the log-store handle is released.

instant_load() reads the manifest (metainfo + preload entry) from the blob
store without opening the log store, and may be called in any state but
closed.

Usage:
    collection = db.collection(collection_id, doctype="date")
    result = await collection.instant_load()
    doc = await collection.add(PaperDBDate.utcnow_ms())
    docs = await collection.get_all()
"""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Set

from pydantic import ValidationError

from paperdb.db.address import to_log_address
from paperdb.documents.document import PRELOAD_DOCUMENT_ID, Document
from paperdb.documents.models import LOGSTORE_TYPE, MANIFEST_NAME, PreloadEntry
from paperdb.engine.errors import (
    AlreadyReadyError,
    CollectionClosedError,
    EntryNotFoundError,
    InvalidManifestError,
    InvalidPayloadError,
    InvalidPreloadEntryError,
    NoPreloadDocumentError,
    PreloadTypeMismatchError,
)
from paperdb.engine.logging import collection_event_entry
from paperdb.security.access import DEFAULT_ACCESS_CONTROLLERS, AccessController, combine
from paperdb.security.preload import verify_entry
from paperdb.types.converter import (
    Convertible,
    Converter,
    TypedObject,
    expect_typed_object,
    is_typed_object,
    typed_object_version,
)
from paperdb.types.validator import create_validator

logger = logging.getLogger("paperdb.engine.collection")

COLLECTION_REF_TYPE = "collection-ref"
MANIFEST_PIN_NAME = "collection_manifest"

UNREADY = "unready"
LOADING = "loading"
READY = "ready"
CLOSED = "closed"


@dataclass(frozen=True)
class InstantLoadResult:
    """What instant_load() returns: the manifest metainfo and the preload document."""
    metainfo: Any = None
    preload_document: Optional[Document] = None


class Collection:
    """
    Reference to a PaperDB collection.

    Args:
        id: the collection id (ref of the manifest in the blob store).
        db: the root PaperDB instance.
        doctype: type name enforced by const_doctype. When omitted the
            preload document's type is used, if there is one.
        access_controllers: ordered access-controller factories.
    """

    def __init__(
        self,
        id: str,
        db: Any,
        doctype: Optional[str] = None,
        access_controllers: Optional[Sequence[AccessController]] = None,
    ):
        self.id = id
        self._db = db
        self._doctype: Optional[str] = None
        self._access_controllers: Sequence[AccessController] = DEFAULT_ACCESS_CONTROLLERS

        self._state = UNREADY
        self._metainfo: Any = None
        self._preload_entry: Optional[PreloadEntry] = None
        self._handle: Any = None
        self._ready_task: Optional[asyncio.Task] = None
        self._pin_tasks: Set[asyncio.Task] = set()

        if access_controllers is not None:
            self.set_access_controllers(access_controllers)
        self.set_doctype(doctype)

    # -----------------------------------------------------------------------
    # Configuration (unready only)
    # -----------------------------------------------------------------------

    @property
    def state(self) -> str:
        return self._state

    @property
    def doctype(self) -> Optional[str]:
        return self._doctype

    @property
    def access_controllers(self) -> Sequence[AccessController]:
        return self._access_controllers

    @property
    def preload_entry(self) -> Optional[PreloadEntry]:
        """The verified preload entry, available after instant_load()."""
        return self._preload_entry

    @property
    def db(self) -> Any:
        return self._db

    def set_doctype(self, doctype: Optional[str]) -> "Collection":
        """
        Set the doctype const_doctype enforces.

        Takes priority over the preload document's type.

        Raises:
            AlreadyReadyError: the collection is no longer unready.
        """
        if self._state != UNREADY:
            raise AlreadyReadyError(
                "The collection doctype cannot be changed after the collection is ready",
                collection_id=self.id,
                state=self._state,
            )
        self._doctype = doctype
        return self

    def set_access_controllers(self, controllers: Sequence[AccessController]) -> "Collection":
        """
        Replace the access controllers (default: ``[const_doctype]``).

        Raises:
            AlreadyReadyError: the collection is no longer unready.
            TypeError: *controllers* is not a list or tuple.
        """
        if self._state != UNREADY:
            raise AlreadyReadyError(
                "Access controllers cannot be changed after the collection is ready",
                collection_id=self.id,
                state=self._state,
            )
        if not isinstance(controllers, (list, tuple)):
            raise TypeError("access_controllers must be a list or tuple")
        self._access_controllers = tuple(controllers)
        return self

    def doc_converter(self) -> Optional[Converter]:
        """
        The converter documents of this collection are checked against.

        Explicit doctype first, then the preload payload's type, else None.
        """
        registry = self._db.registry
        if self._doctype:
            return registry.resolve(self._doctype)

        payload = self._preload_entry.payload if self._preload_entry is not None else None
        if is_typed_object(payload):
            return registry.resolve(payload["type"], typed_object_version(payload))
        return None

    def _check_not_closed(self) -> None:
        if self._state == CLOSED:
            raise CollectionClosedError(
                f"Collection {self.id} is closed",
                collection_id=self.id,
                state=self._state,
            )

    def _log_event(self, event: str, message: str, **fields: Any) -> None:
        logger.info(
            message,
            extra={"entry": collection_event_entry(
                event, self.id, doctype=self._doctype, state=self._state, **fields,
            )},
        )

    # -----------------------------------------------------------------------
    # Manifest / instant loading
    # -----------------------------------------------------------------------

    async def instant_load(self) -> InstantLoadResult:
        """
        Read the manifest: metainfo and the preload document.

        Only the blob store is touched, so this works against an HTTP
        gateway. Does not make the collection ready.

        Raises:
            InvalidManifestError: the blob is not a PaperDB log-store manifest.
            InvalidPreloadEntryError: the preload entry is partial or its
                signature does not verify.
            PreloadTypeMismatchError: the preload document is not of the doctype.
            CollectionClosedError: the collection is closed.
        """
        self._check_not_closed()

        raw = await self._db.files.get(self.id)
        try:
            manifest = json.loads(raw.decode("utf-8") if isinstance(raw, (bytes, bytearray)) else raw)
        except (UnicodeDecodeError, ValueError) as e:
            raise InvalidManifestError(
                f"The manifest of collection {self.id} is not valid JSON: {e}",
                collection_id=self.id,
            ) from e

        if (
            not isinstance(manifest, dict)
            or manifest.get("name") != MANIFEST_NAME
            or manifest.get("type") != LOGSTORE_TYPE
        ):
            raise InvalidManifestError(
                f"The manifest of collection {self.id} is not a PaperDB log store manifest",
                collection_id=self.id,
            )

        meta = manifest.get("meta") or {}
        if not isinstance(meta, dict):
            raise InvalidManifestError("The manifest 'meta' must be an object", collection_id=self.id)

        preload_entry = self._load_preload_entry(meta.get("preload"))

        self._metainfo = meta.get("metainfo")
        self._preload_entry = preload_entry

        # pin without blocking the caller
        task = asyncio.ensure_future(self._pin_manifest_quietly())
        self._pin_tasks.add(task)
        task.add_done_callback(self._pin_tasks.discard)

        logger.debug(f"Instant-loaded collection {self.id} (preload={preload_entry is not None})")
        return InstantLoadResult(
            metainfo=self._metainfo,
            preload_document=self._document(preload_entry) if preload_entry is not None else None,
        )

    def _load_preload_entry(self, raw: Any) -> Optional[PreloadEntry]:
        if raw is None:
            return None

        try:
            entry = PreloadEntry.model_validate(raw)
        except ValidationError as e:
            raise InvalidPreloadEntryError(
                f"The preload entry of collection {self.id} is malformed: {e}",
                collection_id=self.id,
            ) from e

        if not entry.is_complete:
            raise InvalidPreloadEntryError(
                "The preload entry of the collection is partial",
                collection_id=self.id,
            )

        if not verify_entry(entry, self._db.identity):
            raise InvalidPreloadEntryError(
                "The preload document of the collection is invalid. "
                "Cannot validate the signature of the entry",
                collection_id=self.id,
            )

        if self._doctype:
            validator = create_validator(self._db.registry.resolve(self._doctype), self._db)
            if not validator(entry.payload):
                raise PreloadTypeMismatchError(
                    f"The preload document of the collection is not of the type '{self._doctype}'",
                    collection_id=self.id,
                    type_name=self._doctype,
                )
        return entry

    async def metainfo(self) -> Any:
        """The metainfo describing the collection (instant-loads the manifest)."""
        await self.instant_load()
        return self._metainfo

    async def pin_manifest(self) -> None:
        """Pin the manifest blob of the collection."""
        await self._db.files.pin(self.id, MANIFEST_PIN_NAME)

    async def _pin_manifest_quietly(self) -> None:
        try:
            await self.pin_manifest()
        except Exception as e:
            logger.warning(f"Could not pin the manifest of collection {self.id}: {e}")

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    async def ready(self) -> None:
        """
        Open the log store (once).

        Concurrent callers share one in-flight task. A failed attempt
        returns the collection to unready so ready() can be retried.
        """
        if self._state == READY:
            return
        self._check_not_closed()

        if self._ready_task is None:
            self._state = LOADING
            self._ready_task = asyncio.ensure_future(self._open())
        await asyncio.shield(self._ready_task)

    async def _open(self) -> None:
        try:
            await self.instant_load()
            gate = combine(self._access_controllers, self, self._db)
            handle = await self._db.log_backend.open(
                to_log_address(self.id),
                create=True,
                type=LOGSTORE_TYPE,
                access_callback=gate,
                fail_open=self._db.fail_open,
            )
        except Exception as e:
            self._state = UNREADY
            self._ready_task = None
            logger.error(
                f"Collection {self.id} failed to open: {e}",
                extra={"entry": collection_event_entry("ready_failed", self.id, error=str(e))},
            )
            raise

        self._handle = handle
        self._state = READY
        self._log_event("ready", f"Collection {self.id} is ready")

    async def close(self) -> None:
        """Close the log-store handle. The collection cannot be reopened."""
        if self._state == CLOSED:
            return
        if self._ready_task is not None and not self._ready_task.done():
            try:
                await self._ready_task
            except Exception:
                logger.debug(f"Closing collection {self.id} after a failed open")

        if self._handle is not None:
            await self._handle.close()
            self._handle = None
        self._state = CLOSED
        self._db._forget_collection(self)
        self._log_event("close", f"Collection {self.id} closed")

    # -----------------------------------------------------------------------
    # Documents
    # -----------------------------------------------------------------------

    def _document(self, entry: Any) -> Document:
        return Document(entry, self._db.registry, self._db)

    def _encode(self, value: Any) -> TypedObject:
        if isinstance(value, dict):
            if not is_typed_object(value):
                raise InvalidPayloadError("The document is not a TypedObject", collection_id=self.id)
            return dict(value)
        if isinstance(value, Convertible):
            return value.to_typed_object()

        converter = self.doc_converter()
        if converter is None:
            raise InvalidPayloadError(
                f"Cannot convert {type(value).__name__} to a TypedObject: the collection has no doctype",
                collection_id=self.id,
            )
        return converter.to_typed_object(value)

    async def add(self, value: Any, pin: bool = True) -> Document:
        """
        Append a document.

        *value* may be an application value, a Convertible, a TypedObject
        dict, a Document (its data() is appended) or an awaitable of one.
        There is no update or delete; applications append tombstones.

        Raises:
            WriteRejectedError: the access gate rejected the entry.
        """
        await self.ready()

        if inspect.isawaitable(value):
            value = await value
        if isinstance(value, Document):
            value = value.data()

        obj = self._encode(value)
        doc_id = await self._handle.add(obj, pin=pin)
        self._log_event("add", f"Added document {doc_id} to collection {self.id}", document_id=doc_id)
        return await self.doc(doc_id)

    async def doc(self, id: str) -> Document:
        """
        Get one document by id. The preload document's id is PRELOAD_DOCUMENT_ID.

        Raises:
            NoPreloadDocumentError: the preload document was asked for but
                the collection has none.
            EntryNotFoundError: no entry with that hash.
        """
        await self.ready()

        if id == PRELOAD_DOCUMENT_ID:
            if self._preload_entry is None:
                raise NoPreloadDocumentError(
                    "The preload document does not exist",
                    collection_id=self.id,
                    state=self._state,
                )
            return self._document(self._preload_entry)

        entry = self._handle.get(id)
        if entry is None:
            raise EntryNotFoundError(f"Document {id} not found", collection_id=self.id, object_ref=id)
        return self._document(entry)

    async def get_all(self) -> List[Document]:
        """The preload document (if any) followed by every entry in log order."""
        await self.ready()

        entries: List[Any] = []
        if self._preload_entry is not None:
            entries.append(self._preload_entry)
        entries.extend(self._handle.iterator(limit=-1))
        return [self._document(e) for e in entries]

    # -----------------------------------------------------------------------
    # Events
    # -----------------------------------------------------------------------

    async def on_peer(self, callback: Callable[[str], Any]) -> Callable[[], None]:
        """Subscribe to new peers opening this collection. Returns an unsubscribe callable."""
        await self.ready()
        return self._handle.events.on("peer", callback)

    async def on_snapshot(self, callback: Callable[..., Any]) -> Callable[[], None]:
        """
        Subscribe to inbound replication (not emitted for local add()).

        A good place to re-query the collection.
        """
        await self.ready()
        return self._handle.events.on("replicated", callback)

    # -----------------------------------------------------------------------
    # collection-ref
    # -----------------------------------------------------------------------

    def to_typed_object(self) -> TypedObject:
        obj: TypedObject = {"type": COLLECTION_REF_TYPE, "id": self.id}
        if self._doctype:
            obj["doctype"] = self._doctype
        return obj

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Collection):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)

    def __repr__(self) -> str:
        return f"Collection(id={self.id!r}, doctype={self._doctype!r}, state={self._state!r})"


def decode_collection_ref(obj: Any, db: Any = None) -> Collection:
    if isinstance(obj, Collection):
        return obj
    expect_typed_object(obj, COLLECTION_REF_TYPE)

    collection_id = obj.get("id")
    doctype = obj.get("doctype")
    if not isinstance(collection_id, str) or not collection_id:
        raise InvalidPayloadError("'id' must be a non-empty string", type_name=COLLECTION_REF_TYPE)
    if doctype is not None and not isinstance(doctype, str):
        raise InvalidPayloadError("'doctype' must be a string", type_name=COLLECTION_REF_TYPE)
    return Collection(collection_id, db, doctype=doctype)


COLLECTION_REF_CONVERTER = Converter(
    type_name=COLLECTION_REF_TYPE,
    version=1,
    decode=decode_collection_ref,
)
