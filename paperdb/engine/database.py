"""
PaperDB — the root object owning the registry, identity and stores.

Provides:
- PaperDB: collection(), create_collection(), files, user_id(), close()
- PaperDB.create(config): build every component from a PaperDBConfig

Usage:
    db = await PaperDB.create(load_config())
    notes = await db.create_collection(doctype="date", metainfo={"title": "Dates"})
    await notes.add(PaperDBDate.utcnow_ms())
    same = db.collection(notes.id, doctype="date")
"""

from __future__ import annotations

import logging
from typing import Any, List, Optional, Sequence

from paperdb.db.blobstore import GatewayBlobStore, MemoryBlobStore
from paperdb.db.memory import MemoryLogBackend, MemoryLogNetwork
from paperdb.db.sql import SqlLogBackend
from paperdb.documents.models import (
    ACCESS_CONTROLLER_TYPE,
    LOGSTORE_TYPE,
    MANIFEST_NAME,
    Manifest,
    ManifestMeta,
)
from paperdb.engine.collection import Collection
from paperdb.engine.config import PaperDBConfig, get_config
from paperdb.engine.errors import InvalidPayloadError
from paperdb.engine.logging import configure_logging
from paperdb.security.access import AccessController
from paperdb.security.identity import Ed25519IdentityProvider, Identity
from paperdb.security.preload import build_entry, canonical_json
from paperdb.types.converter import Convertible, TypedObject, is_typed_object
from paperdb.types.registry import ConverterRegistry, default_registry

logger = logging.getLogger("paperdb.engine.database")


class PaperDB:
    """
    Root PaperDB instance.

    Args:
        identity: signing identity used for log entries and preload entries.
        log_backend: LogStoreBackend opening collection logs.
        blob_store: BlobStore holding manifests and files.
        registry: converter registry (default: default_registry()).
        config: PaperDBConfig (default: PaperDBConfig()).
    """

    def __init__(
        self,
        identity: Identity,
        log_backend: Any,
        blob_store: Any,
        registry: Optional[ConverterRegistry] = None,
        config: Optional[PaperDBConfig] = None,
    ):
        self.identity = identity
        self.log_backend = log_backend
        self.blob_store = blob_store
        self.registry = registry if registry is not None else default_registry()
        self.config = config or PaperDBConfig()
        self._collections: List[Collection] = []

    @classmethod
    async def create(
        cls,
        config: Optional[PaperDBConfig] = None,
        network: Optional[MemoryLogNetwork] = None,
        registry: Optional[ConverterRegistry] = None,
        setup_logging: bool = False,
    ) -> "PaperDB":
        """
        Build a PaperDB from configuration.

        Loads (or creates) the identity key file, then the configured log
        store and blob store backends. *network* connects memory backends
        of several instances in one process.
        """
        config = config or get_config()
        if setup_logging:
            configure_logging(config.logging)

        identity = Ed25519IdentityProvider().load_identity(
            config.resolve_path(config.identity.key_file),
            create_if_missing=config.identity.create_if_missing,
        )

        if config.logstore.backend == "sql":
            log_backend: Any = SqlLogBackend(identity, config.logstore_url(), echo=config.logstore.echo)
        else:
            log_backend = MemoryLogBackend(identity, network)

        if config.blobstore.backend == "gateway":
            blob_store: Any = GatewayBlobStore(config.blobstore.gateway_url, timeout=config.blobstore.timeout)
        else:
            blob_store = MemoryBlobStore()

        logger.info(
            f"PaperDB '{config.name}' started: logstore={config.logstore.backend} "
            f"blobstore={config.blobstore.backend} user={identity.user_id()}"
        )
        return cls(identity, log_backend, blob_store, registry=registry, config=config)

    # -----------------------------------------------------------------------
    # Properties
    # -----------------------------------------------------------------------

    @property
    def files(self) -> Any:
        """The blob store (manifests, BlobFile contents)."""
        return self.blob_store

    @property
    def fail_open(self) -> bool:
        """Whether a raising access controller admits the write."""
        return self.config.access.fail_open

    def user_id(self) -> str:
        return self.identity.user_id()

    # -----------------------------------------------------------------------
    # Collections
    # -----------------------------------------------------------------------

    def _validate_doctype(self, doctype: Optional[str]) -> None:
        if doctype:
            self.registry.resolve(doctype)

    def collection(
        self,
        id: str,
        doctype: Optional[str] = None,
        access_controllers: Optional[Sequence[AccessController]] = None,
    ) -> Collection:
        """
        Get an (unready) collection by id.

        Raises:
            UnknownDoctypeError: *doctype* is not registered.
        """
        self._validate_doctype(doctype)
        collection = Collection(id, self, doctype=doctype, access_controllers=access_controllers)
        self._collections.append(collection)
        return collection

    def _forget_collection(self, collection: Collection) -> None:
        # identity, not __eq__: several objects may share one collection id
        self._collections = [c for c in self._collections if c is not collection]

    def _preload_object(self, preload_doc: Any, doctype: Optional[str]) -> TypedObject:
        if isinstance(preload_doc, dict):
            if not is_typed_object(preload_doc):
                raise InvalidPayloadError("The preload document is not a TypedObject")
            return dict(preload_doc)
        if isinstance(preload_doc, Convertible):
            return preload_doc.to_typed_object()
        if doctype:
            return self.registry.resolve(doctype).to_typed_object(preload_doc)
        raise InvalidPayloadError(
            f"Cannot convert the preload document ({type(preload_doc).__name__}) to a TypedObject"
        )

    async def create_collection(
        self,
        doctype: Optional[str] = None,
        metainfo: Any = None,
        preload_doc: Any = None,
        access_controllers: Optional[Sequence[AccessController]] = None,
    ) -> Collection:
        """
        Create a collection and make it ready.

        The manifest (metainfo + signed preload entry) is written to the
        blob store; its ref is the collection id, so equal inputs from one
        identity give the same collection.
        """
        self._validate_doctype(doctype)

        preload_entry = None
        if preload_doc is not None:
            preload_entry = build_entry(self._preload_object(preload_doc, doctype), self.identity)

        manifest = Manifest(
            name=MANIFEST_NAME,
            type=LOGSTORE_TYPE,
            access_controller=f"/{ACCESS_CONTROLLER_TYPE}",
            meta=ManifestMeta(metainfo=metainfo, preload=preload_entry),
        )
        collection_id = await self.files.put(canonical_json(manifest.to_wire()))
        logger.info(f"Created collection {collection_id} (doctype={doctype})")

        collection = self.collection(collection_id, doctype, access_controllers)
        await collection.ready()
        return collection

    async def close(self) -> None:
        """Close every collection opened through this instance, then the stores."""
        for collection in list(self._collections):
            await collection.close()
        self._collections.clear()

        await self.log_backend.close()
        close_blobs = getattr(self.blob_store, "close", None)
        if close_blobs is not None:
            await close_blobs()
        logger.info("PaperDB closed")

    def __repr__(self) -> str:
        return f"PaperDB(name={self.config.name!r}, user_id={self.user_id()!r})"
