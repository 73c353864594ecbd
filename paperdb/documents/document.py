"""
PaperDB Document — read-only reference to one collection entry.

A Document is a projection over either a replicated LogEntry or the
collection's PreloadEntry. It holds no state of its own and is rebuilt
whenever a caller asks for a document.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Union

from paperdb.documents.models import IdentityDescriptor, LogEntry, PreloadEntry
from paperdb.engine.errors import MissingEntryIdentityError
from paperdb.security.identity import user_id_from_public_key
from paperdb.types.registry import ConverterRegistry

PRELOAD_DOCUMENT_ID = "__preload__"

Entry = Union[LogEntry, PreloadEntry]


class Document:
    """
    Reference to one document.

    Args:
        entry: a LogEntry or the collection's PreloadEntry.
        registry: converter registry used to decode the payload.
        db: the root PaperDB instance, handed to converters.
    """

    def __init__(self, entry: Entry, registry: ConverterRegistry, db: Any = None):
        self._entry = entry
        self._registry = registry
        self._db = db

    @property
    def id(self) -> str:
        """The entry hash, or PRELOAD_DOCUMENT_ID for the preload document."""
        entry_hash = getattr(self._entry, "hash", None)
        return entry_hash or PRELOAD_DOCUMENT_ID

    @property
    def is_preload(self) -> bool:
        return self.id == PRELOAD_DOCUMENT_ID

    @property
    def entry(self) -> Entry:
        return self._entry

    @property
    def payload(self) -> Any:
        return self._entry.payload

    @property
    def identity(self) -> Optional[IdentityDescriptor]:
        return self._entry.identity

    def data(self) -> Any:
        """
        Decode the payload into its application value.

        The converter is chosen by the payload's own type/version.

        Raises:
            InvalidPayloadError / UnknownDoctypeError from the registry.
        """
        return self._registry.decode(self._entry.payload, self._db)

    def user_id(self) -> str:
        """Stable id of the creator: sha256 of the signer's public key."""
        if self._entry.identity is None:
            raise MissingEntryIdentityError("The entry doesn't have an identity", object_ref=self.id)
        return user_id_from_public_key(self._entry.identity.public_key)

    def to_dict(self) -> Dict[str, Any]:
        identity = self._entry.identity
        return {
            "id": self.id,
            "payload": self._entry.payload,
            "identity": identity.to_wire() if identity else None,
        }

    def __repr__(self) -> str:
        payload = self._entry.payload
        type_name = payload.get("type") if isinstance(payload, dict) else None
        return f"Document(id={self.id!r}, type={type_name!r})"
