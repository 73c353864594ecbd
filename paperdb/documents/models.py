"""
PaperDB Wire Models — Pydantic definitions of everything persisted or exchanged.

IdentityDescriptor: public description of a signer.
PreloadEntry: signed bootstrap document stored in the manifest metadata.
LogEntry: one entry of a collection's append-only log.
Manifest: the content-addressed descriptor of a collection's log store.

Field names follow the JSON wire format (``publicKey``, ``accessController``)
through aliases; models accept either spelling on input.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

MANIFEST_NAME = "paperdb"
LOGSTORE_TYPE = "paperdb:logstore"
ACCESS_CONTROLLER_TYPE = "paperdb"


class IdentityDescriptor(BaseModel):
    """Public identity of a signer. ``id`` is the base64 raw public key."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: Optional[str] = None
    public_key: Optional[str] = Field(default=None, alias="publicKey")
    signatures: Dict[str, str] = Field(default_factory=dict)
    type: str = "ed25519"

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class PreloadEntry(BaseModel):
    """
    Signed snapshot ``{payload, identity, signature}``.

    Fields are optional so that structurally incomplete entries can be
    represented and rejected by verification instead of by parsing.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    payload: Optional[Dict[str, Any]] = None
    identity: Optional[IdentityDescriptor] = None
    signature: Optional[str] = None

    @property
    def is_complete(self) -> bool:
        return (
            self.payload is not None
            and self.identity is not None
            and bool(self.identity.public_key)
            and bool(self.signature)
        )

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class LogEntry(BaseModel):
    """An entry of a collection log. ``hash`` is the content hash of the rest."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    hash: Optional[str] = None
    payload: Any = None
    identity: Optional[IdentityDescriptor] = None
    signature: Optional[str] = None
    clock: int = 0

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class ManifestMeta(BaseModel):
    metainfo: Optional[Any] = None
    preload: Optional[PreloadEntry] = None


class Manifest(BaseModel):
    """The object stored at a collection's id in the blob store."""

    model_config = ConfigDict(populate_by_name=True)

    name: str
    type: str
    access_controller: str = Field(default=f"/{ACCESS_CONTROLLER_TYPE}", alias="accessController")
    meta: ManifestMeta = Field(default_factory=ManifestMeta)

    @property
    def is_paperdb_logstore(self) -> bool:
        return self.name == MANIFEST_NAME and self.type == LOGSTORE_TYPE

    def to_wire(self) -> Dict[str, Any]:
        meta: Dict[str, Any] = {}
        if self.meta.metainfo is not None:
            meta["metainfo"] = self.meta.metainfo
        if self.meta.preload is not None:
            meta["preload"] = self.meta.preload.to_wire()
        return {
            "name": self.name,
            "type": self.type,
            "accessController": self.access_controller,
            "meta": meta,
        }
