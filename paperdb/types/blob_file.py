"""
Blob file type — a reference to one file stored in the blob store.

    {"type": "blob:file", "ref": "<content id>", "name": "a.txt", "size": 12}

``name`` and ``size`` are optional. The referenced bytes are fetched
lazily through the owning PaperDB instance.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

from paperdb.engine.errors import InvalidPayloadError
from paperdb.types.converter import Converter, TypedObject, expect_typed_object

logger = logging.getLogger("paperdb.types.blob_file")

BLOB_FILE_TYPE = "blob:file"


class BlobFile:
    """Reference to a blob-store object."""

    def __init__(self, ref: str, name: Optional[str] = None, size: Optional[int] = None, db: Any = None):
        self.ref = ref
        self.name = name
        self.size = size
        self._db = db

    def to_typed_object(self) -> TypedObject:
        obj: TypedObject = {"type": BLOB_FILE_TYPE, "ref": self.ref}
        if self.name is not None:
            obj["name"] = self.name
        if self.size is not None:
            obj["size"] = self.size
        return obj

    def bind(self, db: Any) -> "BlobFile":
        """Attach the PaperDB instance used by data()/pin()."""
        self._db = db
        return self

    def _require_db(self) -> Any:
        if self._db is None:
            raise RuntimeError(f"BlobFile {self.ref} is not bound to a PaperDB instance")
        return self._db

    async def data(self) -> bytes:
        """Retrieve the file contents from the blob store."""
        content = await self._require_db().files.get(self.ref)
        if self.size is not None and len(content) > self.size:
            raise InvalidPayloadError(
                f"Blob {self.ref} is larger than its declared size ({len(content)} > {self.size})",
                type_name=BLOB_FILE_TYPE,
                object_ref=self.ref,
            )
        return content

    async def pin(self) -> None:
        await self._require_db().files.pin(self.ref)

    @classmethod
    async def upload(cls, db: Any, data: bytes, name: Optional[str] = None) -> "BlobFile":
        """Store *data* in the blob store (pinned) and return a reference to it."""
        ref = await db.files.put(data)
        await db.files.pin(ref)
        logger.debug(f"Uploaded blob {ref} ({len(data)} bytes)")
        return cls(ref, name=name, size=len(data), db=db)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, BlobFile):
            return NotImplemented
        return (self.ref, self.name, self.size) == (other.ref, other.name, other.size)

    def __hash__(self) -> int:
        return hash((self.ref, self.name, self.size))

    def __repr__(self) -> str:
        return f"BlobFile(ref={self.ref!r}, name={self.name!r}, size={self.size!r})"


def decode_blob_file(obj: Any, db: Any = None) -> BlobFile:
    if isinstance(obj, BlobFile):
        return obj
    expect_typed_object(obj, BLOB_FILE_TYPE)

    ref = obj.get("ref")
    name = obj.get("name")
    size = obj.get("size")
    if not isinstance(ref, str) or not ref:
        raise InvalidPayloadError("'ref' must be a non-empty string", type_name=BLOB_FILE_TYPE)
    if name is not None and not isinstance(name, str):
        raise InvalidPayloadError("'name' must be a string", type_name=BLOB_FILE_TYPE)
    if size is not None and (isinstance(size, bool) or not isinstance(size, int) or size < 0):
        raise InvalidPayloadError("'size' must be a non-negative integer", type_name=BLOB_FILE_TYPE)
    return BlobFile(ref, name=name, size=size, db=db)


BLOB_FILE_CONVERTER = Converter(type_name=BLOB_FILE_TYPE, version=1, decode=decode_blob_file)
