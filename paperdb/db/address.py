"""Conversion between PaperDB collection ids and log-store addresses."""

from __future__ import annotations

import posixpath

from paperdb.documents.models import MANIFEST_NAME
from paperdb.engine.errors import InvalidAddressError

ADDRESS_PROTOCOL = "paperdb"


def to_log_address(collection_id: str) -> str:
    """``abc`` -> ``/paperdb/abc/paperdb``"""
    if not collection_id or "/" in collection_id:
        raise InvalidAddressError(f"Invalid collection id: {collection_id!r}", collection_id=collection_id)
    return posixpath.join("/", ADDRESS_PROTOCOL, collection_id, MANIFEST_NAME)


def to_collection_id(address: str) -> str:
    """
    Extract the collection id (the manifest ref) from a log address.

    Raises:
        InvalidAddressError: not an address used by a PaperDB collection.
    """
    parts = address.strip("/").split("/") if isinstance(address, str) else []
    if len(parts) != 3 or parts[0] != ADDRESS_PROTOCOL or parts[2] != MANIFEST_NAME or not parts[1]:
        raise InvalidAddressError(
            f"Not a valid log address used by a PaperDB collection: {address!r}",
            object_ref=str(address),
        )
    return parts[1]
