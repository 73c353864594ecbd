"""
Preload entries — sign and verify the bootstrap document kept in a
collection manifest's metadata.

The preload entry lets a reader check the first document of a collection
(e.g. fetched through an HTTP gateway) before the log store is opened.

Signed bytes are the canonical JSON of the payload: sorted keys, no
insignificant whitespace, UTF-8.
"""

from __future__ import annotations

import copy
import json
import logging
from typing import Any, Mapping

from paperdb.documents.models import PreloadEntry
from paperdb.engine.errors import (
    MissingEntryIdentityError,
    MissingIdentityProviderError,
    MissingPayloadError,
    MissingSignatureError,
)
from paperdb.security.identity import is_bound_descriptor

logger = logging.getLogger("paperdb.security.preload")


def canonical_json(obj: Any) -> bytes:
    """Deterministic JSON encoding used for signing and content hashing."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _provider_of(identity: Any) -> Any:
    provider = getattr(identity, "provider", None) if identity is not None else None
    if provider is None or not callable(getattr(provider, "verify", None)):
        raise MissingIdentityProviderError("identity.provider is required, cannot sign or verify the entry")
    return provider


def build_entry(payload: Mapping[str, Any], identity: Any) -> PreloadEntry:
    """
    Sign *payload* with *identity* and build a frozen PreloadEntry.

    The entry holds a deep copy of the payload, so later changes to the
    caller's object cannot invalidate the signature.
    """
    provider = _provider_of(identity)
    if not callable(getattr(provider, "sign", None)):
        raise MissingIdentityProviderError("identity.provider cannot sign")

    frozen_payload = copy.deepcopy(dict(payload))
    signature = provider.sign(identity, canonical_json(frozen_payload))

    return PreloadEntry(
        payload=frozen_payload,
        identity=identity.descriptor(),
        signature=signature,
    )


def verify_entry(entry: PreloadEntry, identity: Any) -> bool:
    """
    Verify the signature of a preload entry.

    Returns False if the signature does not match or the identity id is
    not its public key. Raises only when a required piece is structurally
    missing.

    Raises:
        MissingIdentityProviderError: *identity* cannot verify.
        MissingEntryIdentityError: entry.identity or its publicKey is absent.
        MissingSignatureError: entry.signature is absent.
        MissingPayloadError: entry.payload is absent.
    """
    provider = _provider_of(identity)

    if entry.identity is None or not entry.identity.public_key:
        raise MissingEntryIdentityError("The entry doesn't have an identity")
    if not entry.signature:
        raise MissingSignatureError("The entry doesn't have a signature")
    if entry.payload is None:
        raise MissingPayloadError("The entry doesn't have a payload")
    if not is_bound_descriptor(entry.identity):
        logger.warning("Preload entry identity id does not match its public key")
        return False

    valid = provider.verify(entry.signature, entry.identity.public_key, canonical_json(entry.payload))
    if not valid:
        logger.warning("Preload entry signature does not verify")
    return bool(valid)
