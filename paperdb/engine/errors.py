"""
PaperDB Error Hierarchy — Structured exceptions for collections, codecs and stores.

Every error carries the collection id / object ref it concerns (when known)
so that failures can be correlated with the JSON log lines emitted by
paperdb.engine.logging.

Hierarchy:
    PaperDBError
    ├── PaperDBValidationError        — Payload / converter validation failed
    │   ├── InvalidPayloadError
    │   ├── PreloadTypeMismatchError
    │   ├── UnknownDoctypeError
    │   ├── ConverterMismatchError
    │   └── InvalidConverterError
    ├── PaperDBIdentityError          — Structurally missing signing data
    │   ├── MissingIdentityProviderError
    │   ├── MissingEntryIdentityError
    │   ├── MissingSignatureError
    │   └── MissingPayloadError
    ├── PaperDBLifecycleError         — Collection used in the wrong state
    │   ├── AlreadyReadyError
    │   ├── NoPreloadDocumentError
    │   └── CollectionClosedError
    ├── PaperDBManifestError          — Manifest could not be trusted
    │   ├── InvalidManifestError
    │   └── InvalidPreloadEntryError
    ├── PaperDBStoreError             — Log / blob store failures
    │   ├── WriteRejectedError        (also a PaperDBSecurityError)
    │   ├── EntryNotFoundError
    │   ├── BlobNotFoundError
    │   └── InvalidAddressError
    ├── PaperDBSecurityError          — Write admission denied
    └── PaperDBConfigError            — Invalid paperdb.yaml
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class PaperDBError(Exception):
    """
    Base error for all PaperDB failures.
    All context is kept JSON-serializable for logging.
    """

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.collection_id: Optional[str] = context.get("collection_id")
        self.object_ref: Optional[str] = context.get("object_ref")
        self.error_type: str = self.__class__.__name__
        self.context: Dict[str, Any] = context
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error to JSON-compatible dict for logging."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "collection_id": self.collection_id,
            "object_ref": self.object_ref,
            "timestamp": self.timestamp,
            "context": {
                k: str(v) for k, v in self.context.items()
                if k not in ("collection_id", "object_ref")
            },
        }

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.object_ref:
            parts.append(f"object_ref={self.object_ref}")
        if self.collection_id:
            parts.append(f"collection_id={self.collection_id}")
        return " | ".join(parts)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class PaperDBValidationError(PaperDBError):
    """
    A payload or converter failed validation.
    Includes the type name and version that were being checked.
    """

    def __init__(self, message: str, **context: Any):
        self.type_name: Optional[str] = context.get("type_name")
        self.version: Optional[int] = context.get("version")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["type_name"] = self.type_name
        d["version"] = self.version
        return d


class InvalidPayloadError(PaperDBValidationError):
    """A TypedObject is not well-formed for the converter decoding it."""
    pass


class PreloadTypeMismatchError(PaperDBValidationError):
    """The preload document is not of the collection's doctype."""
    pass


class UnknownDoctypeError(PaperDBValidationError):
    """No converter is registered for the requested type name."""
    pass


class ConverterMismatchError(PaperDBValidationError):
    """A registry lookup found a converter declaring a different identity."""
    pass


class InvalidConverterError(PaperDBValidationError):
    """An object offered as a converter is not a usable converter."""
    pass


# ---------------------------------------------------------------------------
# Identity / signatures
# ---------------------------------------------------------------------------

class PaperDBIdentityError(PaperDBError):
    """Signing or verification could not be attempted."""
    pass


class MissingIdentityProviderError(PaperDBIdentityError):
    """The identity has no provider able to sign or verify."""
    pass


class MissingEntryIdentityError(PaperDBIdentityError):
    """The entry has no identity or no public key."""
    pass


class MissingSignatureError(PaperDBIdentityError):
    """The entry has no signature."""
    pass


class MissingPayloadError(PaperDBIdentityError):
    """The entry has no payload."""
    pass


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

class PaperDBLifecycleError(PaperDBError):
    """A collection operation was called in a state that forbids it."""

    def __init__(self, message: str, **context: Any):
        self.state: Optional[str] = context.get("state")
        super().__init__(message, **context)


class AlreadyReadyError(PaperDBLifecycleError):
    """Doctype / access controllers cannot change once the collection is ready."""
    pass


class NoPreloadDocumentError(PaperDBLifecycleError):
    """The collection has no preload document."""
    pass


class CollectionClosedError(PaperDBLifecycleError):
    """The collection has been closed."""
    pass


# ---------------------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------------------

class PaperDBManifestError(PaperDBError):
    """The collection manifest could not be loaded or trusted."""
    pass


class InvalidManifestError(PaperDBManifestError):
    """The manifest does not describe a PaperDB log store."""
    pass


class InvalidPreloadEntryError(PaperDBManifestError):
    """The preload entry is partial or its signature does not verify."""
    pass


# ---------------------------------------------------------------------------
# Security / stores / config
# ---------------------------------------------------------------------------

class PaperDBSecurityError(PaperDBError):
    """
    Write admission denied.
    Includes the address and the user id of the rejected writer.
    """

    def __init__(self, message: str, **context: Any):
        self.address: Optional[str] = context.get("address")
        self.user_id: Optional[str] = context.get("user_id")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["address"] = self.address
        d["user_id"] = self.user_id
        return d


class PaperDBStoreError(PaperDBError):
    """Log store or blob store operation failed."""
    pass


class WriteRejectedError(PaperDBStoreError, PaperDBSecurityError):
    """The log store's access gate rejected an append."""
    pass


class EntryNotFoundError(PaperDBStoreError):
    """No entry with the given hash exists in the log."""
    pass


class BlobNotFoundError(PaperDBStoreError):
    """No blob with the given ref exists in the blob store."""
    pass


class InvalidAddressError(PaperDBStoreError):
    """The string is not a PaperDB log address."""
    pass


class PaperDBConfigError(PaperDBError):
    """Configuration error — invalid paperdb.yaml."""
    pass
