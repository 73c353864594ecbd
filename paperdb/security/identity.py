"""
PaperDB Identities — Ed25519 signing identities backed by ``cryptography``.

Provides:
    - Ed25519IdentityProvider: sign / verify raw bytes, load or create key files
    - Identity: a private key bound to its provider, with a public descriptor
    - user_id_from_public_key: stable user id (sha256 of the raw public key)
    - is_bound_descriptor: the descriptor id names its own signing key

Wire encoding: public keys and signatures are standard base64 strings.
An identity's ``id`` and ``publicKey`` are both the raw public key; the
descriptor's ``signatures["id"]`` is a self-signature over the id.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
from pathlib import Path
from typing import Optional, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from paperdb.documents.models import IdentityDescriptor
from paperdb.engine.errors import MissingEntryIdentityError

logger = logging.getLogger("paperdb.security.identity")

IDENTITY_TYPE = "ed25519"


def _b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _b64decode(text: str) -> bytes:
    return base64.b64decode(text.encode("ascii"), validate=True)


def user_id_from_public_key(public_key: Optional[str]) -> str:
    """
    Derive the user id for a base64 public key: hex sha256 of the raw key.

    Raises:
        MissingEntryIdentityError: if the key is absent or not valid base64.
    """
    if not public_key:
        raise MissingEntryIdentityError("The identity has no public key")
    try:
        raw = _b64decode(public_key)
    except (binascii.Error, ValueError, UnicodeEncodeError) as e:
        raise MissingEntryIdentityError(f"Malformed public key: {e}") from e
    return hashlib.sha256(raw).hexdigest()


def is_bound_descriptor(descriptor: Optional[IdentityDescriptor]) -> bool:
    """
    True if the descriptor names the key that signs for it.

    The user id is derived from ``publicKey``; an ``id`` that differs from
    it would let a signer claim another user.
    """
    if descriptor is None or not descriptor.public_key:
        return False
    return descriptor.id is None or descriptor.id == descriptor.public_key


class Ed25519IdentityProvider:
    """Signs with Ed25519 private keys and verifies against base64 public keys."""

    type = IDENTITY_TYPE

    def sign(self, identity: "Identity", data: bytes) -> str:
        return _b64encode(identity.private_key.sign(data))

    @staticmethod
    def verify(signature: str, public_key: str, data: bytes) -> bool:
        """
        Verify a base64 signature over *data*.

        Malformed keys or signatures verify as False rather than raising.
        """
        try:
            key = Ed25519PublicKey.from_public_bytes(_b64decode(public_key))
            key.verify(_b64decode(signature), data)
            return True
        except (InvalidSignature, binascii.Error, ValueError, UnicodeEncodeError, TypeError):
            return False

    def verify_identity(self, descriptor: IdentityDescriptor) -> bool:
        """Check that the descriptor is bound to its key and self-signed."""
        if not descriptor.id or not is_bound_descriptor(descriptor):
            return False
        signature = descriptor.signatures.get("id")
        if not signature:
            return False
        return self.verify(signature, descriptor.public_key, descriptor.id.encode("utf-8"))

    # -----------------------------------------------------------------------
    # Identity creation
    # -----------------------------------------------------------------------

    def create_identity(self, private_key: Optional[Ed25519PrivateKey] = None) -> "Identity":
        return Identity(private_key or Ed25519PrivateKey.generate(), provider=self)

    def load_identity(self, key_file: Union[str, Path], create_if_missing: bool = True) -> "Identity":
        """
        Load a PEM (PKCS8) private key, creating it when missing.

        Raises:
            FileNotFoundError: if the file is missing and creation is disabled.
        """
        path = Path(key_file)
        if path.exists():
            private_key = serialization.load_pem_private_key(path.read_bytes(), password=None)
            if not isinstance(private_key, Ed25519PrivateKey):
                raise ValueError(f"{path} does not hold an Ed25519 private key")
            logger.debug(f"Loaded identity key from {path}")
            return self.create_identity(private_key)

        if not create_if_missing:
            raise FileNotFoundError(f"Identity key file not found: {path}")

        identity = self.create_identity()
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(identity.private_pem())
        logger.info(f"Created new identity key at {path}")
        return identity


class Identity:
    """
    A signing identity: private key + provider.

    Usage:
        identity = Ed25519IdentityProvider().create_identity()
        sig = identity.sign(b"data")
        identity.provider.verify(sig, identity.public_key, b"data")  # True
    """

    def __init__(self, private_key: Ed25519PrivateKey, provider: Optional[Ed25519IdentityProvider] = None):
        self.private_key = private_key
        self.provider = provider or Ed25519IdentityProvider()
        raw = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        self.public_key = _b64encode(raw)
        self._descriptor: Optional[IdentityDescriptor] = None

    @property
    def id(self) -> str:
        return self.public_key

    def sign(self, data: bytes) -> str:
        return self.provider.sign(self, data)

    def descriptor(self) -> IdentityDescriptor:
        """The public descriptor embedded in signed entries."""
        if self._descriptor is None:
            self._descriptor = IdentityDescriptor(
                id=self.id,
                public_key=self.public_key,
                signatures={"id": self.sign(self.id.encode("utf-8"))},
                type=self.provider.type,
            )
        return self._descriptor

    def user_id(self) -> str:
        return user_id_from_public_key(self.public_key)

    def private_pem(self) -> bytes:
        return self.private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        )

    def __repr__(self) -> str:
        return f"Identity(id={self.id!r})"
