"""
PaperDB — typed, access-controlled document collections over append-only
replicated logs.

Usage:
    from paperdb import PaperDB, PaperDBDate, const_user, const_doctype

    db = await PaperDB.create()
    dates = await db.create_collection(
        doctype="date",
        access_controllers=[const_doctype, const_user],
    )
    await dates.add(PaperDBDate.utcnow_ms())
"""

__version__ = "1.0.0"

from paperdb.documents.document import PRELOAD_DOCUMENT_ID, Document  # noqa: E402
from paperdb.engine.collection import Collection, InstantLoadResult  # noqa: E402
from paperdb.engine.config import PaperDBConfig, get_config, load_config  # noqa: E402
from paperdb.engine.database import PaperDB  # noqa: E402
from paperdb.security.access import (  # noqa: E402
    DEFAULT_ACCESS_CONTROLLERS,
    combine,
    const_doctype,
    const_user,
)
from paperdb.security.identity import Ed25519IdentityProvider, Identity  # noqa: E402
from paperdb.security.preload import build_entry, verify_entry  # noqa: E402
from paperdb.types.blob_file import BlobFile  # noqa: E402
from paperdb.types.converter import Convertible, Converter, TypedObject  # noqa: E402
from paperdb.types.date import PaperDBDate, PaperDBTimestamp  # noqa: E402
from paperdb.types.registry import ConverterRegistry, default_registry  # noqa: E402

__all__ = [
    "PaperDB",
    "Collection",
    "InstantLoadResult",
    "Document",
    "PRELOAD_DOCUMENT_ID",
    "PaperDBConfig",
    "load_config",
    "get_config",
    "DEFAULT_ACCESS_CONTROLLERS",
    "combine",
    "const_doctype",
    "const_user",
    "Identity",
    "Ed25519IdentityProvider",
    "build_entry",
    "verify_entry",
    "BlobFile",
    "Converter",
    "Convertible",
    "TypedObject",
    "PaperDBDate",
    "PaperDBTimestamp",
    "ConverterRegistry",
    "default_registry",
]
