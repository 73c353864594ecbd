"""
PaperDB Access Controllers — write admission for collection logs.

An access controller is a factory ``(collection, db) -> predicate`` where
``predicate(entry)`` returns ``bool`` or an awaitable of ``bool``. A
factory is instantiated once per collection open.

Built-in controllers:
    const_doctype   — every entry decodes as the collection's doctype
    const_user      — every entry is signed by one user

``combine`` turns an ordered list of factories into the single callback a
log store calls before accepting an append. Predicates run in declaration
order and evaluation stops at the first rejection, so a rejecting
const_doctype placed first keeps const_user from fixing its user on a
malformed entry.

Resolution order for the doctype used by const_doctype:
    1. The collection's explicit doctype
    2. The preload entry's payload type
    3. None → no type constraint
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Awaitable, Callable, List, Optional, Sequence, Union

from paperdb.documents.document import Document
from paperdb.engine.errors import PaperDBIdentityError
from paperdb.engine.logging import access_decision_entry
from paperdb.types.validator import create_validator

logger = logging.getLogger("paperdb.security.access")

Predicate = Callable[[Any], Union[bool, Awaitable[bool]]]
AccessController = Callable[[Any, Any], Predicate]


async def _evaluate(predicate: Predicate, entry: Any) -> bool:
    result = predicate(entry)
    if inspect.isawaitable(result):
        result = await result
    return bool(result)


def const_doctype(collection: Any, db: Any) -> Predicate:
    """Allow the write only if the payload is of the collection's doctype."""
    converter = collection.doc_converter()
    if converter is None:
        logger.debug(f"Collection {collection.id} has no doctype — type check disabled")
        return lambda entry: entry is not None

    validator = create_validator(converter, db)

    def allow(entry: Any) -> bool:
        if entry is None:
            return False
        return validator(getattr(entry, "payload", None))

    return allow


def const_user(collection: Any, db: Any) -> Predicate:
    """
    Allow the write only if every entry is created by one constant user.

    The user is the preload document's creator when a preload entry
    exists, otherwise the creator of the first entry seen.
    """
    state: dict = {"user_id": None}

    def allow(entry: Any) -> bool:
        if entry is None or getattr(entry, "identity", None) is None:
            return False

        try:
            current_user = Document(entry, db.registry if db else None, db).user_id()
        except PaperDBIdentityError:
            return False

        if state["user_id"] is None:
            preload = collection.preload_entry
            if preload is not None:
                state["user_id"] = Document(preload, db.registry if db else None, db).user_id()
            else:
                state["user_id"] = current_user
                logger.info(f"Collection {collection.id}: constant user fixed to {current_user}")
                return True

        return state["user_id"] == current_user

    return allow


def combine(
    controllers: Sequence[AccessController],
    collection: Any,
    db: Any,
) -> Callable[[Any], Awaitable[bool]]:
    """
    Instantiate every controller and AND them together.

    The returned coroutine function evaluates the predicates sequentially
    in declaration order and returns False at the first rejection.
    """
    instances: List[tuple] = [
        (getattr(factory, "__name__", repr(factory)), factory(collection, db))
        for factory in controllers
    ]
    collection_id: Optional[str] = getattr(collection, "id", None)

    async def gate(entry: Any) -> bool:
        entry_hash = getattr(entry, "hash", None)
        for name, predicate in instances:
            if not await _evaluate(predicate, entry):
                logger.info(
                    f"Write rejected by {name}",
                    extra={"entry": access_decision_entry(collection_id, entry_hash, name, False)},
                )
                return False

        logger.debug(
            "Write allowed",
            extra={"entry": access_decision_entry(collection_id, entry_hash, "all", True)},
        )
        return True

    return gate


DEFAULT_ACCESS_CONTROLLERS = (const_doctype,)
